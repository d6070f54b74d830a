"""Trade store infrastructure: CDK stacks, release pipeline model and CLI."""

__version__ = "0.1.0"

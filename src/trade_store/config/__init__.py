"""
Configuration management for the trade store infrastructure.

Contains the Pydantic settings record that carries every account/region pair,
source repository and service sizing value used by the stacks, the release
pipeline model and the operator tooling.
"""
from .settings import DeploymentTarget, Settings, get_settings

__all__ = ["DeploymentTarget", "Settings", "get_settings"]

"""Errors raised by the operator tooling."""
from typing import Optional

from botocore.exceptions import ClientError


class PipelineOperationError(Exception):
    """An operator action against the pipeline or its stacks failed."""

    def __init__(self, message: str, code: Optional[str] = None):
        self.code = code
        super().__init__(message)


def from_client_error(action: str, error: ClientError) -> PipelineOperationError:
    """Wrap a boto3 ClientError, keeping the AWS error code."""
    code = error.response.get('Error', {}).get('Code')
    message = error.response.get('Error', {}).get('Message', str(error))
    return PipelineOperationError(f"{action} failed ({code}): {message}", code=code)

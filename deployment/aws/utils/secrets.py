"""Preflight checks for the secrets the pipeline reads at deploy time."""
import logging
from typing import Any, Dict

from botocore.exceptions import ClientError

from .aws_clients import get_secretsmanager_client
from .errors import PipelineOperationError, from_client_error

logger = logging.getLogger(__name__)


def verify_secret_exists(secret_name: str, client=None) -> Dict[str, Any]:
    """Check that the source token secret can be found by name.

    Only metadata is read; the secret value never leaves Secrets Manager.

    Raises:
        PipelineOperationError: if the secret is missing, deleted or unreadable
    """
    client = client or get_secretsmanager_client()
    try:
        response = client.describe_secret(SecretId=secret_name)
    except ClientError as e:
        if e.response['Error']['Code'] == 'ResourceNotFoundException':
            raise PipelineOperationError(
                f"Secret '{secret_name}' not found. Create it with the GitHub personal access token",
                code='ResourceNotFoundException',
            ) from e
        raise from_client_error(f"Describe secret {secret_name}", e) from e

    if response.get('DeletedDate'):
        raise PipelineOperationError(f"Secret '{secret_name}' is scheduled for deletion")

    logger.info(f"Found secret {secret_name}")
    return {
        'name': response['Name'],
        'arn': response['ARN'],
        'last_changed': response.get('LastChangedDate'),
    }

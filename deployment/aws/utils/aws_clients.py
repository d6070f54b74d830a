"""AWS client management for the operator tooling."""
import os
import boto3
import logging
from typing import Any

from trade_store.config.settings import get_settings

logger = logging.getLogger(__name__)


class AWSClientManager:
    """Singleton manager for AWS service clients."""
    _instance = None
    _clients = {}

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(AWSClientManager, cls).__new__(cls)
            cls._instance._initialize()
        return cls._instance

    def _initialize(self):
        """Initialize the client manager with settings."""
        self.settings = get_settings()

        # Cache commonly used values
        self.region = self.settings.toolchain.region
        self.endpoint_url = self.settings.endpoint_url
        self.mode = self.settings.deployment_mode

        logger.info(f"Initializing AWSClientManager")
        logger.info(f"  Mode: {self.mode}")
        logger.info(f"  Region: {self.region}")
        logger.info(f"  Endpoint: {self.endpoint_url}")

    def get_client(self, service_name: str) -> Any:
        """Get or create an AWS service client."""
        if service_name in self._clients:
            return self._clients[service_name]

        client_kwargs = {
            'region_name': self.region
        }

        # Check for AWS profile in environment (for SSO)
        aws_profile = os.environ.get('AWS_PROFILE')
        if aws_profile and self.mode == 'aws-prod':
            session = boto3.Session(profile_name=aws_profile)
            client = session.client(service_name, region_name=self.region)
            self._clients[service_name] = client
            logger.debug(f"Created {service_name} client using profile: {aws_profile}")
            return client

        if self.settings.aws_access_key_id:
            client_kwargs['aws_access_key_id'] = self.settings.aws_access_key_id
        if self.settings.aws_secret_access_key:
            client_kwargs['aws_secret_access_key'] = self.settings.aws_secret_access_key
        elif self.settings.is_mock_mode:
            client_kwargs['aws_access_key_id'] = 'mock'
            client_kwargs['aws_secret_access_key'] = 'mock'

        # Endpoint URL for local/mock modes (moto server)
        if self.endpoint_url:
            client_kwargs['endpoint_url'] = self.endpoint_url

        client = boto3.client(service_name, **client_kwargs)
        self._clients[service_name] = client
        logger.debug(f"Created {service_name} client")
        return client

    def clear_clients(self):
        """Clear all cached clients."""
        self._clients.clear()
        logger.debug("Cleared all AWS clients")

    @classmethod
    def reset(cls):
        """Forget the singleton so the next use re-reads settings."""
        cls._clients = {}
        cls._instance = None


# Convenience functions for common operations

def get_codepipeline_client():
    """Get the CodePipeline client."""
    return AWSClientManager().get_client('codepipeline')

def get_cloudformation_client():
    """Get the CloudFormation client."""
    return AWSClientManager().get_client('cloudformation')

def get_secretsmanager_client():
    """Get the Secrets Manager client."""
    return AWSClientManager().get_client('secretsmanager')

import os

import pytest
from moto import mock_aws

from trade_store.config.settings import get_settings
from deployment.aws.utils.aws_clients import AWSClientManager


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch):
    """Every test starts from default settings and fresh AWS clients."""
    for key in list(os.environ):
        if key.startswith("TRADE_STORE_"):
            monkeypatch.delenv(key)
    monkeypatch.delenv("AWS_ENDPOINT_URL", raising=False)
    monkeypatch.delenv("AWS_PROFILE", raising=False)
    monkeypatch.delenv("AWS_DEFAULT_REGION", raising=False)
    get_settings.cache_clear()
    AWSClientManager.reset()
    yield
    get_settings.cache_clear()
    AWSClientManager.reset()


@pytest.fixture
def mocked_aws(monkeypatch):
    """Mock every AWS call made through boto3."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
    monkeypatch.setenv("TRADE_STORE_DEPLOYMENT_MODE", "aws-prod")
    with mock_aws():
        yield

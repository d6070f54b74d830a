import json

import pytest
from pydantic import ValidationError

from trade_store.config.settings import DeploymentTarget, Settings, get_settings


def test_defaults():
    settings = Settings()

    assert settings.deployment_mode == "aws-prod"
    assert [t.name for t in settings.targets] == ["Devo", "PreProd"]
    assert settings.get_target("PreProd").require_approval
    assert settings.container_port == 8080
    assert settings.queue_visibility_timeout_seconds == 300
    assert settings.endpoint_url is None


def test_targets_from_json_environment(monkeypatch):
    monkeypatch.setenv("TRADE_STORE_TARGETS", json.dumps([
        {"name": "Devo", "account": "111111111111", "region": "us-west-2"},
        {"name": "Prod", "account": "222222222222", "region": "eu-west-1", "require_approval": True},
    ]))

    settings = get_settings()

    assert [(t.name, t.account, t.region) for t in settings.targets] == [
        ("Devo", "111111111111", "us-west-2"),
        ("Prod", "222222222222", "eu-west-1"),
    ]
    assert settings.get_target("Prod").require_approval


def test_get_settings_is_cached():
    assert get_settings() is get_settings()


def test_mock_mode_uses_local_endpoint(monkeypatch):
    monkeypatch.setenv("TRADE_STORE_DEPLOYMENT_MODE", "local-mock")

    settings = Settings()

    assert settings.deployment_mode == "local-dev"
    assert settings.is_mock_mode
    assert settings.endpoint_url == "http://localhost:5000"


def test_invalid_deployment_mode():
    with pytest.raises(ValidationError):
        Settings(deployment_mode="staging")


@pytest.mark.parametrize("account", ["123", "12345678901a", "1234567890123"])
def test_invalid_account(account):
    with pytest.raises(ValidationError):
        DeploymentTarget(name="Devo", account=account)


def test_duplicate_targets_rejected():
    with pytest.raises(ValidationError):
        Settings(targets=[DeploymentTarget(name="Devo"), DeploymentTarget(name="Devo")])

    with pytest.raises(ValidationError):
        Settings(targets=[
            DeploymentTarget(name="A", account="111111111111", region="us-east-1"),
            DeploymentTarget(name="B", account="111111111111", region="us-east-1"),
        ])


def test_capacity_ceiling_below_floor_rejected():
    with pytest.raises(ValidationError):
        Settings(min_capacity=3, max_capacity=2)


def test_health_check_path_must_be_absolute():
    with pytest.raises(ValidationError):
        Settings(health_check_path="health")


def test_unknown_target():
    with pytest.raises(KeyError):
        Settings().get_target("Nowhere")


def test_ecr_repository_uri():
    uri = Settings().ecr_repository_uri("123456789012", "us-east-1")

    assert uri == "123456789012.dkr.ecr.us-east-1.amazonaws.com/trade-store-app"


def test_summary_hides_credentials():
    summary = Settings(AWS_ACCESS_KEY_ID="AKIA", AWS_SECRET_ACCESS_KEY="secret").summary()

    assert "aws_access_key_id" not in summary
    assert "aws_secret_access_key" not in summary
    assert summary["targets"][0]["name"] == "Devo"


def test_toolchain_region_follows_aws_default_region(monkeypatch):
    monkeypatch.setenv("AWS_DEFAULT_REGION", "eu-central-1")

    assert Settings().toolchain.region == "eu-central-1"


def test_explicit_toolchain_keeps_its_region(monkeypatch):
    monkeypatch.setenv("AWS_DEFAULT_REGION", "eu-central-1")

    settings = Settings(toolchain=DeploymentTarget(name="Toolchain", region="ap-southeast-2"))

    assert settings.toolchain.region == "ap-southeast-2"

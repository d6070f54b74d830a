import json

import boto3
import pytest
import requests

from deployment.aws.monitoring.health_check import DeploymentHealthChecker
from deployment.aws.utils.aws_clients import AWSClientManager, get_cloudformation_client
from deployment.aws.utils.errors import PipelineOperationError
from deployment.aws.utils.secrets import verify_secret_exists

STACK_NAME = "SampleEcsStackDeployedFromCodePipeline"
LB_ADDRESS = "trade-store-alb-123.us-east-1.elb.amazonaws.com"


class FakeResponse:
    def __init__(self, status_code):
        self.status_code = status_code
        self.ok = 200 <= status_code < 300


class FakeSession:
    """Replays a list of status codes (or exceptions) for every GET."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.urls = []

    def get(self, url, timeout=None):
        self.urls.append(url)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return FakeResponse(reply)


def create_stack(outputs):
    template = {
        "Resources": {"Queue": {"Type": "AWS::SQS::Queue"}},
        "Outputs": {key: {"Value": value} for key, value in outputs.items()},
    }
    boto3.client("cloudformation", region_name="us-east-1").create_stack(
        StackName=STACK_NAME, TemplateBody=json.dumps(template),
    )


def test_client_manager_caches_clients(mocked_aws):
    assert get_cloudformation_client() is get_cloudformation_client()
    assert AWSClientManager() is AWSClientManager()


def test_healthy_stack(mocked_aws):
    create_stack({"loadBalancerUrl": LB_ADDRESS, "tableName": "trade-store-TradeRecordTable"})
    session = FakeSession(503, 200)

    result = DeploymentHealthChecker(session=session).check_stack(STACK_NAME, delay=0)

    assert result["healthy"]
    assert result["attempts"] == 2
    assert result["stack_name"] == STACK_NAME
    assert session.urls == [f"http://{LB_ADDRESS}/health"] * 2


def test_unreachable_service_reports_last_error(mocked_aws):
    create_stack({"loadBalancerUrl": LB_ADDRESS})
    session = FakeSession(requests.ConnectionError("refused"), requests.ConnectionError("refused"))

    result = DeploymentHealthChecker(session=session).check_stack(STACK_NAME, attempts=2, delay=0)

    assert not result["healthy"]
    assert result["status_code"] is None
    assert "refused" in result["error"]


def test_stage_output_with_hashed_key(mocked_aws):
    create_stack({"loadBalancerUrlA1B2C3": LB_ADDRESS})

    address = DeploymentHealthChecker(session=FakeSession()).get_load_balancer_address(STACK_NAME)

    assert address == LB_ADDRESS


def test_missing_output(mocked_aws):
    create_stack({"queueUrl": "https://sqs.example/queue"})

    with pytest.raises(PipelineOperationError, match="no loadBalancerUrl output"):
        DeploymentHealthChecker(session=FakeSession()).get_load_balancer_address(STACK_NAME)


def test_missing_stack(mocked_aws):
    with pytest.raises(PipelineOperationError):
        DeploymentHealthChecker(session=FakeSession()).get_stack_outputs("NoSuchStack")


def test_custom_health_path():
    session = FakeSession(200)
    checker = DeploymentHealthChecker(cloudformation_client=object(), session=session)

    result = checker.check_endpoint(f"https://{LB_ADDRESS}/", path="/ping", attempts=1)

    assert result["url"] == f"https://{LB_ADDRESS}/ping"
    assert result["healthy"]


def test_secret_exists(mocked_aws):
    boto3.client("secretsmanager", region_name="us-east-1").create_secret(
        Name="github-token", SecretString="ghp_example",
    )

    secret = verify_secret_exists("github-token")

    assert secret["name"] == "github-token"
    assert secret["arn"].startswith("arn:aws:secretsmanager:us-east-1:")


def test_secret_missing(mocked_aws):
    with pytest.raises(PipelineOperationError) as exc_info:
        verify_secret_exists("github-token")

    assert exc_info.value.code == "ResourceNotFoundException"


def test_clients_use_aws_default_region(monkeypatch):
    monkeypatch.setenv("AWS_DEFAULT_REGION", "eu-west-1")

    assert AWSClientManager().region == "eu-west-1"

import json

from click.testing import CliRunner

from trade_store.cli import cli, stage_stack_name
from deployment.aws.utils.errors import PipelineOperationError


def test_show_config():
    result = CliRunner().invoke(cli, ["show-config"])

    assert result.exit_code == 0
    assert "Target Devo: default/us-west-2" in result.output
    assert "Target PreProd: default/us-east-1 (manual approval)" in result.output
    assert "TradeStoreReleasePipeline (enabled)" in result.output


def test_plan_as_json():
    result = CliRunner().invoke(cli, ["plan", "--json"])

    assert result.exit_code == 0
    plan = json.loads(result.output)
    assert [s["name"] for s in plan["stages"]] == ["source", "build", "approve", "deploy-to-ecs"]
    assert plan["artifacts"]["cdk_build_output"] == {"producer": "cdk_build", "consumers": ["CFN_Deploy"]}


def test_plan_follows_settings(monkeypatch):
    monkeypatch.setenv("TRADE_STORE_PIPELINE_NAME", "OtherPipeline")

    result = CliRunner().invoke(cli, ["plan"])

    assert result.exit_code == 0
    assert "OtherPipeline is valid" in result.output
    assert "AppImageTagParameter = #{app_build.imageTag}" in result.output


def test_approve_failure_exits_non_zero(monkeypatch):
    class NoApproval:
        def __init__(self, pipeline_name):
            self.pipeline_name = pipeline_name

        def approve(self, summary):
            raise PipelineOperationError(f"No approval is waiting in {self.pipeline_name}")

    monkeypatch.setattr("deployment.aws.state.release_manager.ReleaseManager", NoApproval)

    result = CliRunner().invoke(cli, ["approve"])

    assert result.exit_code == 1
    assert "No approval is waiting in TradeStoreReleasePipeline" in result.output


def test_release_prints_execution_id(monkeypatch):
    class Starter:
        def __init__(self, pipeline_name):
            pass

        def start_release(self):
            return "exec-1"

    monkeypatch.setattr("deployment.aws.state.release_manager.ReleaseManager", Starter)

    result = CliRunner().invoke(cli, ["release", "--pipeline", "TradeStorePipeline"])

    assert result.exit_code == 0
    assert "Started execution exec-1" in result.output


def test_check_health_unknown_target():
    result = CliRunner().invoke(cli, ["check-health", "--target", "Nowhere"])

    assert result.exit_code == 2
    assert "Unknown deployment target" in result.output


def test_stage_stack_name():
    assert stage_stack_name("PreProd") == "PreProd-WebService"

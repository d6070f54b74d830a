import json
import threading

import pytest

from trade_store.pipeline import (
    ActionCategory,
    ActionResult,
    ApprovalDecision,
    Artifact,
    ArtifactWriteError,
    PipelineDefinition,
    PipelineExecutor,
    RunStatus,
    StageDefinition,
    approval_action,
    build_action,
    deploy_action,
    source_action,
)
from trade_store.pipeline.artifacts import ArtifactStore
from tests.fixtures.pipeline_fixtures import (
    RecordingHandlers,
    category_handlers,
    simple_pipeline,
)


def gated_pipeline() -> PipelineDefinition:
    """simple_pipeline with an approval stage in front of the deploy."""
    pipeline = simple_pipeline("GatedPipeline")
    deploy = pipeline.stages.pop()
    pipeline.add_stage(StageDefinition("Approve", [approval_action("gate", summary="ship it?")]), deploy)
    return pipeline


def test_happy_path_runs_every_stage_in_order():
    recorder = RecordingHandlers()
    executor = PipelineExecutor(
        simple_pipeline(),
        category_handlers(recorder, variables={"version": "1.2.3"}),
    )

    state = executor.run("run-1")

    assert state.status == RunStatus.SUCCEEDED.value
    assert recorder.calls == ["checkout", "compile", "release"]
    assert state.invoked_stages() == ["Source", "Build", "Deploy"]
    assert recorder.contexts["release"].parameters == {"Version": "1.2.3"}
    assert recorder.contexts["compile"].inputs["code"]["README.md"] == b"checkout of checkout"
    assert state.stage("Build").actions["compile"].exported_variables == {"version": "1.2.3"}


def test_failed_build_halts_the_run():
    recorder = RecordingHandlers()
    executor = PipelineExecutor(simple_pipeline(), category_handlers(recorder, exit_code=2))

    state = executor.run()

    assert state.status == RunStatus.FAILED.value
    assert "release" not in recorder.calls
    assert state.stage("Build").status == RunStatus.FAILED.value
    assert state.stage("Build").actions["compile"].exit_code == 2
    assert state.stage("Deploy").status == RunStatus.PENDING.value
    assert state.invoked_stages() == ["Source", "Build"]


def test_rejected_approval_never_invokes_deploy():
    recorder = RecordingHandlers()
    executor = PipelineExecutor(
        gated_pipeline(),
        category_handlers(recorder, variables={"version": "1"}),
        approval_provider=recorder.approver(ApprovalDecision.REJECTED),
    )

    state = executor.run()

    assert state.status == RunStatus.FAILED.value
    assert state.stage("Approve").status == RunStatus.REJECTED.value
    assert state.stage("Deploy").status == RunStatus.PENDING.value
    assert "release" not in recorder.calls
    assert recorder.approvals[0].action_name == "gate"
    assert recorder.approvals[0].summary == "ship it?"


def test_approved_run_deploys():
    recorder = RecordingHandlers()
    executor = PipelineExecutor(
        gated_pipeline(),
        category_handlers(recorder, variables={"version": "1"}),
        approval_provider=recorder.approver(ApprovalDecision.APPROVED),
    )

    state = executor.run()

    assert state.status == RunStatus.SUCCEEDED.value
    assert recorder.calls[-1] == "release"


def test_deploy_fails_when_variable_was_not_exported():
    recorder = RecordingHandlers()
    # build succeeds but never sets the declared variable
    executor = PipelineExecutor(simple_pipeline(), category_handlers(recorder))

    state = executor.run()

    release = state.stage("Deploy").actions["release"]
    assert state.status == RunStatus.FAILED.value
    assert release.status == RunStatus.FAILED.value
    assert "#{compile.version}" in release.error_message
    assert "release" not in recorder.calls


def test_undeclared_variables_are_dropped():
    recorder = RecordingHandlers()
    executor = PipelineExecutor(
        simple_pipeline(),
        category_handlers(recorder, variables={"version": "2", "secret": "x"}),
    )

    state = executor.run()

    assert state.stage("Build").actions["compile"].exported_variables == {"version": "2"}


def test_handler_exception_fails_the_action():
    recorder = RecordingHandlers()
    handlers = category_handlers(recorder, variables={"version": "1"})

    def explode(context):
        raise RuntimeError("stack rollback")

    handlers["release"] = explode
    state = PipelineExecutor(simple_pipeline(), handlers).run()

    release = state.stage("Deploy").actions["release"]
    assert release.status == RunStatus.FAILED.value
    assert "RuntimeError: stack rollback" in release.error_message


def test_missing_output_artifact_fails_the_action():
    recorder = RecordingHandlers()
    handlers = category_handlers(recorder)
    handlers[ActionCategory.BUILD] = lambda ctx: ActionResult(variables={"version": "1"})

    state = PipelineExecutor(simple_pipeline(), handlers).run()

    compile_state = state.stage("Build").actions["compile"]
    assert compile_state.status == RunStatus.FAILED.value
    assert "bundle" in compile_state.error_message


def test_actions_of_a_stage_run_concurrently():
    code = Artifact("code")
    barrier = threading.Barrier(2, timeout=5)

    def wait_for_sibling(context):
        barrier.wait()
        return ActionResult()

    pipeline = PipelineDefinition("Parallel")
    pipeline.add_stage(
        StageDefinition("Source", [source_action("checkout", code)]),
        StageDefinition("Build", [build_action("lint", code), build_action("test", code)]),
    )
    recorder = RecordingHandlers()
    executor = PipelineExecutor(
        pipeline,
        {ActionCategory.SOURCE: recorder.source, ActionCategory.BUILD: wait_for_sibling},
    )

    assert executor.run().status == RunStatus.SUCCEEDED.value


def test_missing_handler_is_rejected_up_front():
    with pytest.raises(ValueError):
        PipelineExecutor(simple_pipeline(), {ActionCategory.SOURCE: RecordingHandlers().source})


def test_approval_needs_a_provider():
    recorder = RecordingHandlers()
    with pytest.raises(ValueError):
        PipelineExecutor(gated_pipeline(), category_handlers(recorder))


def test_run_state_is_written_to_file(tmp_path):
    state_file = tmp_path / "run.json"
    recorder = RecordingHandlers()
    executor = PipelineExecutor(
        simple_pipeline(),
        category_handlers(recorder, variables={"version": "9"}),
        state_file=str(state_file),
    )

    executor.run("persisted")

    saved = json.loads(state_file.read_text())
    assert saved["run_id"] == "persisted"
    assert saved["status"] == "succeeded"
    assert saved["stages"]["Deploy"]["actions"]["release"]["resolved_parameters"] == {"Version": "9"}


def test_artifact_store_is_write_once():
    store = ArtifactStore(["bundle"])
    store.write("bundle", {"a.txt": "one"}, producer="compile")

    assert store.read("bundle")["a.txt"] == b"one"
    assert store.producer_of("bundle") == "compile"
    with pytest.raises(ArtifactWriteError):
        store.write("bundle", {"a.txt": "two"}, producer="compile")
    with pytest.raises(ArtifactWriteError):
        store.write("other", {}, producer="compile")
    with pytest.raises(TypeError):
        store.read("bundle")["a.txt"] = b"changed"

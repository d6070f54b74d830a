import shutil

import pytest

from trade_store.pipeline import (
    ActionCategory,
    Artifact,
    BuildCommandError,
    PipelineDefinition,
    PipelineExecutor,
    RunStatus,
    StageDefinition,
    build_action,
    source_action,
)
from trade_store.pipeline.local_build import BuildSpecRunner, buildspec_handler
from tests.fixtures.pipeline_fixtures import RecordingHandlers

pytestmark = pytest.mark.skipif(shutil.which("bash") is None, reason="needs bash")


def buildspec(commands, **extra):
    spec = {"version": "0.2", "phases": {"build": {"commands": commands}}}
    spec.update(extra)
    return spec


def test_commands_run_in_phase_order(tmp_path):
    spec = {
        "version": "0.2",
        "phases": {
            "post_build": {"commands": ["echo post >> order.txt"]},
            "install": {"commands": ["echo install >> order.txt"]},
            "build": {"commands": ["echo build >> order.txt"]},
        },
    }

    result = BuildSpecRunner(spec, tmp_path).run()

    assert result.exit_code == 0
    assert (tmp_path / "order.txt").read_text().split() == ["install", "build", "post"]


def test_non_zero_exit_stops_the_build(tmp_path):
    spec = buildspec(["echo first", "exit 3", "touch never"])

    result = BuildSpecRunner(spec, tmp_path).run()

    assert result.exit_code == 3
    assert result.failed_command == "exit 3"
    assert not (tmp_path / "never").exists()
    with pytest.raises(BuildCommandError) as exc_info:
        result.raise_for_status()
    assert exc_info.value.exit_code == 3


def test_exported_variables_are_collected(tmp_path):
    spec = buildspec(
        ["tag=latest", "export imageTag=$tag"],
        env={"exported-variables": ["imageTag", "notSet"]},
    )

    result = BuildSpecRunner(spec, tmp_path).run()

    assert result.exported_variables == {"imageTag": "latest"}


def test_exported_values_keep_newlines(tmp_path):
    spec = buildspec(
        ["export imageTag=latest", "export notes=$'a\\nimageTag=overwritten'"],
        env={"exported-variables": ["imageTag", "notes"]},
    )

    result = BuildSpecRunner(spec, tmp_path).run()

    assert result.exported_variables == {
        "imageTag": "latest",
        "notes": "a\nimageTag=overwritten",
    }


def test_environment_variables_reach_commands(tmp_path):
    spec = buildspec(
        ['printf "%s %s" "$ecr_repo_uri" "$STAGE" > env.txt'],
        env={"variables": {"ecr_repo_uri": "repo.example/app"}},
    )

    BuildSpecRunner(spec, tmp_path, env={"STAGE": "Devo"}).run()

    assert (tmp_path / "env.txt").read_text() == "repo.example/app Devo"


def test_artifacts_are_collected_from_base_directory(tmp_path):
    spec = buildspec(
        ["mkdir -p cdk.out/asset", "echo '{}' > cdk.out/Stack.template.json",
         "echo x > cdk.out/asset/file.txt", "echo ignored > outside.txt"],
        artifacts={"base-directory": "cdk.out", "files": "**/*"},
    )

    result = BuildSpecRunner(spec, tmp_path).run()

    assert set(result.artifact_files) == {"Stack.template.json", "asset/file.txt"}
    assert result.artifact_files["Stack.template.json"].strip() == b"{}"


def test_buildspec_handler_runs_inside_a_pipeline():
    code = Artifact("code")
    image = Artifact("image")

    pipeline = PipelineDefinition("LocalBuild")
    pipeline.add_stage(
        StageDefinition("Source", [source_action("checkout", code)]),
        StageDefinition("Build", [build_action("app_build", code, outputs=[image],
                                               exported_variables=["imageTag"])]),
    )
    handler = buildspec_handler(buildspec(
        ["test -f README.md", "export imageTag=latest",
         "printf '[{\"name\":\"app\",\"imageUri\":\"repo:%s\"}]' $imageTag > imagedefinitions.json"],
        env={"exported-variables": ["imageTag"]},
        artifacts={"files": ["imagedefinitions.json"]},
    ))

    recorder = RecordingHandlers()
    state = PipelineExecutor(
        pipeline, {ActionCategory.SOURCE: recorder.source, "app_build": handler},
    ).run()

    assert state.status == RunStatus.SUCCEEDED.value
    assert state.stage("Build").actions["app_build"].exported_variables == {"imageTag": "latest"}


def test_buildspec_handler_reports_exit_code():
    code = Artifact("code")

    pipeline = PipelineDefinition("BrokenBuild")
    pipeline.add_stage(
        StageDefinition("Source", [source_action("checkout", code)]),
        StageDefinition("Build", [build_action("cdk_build", code)]),
    )
    recorder = RecordingHandlers()
    state = PipelineExecutor(
        pipeline,
        {ActionCategory.SOURCE: recorder.source, "cdk_build": buildspec_handler(buildspec(["false"]))},
    ).run()

    cdk_build = state.stage("Build").actions["cdk_build"]
    assert state.status == RunStatus.FAILED.value
    assert cdk_build.exit_code == 1
    assert "'false'" in cdk_build.error_message

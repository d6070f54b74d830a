"""
The trade store release pipeline: source -> build -> approve -> deploy.

This is the single description of the hand-wired pipeline. The CDK build
stack renders it into CodePipeline constructs and the local executor can run
it with stand-in handlers.
"""
from dataclasses import dataclass

from trade_store.config.settings import Settings
from trade_store.infrastructure.buildspecs import IMAGE_TAG_VARIABLE

from .topology import (
    Artifact,
    PipelineDefinition,
    StageDefinition,
    approval_action,
    build_action,
    deploy_action,
    source_action,
)
from .variables import ContainerImageReference

SOURCE_STAGE = "source"
BUILD_STAGE = "build"
APPROVE_STAGE = "approve"
DEPLOY_STAGE = "deploy-to-ecs"

CDK_SOURCE_ACTION = "github_cdk_source"
APP_SOURCE_ACTION = "github_app_source"
CDK_BUILD_ACTION = "cdk_build"
APP_BUILD_ACTION = "app_build"
APPROVAL_ACTION = "approve"
DEPLOY_ACTION = "CFN_Deploy"


@dataclass(frozen=True)
class ReleaseArtifacts:
    cdk_source: Artifact = Artifact("cdk_source_output")
    app_source: Artifact = Artifact("app_source_output")
    cdk_build: Artifact = Artifact("cdk_build_output")
    app_build: Artifact = Artifact("app_build_output")


ARTIFACTS = ReleaseArtifacts()


def template_file_name(settings: Settings) -> str:
    """Template of the application stack inside the synthesized cloud assembly."""
    return f"{settings.pipeline_stack_id}.template.json"


def build_release_pipeline(settings: Settings,
                           image: ContainerImageReference) -> PipelineDefinition:
    """Describe the release pipeline and validate it.

    Args:
        settings: Source repositories, branch, stack names
        image: Deferred image whose tag parameter the deploy action fills

    Raises:
        PipelineDefinitionError: if the wiring is inconsistent
    """
    source = StageDefinition(SOURCE_STAGE)
    source.add_action(source_action(
        CDK_SOURCE_ACTION, ARTIFACTS.cdk_source,
        owner=settings.github_owner,
        repo=settings.github_cdk_repository,
        branch=settings.github_branch,
    ))
    source.add_action(source_action(
        APP_SOURCE_ACTION, ARTIFACTS.app_source,
        owner=settings.github_owner,
        repo=settings.github_app_repository,
        branch=settings.github_branch,
    ))

    build = StageDefinition(BUILD_STAGE)
    build.add_action(build_action(
        CDK_BUILD_ACTION, ARTIFACTS.cdk_source, outputs=[ARTIFACTS.cdk_build],
    ))
    app_build = build_action(
        APP_BUILD_ACTION, ARTIFACTS.app_source, outputs=[ARTIFACTS.app_build],
        exported_variables=[IMAGE_TAG_VARIABLE],
    )
    build.add_action(app_build)

    approve = StageDefinition(APPROVE_STAGE)
    approve.add_action(approval_action(
        APPROVAL_ACTION,
        summary=f"Deploy {settings.app_name} to {settings.deployed_stack_name}",
    ))

    deploy = StageDefinition(DEPLOY_STAGE)
    deploy.add_action(deploy_action(
        DEPLOY_ACTION,
        template_path=ARTIFACTS.cdk_build.at_path(template_file_name(settings)),
        parameter_overrides={
            image.tag_parameter_name: app_build.variable(IMAGE_TAG_VARIABLE),
        },
        stack_name=settings.deployed_stack_name,
        admin_permissions=True,
    ))

    pipeline = PipelineDefinition(settings.pipeline_name)
    pipeline.add_stage(source, build, approve, deploy)
    return pipeline.validate()

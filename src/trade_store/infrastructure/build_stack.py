"""
Hand-wired release pipeline stack.

The stage/action graph comes from ``trade_store.pipeline.release`` and is
validated before any construct is created; this module only maps each model
action onto its CodePipeline counterpart.

https://docs.aws.amazon.com/cdk/api/v2/python/aws_cdk.aws_codepipeline_actions/README.html
"""
import logging
from typing import Any, Dict

from aws_cdk import (
    Stack,
    CfnOutput,
    CfnParameter,
    SecretValue,
    aws_codebuild as codebuild,
    aws_codepipeline as codepipeline,
    aws_codepipeline_actions as codepipeline_actions,
    aws_ecr as ecr,
    aws_ecs as ecs,
    aws_iam as iam,
)
from constructs import Construct

from trade_store.config.settings import Settings
from trade_store.pipeline.release import (
    APP_BUILD_ACTION,
    APP_SOURCE_ACTION,
    CDK_BUILD_ACTION,
    CDK_SOURCE_ACTION,
    build_release_pipeline,
)
from trade_store.pipeline.topology import ActionCategory, ActionDefinition, PipelineDefinition
from trade_store.pipeline.variables import ContainerImageReference, VariableReference

from .buildspecs import ECR_REPO_URI_VARIABLE, app_image_buildspec, cdk_synth_buildspec

logger = logging.getLogger(__name__)

TAG_PARAMETER_KEY = "AppImageTagParameter"


class TradeStoreBuildStack(Stack):
    """ECR repository, CodeBuild projects and the release pipeline."""

    def __init__(self, scope: Construct, construct_id: str, *,
                 settings: Settings, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.github_user_name = CfnParameter(
            self, "githubUserName",
            type="String",
            description="Github username for source code repository",
            default=settings.github_owner,
        )
        self.github_cdk_repository = CfnParameter(
            self, "githubCdkRepository",
            type="String",
            description="Github cdk code repository",
            default=settings.github_cdk_repository,
        )
        self.github_repository = CfnParameter(
            self, "githubRepository",
            type="String",
            description="Github source code repository",
            default=settings.github_app_repository,
        )
        self.github_token_secret_name = CfnParameter(
            self, "githubPersonalTokenSecretName",
            type="String",
            description="The name of the AWS Secrets Manager Secret which holds "
                        "the GitHub Personal Access Token for this project.",
            default=settings.github_token_secret_name,
        )

        self.ecr_repo = ecr.Repository(self, "EcrRepo", repository_name=settings.ecr_repo_name)
        # stages in other accounts pull the application image from here
        pulling_accounts = sorted({
            t.account for t in settings.targets
            if t.account and t.account != settings.toolchain.account
        })
        if pulling_accounts:
            self.ecr_repo.add_to_resource_policy(iam.PolicyStatement(
                principals=[iam.AccountPrincipal(account) for account in pulling_accounts],
                actions=["ecr:BatchCheckLayerAvailability", "ecr:GetDownloadUrlForLayer", "ecr:BatchGetImage"],
            ))

        build_environment = codebuild.BuildEnvironment(
            build_image=codebuild.LinuxBuildImage.AMAZON_LINUX_2_5,
            privileged=True,
        )

        cdk_project = codebuild.PipelineProject(
            self, "CdkCodeBuildProject",
            environment=build_environment,
            build_spec=codebuild.BuildSpec.from_object(cdk_synth_buildspec()),
        )

        app_project = codebuild.PipelineProject(
            self, "AppCodeBuildProject",
            environment=build_environment,
            environment_variables={
                ECR_REPO_URI_VARIABLE: codebuild.BuildEnvironmentVariable(
                    value=self.ecr_repo.repository_uri
                ),
            },
            build_spec=codebuild.BuildSpec.from_object(
                app_image_buildspec(settings.container_name, settings.image_tag)
            ),
            cache=codebuild.Cache.local(
                codebuild.LocalCacheMode.DOCKER_LAYER, codebuild.LocalCacheMode.CUSTOM
            ),
        )
        self.ecr_repo.grant_pull_push(app_project)

        # ContainerImage used by the application stack; its tag is a CloudFormation parameter
        self.tag_parameter_container_image = ecs.TagParameterContainerImage(self.ecr_repo)

        self.release_definition = build_release_pipeline(
            settings,
            ContainerImageReference(
                repository_uri=self.ecr_repo.repository_uri,
                tag_parameter_name=TAG_PARAMETER_KEY,
            ),
        )

        self._projects = {CDK_BUILD_ACTION: cdk_project, APP_BUILD_ACTION: app_project}
        self._repositories = {
            CDK_SOURCE_ACTION: self.github_cdk_repository,
            APP_SOURCE_ACTION: self.github_repository,
        }
        self.pipeline = self._render_pipeline(self.release_definition)

        CfnOutput(self, "image", value=f"{self.ecr_repo.repository_uri}:{settings.image_tag}")

    # ==========================================
    # Model -> CodePipeline
    # ==========================================

    def _render_pipeline(self, definition: PipelineDefinition) -> codepipeline.Pipeline:
        self._artifacts: Dict[str, codepipeline.Artifact] = {
            name: codepipeline.Artifact(name) for name in definition.producers()
        }
        self._rendered: Dict[str, Any] = {}

        stages = []
        for stage in definition.stages:
            actions = [self._render_action(action) for action in stage.actions]
            stages.append(codepipeline.StageProps(stage_name=stage.name, actions=actions))

        logger.info(f"Rendered pipeline {definition.name} with {len(stages)} stages")
        return codepipeline.Pipeline(
            self, "ReleasePipeline",
            pipeline_name=definition.name,
            stages=stages,
        )

    def _render_action(self, action: ActionDefinition):
        if action.category == ActionCategory.SOURCE:
            rendered = codepipeline_actions.GitHubSourceAction(
                action_name=action.name,
                owner=self.github_user_name.value_as_string,
                repo=self._repositories[action.name].value_as_string,
                branch=action.configuration["branch"],
                oauth_token=SecretValue.secrets_manager(
                    self.github_token_secret_name.value_as_string
                ),
                output=self._artifacts[action.outputs[0].name],
                trigger=codepipeline_actions.GitHubTrigger.WEBHOOK,
            )
        elif action.category == ActionCategory.BUILD:
            rendered = codepipeline_actions.CodeBuildAction(
                action_name=action.name,
                project=self._projects[action.name],
                input=self._artifacts[action.inputs[0].name],
                outputs=[self._artifacts[a.name] for a in action.outputs],
            )
        elif action.category == ActionCategory.APPROVAL:
            rendered = codepipeline_actions.ManualApprovalAction(
                action_name=action.name,
                additional_information=action.configuration.get("summary"),
            )
        elif action.category == ActionCategory.DEPLOY:
            template = action.template_path
            rendered = codepipeline_actions.CloudFormationCreateUpdateStackAction(
                action_name=action.name,
                stack_name=action.configuration["stack_name"],
                template_path=self._artifacts[template.artifact.name].at_path(template.file_name),
                admin_permissions=action.configuration.get("admin_permissions", False),
                extra_inputs=[self._artifacts[a.name] for a in action.inputs] or None,
                parameter_overrides={
                    self._parameter_name(name): self._parameter_value(value)
                    for name, value in action.parameter_overrides.items()
                },
            )
        else:
            raise ValueError(f"Cannot render {action.category.value} action '{action.name}'")

        self._rendered[action.name] = rendered
        return rendered

    def _parameter_name(self, name: str) -> str:
        if name == TAG_PARAMETER_KEY:
            return self.tag_parameter_container_image.tag_parameter_name
        return name

    def _parameter_value(self, value: Any) -> Any:
        # earlier stages are rendered first, so the exporting action already exists
        if isinstance(value, VariableReference):
            return self._rendered[value.namespace].variable(value.name)
        return value

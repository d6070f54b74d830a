"""
Self-mutating pipeline that promotes the application stage through every
configured deployment target.

https://docs.aws.amazon.com/cdk/v2/guide/cdk_pipeline.html
"""
import logging

from aws_cdk import Stack, SecretValue, pipelines
from constructs import Construct

from trade_store.config.settings import Settings

from .app_stage import TradeStoreStage

logger = logging.getLogger(__name__)


class TradeStorePipelineStack(Stack):
    """The stack that defines the pipeline-of-stages."""

    def __init__(self, scope: Construct, construct_id: str, *,
                 settings: Settings, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        authentication = SecretValue.secrets_manager(settings.github_token_secret_name)

        prebuild = pipelines.ShellStep(
            "Prebuild",
            input=pipelines.CodePipelineSource.git_hub(
                f"{settings.github_owner}/{settings.github_app_repository}",
                settings.github_branch,
                authentication=authentication,
            ),
            primary_output_directory="./build",
            commands=["./build.sh"],
        )

        self.pipeline = pipelines.CodePipeline(
            self, "Pipeline",
            pipeline_name=settings.cdk_pipeline_name,
            synth=pipelines.ShellStep(
                "Synth",
                input=pipelines.CodePipelineSource.git_hub(
                    f"{settings.github_owner}/{settings.github_cdk_repository}",
                    settings.github_branch,
                    authentication=authentication,
                ),
                commands=["npm install -g aws-cdk", "pip install .", "cdk synth"],
                additional_inputs={"subdir": prebuild},
            ),
            self_mutation=True,
            # artifacts handed to other accounts must be KMS encrypted
            cross_account_keys=any(
                t.account and t.account != settings.toolchain.account for t in settings.targets
            ),
        )

        self.stages = []
        for target in settings.targets:
            stage = TradeStoreStage(self, target.name, settings=settings, target=target)

            pre = []
            if target.require_approval:
                pre.append(pipelines.ManualApprovalStep(f"approve-{target.name}"))

            validate = pipelines.ShellStep(
                "validate",
                env_from_cfn_outputs={"lb_addr": stage.url_output},
                commands=[
                    "echo $lb_addr",
                    f"curl -Ssf http://$lb_addr{settings.health_check_path}",
                ],
            )

            self.pipeline.add_stage(stage, pre=pre, post=[validate])
            self.stages.append(stage)
            logger.info(f"Added stage {target.name} ({target.account or 'default'}/{target.region})")

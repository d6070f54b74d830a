from typing import Optional

from aws_cdk import Environment, Stage, aws_ecs as ecs
from constructs import Construct

from trade_store.config.settings import DeploymentTarget, Settings

from .app_stack import TradeStoreAppStack


def to_cdk_environment(target: DeploymentTarget) -> Environment:
    return Environment(account=target.account, region=target.region)


class TradeStoreStage(Stage):
    """
    Deployable unit of the trade store web service.

    One instance per deployment target. Resource names are prefixed with the
    target name, so instances never share physical identifiers.
    """

    def __init__(self, scope: Construct, construct_id: str, *,
                 settings: Settings,
                 target: DeploymentTarget,
                 image: Optional[ecs.ContainerImage] = None,
                 **kwargs) -> None:
        super().__init__(scope, construct_id, env=to_cdk_environment(target), **kwargs)

        self.target = target

        web_service = TradeStoreAppStack(
            self, "WebService",
            settings=settings,
            resource_prefix=target.name,
            image=image,
        )

        # Expose the stack's outputs one level higher
        self.url_output = web_service.url_output
        self.load_balancer_address = web_service.load_balancer_address
        self.service = web_service.service

#!/usr/bin/env python3
"""
CDK entry point.

Settings are loaded once here and passed explicitly to every stack and stage.
Targets without an account inherit the account the CDK CLI resolved
(``CDK_DEFAULT_ACCOUNT``).
"""
import logging
import os
from typing import Optional

import aws_cdk as cdk

from trade_store.config.settings import Settings, get_settings
from trade_store.infrastructure.app_stack import TradeStoreAppStack
from trade_store.infrastructure.app_stage import to_cdk_environment
from trade_store.infrastructure.build_stack import TradeStoreBuildStack
from trade_store.infrastructure.cdk_pipeline_stack import TradeStorePipelineStack

logger = logging.getLogger(__name__)

BUILD_STACK_ID = "TradeStoreCdkBuildStack"
PIPELINE_STACK_ID = "TradeStoreCdkPipelineStack"


def with_default_account(settings: Settings, account: Optional[str]) -> Settings:
    """Fill targets that have no account with ``account``."""
    if not account:
        return settings

    def _fill(target):
        return target if target.account else target.model_copy(update={"account": account})

    return settings.model_copy(update={
        "toolchain": _fill(settings.toolchain),
        "targets": [_fill(t) for t in settings.targets],
    })


def build_app(settings: Settings, app: Optional[cdk.App] = None) -> cdk.App:
    """Declare every stack of the trade store on ``app``."""
    app = app or cdk.App()
    toolchain_env = to_cdk_environment(settings.toolchain)

    if settings.enable_release_pipeline:
        build_stack = TradeStoreBuildStack(
            app, BUILD_STACK_ID,
            settings=settings,
            env=toolchain_env,
        )
        # Synthesized by the cdk_build action and deployed by CFN_Deploy
        TradeStoreAppStack(
            app, settings.pipeline_stack_id,
            settings=settings,
            resource_prefix=settings.app_name,
            image=build_stack.tag_parameter_container_image,
            env=toolchain_env,
        )

    if settings.enable_cdk_pipeline:
        TradeStorePipelineStack(
            app, PIPELINE_STACK_ID,
            settings=settings,
            env=toolchain_env,
        )

    return app


def main():
    settings = with_default_account(get_settings(), os.environ.get("CDK_DEFAULT_ACCOUNT"))
    logging.basicConfig(level=settings.log_level, format='%(levelname)s: %(message)s')
    logger.info(f"Synthesizing {settings.app_name} for {len(settings.targets)} targets")
    build_app(settings).synth()


if __name__ == "__main__":
    main()

# cli.py
import json
import logging
import sys

import click

from trade_store.config.settings import get_settings

logger = logging.getLogger(__name__)

WEB_SERVICE_STACK = "WebService"


def stage_stack_name(target_name: str) -> str:
    """Stack name the pipeline-of-stages gives a target's web service."""
    return f"{target_name}-{WEB_SERVICE_STACK}"


def _fail(error):
    click.echo(f"❌ {error}", err=True)
    sys.exit(1)


@click.group()
@click.option("--verbose", is_flag=True, help="Verbose logging")
def cli(verbose):
    """Trade store release pipeline tooling"""
    settings = get_settings()
    level = logging.DEBUG if verbose else settings.log_level
    logging.basicConfig(level=level, format='%(levelname)s: %(message)s')


@cli.command()
def show_config():
    """Show current configuration"""
    settings = get_settings()

    print("Current Configuration:")
    print(f"  Deployment Mode: {settings.deployment_mode}")
    print(f"  Toolchain: {settings.toolchain.account or 'default'}/{settings.toolchain.region}")
    for target in settings.targets:
        approval = " (manual approval)" if target.require_approval else ""
        print(f"  Target {target.name}: {target.account or 'default'}/{target.region}{approval}")
    print(f"  Sources: {settings.github_owner}/{settings.github_cdk_repository}, "
          f"{settings.github_owner}/{settings.github_app_repository} @ {settings.github_branch}")
    print(f"  Release Pipeline: {settings.pipeline_name} "
          f"({'enabled' if settings.enable_release_pipeline else 'disabled'})")
    print(f"  CDK Pipeline: {settings.cdk_pipeline_name} "
          f"({'enabled' if settings.enable_cdk_pipeline else 'disabled'})")
    print(f"  Deployed Stack: {settings.deployed_stack_name}")
    print(f"  Container: {settings.container_name} on port {settings.container_port}, "
          f"{settings.cpu} CPU / {settings.memory_limit_mib} MiB")
    print(f"  Scaling: {settings.min_capacity}-{settings.max_capacity} tasks at "
          f"{settings.cpu_target_utilization}% CPU")


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def plan(as_json):
    """Validate the release pipeline and show its stages"""
    from trade_store.pipeline.errors import PipelineDefinitionError
    from trade_store.pipeline.release import build_release_pipeline
    from trade_store.pipeline.variables import ContainerImageReference

    settings = get_settings()
    image = ContainerImageReference(
        settings.ecr_repository_uri(settings.toolchain.account or "<account>",
                                    settings.toolchain.region)
    )

    try:
        definition = build_release_pipeline(settings, image)
    except PipelineDefinitionError as e:
        _fail(f"Invalid pipeline: {e}")

    description = definition.describe()
    if as_json:
        print(json.dumps(description, indent=2))
        return

    print(f"✅ {description['name']} is valid")
    for stage in description['stages']:
        print(f"\n📦 {stage['name']}")
        for action in stage['actions']:
            print(f"   - {action['name']} [{action['category']}]")
            if action['inputs']:
                print(f"     in:  {', '.join(action['inputs'])}")
            if action['outputs']:
                print(f"     out: {', '.join(action['outputs'])}")
            for name, value in action['parameters'].items():
                print(f"     {name} = {value}")


@cli.command()
def preflight():
    """Check that the source token secret exists"""
    from deployment.aws.utils.errors import PipelineOperationError
    from deployment.aws.utils.secrets import verify_secret_exists

    settings = get_settings()
    try:
        secret = verify_secret_exists(settings.github_token_secret_name)
    except PipelineOperationError as e:
        _fail(e)
    print(f"✅ Secret {secret['name']} found ({secret['arn']})")


@cli.command()
@click.option("--pipeline", help="Pipeline name (defaults to the release pipeline)")
def status(pipeline):
    """Show stage and action status of a pipeline"""
    from deployment.aws.monitoring.pipeline_monitor import PipelineMonitor
    from deployment.aws.utils.errors import PipelineOperationError

    name = pipeline or get_settings().pipeline_name
    monitor = PipelineMonitor(name)
    try:
        state = monitor.get_pipeline_state()
        pending = monitor.find_pending_approval()
    except PipelineOperationError as e:
        _fail(e)

    print(f"🚚 {state['pipeline']}")
    for stage in state['stages']:
        print(f"  {stage['name']}: {stage['status']}")
        for action in stage['actions']:
            print(f"    - {action['name']}: {action['status']}")
    if pending:
        print(f"✋ Waiting for approval: {pending['stage_name']}/{pending['action_name']}")


def _decide(approve: bool, pipeline: str, summary: str):
    from deployment.aws.state.release_manager import ReleaseManager
    from deployment.aws.utils.errors import PipelineOperationError

    manager = ReleaseManager(pipeline or get_settings().pipeline_name)
    try:
        result = manager.approve(summary) if approve else manager.reject(summary)
    except PipelineOperationError as e:
        _fail(e)
    print(f"{'✅' if approve else '🛑'} {result['status']} "
          f"{result['stage_name']}/{result['action_name']}")


@cli.command()
@click.option("--pipeline", help="Pipeline name (defaults to the release pipeline)")
@click.option("--summary", default="Approved from trade-store CLI", help="Approval comment")
def approve(pipeline, summary):
    """Approve the pending manual approval"""
    _decide(True, pipeline, summary)


@cli.command()
@click.option("--pipeline", help="Pipeline name (defaults to the release pipeline)")
@click.option("--summary", default="Rejected from trade-store CLI", help="Rejection comment")
def reject(pipeline, summary):
    """Reject the pending manual approval"""
    _decide(False, pipeline, summary)


@cli.command()
@click.option("--pipeline", help="Pipeline name (defaults to the release pipeline)")
@click.option("--wait", is_flag=True, help="Wait until the execution finishes")
@click.option("--timeout", default=3600, show_default=True, help="Seconds to wait")
def release(pipeline, wait, timeout):
    """Start a new pipeline execution"""
    from deployment.aws.state.release_manager import ReleaseManager
    from deployment.aws.utils.errors import PipelineOperationError

    manager = ReleaseManager(pipeline or get_settings().pipeline_name)
    try:
        execution_id = manager.start_release()
        print(f"🚀 Started execution {execution_id}")
        if wait:
            final = manager.monitor.wait_for_execution(execution_id, timeout=timeout)
            print(f"Execution {execution_id} finished: {final}")
            if final != "Succeeded":
                sys.exit(1)
    except PipelineOperationError as e:
        _fail(e)


@cli.command()
@click.option("--pipeline", help="Pipeline name (defaults to the release pipeline)")
@click.option("--stage", help="Expected name of the failed stage")
def retry(pipeline, stage):
    """Retry the failed actions of the halted stage"""
    from deployment.aws.state.release_manager import ReleaseManager
    from deployment.aws.utils.errors import PipelineOperationError

    manager = ReleaseManager(pipeline or get_settings().pipeline_name)
    try:
        execution_id = manager.retry_failed_stage(stage)
    except PipelineOperationError as e:
        _fail(e)
    print(f"🔁 Retrying execution {execution_id}")


@cli.command()
@click.option("--stack", help="Stack to check (defaults to the release pipeline's stack)")
@click.option("--target", help="Check the web service stack of a pipeline-of-stages target")
@click.option("--attempts", default=5, show_default=True, help="Number of requests")
@click.option("--delay", default=10.0, show_default=True, help="Seconds between requests")
def check_health(stack, target, attempts, delay):
    """Check that a deployed service answers on its health-check path"""
    from deployment.aws.monitoring.health_check import DeploymentHealthChecker
    from deployment.aws.utils.errors import PipelineOperationError

    settings = get_settings()
    if stack and target:
        raise click.UsageError("Use either --stack or --target")
    if target:
        try:
            stack = stage_stack_name(settings.get_target(target).name)
        except KeyError as e:
            raise click.BadParameter(e.args[0], param_hint="--target") from e
    stack = stack or settings.deployed_stack_name

    try:
        result = DeploymentHealthChecker().check_stack(
            stack, path=settings.health_check_path, attempts=attempts, delay=delay,
        )
    except PipelineOperationError as e:
        _fail(e)

    if not result['healthy']:
        _fail(f"{result['url']} not healthy (last status {result['status_code']}, "
              f"error {result['error']})")
    print(f"✅ {result['url']} healthy")


if __name__ == "__main__":
    cli()

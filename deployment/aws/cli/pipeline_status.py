#!/usr/bin/env python3
"""
CLI tool for checking release pipeline status.
"""
import argparse
import json
import logging
from typing import Dict, Any

from deployment.aws.monitoring.pipeline_monitor import PipelineMonitor
from deployment.aws.utils.errors import PipelineOperationError
from trade_store.config.settings import get_settings

logger = logging.getLogger(__name__)

STATUS_ICONS = {
    "Succeeded": "✅",
    "InProgress": "🔄",
    "Failed": "❌",
    "Stopped": "⏹️",
    "Cancelled": "⏹️",
    "NotStarted": "⏸️",
}


def get_pipeline_status(pipeline_name: str = None, history: int = 0) -> Dict[str, Any]:
    """Get stage status and optionally recent executions of a pipeline."""
    pipeline_name = pipeline_name or get_settings().pipeline_name
    try:
        monitor = PipelineMonitor(pipeline_name)
        status = monitor.get_pipeline_state()
        pending = monitor.find_pending_approval()
        status['pending_approval'] = (
            {k: v for k, v in pending.items() if k != 'token'} if pending else None
        )
        if history:
            status['executions'] = monitor.list_executions(max_results=history)
        return status

    except PipelineOperationError as e:
        logger.error(f"Failed to get pipeline status: {e}")
        return {"error": str(e), "pipeline": pipeline_name}


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(description="Check release pipeline status")
    parser.add_argument("--pipeline", help="Pipeline name (defaults to the configured release pipeline)")
    parser.add_argument("--history", type=int, default=0, help="Number of recent executions to show")
    parser.add_argument("--json", action="store_true", help="Output as JSON")
    parser.add_argument("--verbose", action="store_true", help="Verbose logging")

    args = parser.parse_args()

    # Setup logging
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(level=log_level, format='%(levelname)s: %(message)s')

    status = get_pipeline_status(args.pipeline, args.history)

    if args.json:
        print(json.dumps(status, indent=2, default=str))
        return 1 if "error" in status else 0

    if "error" in status:
        print(f"❌ Error: {status['error']}")
        return 1

    print(f"🚚 Pipeline: {status['pipeline']}")
    print("=" * 50)

    for stage in status['stages']:
        icon = STATUS_ICONS.get(stage['status'], '⚠️')
        print(f"\n{icon} Stage: {stage['name']} ({stage['status']})")
        for action in stage['actions']:
            print(f"   - {action['name']}: {action['status']}")
            if action.get('error'):
                print(f"     Error: {action['error']}")

    pending = status.get('pending_approval')
    if pending:
        print(f"\n✋ Waiting for approval: {pending['stage_name']}/{pending['action_name']}")

    for execution in status.get('executions', []):
        print(f"\n   {execution['execution_id']}: {execution['status']} (started {execution['start_time']})")

    print("\n" + "=" * 50)
    return 0


if __name__ == "__main__":
    exit(main())

"""
Release pipeline status monitoring.

Reads stage/action state and execution history of the release pipeline from
CodePipeline and locates the approval action that is waiting for a decision.
"""
import logging
import time
from typing import Dict, List, Optional, Any

from botocore.exceptions import ClientError

from deployment.aws.utils.aws_clients import get_codepipeline_client
from deployment.aws.utils.errors import PipelineOperationError, from_client_error

logger = logging.getLogger(__name__)

TERMINAL_EXECUTION_STATUSES = {"Succeeded", "Failed", "Stopped", "Superseded", "Cancelled"}


class PipelineMonitor:
    """Monitor the state of a CodePipeline pipeline."""

    def __init__(self, pipeline_name: str, client=None):
        self.pipeline_name = pipeline_name
        self.client = client or get_codepipeline_client()

    def get_pipeline_state(self) -> Dict[str, Any]:
        """
        Summarize the latest status of every stage and action.

        Returns:
            Dict with pipeline name, version and per-stage status
        """
        try:
            response = self.client.get_pipeline_state(name=self.pipeline_name)
        except ClientError as e:
            raise from_client_error(f"Get state of {self.pipeline_name}", e) from e

        stages = []
        for stage in response.get('stageStates', []):
            latest = stage.get('latestExecution') or {}
            actions = []
            for action in stage.get('actionStates', []):
                execution = action.get('latestExecution') or {}
                actions.append({
                    'name': action['actionName'],
                    'status': execution.get('status', 'NotStarted'),
                    'summary': execution.get('summary'),
                    'error': (execution.get('errorDetails') or {}).get('message'),
                    'last_status_change': execution.get('lastStatusChange'),
                    'has_token': bool(execution.get('token')),
                })
            stages.append({
                'name': stage['stageName'],
                'status': latest.get('status', 'NotStarted'),
                'execution_id': latest.get('pipelineExecutionId'),
                'actions': actions,
            })

        return {
            'pipeline': self.pipeline_name,
            'version': response.get('pipelineVersion'),
            'updated': response.get('updated'),
            'stages': stages,
        }

    def find_pending_approval(self) -> Optional[Dict[str, str]]:
        """Find the approval action currently waiting for a decision."""
        try:
            response = self.client.get_pipeline_state(name=self.pipeline_name)
        except ClientError as e:
            raise from_client_error(f"Get state of {self.pipeline_name}", e) from e

        for stage in response.get('stageStates', []):
            for action in stage.get('actionStates', []):
                execution = action.get('latestExecution') or {}
                if execution.get('status') == 'InProgress' and execution.get('token'):
                    return {
                        'stage_name': stage['stageName'],
                        'action_name': action['actionName'],
                        'token': execution['token'],
                    }
        return None

    def find_failed_stage(self) -> Optional[Dict[str, str]]:
        """Find the stage that halted the latest execution."""
        state = self.get_pipeline_state()
        for stage in state['stages']:
            if stage['status'] == 'Failed':
                return {'stage_name': stage['name'], 'execution_id': stage['execution_id']}
        return None

    def list_executions(self, max_results: int = 5) -> List[Dict[str, Any]]:
        """List the most recent executions, newest first."""
        try:
            response = self.client.list_pipeline_executions(
                pipelineName=self.pipeline_name,
                maxResults=max_results,
            )
        except ClientError as e:
            raise from_client_error(f"List executions of {self.pipeline_name}", e) from e

        return [
            {
                'execution_id': summary['pipelineExecutionId'],
                'status': summary['status'],
                'start_time': summary.get('startTime'),
                'last_update_time': summary.get('lastUpdateTime'),
                'trigger': (summary.get('trigger') or {}).get('triggerType'),
            }
            for summary in response.get('pipelineExecutionSummaries', [])
        ]

    def get_execution_status(self, execution_id: str) -> str:
        try:
            response = self.client.get_pipeline_execution(
                pipelineName=self.pipeline_name,
                pipelineExecutionId=execution_id,
            )
        except ClientError as e:
            raise from_client_error(f"Get execution {execution_id}", e) from e
        return response['pipelineExecution']['status']

    def wait_for_execution(self, execution_id: str, timeout: int = 3600,
                           poll_interval: int = 15) -> str:
        """
        Poll an execution until it reaches a terminal status.

        An execution parked at the approval gate keeps polling until the
        timeout; the gate itself never times out.

        Raises:
            PipelineOperationError: if the timeout expires first
        """
        deadline = time.time() + timeout
        last_status = None

        while time.time() < deadline:
            status = self.get_execution_status(execution_id)
            if status != last_status:
                logger.info(f"Execution {execution_id}: {status}")
                last_status = status
            if status in TERMINAL_EXECUTION_STATUSES:
                return status
            time.sleep(poll_interval)

        raise PipelineOperationError(
            f"Execution {execution_id} still {last_status} after {timeout}s"
        )

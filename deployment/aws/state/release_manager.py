"""
Operator actions on the release pipeline.

Failed runs are never retried automatically; operators decide the pending
approval, start a fresh run or retry the failed actions of a halted stage
from here.
"""
import logging
from typing import Dict, Any, Optional

from botocore.exceptions import ClientError

from deployment.aws.monitoring.pipeline_monitor import PipelineMonitor
from deployment.aws.utils.aws_clients import get_codepipeline_client
from deployment.aws.utils.errors import PipelineOperationError, from_client_error

logger = logging.getLogger(__name__)


class ReleaseManager:
    """Approve, reject, start and retry release pipeline executions."""

    def __init__(self, pipeline_name: str, client=None,
                 monitor: Optional[PipelineMonitor] = None):
        self.pipeline_name = pipeline_name
        self.client = client or get_codepipeline_client()
        self.monitor = monitor or PipelineMonitor(pipeline_name, client=self.client)

    def approve(self, summary: str = "Approved from trade-store CLI") -> Dict[str, Any]:
        return self._put_approval("Approved", summary)

    def reject(self, summary: str = "Rejected from trade-store CLI") -> Dict[str, Any]:
        return self._put_approval("Rejected", summary)

    def _put_approval(self, status: str, summary: str) -> Dict[str, Any]:
        pending = self.monitor.find_pending_approval()
        if not pending:
            raise PipelineOperationError(f"No approval is waiting in {self.pipeline_name}")

        try:
            response = self.client.put_approval_result(
                pipelineName=self.pipeline_name,
                stageName=pending['stage_name'],
                actionName=pending['action_name'],
                result={'summary': summary, 'status': status},
                token=pending['token'],
            )
        except ClientError as e:
            raise from_client_error(f"{status} {pending['stage_name']}/{pending['action_name']}", e) from e

        logger.info(f"{status} {pending['stage_name']}/{pending['action_name']} in {self.pipeline_name}")
        return {
            'stage_name': pending['stage_name'],
            'action_name': pending['action_name'],
            'status': status,
            'approved_at': response.get('approvedAt'),
        }

    def start_release(self) -> str:
        """Start a new execution from the latest source revisions."""
        try:
            response = self.client.start_pipeline_execution(name=self.pipeline_name)
        except ClientError as e:
            raise from_client_error(f"Start {self.pipeline_name}", e) from e

        execution_id = response['pipelineExecutionId']
        logger.info(f"🚀 Started {self.pipeline_name} execution {execution_id}")
        return execution_id

    def retry_failed_stage(self, stage_name: Optional[str] = None) -> str:
        """Retry the failed actions of the stage that halted the latest run."""
        failed = self.monitor.find_failed_stage()
        if not failed:
            raise PipelineOperationError(f"No failed stage in {self.pipeline_name}")
        if stage_name and failed['stage_name'] != stage_name:
            raise PipelineOperationError(
                f"Stage {stage_name} is not the failed stage ({failed['stage_name']})"
            )

        try:
            response = self.client.retry_stage_execution(
                pipelineName=self.pipeline_name,
                stageName=failed['stage_name'],
                pipelineExecutionId=failed['execution_id'],
                retryMode='FAILED_ACTIONS',
            )
        except ClientError as e:
            raise from_client_error(f"Retry {failed['stage_name']}", e) from e

        logger.info(f"🔁 Retrying {failed['stage_name']} of execution {failed['execution_id']}")
        return response['pipelineExecutionId']

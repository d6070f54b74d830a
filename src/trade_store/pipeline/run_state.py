"""
Pipeline Run State Tracking
Records stage and action progress of a release pipeline run, optionally
persisted to a JSON file after every transition.
"""
import json
import logging
import threading
import time
from typing import Dict, Any, List, Optional
from pathlib import Path
from dataclasses import dataclass, asdict, field
from enum import Enum

logger = logging.getLogger(__name__)


class RunStatus(str, Enum):
    """Status of a run, a stage or an action."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    AWAITING_APPROVAL = "awaiting_approval"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.SUCCEEDED, RunStatus.FAILED, RunStatus.REJECTED)


@dataclass
class ActionState:
    """State of a single action."""
    name: str
    category: str
    status: str = RunStatus.PENDING.value
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    duration_seconds: Optional[float] = None
    exit_code: Optional[int] = None
    error_message: Optional[str] = None
    exported_variables: Dict[str, str] = field(default_factory=dict)
    resolved_parameters: Dict[str, Any] = field(default_factory=dict)


@dataclass
class StageState:
    """State of a stage and its actions."""
    name: str
    status: str = RunStatus.PENDING.value
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    actions: Dict[str, ActionState] = field(default_factory=dict)


@dataclass
class PipelineRunState:
    """Complete run state tracking."""
    run_id: str
    pipeline_name: str
    started_at: float
    stages: Dict[str, StageState]
    current_stage: Optional[str] = None
    status: str = RunStatus.IN_PROGRESS.value
    completed_at: Optional[float] = None
    total_duration: Optional[float] = None
    failure_reason: Optional[str] = None

    def stage(self, name: str) -> StageState:
        return self.stages[name]

    def invoked_stages(self) -> List[str]:
        return [name for name, s in self.stages.items() if s.status != RunStatus.PENDING.value]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class RunStateRecorder:
    """Tracks state transitions of one pipeline run.

    Action transitions may come from worker threads, so every mutation holds
    a lock.
    """

    def __init__(self, state_file: Optional[str] = None):
        self.state_file = Path(state_file) if state_file else None
        self.state: Optional[PipelineRunState] = None
        self._lock = threading.RLock()

    def start_run(self, run_id: str, pipeline_name: str,
                  stages: Dict[str, Dict[str, str]]) -> PipelineRunState:
        """Start tracking a new run.

        Args:
            run_id: Identifier of the run
            pipeline_name: Name of the pipeline definition
            stages: Stage name to {action name: action category}, in order
        """
        with self._lock:
            self.state = PipelineRunState(
                run_id=run_id,
                pipeline_name=pipeline_name,
                started_at=time.time(),
                stages={
                    stage_name: StageState(
                        name=stage_name,
                        actions={
                            name: ActionState(name=name, category=category)
                            for name, category in actions.items()
                        },
                    )
                    for stage_name, actions in stages.items()
                },
            )
            self._save_state()
        logger.info(f"🚀 Started pipeline run: {run_id} ({pipeline_name})")
        return self.state

    def start_stage(self, stage_name: str) -> None:
        with self._lock:
            stage = self._require_state().stages[stage_name]
            stage.status = RunStatus.IN_PROGRESS.value
            stage.started_at = time.time()
            self.state.current_stage = stage_name
            self._save_state()
        logger.info(f"📋 Stage started: {stage_name}")

    def finish_stage(self, stage_name: str, status: RunStatus) -> None:
        with self._lock:
            stage = self._require_state().stages[stage_name]
            stage.status = status.value
            stage.completed_at = time.time()
            self._save_state()
        if status == RunStatus.SUCCEEDED:
            logger.info(f"✅ Stage completed: {stage_name}")
        else:
            logger.error(f"❌ Stage {status.value}: {stage_name}")

    def start_action(self, stage_name: str, action_name: str,
                     status: RunStatus = RunStatus.IN_PROGRESS) -> None:
        with self._lock:
            action = self._require_state().stages[stage_name].actions[action_name]
            action.status = status.value
            action.started_at = time.time()
            self._save_state()
        logger.info(f"▶️  Action started: {stage_name}/{action_name}")

    def finish_action(self, stage_name: str, action_name: str, status: RunStatus,
                      exit_code: Optional[int] = None,
                      error_message: Optional[str] = None,
                      exported_variables: Optional[Dict[str, str]] = None,
                      resolved_parameters: Optional[Dict[str, Any]] = None) -> None:
        with self._lock:
            action = self._require_state().stages[stage_name].actions[action_name]
            action.status = status.value
            action.completed_at = time.time()
            if action.started_at:
                action.duration_seconds = action.completed_at - action.started_at
            action.exit_code = exit_code
            action.error_message = error_message
            if exported_variables:
                action.exported_variables.update(exported_variables)
            if resolved_parameters:
                action.resolved_parameters.update(resolved_parameters)
            self._save_state()

        if status == RunStatus.SUCCEEDED:
            logger.info(f"✅ Action succeeded: {stage_name}/{action_name}")
        else:
            logger.error(f"❌ Action {status.value}: {stage_name}/{action_name}"
                         f"{f' - {error_message}' if error_message else ''}")

    def finish_run(self, status: RunStatus, failure_reason: Optional[str] = None) -> PipelineRunState:
        with self._lock:
            state = self._require_state()
            state.status = status.value
            state.completed_at = time.time()
            state.total_duration = state.completed_at - state.started_at
            state.failure_reason = failure_reason
            self._save_state()

        if status == RunStatus.SUCCEEDED:
            logger.info(f"🎉 Pipeline run {state.run_id} succeeded in {state.total_duration:.1f}s")
        else:
            logger.error(f"💥 Pipeline run {state.run_id} failed: {failure_reason}")
        return state

    def _require_state(self) -> PipelineRunState:
        if not self.state:
            raise ValueError("No active pipeline run")
        return self.state

    def _save_state(self) -> None:
        """Save state to file."""
        if not self.state_file or not self.state:
            return
        try:
            with open(self.state_file, 'w') as f:
                json.dump(self.state.to_dict(), f, indent=2)
        except OSError as e:
            logger.warning(f"Failed to save run state to {self.state_file}: {e}")

    def load_state(self) -> Optional[Dict[str, Any]]:
        """Load a previously saved run state as a dict."""
        if not self.state_file or not self.state_file.exists():
            return None
        with open(self.state_file, 'r') as f:
            return json.load(f)

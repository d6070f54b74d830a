"""
Local execution of a release pipeline definition.

Stages run strictly in order; the actions of a stage run concurrently on a
thread pool. The first failed (or rejected) action fails its stage and the
run halts there: later stages are never invoked and nothing is retried.
Approval actions suspend the run until the approval provider returns a
decision. No timeout is applied to that call.
"""
import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Union

from .artifacts import ArtifactStore
from .errors import ArtifactWriteError, UnboundVariableError
from .run_state import PipelineRunState, RunStateRecorder, RunStatus
from .topology import ActionCategory, ActionDefinition, PipelineDefinition, StageDefinition
from .variables import resolve_parameters

logger = logging.getLogger(__name__)


class ApprovalDecision(str, Enum):
    APPROVED = "Approved"
    REJECTED = "Rejected"


@dataclass
class ApprovalRequest:
    """Handed to the approval provider when a run reaches an approval action."""
    run_id: str
    pipeline_name: str
    stage_name: str
    action_name: str
    summary: Optional[str] = None


@dataclass
class ActionContext:
    """Everything an action handler may read."""
    run_id: str
    stage_name: str
    action: ActionDefinition
    inputs: Dict[str, Mapping[str, bytes]]
    parameters: Dict[str, Any]


@dataclass
class ActionResult:
    """Outcome reported by an action handler."""
    exit_code: int = 0
    outputs: Dict[str, Mapping[str, Union[str, bytes]]] = field(default_factory=dict)
    variables: Dict[str, str] = field(default_factory=dict)
    message: str = ""

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0

    @classmethod
    def failure(cls, message: str, exit_code: int = 1) -> "ActionResult":
        return cls(exit_code=exit_code, message=message)


ActionHandler = Callable[[ActionContext], ActionResult]
ApprovalProvider = Callable[[ApprovalRequest], ApprovalDecision]


class PipelineExecutor:
    """Runs a validated pipeline definition with local action handlers.

    Handlers are looked up by action name first, then by action category.
    """

    def __init__(self, definition: PipelineDefinition,
                 handlers: Dict[Union[str, ActionCategory], ActionHandler],
                 approval_provider: Optional[ApprovalProvider] = None,
                 max_parallel_actions: int = 4,
                 state_file: Optional[str] = None):
        self.definition = definition.validate()
        self.handlers = dict(handlers)
        self.approval_provider = approval_provider
        self.max_parallel_actions = max(1, max_parallel_actions)
        self.state_file = state_file

        for action in self.definition.actions():
            if action.category == ActionCategory.APPROVAL:
                if self.approval_provider is None:
                    raise ValueError(
                        f"Approval action '{action.name}' needs an approval provider"
                    )
            elif self._handler_for(action) is None:
                raise ValueError(f"No handler registered for action '{action.name}'")

    def _handler_for(self, action: ActionDefinition) -> Optional[ActionHandler]:
        return self.handlers.get(action.name) or self.handlers.get(action.category)

    def run(self, run_id: Optional[str] = None) -> PipelineRunState:
        """Execute one run and return its final recorded state."""
        run_id = run_id or uuid.uuid4().hex[:12]
        recorder = RunStateRecorder(self.state_file)
        recorder.start_run(
            run_id,
            self.definition.name,
            {
                stage.name: {a.name: a.category.value for a in stage.actions}
                for stage in self.definition.stages
            },
        )

        store = ArtifactStore(
            a.name for action in self.definition.actions() for a in action.outputs
        )
        exported: Dict[str, Dict[str, str]] = {}

        try:
            for stage in self.definition.stages:
                recorder.start_stage(stage.name)
                outcome = self._run_stage(run_id, stage, recorder, store, exported)
                recorder.finish_stage(stage.name, outcome)
                if outcome != RunStatus.SUCCEEDED:
                    return recorder.finish_run(
                        RunStatus.FAILED,
                        failure_reason=f"Stage '{stage.name}' {outcome.value}",
                    )
            return recorder.finish_run(RunStatus.SUCCEEDED)
        finally:
            store.discard()

    def _run_stage(self, run_id: str, stage: StageDefinition, recorder: RunStateRecorder,
                   store: ArtifactStore, exported: Dict[str, Dict[str, str]]) -> RunStatus:
        workers = min(self.max_parallel_actions, len(stage.actions))
        with ThreadPoolExecutor(max_workers=workers,
                                thread_name_prefix=f"stage-{stage.name}") as pool:
            futures = {
                action.name: pool.submit(
                    self._run_action, run_id, stage, action, recorder, store, exported
                )
                for action in stage.actions
            }
            statuses = {name: future.result() for name, future in futures.items()}

        # variables become visible to later stages only once the whole stage is done
        for action in stage.actions:
            if statuses[action.name] == RunStatus.SUCCEEDED:
                action_state = recorder.state.stages[stage.name].actions[action.name]
                exported[action.name] = dict(action_state.exported_variables)

        if any(s == RunStatus.FAILED for s in statuses.values()):
            return RunStatus.FAILED
        if any(s == RunStatus.REJECTED for s in statuses.values()):
            return RunStatus.REJECTED
        return RunStatus.SUCCEEDED

    def _run_action(self, run_id: str, stage: StageDefinition, action: ActionDefinition,
                    recorder: RunStateRecorder, store: ArtifactStore,
                    exported: Dict[str, Dict[str, str]]) -> RunStatus:
        if action.category == ActionCategory.APPROVAL:
            return self._await_approval(run_id, stage, action, recorder)

        recorder.start_action(stage.name, action.name)

        try:
            parameters = resolve_parameters(action.parameter_overrides, exported)
        except UnboundVariableError as e:
            recorder.finish_action(stage.name, action.name, RunStatus.FAILED, error_message=str(e))
            return RunStatus.FAILED

        context = ActionContext(
            run_id=run_id,
            stage_name=stage.name,
            action=action,
            inputs={a.name: store.read(a.name) for a in action.consumed_artifacts},
            parameters=parameters,
        )

        try:
            result = self._handler_for(action)(context)
        except Exception as e:
            logger.exception(f"Handler for '{action.name}' raised")
            recorder.finish_action(stage.name, action.name, RunStatus.FAILED,
                                   error_message=f"{e.__class__.__name__}: {e}",
                                   resolved_parameters=parameters)
            return RunStatus.FAILED

        if not result.succeeded:
            recorder.finish_action(stage.name, action.name, RunStatus.FAILED,
                                   exit_code=result.exit_code,
                                   error_message=result.message or f"exit status {result.exit_code}",
                                   resolved_parameters=parameters)
            return RunStatus.FAILED

        try:
            self._store_outputs(action, result, store)
        except ArtifactWriteError as e:
            recorder.finish_action(stage.name, action.name, RunStatus.FAILED,
                                   exit_code=result.exit_code, error_message=str(e),
                                   resolved_parameters=parameters)
            return RunStatus.FAILED

        variables = {}
        for name, value in result.variables.items():
            if name in action.exported_variables:
                variables[name] = str(value)
            else:
                logger.warning(f"Action '{action.name}' set undeclared variable '{name}', ignoring")

        recorder.finish_action(stage.name, action.name, RunStatus.SUCCEEDED,
                               exit_code=result.exit_code,
                               exported_variables=variables,
                               resolved_parameters=parameters)
        return RunStatus.SUCCEEDED

    def _store_outputs(self, action: ActionDefinition, result: ActionResult,
                       store: ArtifactStore) -> None:
        declared = {a.name for a in action.outputs}
        undeclared = set(result.outputs) - declared
        if undeclared:
            raise ArtifactWriteError(
                f"Action '{action.name}' wrote undeclared artifacts: {sorted(undeclared)}"
            )
        missing = declared - set(result.outputs)
        if missing:
            raise ArtifactWriteError(
                f"Action '{action.name}' did not populate artifacts: {sorted(missing)}"
            )
        for name, files in result.outputs.items():
            store.write(name, files, producer=action.name)

    def _await_approval(self, run_id: str, stage: StageDefinition, action: ActionDefinition,
                        recorder: RunStateRecorder) -> RunStatus:
        recorder.start_action(stage.name, action.name, status=RunStatus.AWAITING_APPROVAL)
        request = ApprovalRequest(
            run_id=run_id,
            pipeline_name=self.definition.name,
            stage_name=stage.name,
            action_name=action.name,
            summary=action.configuration.get("summary"),
        )
        logger.info(f"⏸️  Waiting for approval: {stage.name}/{action.name}")

        try:
            decision = ApprovalDecision(self.approval_provider(request))
        except Exception as e:
            logger.exception(f"Approval provider failed for '{action.name}'")
            recorder.finish_action(stage.name, action.name, RunStatus.FAILED,
                                   error_message=f"{e.__class__.__name__}: {e}")
            return RunStatus.FAILED

        if decision == ApprovalDecision.APPROVED:
            recorder.finish_action(stage.name, action.name, RunStatus.SUCCEEDED)
            return RunStatus.SUCCEEDED

        recorder.finish_action(stage.name, action.name, RunStatus.REJECTED,
                               error_message="Rejected by approver")
        return RunStatus.REJECTED

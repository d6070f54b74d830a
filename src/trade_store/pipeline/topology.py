"""
Release pipeline topology.

A pipeline is an ordered list of stages; each stage is a set of actions that
may run concurrently. Actions exchange named artifacts and exported
variables. ``PipelineDefinition.validate`` checks the whole graph before
anything is synthesized or run:

- every consumed artifact is produced by an action in a strictly earlier stage
- every artifact is produced once
- every variable reference points at a variable exported by an earlier stage
- source actions only live in the first stage, approvals carry no artifacts
"""
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from .errors import (
    DanglingArtifactError,
    DuplicateArtifactError,
    DuplicateNameError,
    EmptyPipelineError,
    InvalidActionError,
    InvalidNameError,
    UnresolvedVariableError,
)
from .variables import VariableReference, find_references

logger = logging.getLogger(__name__)

NAME_PATTERN = re.compile(r"^[A-Za-z0-9.@\-_]{1,100}$")
VARIABLE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9@\-_]{1,128}$")


class ActionCategory(str, Enum):
    """Kinds of pipeline actions."""
    SOURCE = "Source"
    BUILD = "Build"
    APPROVAL = "Approval"
    DEPLOY = "Deploy"
    TEST = "Test"


@dataclass(frozen=True)
class Artifact:
    """Named bundle of files passed between actions."""
    name: str

    def at_path(self, file_name: str) -> "ArtifactPath":
        return ArtifactPath(artifact=self, file_name=file_name)


@dataclass(frozen=True)
class ArtifactPath:
    """A single file inside an artifact."""
    artifact: Artifact
    file_name: str

    @property
    def location(self) -> str:
        return f"{self.artifact.name}::{self.file_name}"


@dataclass
class ActionDefinition:
    """A single unit of pipeline work."""
    name: str
    category: ActionCategory
    inputs: List[Artifact] = field(default_factory=list)
    outputs: List[Artifact] = field(default_factory=list)
    exported_variables: List[str] = field(default_factory=list)
    parameter_overrides: Dict[str, Any] = field(default_factory=dict)
    template_path: Optional[ArtifactPath] = None
    configuration: Dict[str, Any] = field(default_factory=dict)

    def variable(self, name: str) -> VariableReference:
        """Reference one of this action's exported variables."""
        return VariableReference(namespace=self.name, name=name)

    @property
    def consumed_artifacts(self) -> List[Artifact]:
        consumed = list(self.inputs)
        if self.template_path and self.template_path.artifact not in consumed:
            consumed.append(self.template_path.artifact)
        return consumed

    def variable_references(self) -> List[VariableReference]:
        refs = []
        for value in self.parameter_overrides.values():
            refs.extend(find_references(value))
        return refs


def source_action(name: str, output: Artifact, **configuration) -> ActionDefinition:
    return ActionDefinition(name=name, category=ActionCategory.SOURCE,
                            outputs=[output], configuration=configuration)


def build_action(name: str, input_artifact: Artifact, outputs: List[Artifact] = None,
                 exported_variables: List[str] = None, **configuration) -> ActionDefinition:
    return ActionDefinition(
        name=name,
        category=ActionCategory.BUILD,
        inputs=[input_artifact],
        outputs=list(outputs or []),
        exported_variables=list(exported_variables or []),
        configuration=configuration,
    )


def approval_action(name: str, **configuration) -> ActionDefinition:
    return ActionDefinition(name=name, category=ActionCategory.APPROVAL,
                            configuration=configuration)


def deploy_action(name: str, template_path: ArtifactPath,
                  parameter_overrides: Dict[str, Any] = None,
                  extra_inputs: List[Artifact] = None, **configuration) -> ActionDefinition:
    return ActionDefinition(
        name=name,
        category=ActionCategory.DEPLOY,
        inputs=list(extra_inputs or []),
        template_path=template_path,
        parameter_overrides=dict(parameter_overrides or {}),
        configuration=configuration,
    )


@dataclass
class StageDefinition:
    """A named phase of the pipeline."""
    name: str
    actions: List[ActionDefinition] = field(default_factory=list)

    def add_action(self, action: ActionDefinition) -> "StageDefinition":
        self.actions.append(action)
        return self

    @property
    def is_approval(self) -> bool:
        return bool(self.actions) and all(
            a.category == ActionCategory.APPROVAL for a in self.actions
        )


class PipelineDefinition:
    """Ordered sequence of stages with artifact and variable wiring."""

    def __init__(self, name: str, stages: List[StageDefinition] = None):
        self.name = name
        self.stages: List[StageDefinition] = []
        for stage in stages or []:
            self.add_stage(stage)

    def add_stage(self, stage: Union[StageDefinition, str],
                  *successors: Union[StageDefinition, str]) -> StageDefinition:
        """Append ``stage`` and then each successor, in order.

        Returns the first appended stage.
        """
        appended = []
        for item in (stage,) + successors:
            if isinstance(item, str):
                item = StageDefinition(name=item)
            self.stages.append(item)
            appended.append(item)
        return appended[0]

    def get_stage(self, name: str) -> StageDefinition:
        for stage in self.stages:
            if stage.name == name:
                return stage
        raise KeyError(f"Unknown stage: {name}")

    def get_action(self, name: str) -> Tuple[int, ActionDefinition]:
        for index, stage in enumerate(self.stages):
            for action in stage.actions:
                if action.name == name:
                    return index, action
        raise KeyError(f"Unknown action: {name}")

    def actions(self) -> List[ActionDefinition]:
        return [a for stage in self.stages for a in stage.actions]

    def producers(self) -> Dict[str, Tuple[int, ActionDefinition]]:
        """Map each artifact name to the stage index and action producing it."""
        produced = {}
        for index, stage in enumerate(self.stages):
            for action in stage.actions:
                for artifact in action.outputs:
                    produced.setdefault(artifact.name, (index, action))
        return produced

    # ==========================================
    # Validation
    # ==========================================

    def validate(self) -> "PipelineDefinition":
        """Check the definition and raise on the first structural error."""
        self._validate_names()
        self._validate_shape()
        self._validate_action_rules()
        self._validate_artifacts()
        self._validate_variables()
        logger.debug(f"Pipeline '{self.name}' is valid: "
                     f"{len(self.stages)} stages, {len(self.actions())} actions")
        return self

    def _validate_names(self) -> None:
        self._check_name("pipeline", self.name)
        for stage in self.stages:
            self._check_name("stage", stage.name)
            for action in stage.actions:
                self._check_name("action", action.name)
                for artifact in action.outputs + action.consumed_artifacts:
                    self._check_name("artifact", artifact.name)
                for variable in action.exported_variables:
                    if not VARIABLE_NAME_PATTERN.match(variable or ""):
                        raise InvalidNameError(
                            f"Invalid variable name {variable!r} exported by '{action.name}'"
                        )
                for parameter in action.parameter_overrides:
                    if not VARIABLE_NAME_PATTERN.match(parameter or ""):
                        raise InvalidNameError(
                            f"Invalid parameter name {parameter!r} in '{action.name}'"
                        )

    @staticmethod
    def _check_name(kind: str, name: str) -> None:
        if not isinstance(name, str) or not NAME_PATTERN.match(name):
            raise InvalidNameError(f"Invalid {kind} name: {name!r}")

    def _validate_shape(self) -> None:
        if len(self.stages) < 2:
            raise EmptyPipelineError(
                f"Pipeline '{self.name}' needs at least two stages, got {len(self.stages)}"
            )

        stage_names = set()
        action_names = set()
        for stage in self.stages:
            if not stage.actions:
                raise EmptyPipelineError(f"Stage '{stage.name}' has no actions")
            if stage.name in stage_names:
                raise DuplicateNameError(f"Duplicate stage name: {stage.name}")
            stage_names.add(stage.name)
            for action in stage.actions:
                # action names double as variable namespaces, so they are pipeline-wide
                if action.name in action_names:
                    raise DuplicateNameError(f"Duplicate action name: {action.name}")
                action_names.add(action.name)

    def _validate_action_rules(self) -> None:
        for index, stage in enumerate(self.stages):
            for action in stage.actions:
                is_source = action.category == ActionCategory.SOURCE
                if index == 0 and not is_source:
                    raise InvalidActionError(
                        f"First stage '{stage.name}' may only hold source actions, "
                        f"found '{action.name}' ({action.category.value})"
                    )
                if index > 0 and is_source:
                    raise InvalidActionError(
                        f"Source action '{action.name}' must be in the first stage"
                    )
                if is_source and action.consumed_artifacts:
                    raise InvalidActionError(f"Source action '{action.name}' cannot have inputs")
                if is_source and not action.outputs:
                    raise InvalidActionError(f"Source action '{action.name}' must produce an artifact")
                if action.category == ActionCategory.APPROVAL and (
                    action.consumed_artifacts or action.outputs or action.exported_variables
                ):
                    raise InvalidActionError(
                        f"Approval action '{action.name}' cannot consume, produce or export anything"
                    )

    def _validate_artifacts(self) -> None:
        produced_at: Dict[str, int] = {}
        for index, stage in enumerate(self.stages):
            for action in stage.actions:
                for artifact in action.outputs:
                    if artifact.name in produced_at:
                        raise DuplicateArtifactError(
                            f"Artifact '{artifact.name}' is produced more than once "
                            f"(again by '{action.name}')"
                        )
                    produced_at[artifact.name] = index

        for index, stage in enumerate(self.stages):
            for action in stage.actions:
                for artifact in action.consumed_artifacts:
                    producer_index = produced_at.get(artifact.name)
                    if producer_index is None or producer_index >= index:
                        raise DanglingArtifactError(action.name, artifact.name, stage.name)

    def _validate_variables(self) -> None:
        exported_at: Dict[Tuple[str, str], int] = {}
        for index, stage in enumerate(self.stages):
            for action in stage.actions:
                for variable in action.exported_variables:
                    exported_at[(action.name, variable)] = index

        for index, stage in enumerate(self.stages):
            for action in stage.actions:
                for ref in action.variable_references():
                    exporter_index = exported_at.get((ref.namespace, ref.name))
                    if exporter_index is None or exporter_index >= index:
                        raise UnresolvedVariableError(action.name, ref.to_token())

    # ==========================================
    # Introspection
    # ==========================================

    def describe(self) -> Dict[str, Any]:
        """Get a plain view of the stages, actions and artifact flow."""
        producers = self.producers()
        consumers: Dict[str, List[str]] = {}
        for action in self.actions():
            for artifact in action.consumed_artifacts:
                consumers.setdefault(artifact.name, []).append(action.name)

        return {
            "name": self.name,
            "stages": [
                {
                    "name": stage.name,
                    "actions": [
                        {
                            "name": action.name,
                            "category": action.category.value,
                            "inputs": [a.name for a in action.consumed_artifacts],
                            "outputs": [a.name for a in action.outputs],
                            "exported_variables": list(action.exported_variables),
                            "parameters": {
                                k: str(v) for k, v in action.parameter_overrides.items()
                            },
                        }
                        for action in stage.actions
                    ],
                }
                for stage in self.stages
            ],
            "artifacts": {
                name: {
                    "producer": action.name,
                    "consumers": consumers.get(name, []),
                }
                for name, (_, action) in producers.items()
            },
        }

"""
Release pipeline model.

Definition-time topology checks (artifact producers, variable exporters,
stage rules) and a local executor with fail-fast and approval semantics.
Nothing here imports the CDK, so the model can be exercised without a
Node.js runtime.
"""
from .errors import (
    PipelineDefinitionError,
    InvalidNameError,
    EmptyPipelineError,
    DuplicateNameError,
    DuplicateArtifactError,
    DanglingArtifactError,
    UnresolvedVariableError,
    InvalidActionError,
    UnboundVariableError,
    ArtifactWriteError,
    BuildCommandError,
)
from .topology import (
    ActionCategory,
    ActionDefinition,
    Artifact,
    ArtifactPath,
    PipelineDefinition,
    StageDefinition,
    approval_action,
    build_action,
    deploy_action,
    source_action,
)
from .variables import ContainerImageReference, VariableReference, resolve_parameters
from .executor import (
    ActionContext,
    ActionResult,
    ApprovalDecision,
    ApprovalRequest,
    PipelineExecutor,
)
from .run_state import PipelineRunState, RunStatus

__all__ = [
    "PipelineDefinitionError",
    "InvalidNameError",
    "EmptyPipelineError",
    "DuplicateNameError",
    "DuplicateArtifactError",
    "DanglingArtifactError",
    "UnresolvedVariableError",
    "InvalidActionError",
    "UnboundVariableError",
    "ArtifactWriteError",
    "BuildCommandError",
    "ActionCategory",
    "ActionDefinition",
    "Artifact",
    "ArtifactPath",
    "PipelineDefinition",
    "StageDefinition",
    "approval_action",
    "build_action",
    "deploy_action",
    "source_action",
    "ContainerImageReference",
    "VariableReference",
    "resolve_parameters",
    "ActionContext",
    "ActionResult",
    "ApprovalDecision",
    "ApprovalRequest",
    "PipelineExecutor",
    "PipelineRunState",
    "RunStatus",
]

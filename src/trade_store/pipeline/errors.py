"""Exceptions raised by the release pipeline model."""


class PipelineDefinitionError(ValueError):
    """Base class for errors found while validating a pipeline definition."""
    pass


class InvalidNameError(PipelineDefinitionError):
    """A stage, action, artifact or variable name is malformed."""
    pass


class EmptyPipelineError(PipelineDefinitionError):
    """The pipeline or one of its stages has nothing to run."""
    pass


class DuplicateNameError(PipelineDefinitionError):
    """Two stages or two actions share a name."""
    pass


class DuplicateArtifactError(PipelineDefinitionError):
    """An output artifact is produced by more than one action."""
    pass


class DanglingArtifactError(PipelineDefinitionError):
    """An input artifact has no producer in a strictly earlier stage."""

    def __init__(self, action_name: str, artifact_name: str, stage_name: str):
        self.action_name = action_name
        self.artifact_name = artifact_name
        self.stage_name = stage_name
        super().__init__(
            f"Action '{action_name}' in stage '{stage_name}' consumes artifact "
            f"'{artifact_name}' which no earlier stage produces"
        )


class UnresolvedVariableError(PipelineDefinitionError):
    """A parameter references a variable no earlier action exports."""

    def __init__(self, action_name: str, reference: str):
        self.action_name = action_name
        self.reference = reference
        super().__init__(
            f"Action '{action_name}' references variable {reference} "
            f"which is not exported by an action in an earlier stage"
        )


class InvalidActionError(PipelineDefinitionError):
    """An action breaks the structural rules of its category."""
    pass


class UnboundVariableError(KeyError):
    """A variable reference could not be bound at run time."""

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(reference)

    def __str__(self):
        return f"Variable {self.reference} was not exported by any completed action"


class ArtifactWriteError(RuntimeError):
    """An artifact was populated twice or by an action that does not own it."""
    pass


class BuildCommandError(RuntimeError):
    """A build command exited with a non-zero status."""

    def __init__(self, command: str, exit_code: int, output: str = ""):
        self.command = command
        self.exit_code = exit_code
        self.output = output
        super().__init__(f"Command '{command}' exited with status {exit_code}")

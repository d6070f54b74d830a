"""
Deferred parameters for the release pipeline.

A value such as the container image tag is unknown when the pipeline is
defined. Binding happens in two phases:

1. Definition time: an action asks a producing action for
   ``producer.variable("imageTag")`` and stores the returned
   ``VariableReference`` in its parameter overrides. The reference renders as
   the CodePipeline token ``#{namespace.name}``.
2. Run time: once the producing action has exported its variables,
   ``resolve_parameters`` replaces every reference with the exported value.
   A reference nobody exported raises ``UnboundVariableError``.
"""
import re
from dataclasses import dataclass
from typing import Any, Dict, Mapping

from .errors import UnboundVariableError

TOKEN_PATTERN = re.compile(r"#\{([A-Za-z0-9@\-_]+)\.([A-Za-z0-9@\-_]+)\}")


@dataclass(frozen=True)
class VariableReference:
    """Reference to a variable exported by the action named ``namespace``."""
    namespace: str
    name: str

    def to_token(self) -> str:
        return f"#{{{self.namespace}.{self.name}}}"

    def __str__(self):
        return self.to_token()

    @classmethod
    def parse(cls, token: str) -> "VariableReference":
        match = TOKEN_PATTERN.fullmatch(token.strip())
        if not match:
            raise ValueError(f"Not a variable token: {token!r}")
        return cls(namespace=match.group(1), name=match.group(2))


def find_references(value: Any) -> list:
    """List every variable reference inside a parameter value."""
    if isinstance(value, VariableReference):
        return [value]
    if isinstance(value, str):
        return [VariableReference(ns, name) for ns, name in TOKEN_PATTERN.findall(value)]
    return []


def resolve_value(value: Any, exported: Mapping[str, Mapping[str, str]]) -> Any:
    """Bind one parameter value against the exported variables of a run."""
    if isinstance(value, VariableReference):
        namespace_vars = exported.get(value.namespace, {})
        if value.name not in namespace_vars:
            raise UnboundVariableError(value.to_token())
        return namespace_vars[value.name]

    if isinstance(value, str):
        def _substitute(match):
            return resolve_value(VariableReference(match.group(1), match.group(2)), exported)
        return TOKEN_PATTERN.sub(_substitute, value)

    return value


def resolve_parameters(overrides: Mapping[str, Any],
                       exported: Mapping[str, Mapping[str, str]]) -> Dict[str, Any]:
    """Substitute every variable reference in ``overrides``.

    Args:
        overrides: Parameter name to literal value or ``VariableReference``
        exported: Action namespace to the variables it exported

    Raises:
        UnboundVariableError: if a referenced variable was never exported
    """
    return {name: resolve_value(value, exported) for name, value in overrides.items()}


@dataclass(frozen=True)
class ContainerImageReference:
    """Container image whose tag is supplied through a deploy parameter."""
    repository_uri: str
    tag_parameter_name: str = "AppImageTagParameter"

    @property
    def placeholder(self) -> str:
        return f"{self.repository_uri}:${{{self.tag_parameter_name}}}"

    def resolve(self, parameters: Mapping[str, Any]) -> str:
        if self.tag_parameter_name not in parameters:
            raise UnboundVariableError(self.tag_parameter_name)
        return f"{self.repository_uri}:{parameters[self.tag_parameter_name]}"

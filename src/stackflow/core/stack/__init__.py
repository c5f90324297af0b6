# src/stackflow/core/stack/__init__.py
"""
Modelo de stacks do Stackflow.

Componentes:
    - definition  → StackDefinition, ParameterSpec, ResourceSpec, OutputSpec
    - binding     → ParameterBinding, OutputRef e resolução de inputs
    - expressions → referências `${...}` e expressões de output
    - types       → enums canônicos e registros de AppliedState
    - context     → RunContext (eventos, warnings, cancelamento)
    - registry    → unicidade de stack ids
"""

from .binding import UNKNOWN, OutputRef, ParameterBinding, resolve_inputs
from .context import RunContext, new_run_context
from .definition import NO_DEFAULT, OutputSpec, ParameterSpec, ResourceSpec, StackDefinition
from .registry import StackRegistry
from .types import Action, AppliedState, ResourceRecord, StackStatus, TypeTag, value_matches

__all__ = [
    "UNKNOWN",
    "OutputRef",
    "ParameterBinding",
    "resolve_inputs",
    "RunContext",
    "new_run_context",
    "NO_DEFAULT",
    "OutputSpec",
    "ParameterSpec",
    "ResourceSpec",
    "StackDefinition",
    "StackRegistry",
    "Action",
    "AppliedState",
    "ResourceRecord",
    "StackStatus",
    "TypeTag",
    "value_matches",
]

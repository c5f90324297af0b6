# src/stackflow/core/stack/binding.py
"""
ParameterBinding: a única fonte de dependência entre stacks.

Um binding liga o parâmetro de um stack consumidor a um valor literal ou a
um output de outro stack (produtor). A aresta induzida no grafo é sempre
produtor -> consumidor.

Este módulo também concentra a resolução de inputs, compartilhada por
Planner (outputs planejados) e Executor (outputs produzidos nesta run).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from .definition import StackDefinition


class _Unknown:
    """Valor ainda não conhecido: depende de um produtor que será aplicado."""

    def __repr__(self) -> str:
        return "(known after apply)"


UNKNOWN: Any = _Unknown()


@dataclass(frozen=True)
class OutputRef:
    stack_id: str
    output: str

    @classmethod
    def parse(cls, ref: str) -> "OutputRef":
        stack_id, sep, output = str(ref).rpartition(".")
        if not sep or not stack_id or not output:
            raise ValueError(f"Referência de output inválida: {ref!r} (use '<stack>.<output>')")
        return cls(stack_id=stack_id, output=output)

    def __str__(self) -> str:
        return f"{self.stack_id}.{self.output}"


@dataclass(frozen=True)
class ParameterBinding:
    """
    Aresta de parâmetro: `consumer.parameter` <- literal | `producer.output`.

    Campos:
        - consumer: stack consumidor
        - parameter: parâmetro do consumidor
        - value: literal (quando `source` é None)
        - source: referência ao output produtor
        - origin: procedência do binding (arquivo de declaração, "override", ...)
    """

    consumer: str
    parameter: str
    value: Any = None
    source: Optional[OutputRef] = None
    origin: str = "declaration"

    @property
    def is_literal(self) -> bool:
        return self.source is None

    @property
    def target(self) -> str:
        return f"{self.consumer}.{self.parameter}"

    @classmethod
    def literal(cls, consumer: str, parameter: str, value: Any, *, origin: str = "declaration") -> "ParameterBinding":
        return cls(consumer=consumer, parameter=parameter, value=value, origin=origin)

    @classmethod
    def from_output(cls, consumer: str, parameter: str, ref: str, *, origin: str = "declaration") -> "ParameterBinding":
        return cls(consumer=consumer, parameter=parameter, source=OutputRef.parse(ref), origin=origin)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"consumer": self.target, "origin": self.origin}
        if self.source is not None:
            data["output"] = str(self.source)
        else:
            data["value"] = self.value
        return data


def resolve_inputs(
    definition: StackDefinition,
    bindings: Mapping[str, ParameterBinding],
    outputs_by_stack: Mapping[str, Optional[Mapping[str, Any]]],
) -> Dict[str, Any]:
    """
    Resolve os valores de parâmetros de um stack.

    Política:
        - binding literal → valor declarado
        - binding de output → `outputs_by_stack[produtor][output]`; quando o
          produtor não tem outputs conhecidos (None ou ausente), `UNKNOWN`
        - sem binding → default declarado; parâmetro opcional sem default → None

    Args:
        definition: Definição do stack consumidor.
        bindings: Bindings do consumidor indexados por parâmetro.
        outputs_by_stack: Outputs conhecidos por stack produtor.

    Returns:
        Dict[str, Any]: Valores por parâmetro, na ordem de declaração.
    """
    resolved: Dict[str, Any] = {}
    for spec in definition.parameters:
        b = bindings.get(spec.name)
        if b is None:
            resolved[spec.name] = spec.default if spec.has_default else None
        elif b.source is None:
            resolved[spec.name] = b.value
        else:
            outputs = outputs_by_stack.get(b.source.stack_id)
            if outputs is None or b.source.output not in outputs:
                resolved[spec.name] = UNKNOWN
            else:
                resolved[spec.name] = outputs[b.source.output]
    return resolved


def has_unknown(values: Mapping[str, Any]) -> bool:
    return any(v is UNKNOWN for v in values.values())

# src/stackflow/core/stack/registry.py
"""
Registro estrutural de StackDefinitions.

O `StackRegistry` valida a unicidade de `stack.id` e preserva a ordem de
registro antes de qualquer construção de grafo. Declarações podem vir de
várias fontes; é aqui que colisões entre elas são detectadas.

Invariantes:
    - Cada definição registrada possui um id único
    - A lista reflete exatamente a ordem de registro

Limites explícitos:
    - Não resolve bindings nem detecta ciclos (responsabilidade do Graph Builder)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List

from stackflow.core.exceptions import DuplicateDefinition

from .definition import StackDefinition


@dataclass
class StackRegistry:
    """Registro canônico de definições para validação estrutural pré-grafo."""

    _stacks: Dict[str, StackDefinition] = field(default_factory=dict, init=False, repr=False)
    _order: List[str] = field(default_factory=list, init=False, repr=False)

    def add(self, definition: StackDefinition) -> None:
        stack_id = definition.id
        if stack_id in self._stacks:
            raise DuplicateDefinition(
                message=f"Stack declarado mais de uma vez: {stack_id}",
                details={"stack_id": stack_id},
                hint="Cada stack id deve aparecer em exatamente uma fonte de declaração",
            )

        self._stacks[stack_id] = definition
        self._order.append(stack_id)

    def get(self, stack_id: str) -> StackDefinition:
        return self._stacks[stack_id]

    def __contains__(self, stack_id: object) -> bool:
        return stack_id in self._stacks

    def list(self) -> List[StackDefinition]:
        return [self._stacks[sid] for sid in self._order]

    def as_dict(self) -> Dict[str, StackDefinition]:
        return {sid: self._stacks[sid] for sid in self._order}

# src/stackflow/core/stack/definition.py
"""
Contrato canônico de StackDefinition.

Um stack é a menor unidade orquestrável: um conjunto nomeado de recursos
opacos com parâmetros declarados e outputs expostos. O engine não conhece
a semântica dos recursos (rede, compute, banco, storage); apenas a tag
`kind` e a configuração repassada ao provider.

Princípios fundamentais:
    - Definições são imutáveis após o carregamento
    - Stacks não referenciam outros stacks diretamente; dependências
      existem apenas via ParameterBinding
    - A ordem de declaração de parâmetros e recursos é preservada

Invariantes:
    - `id` é não vazio e seguro como nome de arquivo
    - A ordem de recursos define a ordem de apply (e a ordem inversa de destroy)

Limites explícitos:
    - Não valida referências `${...}` (responsabilidade do Graph Builder)
    - Não executa recursos
"""

from __future__ import annotations

import re
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from stackflow.core.config.hashing import canonical_hash

from .types import TypeTag


_STACK_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


class _NoDefault:
    def __repr__(self) -> str:
        return "NO_DEFAULT"


NO_DEFAULT: Any = _NoDefault()


def validate_stack_id(stack_id: Any) -> str:
    if not isinstance(stack_id, str) or not _STACK_ID.match(stack_id):
        raise ValueError(
            f"stack id inválido: {stack_id!r} (use letras, dígitos, '_', '-' ou '.')"
        )
    return stack_id


@dataclass(frozen=True)
class ParameterSpec:
    """Parâmetro declarado: nome, tag de tipo, obrigatoriedade e default opcional."""

    name: str
    type: TypeTag = TypeTag.STRING
    required: bool = True
    default: Any = NO_DEFAULT

    @property
    def has_default(self) -> bool:
        return self.default is not NO_DEFAULT


@dataclass(frozen=True)
class ResourceSpec:
    """Recurso declarado: tag opaca `kind` e configuração (template)."""

    name: str
    kind: str
    config: Dict[str, Any] = field(default_factory=dict)

    @property
    def template_hash(self) -> str:
        return canonical_hash({"kind": self.kind, "config": self.config})


@dataclass(frozen=True)
class OutputSpec:
    """Output exposto: nome, tag de tipo e expressão `<recurso>.<atributo>`."""

    name: str
    type: TypeTag
    value: str


@dataclass(frozen=True)
class StackDefinition:
    """
    Descrição imutável de um stack.

    Campos:
        - id: identificador único no grafo
        - parameters: parâmetros declarados, em ordem
        - resources: recursos declarados, em ordem de apply
        - outputs: outputs expostos a consumidores
        - description: texto livre (informativo)
    """

    id: str
    parameters: Tuple[ParameterSpec, ...] = ()
    resources: Tuple[ResourceSpec, ...] = ()
    outputs: Tuple[OutputSpec, ...] = ()
    description: str = ""

    def __post_init__(self) -> None:
        validate_stack_id(self.id)
        # tuplas garantem imutabilidade estrutural mesmo quando o chamador passa listas
        object.__setattr__(self, "parameters", tuple(self.parameters))
        object.__setattr__(self, "resources", tuple(self.resources))
        object.__setattr__(self, "outputs", tuple(self.outputs))

    def parameter(self, name: str) -> Optional[ParameterSpec]:
        for p in self.parameters:
            if p.name == name:
                return p
        return None

    def resource(self, name: str) -> Optional[ResourceSpec]:
        for r in self.resources:
            if r.name == name:
                return r
        return None

    def output(self, name: str) -> Optional[OutputSpec]:
        for o in self.outputs:
            if o.name == name:
                return o
        return None

    @property
    def outputs_hash(self) -> str:
        return canonical_hash([[o.name, o.type.value, o.value] for o in self.outputs])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "parameters": [
                {
                    "name": p.name,
                    "type": p.type.value,
                    "required": p.required,
                    **({"default": deepcopy(p.default)} if p.has_default else {}),
                }
                for p in self.parameters
            ],
            "resources": [{"name": r.name, "kind": r.kind, "config": deepcopy(r.config)} for r in self.resources],
            "outputs": [{"name": o.name, "type": o.type.value, "value": o.value} for o in self.outputs],
        }

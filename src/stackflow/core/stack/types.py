# src/stackflow/core/stack/types.py
"""
Tipos canônicos do Stackflow.

Este módulo define as estruturas e enums fundamentais que padronizam a
comunicação entre Graph Builder, Planner, Executor e State Store.

Componentes principais:
    - TypeTag      → tags de tipo de parâmetros e outputs
    - Action       → ação planejada por stack (create, update, delete, noop)
    - StackStatus  → estados finais reportados por stack em uma run
    - ResourceRecord / AppliedState → registro durável do último apply

Princípios fundamentais:
    - Tipos são estáveis e serializáveis (valores textuais canônicos)
    - Registros persistidos são imutáveis em memória (frozen)
    - Nenhuma lógica de execução vive neste módulo

Limites explícitos:
    - Não persiste registros (responsabilidade do State Store)
    - Não decide ações (responsabilidade do Planner)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class TypeTag(str, Enum):
    """
    Tags de tipo declaradas por parâmetros e outputs.

    A compatibilidade entre um output produtor e um parâmetro consumidor é
    igualdade de tag. `any` aceita qualquer valor literal, mas em bindings
    entre stacks continua exigindo igualdade.
    """

    STRING = "string"
    NUMBER = "number"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    LIST = "list"
    MAP = "map"
    ANY = "any"


def value_matches(tag: TypeTag, value: Any) -> bool:
    """Indica se um valor concreto satisfaz a tag declarada."""
    if tag is TypeTag.ANY:
        return True
    if tag is TypeTag.STRING:
        return isinstance(value, str)
    if tag is TypeTag.BOOLEAN:
        return isinstance(value, bool)
    if tag is TypeTag.INTEGER:
        return isinstance(value, int) and not isinstance(value, bool)
    if tag is TypeTag.NUMBER:
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if tag is TypeTag.LIST:
        return isinstance(value, (list, tuple))
    if tag is TypeTag.MAP:
        return isinstance(value, dict)
    return False


class Action(str, Enum):
    """Ação planejada para um stack em uma run."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    NOOP = "noop"


class StackStatus(str, Enum):
    """
    Estados finais de um stack ao fim de uma run.

    Estados definidos:
        - APPLIED: create/update/delete concluído com sucesso
        - NOOP: nada a fazer; nenhuma chamada ao provider
        - FAILED: falha do provider sem compensação aplicável
        - ROLLED_BACK: falha seguida de compensação bem-sucedida
        - ROLLBACK_FAILED: a própria compensação falhou (estado do recurso indefinido)
        - SKIPPED: não executado por falha anterior; nenhuma chamada ao provider
        - CANCELLED: não executado por cancelamento externo da run

    Os mesmos valores são usados como `AppliedState.status` (último status
    confirmado do stack), restritos a APPLIED, FAILED, ROLLED_BACK e
    ROLLBACK_FAILED.
    """

    APPLIED = "applied"
    NOOP = "noop"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"
    ROLLBACK_FAILED = "rollback_failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"

    @property
    def is_success(self) -> bool:
        return self in (StackStatus.APPLIED, StackStatus.NOOP)


@dataclass(frozen=True)
class ResourceRecord:
    """
    Registro de um recurso confirmado pelo provider.

    Campos:
        - name: nome do recurso dentro do stack
        - kind: tag opaca do tipo de recurso
        - fingerprint: valor opaco devolvido pelo provider
        - template_hash: hash do template declarado (antes da interpolação)
        - config: configuração efetivamente enviada ao provider
        - attributes: atributos devolvidos pelo provider
    """

    name: str
    kind: str
    fingerprint: str
    template_hash: str
    config: Dict[str, Any] = field(default_factory=dict)
    attributes: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind,
            "fingerprint": self.fingerprint,
            "template_hash": self.template_hash,
            "config": dict(self.config),
            "attributes": dict(self.attributes),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResourceRecord":
        return cls(
            name=str(data["name"]),
            kind=str(data["kind"]),
            fingerprint=str(data["fingerprint"]),
            template_hash=str(data.get("template_hash", "")),
            config=dict(data.get("config", {}) or {}),
            attributes=dict(data.get("attributes", {}) or {}),
        )


@dataclass(frozen=True)
class AppliedState:
    """
    Registro durável do último apply de um stack.

    Pertence exclusivamente ao State Store; só é produzido pelo Executor
    após o retorno de uma chamada ao provider e é somente leitura no Planner.

    Campos:
        - stack_id / graph_id: chave de persistência
        - inputs: valores de parâmetros efetivamente usados
        - resources: recursos confirmados, em ordem de declaração
        - outputs: outputs efetivamente produzidos
        - status: último status confirmado (APPLIED, FAILED, ROLLED_BACK, ROLLBACK_FAILED)
        - dependencies: stacks produtores usados no apply (ordem de teardown)
        - outputs_hash: hash das declarações de output usadas
        - applied_at: timestamp ISO 8601 UTC
        - error: payload de erro quando status não é APPLIED
    """

    stack_id: str
    graph_id: str
    inputs: Dict[str, Any] = field(default_factory=dict)
    resources: Tuple[ResourceRecord, ...] = ()
    outputs: Dict[str, Any] = field(default_factory=dict)
    status: StackStatus = StackStatus.APPLIED
    dependencies: Tuple[str, ...] = ()
    outputs_hash: str = ""
    applied_at: str = ""
    error: Optional[Dict[str, Any]] = None

    def resource(self, name: str) -> Optional[ResourceRecord]:
        for r in self.resources:
            if r.name == name:
                return r
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stack_id": self.stack_id,
            "graph_id": self.graph_id,
            "inputs": dict(self.inputs),
            "resources": [r.to_dict() for r in self.resources],
            "outputs": dict(self.outputs),
            "status": self.status.value,
            "dependencies": list(self.dependencies),
            "outputs_hash": self.outputs_hash,
            "applied_at": self.applied_at,
            "error": dict(self.error) if self.error is not None else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppliedState":
        return cls(
            stack_id=str(data["stack_id"]),
            graph_id=str(data.get("graph_id", "")),
            inputs=dict(data.get("inputs", {}) or {}),
            resources=tuple(ResourceRecord.from_dict(r) for r in (data.get("resources", []) or [])),
            outputs=dict(data.get("outputs", {}) or {}),
            status=StackStatus(data.get("status", StackStatus.APPLIED.value)),
            dependencies=tuple(data.get("dependencies", []) or []),
            outputs_hash=str(data.get("outputs_hash", "")),
            applied_at=str(data.get("applied_at", "")),
            error=data.get("error"),
        )

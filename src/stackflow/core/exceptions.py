"""
Stackflow: Canonical Exceptions (v1)

Este módulo define as exceções tipadas internas do Stackflow.

Objetivo:
- Permitir que Graph Builder, Planner e Executor levantem exceções semânticas tipadas
- Facilitar o mapeamento determinístico para StackErrorPayload
- Evitar ValueError/RuntimeError genéricos em violações estruturais

Regras:
- Exceções carregam apenas dados estruturados (serializáveis) em `details`.
- Violações de grafo são coletadas de forma exaustiva e agregadas em
  `GraphValidationError`; nenhuma chamada a provider ocorre antes disso.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True, eq=False)
class StackflowException(Exception):
    """Base class para exceções internas do Stackflow.

    Importante:
    - Sempre carregar dados estruturados em `details`
    - Não embedar stack trace em payloads de erro
    - Mensagem deve ser curta e humana
    """

    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    hint: Optional[str] = None

    def __str__(self) -> str:  # pragma: no cover
        return self.message

    @property
    def code(self) -> str:
        return self.__class__.__name__

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.code,
            "message": self.message,
            "details": dict(self.details),
            "hint": self.hint,
        }


# ---------------------------------------------------------------------------
# Validação estrutural do grafo
# ---------------------------------------------------------------------------

@dataclass(frozen=True, eq=False)
class UnresolvedReference(StackflowException):
    """Binding aponta para stack, output ou parâmetro inexistente (ou inativo)."""


@dataclass(frozen=True, eq=False)
class TypeMismatch(StackflowException):
    """Tipo declarado do parâmetro não bate com o output ou o literal vinculado."""


@dataclass(frozen=True, eq=False)
class CyclicDependency(StackflowException):
    """O grafo produtor -> consumidor contém um ciclo."""

    @property
    def cycle(self) -> List[str]:
        return list(self.details.get("cycle", []))


@dataclass(frozen=True, eq=False)
class UnboundParameter(StackflowException):
    """Parâmetro obrigatório sem default e sem binding."""


@dataclass(frozen=True, eq=False)
class DuplicateDefinition(StackflowException):
    """O mesmo stack id foi declarado mais de uma vez."""


@dataclass(frozen=True, eq=False)
class ConflictingBinding(StackflowException):
    """Duas declarações vinculam o mesmo parâmetro consumidor."""


@dataclass(frozen=True, eq=False)
class InvalidExpression(StackflowException):
    """Expressão de output ou referência `${...}` não resolvível na definição."""


@dataclass(frozen=True, eq=False)
class GraphValidationError(StackflowException):
    """Agrega todas as violações estruturais encontradas em uma validação.

    O grafo é rejeitado por inteiro: nenhuma estrutura parcial é devolvida
    ao chamador.
    """

    violations: Tuple[StackflowException, ...] = ()

    def kinds(self) -> List[str]:
        return [v.code for v in self.violations]

    def of_kind(self, kind: type) -> List[StackflowException]:
        return [v for v in self.violations if isinstance(v, kind)]

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["violations"] = [v.to_dict() for v in self.violations]
        return data


def graph_validation_error(violations: List[StackflowException]) -> GraphValidationError:
    return GraphValidationError(
        message=f"Grafo de stacks inválido: {len(violations)} violação(ões)",
        details={"count": len(violations), "kinds": sorted({v.code for v in violations})},
        hint="Corrija todas as violações listadas antes de reexecutar; nenhum provider foi chamado.",
        violations=tuple(violations),
    )


# ---------------------------------------------------------------------------
# Execução
# ---------------------------------------------------------------------------

@dataclass(frozen=True, eq=False)
class ProviderError(StackflowException):
    """Falha reportada pelo Resource Provider Adapter (encapsulada)."""

    @property
    def stack_id(self) -> Optional[str]:
        return self.details.get("stack_id")

    @property
    def resource(self) -> Optional[str]:
        return self.details.get("resource")


@dataclass(frozen=True, eq=False)
class RollbackError(ProviderError):
    """ProviderError ocorrido durante a compensação; estado do recurso indefinido."""


# ---------------------------------------------------------------------------
# Entradas e persistência
# ---------------------------------------------------------------------------

@dataclass(frozen=True, eq=False)
class DeclarationError(StackflowException):
    """Documento de declaração malformado (antes da construção do grafo)."""


@dataclass(frozen=True, eq=False)
class StateStoreError(StackflowException):
    """Registro de AppliedState ilegível ou com schema não suportado."""

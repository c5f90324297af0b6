"""
Stackflow: Canonical Error Structures (v1)

Este módulo define o padrão canônico de erros reportados por uma run.
Erros são artefatos de domínio e fazem parte do contrato operacional,
devendo ser:

- explícitos
- serializáveis
- rastreáveis
- acionáveis

O payload é o que aparece no resultado por stack, no Manifest da run e na
saída da CLI. Stack traces nunca são expostos ao operador.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional

from .exceptions import StackflowException


# ---------------------------------------------------------------------------
# Payload canônico
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StackErrorPayload:
    """
    Payload canônico de erro do Stackflow.

    Campos:
    - type: código estável do erro (não é texto livre)
    - message: mensagem curta, humana e objetiva
    - details: dados estruturados relevantes para diagnóstico
    - hint: ação sugerida ao operador (onde corrigir)
    """

    type: str
    message: str
    details: Dict[str, Any]
    hint: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Retorna representação serializável do erro."""
        return asdict(self)


# ---------------------------------------------------------------------------
# Catálogo canônico de tipos de erro (v1)
# ---------------------------------------------------------------------------

# Erros derivados de StackflowException usam o nome da classe como `type`
# (ex.: "UnresolvedReference", "ProviderError"); os tipos abaixo não têm
# exceção correspondente.
UPSTREAM_FAILED = "UPSTREAM_FAILED"
RUN_CANCELLED = "RUN_CANCELLED"
ENGINE_EXECUTION_ERROR = "ENGINE_EXECUTION_ERROR"


# ---------------------------------------------------------------------------
# Helpers de fábrica
# ---------------------------------------------------------------------------

def from_exception(exc: BaseException) -> StackErrorPayload:
    """Converte exceções em StackErrorPayload (serializável, acionável).

    Regras:
    - StackflowException: já vem com message/details/hint.
    - Outras exceções: encapsular como ENGINE_EXECUTION_ERROR sem expor stack trace.
    """
    if isinstance(exc, StackflowException):
        return StackErrorPayload(
            type=exc.code,
            message=str(exc) or "Erro de execução",
            details=dict(exc.details or {}),
            hint=exc.hint,
        )

    return StackErrorPayload(
        type=ENGINE_EXECUTION_ERROR,
        message=str(exc) or "Erro inesperado durante execução",
        details={"exception_class": exc.__class__.__name__},
        hint="Verifique o Event Log da run e a configuração do provider",
    )


def upstream_failed(*, stack_id: str, blocked_by: Optional[str] = None) -> StackErrorPayload:
    return StackErrorPayload(
        type=UPSTREAM_FAILED,
        message="Stack não executado: falha anterior interrompeu o plano",
        details={"stack_id": stack_id, "blocked_by": blocked_by},
        hint="Corrija a falha do stack indicado em `blocked_by` e reexecute; nenhum provider foi chamado.",
    )


def run_cancelled(*, stack_id: str) -> StackErrorPayload:
    return StackErrorPayload(
        type=RUN_CANCELLED,
        message="Stack não executado: run cancelada",
        details={"stack_id": stack_id},
        hint="Reexecute a run; o plano será recalculado a partir do estado confirmado.",
    )

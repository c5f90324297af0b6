# src/stackflow/providers/base.py
"""
Contrato canônico do Resource Provider Adapter.

O provider é a única fronteira entre o engine e a infraestrutura real.
Todos os tipos de recurso (rede, compute, banco, storage) são tratados de
forma uniforme por uma única interface parametrizada por uma tag opaca
`kind` e um payload de configuração.

Contrato:
    - apply(kind, config, previous_fingerprint) -> ApplyOutcome
        previous_fingerprint é None para criação
    - destroy(kind, fingerprint) -> None

Falhas são sinalizadas por exceções; o Executor as encapsula em
ProviderError. Timeouts pertencem a cada chamada do provider e chegam ao
engine como falhas comuns.
"""

from __future__ import annotations

import importlib
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Protocol, runtime_checkable


@dataclass(frozen=True)
class ApplyOutcome:
    """Resultado de um apply: novo fingerprint e atributos do recurso."""

    fingerprint: str
    attributes: Dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class ResourceProvider(Protocol):
    """
    Interface mínima de um provider.

    Decisões arquiteturais:
        - Nenhuma subclasse por tipo de recurso; o `kind` é opaco ao engine
        - Providers que exigem serialização interna por kind a implementam
          internamente (o engine pode chamar stacks irmãos em paralelo)
    """

    def apply(self, kind: str, config: Mapping[str, Any], previous_fingerprint: Optional[str]) -> ApplyOutcome:
        ...

    def destroy(self, kind: str, fingerprint: str) -> None:
        ...


def load_provider(factory: str, options: Optional[Mapping[str, Any]] = None) -> ResourceProvider:
    """
    Instancia um provider a partir de `"modulo:atributo"` e opções nomeadas.

    Raises:
        ValueError: Se o formato for inválido.
        TypeError: Se o objeto produzido não implementar ResourceProvider.
    """
    module_name, sep, attr = factory.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"provider factory inválida: {factory!r} (use 'modulo:atributo')")

    module = importlib.import_module(module_name)
    target = getattr(module, attr)
    provider = target(**dict(options or {}))

    if not isinstance(provider, ResourceProvider):
        raise TypeError(f"{factory} não produziu um ResourceProvider (apply/destroy)")
    return provider

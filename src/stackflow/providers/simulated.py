# src/stackflow/providers/simulated.py
"""Provider simulado, determinístico e sem estado externo.

Útil para ensaios de plano em CI e para testes: o fingerprint é o hash da
configuração e os atributos ecoam a configuração acrescida de um `id`
derivado do fingerprint. Como nada é guardado fora do processo, re-runs
contra um State Store durável continuam coerentes.
"""

from __future__ import annotations

import threading
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from stackflow.core.config.hashing import canonical_hash

from .base import ApplyOutcome


class SimulatedProviderError(RuntimeError):
    pass


class SimulatedProvider:
    """Provider em memória com falhas injetáveis por `kind`."""

    def __init__(self, *, fail_kinds: Iterable[str] = (), fail_destroy_kinds: Iterable[str] = ()):
        self.fail_kinds = set(fail_kinds)
        self.fail_destroy_kinds = set(fail_destroy_kinds)
        self.calls: List[Tuple[str, str, Optional[str]]] = []
        self._lock = threading.Lock()

    @staticmethod
    def _resource_id(kind: str, fingerprint: str) -> str:
        slug = kind.replace(".", "-").replace("::", "-").replace("/", "-").lower()
        return f"{slug}-{fingerprint[:12]}"

    def apply(self, kind: str, config: Mapping[str, Any], previous_fingerprint: Optional[str]) -> ApplyOutcome:
        with self._lock:
            self.calls.append(("apply", kind, previous_fingerprint))
        if kind in self.fail_kinds:
            raise SimulatedProviderError(f"falha simulada ao aplicar {kind}")

        fingerprint = canonical_hash({"kind": kind, "config": dict(config)})
        attributes: Dict[str, Any] = dict(config)
        attributes["id"] = self._resource_id(kind, fingerprint)
        attributes["kind"] = kind
        return ApplyOutcome(fingerprint=fingerprint, attributes=attributes)

    def destroy(self, kind: str, fingerprint: str) -> None:
        with self._lock:
            self.calls.append(("destroy", kind, fingerprint))
        if kind in self.fail_destroy_kinds:
            raise SimulatedProviderError(f"falha simulada ao destruir {kind}")

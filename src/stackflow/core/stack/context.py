# src/stackflow/core/stack/context.py
"""
Contexto de execução compartilhado de uma run.

O `RunContext` é o único meio de:
    - registrar eventos de log estruturados (plan, apply, rollback)
    - coletar warnings não fatais por stack
    - sinalizar cancelamento externo da run

Princípios fundamentais:
    - Isolamento por execução (cada run possui seu próprio contexto)
    - Ausência de estado global compartilhado
    - Seguro para uso concorrente por stacks irmãos

Invariantes:
    - Logs sempre incluem `run_id` e `stack_id`
    - Warnings são agrupados por `stack_id`
    - Uma vez cancelada, a run permanece cancelada

Limites explícitos:
    - Não executa stacks
    - Não persiste dados automaticamente
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


@dataclass
class RunContext:
    """
    Contexto canônico de uma run de orquestração.

    Campos canônicos:
    - run_id: identificador único da execução
    - created_at: timestamp UTC de criação do contexto
    - config: configuração efetiva do engine
    - meta: metadados livres (ex.: origem da invocação, commit de CI)
    - events: log estruturado de eventos
    - warnings: warnings por stack_id
    """

    run_id: str
    created_at: datetime
    config: Dict[str, Any]
    meta: Dict[str, Any] = field(default_factory=dict)

    events: List[Dict[str, Any]] = field(default_factory=list, init=False)
    warnings: Dict[str, List[str]] = field(default_factory=dict, init=False)

    _cancel: threading.Event = field(default_factory=threading.Event, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    # -----------------------------
    # Logging & warnings
    # -----------------------------
    def log(self, *, stack_id: Optional[str], level: str, message: str, **extra: Any) -> None:
        event = {
            "run_id": self.run_id,
            "stack_id": stack_id,
            "level": level,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        event.update(extra)
        with self._lock:
            self.events.append(event)

    def add_warning(self, *, stack_id: str, message: str) -> None:
        with self._lock:
            self.warnings.setdefault(stack_id, []).append(message)
        self.log(stack_id=stack_id, level="WARNING", message=message)

    # -----------------------------
    # Cancelamento
    # -----------------------------
    def cancel(self) -> None:
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    # -----------------------------
    # Configuração
    # -----------------------------
    def engine_option(self, key: str, default: Any) -> Any:
        engine_cfg = (self.config or {}).get("engine", {}) or {}
        return engine_cfg.get(key, default)


def new_run_context(config: Dict[str, Any], **meta: Any) -> RunContext:
    """Cria um RunContext com run_id aleatório e timestamp UTC atual."""
    return RunContext(
        run_id=f"run-{uuid.uuid4().hex[:12]}",
        created_at=datetime.now(timezone.utc),
        config=config,
        meta=dict(meta),
    )

# src/stackflow/core/traceability/__init__.py
"""
Rastreabilidade de runs (Run Manifest).

API pública:
    - RunManifest     → estrutura do Manifest
    - create_manifest → criação explícita no início da run
    - add_event       → registro de eventos no Event Log
    - record_plan     → anexa o plano executado
    - stack_finished  → estado final de um stack
    - finish_run      → fecha a run com status agregado
    - save_manifest / load_manifest → persistência JSON

Nenhum evento é emitido implicitamente; a ordem do Event Log reflete a
ordem de chamada.
"""

from .manifest import (
    RunManifest,
    add_event,
    create_manifest,
    finish_run,
    load_manifest,
    record_plan,
    save_manifest,
    stack_finished,
)

__all__ = [
    "RunManifest",
    "create_manifest",
    "add_event",
    "record_plan",
    "stack_finished",
    "finish_run",
    "save_manifest",
    "load_manifest",
]

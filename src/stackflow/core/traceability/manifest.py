# src/stackflow/core/traceability/manifest.py
"""
Run Manifest: registro forense de uma run de orquestração.

O Manifest consolida, de forma determinística e auditável:
    - metadados da run (run_id, graph_id, started_at, versão do engine)
    - hashes semânticos de entrada (configuração e declarações)
    - o plano executado
    - estado incremental de cada stack
    - Event Log ordenado de eventos explícitos

Decisões arquiteturais:
    - UTC é o timezone canônico para todos os timestamps
    - O formato de persistência é JSON determinístico
    - O caminho é `<state_dir>/<graph_id>/runs/<run_id>.json`, fora do
      namespace de registros do State Store
    - Toda mutação ocorre por chamadas explícitas da API

Invariantes:
    - `events` é sempre uma lista ordenada
    - `stacks` é sempre um dicionário indexado por stack_id
    - O Manifest é reconstruível (to_dict / from_dict)

Limites explícitos:
    - Não executa stacks
    - Não decide políticas de execução
    - Não é fonte de verdade de estado (o AppliedState é)
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union


def _ensure_tzaware_utc(dt: datetime) -> datetime:
    """Timestamps sem timezone são assumidos como UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _iso(dt: datetime) -> str:
    return _ensure_tzaware_utc(dt).isoformat()


@dataclass
class RunManifest:
    """
    Manifest de uma run.

    Campos:
        - run: metadados da execução (run_id, graph_id, started_at, finished_at, status, stackflow_version)
        - inputs: hashes semânticos (config_hash, declarations_hash)
        - plan: plano serializado (`Plan.to_dict`)
        - stacks: estado final por stack_id
        - events: Event Log ordenado
    """

    run: Dict[str, Any]
    inputs: Dict[str, Any]
    plan: Dict[str, Any] = field(default_factory=dict)
    stacks: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    events: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run": dict(self.run),
            "inputs": dict(self.inputs),
            "plan": dict(self.plan),
            "stacks": {k: dict(v) for k, v in self.stacks.items()},
            "events": [dict(e) for e in self.events],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunManifest":
        return cls(
            run=dict(data.get("run", {})),
            inputs=dict(data.get("inputs", {})),
            plan=dict(data.get("plan", {}) or {}),
            stacks={k: dict(v) for k, v in (data.get("stacks", {}) or {}).items()},
            events=[dict(e) for e in (data.get("events", []) or [])],
        )


def create_manifest(
    *,
    run_id: str,
    graph_id: str,
    started_at: datetime,
    stackflow_version: str,
    config_hash: str,
    declarations_hash: str,
) -> RunManifest:
    """
    Cria o Manifest inicial de uma run.

    Nenhum evento é emitido aqui: o Event Log inicia vazio e só é preenchido
    por `add_event`, `record_plan` e `stack_finished`.
    """
    return RunManifest(
        run={
            "run_id": run_id,
            "graph_id": graph_id,
            "started_at": _iso(started_at),
            "stackflow_version": stackflow_version,
            "status": "running",
        },
        inputs={
            "config_hash": config_hash,
            "declarations_hash": declarations_hash,
        },
    )


def add_event(
    manifest: RunManifest,
    *,
    event_type: str,
    ts: datetime,
    stack_id: Optional[str] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> None:
    """Adiciona exatamente um evento ao Event Log, preservando a ordem de chamada."""
    ev: Dict[str, Any] = {"event_type": event_type, "timestamp": _iso(ts)}
    if stack_id is not None:
        ev["stack_id"] = stack_id
    if payload is not None:
        ev["payload"] = payload
    manifest.events.append(ev)


def record_plan(manifest: RunManifest, *, plan: Dict[str, Any], ts: datetime) -> None:
    manifest.plan = dict(plan)
    for entry in plan.get("entries", []):
        manifest.stacks.setdefault(entry["stack_id"], {}).update(
            {"stack_id": entry["stack_id"], "action": entry["action"], "status": "planned"}
        )
    add_event(manifest, event_type="plan_recorded", ts=ts, payload={"summary": plan.get("summary", {})})


def stack_finished(manifest: RunManifest, *, stack_id: str, ts: datetime, result: Dict[str, Any]) -> None:
    """
    Registra o resultado final de um stack.

    `result` segue o formato de `StackResult.to_dict`; o status é copiado
    como recebido, sem reinterpretação.
    """
    s = manifest.stacks.setdefault(stack_id, {"stack_id": stack_id})
    status = result.get("status", "applied")
    s.update(
        {
            "status": status,
            "finished_at": _iso(ts),
            "summary": result.get("summary"),
            "provider_calls": int(result.get("provider_calls", 0) or 0),
            "error": result.get("error"),
            "rollback_error": result.get("rollback_error"),
        }
    )
    add_event(manifest, event_type="stack_finished", ts=ts, stack_id=stack_id, payload={"status": status})


def finish_run(manifest: RunManifest, *, status: str, ts: datetime) -> None:
    manifest.run["status"] = status
    manifest.run["finished_at"] = _iso(ts)
    add_event(manifest, event_type="run_finished", ts=ts, payload={"status": status})


def save_manifest(manifest: Union[RunManifest, Dict[str, Any]], path: Path) -> None:
    """Persiste o Manifest em JSON determinístico (UTF-8, indentado, chaves ordenadas)."""
    data = manifest.to_dict() if isinstance(manifest, RunManifest) else dict(manifest)
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, ensure_ascii=False, indent=2, sort_keys=True, default=str), encoding="utf-8")


def load_manifest(path: Path) -> RunManifest:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return RunManifest.from_dict(data)


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

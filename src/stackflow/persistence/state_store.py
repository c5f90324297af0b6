"""Persistência canônica de AppliedState (v1).

O State Store é o único dono do AppliedState, a única entidade durável do
Stackflow. Um registro por `(graph_id, stack_id)`.

Decisões (v1):
- Formato: JSON determinístico (`sort_keys`, UTF-8)
- Caminho determinístico: `<root>/<graph_id>/<stack_id>.json`
- Escrita atômica: arquivo temporário no mesmo diretório + `os.replace`;
  um leitor nunca observa um registro pela metade
- Escritas serializadas por lock em processo (stacks irmãos em paralelo)
- `schema_version` em cada registro; versões antigas são migradas no load

Limites explícitos:
- Single-writer: runs concorrentes contra o mesmo grafo devem ser
  serializadas por um lock externo (fora do escopo do engine)
- Não decide ações nem interpreta status
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, Union, runtime_checkable

from stackflow.core.exceptions import StateStoreError
from stackflow.core.stack.definition import validate_stack_id
from stackflow.core.stack.types import AppliedState


SCHEMA_VERSION = 1


@runtime_checkable
class StateStore(Protocol):
    graph_id: str

    def load(self, stack_id: str) -> Optional[AppliedState]:
        ...

    def save(self, stack_id: str, state: AppliedState) -> None:
        ...

    def delete(self, stack_id: str) -> None:
        ...

    def list_stack_ids(self) -> List[str]:
        ...


# ------------------------------------------------------------------
# Serialização e migração de schema
# ------------------------------------------------------------------

def _migrate_v0(data: Dict[str, Any]) -> Dict[str, Any]:
    """v0 → v1.

    O layout v0 guardava `last_status` e `resource_fingerprints`
    (`{nome: fingerprint}`) sem kind, configuração ou atributos.
    """
    resources = [
        {"name": name, "kind": "unknown", "fingerprint": fp, "template_hash": ""}
        for name, fp in (data.get("resource_fingerprints", {}) or {}).items()
    ]
    return {
        "stack_id": data["stack_id"],
        "graph_id": data.get("graph_id", ""),
        "inputs": data.get("inputs", {}),
        "resources": resources,
        "outputs": data.get("outputs", {}),
        "status": data.get("last_status", "applied"),
        "dependencies": data.get("dependencies", []),
        # hash vazio força update no próximo plano, preenchendo os campos novos
        "outputs_hash": "",
        "applied_at": data.get("applied_at", ""),
        "error": data.get("error"),
        "schema_version": 1,
    }


_MIGRATIONS: Dict[int, Callable[[Dict[str, Any]], Dict[str, Any]]] = {0: _migrate_v0}


def encode_state(state: AppliedState) -> Dict[str, Any]:
    data = state.to_dict()
    data["schema_version"] = SCHEMA_VERSION
    return data


def decode_state(data: Dict[str, Any], *, source: str = "<memory>") -> AppliedState:
    version = int(data.get("schema_version", 0))
    if version > SCHEMA_VERSION:
        raise StateStoreError(
            message=f"Schema de estado mais novo que o engine: v{version}",
            details={"source": source, "schema_version": version, "supported": SCHEMA_VERSION},
            hint="Atualize o Stackflow antes de ler este estado",
        )
    while version < SCHEMA_VERSION:
        data = _MIGRATIONS[version](data)
        version = int(data.get("schema_version", version + 1))
    try:
        return AppliedState.from_dict(data)
    except (KeyError, ValueError, TypeError) as exc:
        raise StateStoreError(
            message=f"Registro de estado inválido: {source}",
            details={"source": source, "error": str(exc)},
        ) from exc


# ------------------------------------------------------------------
# Stores
# ------------------------------------------------------------------

class InMemoryStateStore:
    """Store volátil; os registros passam por JSON como no store durável."""

    def __init__(self, *, graph_id: str = "default"):
        self.graph_id = graph_id
        self._records: Dict[str, str] = {}
        self._lock = threading.Lock()

    def load(self, stack_id: str) -> Optional[AppliedState]:
        raw = self._records.get(stack_id)
        if raw is None:
            return None
        return decode_state(json.loads(raw), source=f"memory:{stack_id}")

    def save(self, stack_id: str, state: AppliedState) -> None:
        raw = json.dumps(encode_state(state), ensure_ascii=False, sort_keys=True)
        with self._lock:
            self._records[stack_id] = raw

    def delete(self, stack_id: str) -> None:
        with self._lock:
            self._records.pop(stack_id, None)

    def list_stack_ids(self) -> List[str]:
        return sorted(self._records)


class FileStateStore:
    """Store durável em JSON, um arquivo por stack."""

    def __init__(self, *, root: Union[str, Path], graph_id: str):
        self.root = Path(root)
        self.graph_id = validate_stack_id(graph_id)
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------
    @property
    def graph_dir(self) -> Path:
        return self.root / self.graph_id

    def record_path(self, stack_id: str) -> Path:
        return self.graph_dir / f"{validate_stack_id(stack_id)}.json"

    # ------------------------------------------------------------------
    # Persist / Load
    # ------------------------------------------------------------------
    def load(self, stack_id: str) -> Optional[AppliedState]:
        path = self.record_path(stack_id)
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise StateStoreError(
                message=f"Registro de estado ilegível: {path}",
                details={"source": str(path), "error": str(exc)},
            ) from exc
        return decode_state(data, source=str(path))

    def save(self, stack_id: str, state: AppliedState) -> None:
        content = json.dumps(encode_state(state), ensure_ascii=False, indent=2, sort_keys=True)
        with self._lock:
            _atomic_write_text(self.record_path(stack_id), content)

    def delete(self, stack_id: str) -> None:
        with self._lock:
            path = self.record_path(stack_id)
            if path.exists():
                path.unlink()

    def list_stack_ids(self) -> List[str]:
        if not self.graph_dir.is_dir():
            return []
        return sorted(p.stem for p in self.graph_dir.glob("*.json") if not p.name.startswith("."))


def _atomic_write_text(path: Path, content: str) -> None:
    """Grava `content` em arquivo temporário vizinho e substitui via `os.replace`."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as tmp_handle:
            tmp_handle.write(content)
            tmp_handle.flush()
            os.fsync(tmp_handle.fileno())
        os.replace(tmp_path, str(path))
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


__all__ = [
    "SCHEMA_VERSION",
    "StateStore",
    "InMemoryStateStore",
    "FileStateStore",
    "encode_state",
    "decode_state",
]

from .state_store import (
    SCHEMA_VERSION,
    FileStateStore,
    InMemoryStateStore,
    StateStore,
    decode_state,
    encode_state,
)

__all__ = [
    "SCHEMA_VERSION",
    "FileStateStore",
    "InMemoryStateStore",
    "StateStore",
    "decode_state",
    "encode_state",
]

# src/stackflow/core/config/hashing.py
"""
Hashing canônico do Stackflow.

Este módulo implementa a geração de hash determinístico de estruturas
JSON-compatíveis. O mesmo algoritmo é usado para:
    - identidade da configuração efetiva do engine (Manifest)
    - identidade do conjunto de declarações de uma run (Manifest)
    - fingerprint de template de recurso (diff do Planner)

Política de hashing (v1):
    - Serialização JSON canônica (chaves ordenadas, separadores compactos)
    - Codificação UTF-8
    - Algoritmo SHA-256

Invariantes:
    - Estruturas equivalentes produzem o mesmo hash, independente da ordem das chaves
    - O valor gerado é sempre uma string hexadecimal de 64 caracteres
"""


import json
import hashlib
from typing import Any, Dict


def canonical_json(value: Any) -> str:
    return json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )


def canonical_hash(value: Any) -> str:
    """Gera SHA-256 hexadecimal da serialização JSON canônica de `value`."""
    return hashlib.sha256(canonical_json(value).encode("utf-8")).hexdigest()


def compute_config_hash(config: Dict[str, Any]) -> str:
    """
    Gera um hash determinístico da configuração efetiva do engine.

    Args:
        config (Dict[str, Any]): Configuração efetiva.

    Returns:
        str: Hash SHA-256 hexadecimal da configuração.

    Raises:
        TypeError: Se o objeto fornecido não for um dicionário.
    """

    if not isinstance(config, dict):
        raise TypeError(
            f"Config para hashing deve ser dict, recebido: {type(config).__name__}"
        )

    return canonical_hash(config)

# src/stackflow/core/config/merge.py
"""
Deep-merge da configuração do engine.

Compõe os defaults empacotados (`defaults.yaml`) com o arquivo de
configuração local (`--config`). Overrides de parâmetros (`--param`) não
passam por aqui: são aplicados sobre os bindings por
`declarations.apply_overrides`.

Política de merge (v1):
    - dict → merge recursivo por chave
    - list → sobrescrita total (ex.: `provider.options.fail_kinds`)
    - chave com `None` nos defaults → aceita qualquer valor local
    - int sobre float → aceito (ex.: `timeout: 30` sobre `30.0`)
    - qualquer outra troca de tipo → ConfigTypeConflictError com o caminho
      pontuado da chave (ex.: `engine.max_workers`)

Invariantes:
    - Nenhum input é mutado
    - bool nunca é aceito no lugar de int (e vice-versa)
"""

from copy import deepcopy
from typing import Any, Dict

from .errors import ConfigTypeConflictError


def _type_name(value: Any) -> str:
    return type(value).__name__


def _compatible(base_value: Any, override_value: Any) -> bool:
    if base_value is None:
        return True
    if isinstance(override_value, list):
        return True
    if type(base_value) is float and type(override_value) is int:
        return True
    return type(base_value) is type(override_value)


def _merge_at(base: Dict[str, Any], override: Dict[str, Any], prefix: str) -> Dict[str, Any]:
    result: Dict[str, Any] = deepcopy(base)

    for key, value in override.items():
        path = f"{prefix}.{key}" if prefix else str(key)
        if key not in result:
            result[key] = deepcopy(value)
            continue

        current = result[key]
        if isinstance(current, dict) and isinstance(value, dict):
            result[key] = _merge_at(current, value, path)
        elif _compatible(current, value):
            result[key] = deepcopy(value)
        else:
            raise ConfigTypeConflictError(
                f"Conflito de tipo em '{path}': {_type_name(current)} vs {_type_name(value)}"
            )

    return result


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Devolve uma nova configuração com `override` aplicado sobre `base`.

    Raises:
        ConfigTypeConflictError: Se alguma raiz não for dict ou se uma chave
            trocar de tipo de forma incompatível.
    """
    if not isinstance(base, dict) or not isinstance(override, dict):
        raise ConfigTypeConflictError(
            f"Deep-merge requer dicts no nível raiz, recebido: {_type_name(base)} vs {_type_name(override)}"
        )
    return _merge_at(base, override, "")

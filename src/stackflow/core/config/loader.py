# src/stackflow/core/config/loader.py
"""
Loader canônico de configuração do Stackflow.

A configuração efetiva do engine é resolvida a partir de:
    - um arquivo de defaults (obrigatório; por padrão o `defaults.yaml` empacotado)
    - um arquivo local de overrides (opcional)

Responsabilidades do módulo:
    - Carregar arquivos de configuração em YAML ou JSON
    - Validar requisitos estruturais mínimos (tipo raiz, domínio de chaves conhecidas)
    - Resolver a configuração final via deep-merge determinístico

Invariantes:
    - O resultado é sempre um dicionário puro (`dict`)
    - Overrides nunca mutam os defaults

Limites explícitos:
    - Não interage com Graph Builder, Planner ou Executor
    - Não instancia provider nem State Store (responsabilidade do Orchestrator/CLI)
"""

from pathlib import Path
from typing import Any, Dict, Optional, Type
import json

import yaml  # PyYAML

from .merge import deep_merge
from .errors import (
    ConfigError,
    DefaultsNotFoundError,
    InvalidConfigRootTypeError,
    InvalidConfigValueError,
    UnsupportedConfigFormatError,
)


DEFAULTS_PATH = Path(__file__).with_name("defaults.yaml")


def read_mapping_file(
    path: Path,
    *,
    missing_error: Type[ConfigError] = DefaultsNotFoundError,
) -> Dict[str, Any]:
    """
    Carrega um arquivo YAML/JSON e valida que a raiz é um dicionário.

    Arquivos vazios são interpretados como dicionários vazios.

    Args:
        path (Path): Caminho para o arquivo.
        missing_error: Exceção levantada quando o arquivo não existe.

    Returns:
        Dict[str, Any]: Conteúdo do arquivo carregado como dicionário.

    Raises:
        DefaultsNotFoundError: Se o arquivo não existir (padrão).
        UnsupportedConfigFormatError: Se o formato do arquivo não for suportado.
        InvalidConfigRootTypeError: Se o conteúdo raiz não for um dicionário.
    """
    if not path.exists():
        raise missing_error(f"Arquivo não encontrado: {path}")

    suffix = path.suffix.lower()

    if suffix in {".yaml", ".yml"}:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)

    elif suffix == ".json":
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)

    else:
        raise UnsupportedConfigFormatError(f"Formato não suportado: {path.suffix}")

    if data is None:
        data = {}

    if not isinstance(data, dict):
        raise InvalidConfigRootTypeError(
            f"Config root deve ser dict, recebido: {type(data).__name__}"
        )

    return data


def validate_config(config: Dict[str, Any]) -> None:
    """Valida o domínio das chaves conhecidas da configuração efetiva."""
    engine = config.get("engine", {}) or {}
    workers = engine.get("max_workers", 1)
    if not isinstance(workers, int) or isinstance(workers, bool) or workers < 1:
        raise InvalidConfigValueError(
            f"engine.max_workers deve ser inteiro >= 1, recebido: {workers!r}"
        )

    factory = (config.get("provider", {}) or {}).get("factory")
    if factory is not None and (not isinstance(factory, str) or ":" not in factory):
        raise InvalidConfigValueError(
            f"provider.factory deve seguir o formato 'modulo:atributo', recebido: {factory!r}"
        )

    graph_id = (config.get("graph", {}) or {}).get("id")
    if graph_id is not None and (not isinstance(graph_id, str) or not graph_id.strip()):
        raise InvalidConfigValueError("graph.id deve ser uma string não vazia")


def load_config(
    *,
    defaults_path: Optional[str] = None,
    local_path: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Carrega e resolve a configuração efetiva do engine.

    Política de resolução:
        - O arquivo de defaults é obrigatório (empacotado, salvo indicação contrária)
        - O arquivo local é opcional; quando presente, tem prioridade sobre defaults
        - A resolução utiliza `deep_merge` com política determinística

    Args:
        defaults_path (Optional[str]): Caminho para o arquivo de configuração base.
        local_path (Optional[str]): Caminho opcional para overrides locais.

    Returns:
        Dict[str, Any]: Configuração final resolvida.

    Raises:
        DefaultsNotFoundError: Se o arquivo de defaults não existir.
        UnsupportedConfigFormatError: Se o formato do arquivo não for suportado.
        InvalidConfigRootTypeError: Se o conteúdo não for um dicionário.
        ConfigTypeConflictError: Se ocorrer conflito estrutural durante o merge.
        InvalidConfigValueError: Se uma chave conhecida tiver valor inválido.
    """

    defaults_file = Path(defaults_path) if defaults_path is not None else DEFAULTS_PATH
    effective = read_mapping_file(defaults_file)

    if local_path is not None:
        local_file = Path(local_path)
        if local_file.exists():
            local = read_mapping_file(local_file)
            effective = deep_merge(effective, local)

    validate_config(effective)
    return effective

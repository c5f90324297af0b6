# src/stackflow/core/config/__init__.py

"""
Camada de configuração do Stackflow.

Responsabilidades do pacote:
    - Carregamento de arquivos de configuração (defaults + overrides locais)
    - Resolução de configuração final via deep-merge determinístico
    - Validação estrutural básica da configuração
    - Geração de hash canônico para rastreabilidade e fingerprints

Limites explícitos:
    - Não valida declarações de stacks (responsabilidade do Graph Builder)
    - Não executa planos
"""

from .errors import (
    ConfigError,
    ConfigTypeConflictError,
    DefaultsNotFoundError,
    InvalidConfigRootTypeError,
    InvalidConfigValueError,
    UnsupportedConfigFormatError,
)
from .hashing import canonical_hash, compute_config_hash
from .loader import DEFAULTS_PATH, load_config, read_mapping_file, validate_config
from .merge import deep_merge

__all__ = [
    "ConfigError",
    "ConfigTypeConflictError",
    "DefaultsNotFoundError",
    "InvalidConfigRootTypeError",
    "InvalidConfigValueError",
    "UnsupportedConfigFormatError",
    "canonical_hash",
    "compute_config_hash",
    "DEFAULTS_PATH",
    "load_config",
    "read_mapping_file",
    "validate_config",
    "deep_merge",
]

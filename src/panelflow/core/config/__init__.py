# src/panelflow/core/config/__init__.py
"""
Camada de configuração do panelflow.

Responsabilidades do pacote:
    - Carregar arquivos de configuração (defaults + override local)
    - Resolver a configuração efetiva via deep-merge determinístico
    - Materializar `EngineConfig` (limites, timeouts, catálogo de runners)
    - Gerar hash canônico para o manifest da avaliação

Limites explícitos:
    - O segredo mestre do Vault nunca faz parte da configuração
    - Não executa painéis
"""

from .errors import (
    ConfigError,
    ConfigTypeConflictError,
    DefaultsNotFoundError,
    InvalidConfigRootTypeError,
    UnsupportedConfigFormatError,
)
from .hashing import compute_config_hash
from .loader import load_config
from .merge import deep_merge
from .settings import DEFAULT_CONFIG, EngineConfig

__all__ = [
    "ConfigError",
    "ConfigTypeConflictError",
    "DefaultsNotFoundError",
    "InvalidConfigRootTypeError",
    "UnsupportedConfigFormatError",
    "compute_config_hash",
    "load_config",
    "deep_merge",
    "DEFAULT_CONFIG",
    "EngineConfig",
]

# src/panelflow/core/config/loader.py
"""
Loader de configuração do panelflow.

A configuração efetiva é resolvida em camadas, sempre via `deep_merge`:

    DEFAULT_CONFIG (embutido) ← arquivo de defaults ← override local

Formatos suportados: YAML (.yaml, .yml) e JSON (.json). Um arquivo vazio
equivale a `{}`; qualquer raiz que não seja dict é erro fatal.

Invariantes:
    - Um `defaults_path` informado e inexistente é erro (DefaultsNotFoundError)
    - O override local é opcional: se o caminho não existir, é ignorado
    - A mesma entrada sempre produz a mesma configuração final
"""

import json
import logging
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml  # PyYAML

from .errors import (
    DefaultsNotFoundError,
    InvalidConfigRootTypeError,
    UnsupportedConfigFormatError,
)
from .hashing import compute_config_hash
from .merge import deep_merge
from .settings import DEFAULT_CONFIG


logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def _load_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise DefaultsNotFoundError(f"Arquivo de configuração não encontrado: {path}")

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
        raise InvalidConfigRootTypeError(f"Config root deve ser dict, recebido: {type(data).__name__}")

    return data


def load_config(
    *,
    defaults_path: Optional[PathLike] = None,
    local_path: Optional[PathLike] = None,
) -> Dict[str, Any]:
    """
    Carrega e resolve a configuração efetiva.

    Args:
        defaults_path: arquivo de defaults do projeto (opcional; quando
            ausente, vale apenas o DEFAULT_CONFIG embutido).
        local_path: override local opcional, aplicado por último.

    Returns:
        Dicionário puro com a configuração resolvida.

    Raises:
        DefaultsNotFoundError, UnsupportedConfigFormatError,
        InvalidConfigRootTypeError, ConfigTypeConflictError.
    """
    effective = deepcopy(DEFAULT_CONFIG)

    if defaults_path is not None:
        effective = deep_merge(effective, _load_file(Path(defaults_path)))

    if local_path is not None:
        local_file = Path(local_path)
        if local_file.exists():
            effective = deep_merge(effective, _load_file(local_file))
        else:
            logger.debug("override local ausente, ignorado: %s", local_file)

    logger.debug("config resolvida (hash=%s)", compute_config_hash(effective))
    return effective

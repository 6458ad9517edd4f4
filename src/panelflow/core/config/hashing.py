# src/panelflow/core/config/hashing.py
"""
Hash canônico da configuração efetiva.

SHA-256 sobre JSON com chaves ordenadas e separadores compactos; o valor
é gravado no manifest de cada avaliação para identificar com qual
configuração ela rodou.
"""

import hashlib
import json
from typing import Any, Dict


def compute_config_hash(config: Dict[str, Any]) -> str:
    """Retorna o hex SHA-256 (64 caracteres) da configuração.

    Raises:
        TypeError: se `config` não for um dicionário.
    """
    if not isinstance(config, dict):
        raise TypeError(f"Config para hashing deve ser dict, recebido: {type(config).__name__}")

    canonical_json = json.dumps(
        config,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )
    return hashlib.sha256(canonical_json.encode("utf-8")).hexdigest()

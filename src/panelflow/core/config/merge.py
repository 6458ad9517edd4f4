# src/panelflow/core/config/merge.py
"""
Deep-merge de configuração.

Política (v1):
    - dict + dict        → merge recursivo por chave
    - list               → sobrescrita total
    - int / float        → intercambiáveis (ex.: timeout 60 → 2.5)
    - None em qualquer lado → sobrescrita direta
    - demais escalares   → sobrescrita direta, desde que o tipo seja o mesmo
    - conflito de tipos  → ConfigTypeConflictError

Nenhum input é mutado; o resultado é sempre um novo dicionário.
"""

from copy import deepcopy
from typing import Any, Dict

from .errors import ConfigTypeConflictError


def _compatible(base_value: Any, override_value: Any) -> bool:
    if base_value is None or override_value is None:
        return True
    numeric = (int, float)
    if (
        isinstance(base_value, numeric)
        and isinstance(override_value, numeric)
        and not isinstance(base_value, bool)
        and not isinstance(override_value, bool)
    ):
        return True
    return type(base_value) is type(override_value)


def deep_merge(base: Dict[str, Any], override: Dict[str, Any], _path: str = "") -> Dict[str, Any]:
    """
    Combina `base` e `override` sem mutar nenhum dos dois.

    Raises:
        ConfigTypeConflictError: se uma chave tiver tipos incompatíveis
        (o caminho completo da chave aparece na mensagem).
    """
    if not isinstance(base, dict) or not isinstance(override, dict):
        raise ConfigTypeConflictError(
            f"Deep-merge requer dicts no nível raiz, recebido: "
            f"{type(base).__name__} vs {type(override).__name__}"
        )

    result: Dict[str, Any] = deepcopy(base)

    for key, override_value in override.items():
        path = f"{_path}.{key}" if _path else str(key)
        if key not in result:
            result[key] = deepcopy(override_value)
            continue

        base_value = result[key]

        if isinstance(base_value, dict) and isinstance(override_value, dict):
            result[key] = deep_merge(base_value, override_value, path)
            continue

        if isinstance(override_value, list) and (base_value is None or isinstance(base_value, list)):
            result[key] = deepcopy(override_value)
            continue

        if not _compatible(base_value, override_value):
            raise ConfigTypeConflictError(
                f"Conflito de tipo na chave '{path}': "
                f"{type(base_value).__name__} vs {type(override_value).__name__}"
            )

        result[key] = deepcopy(override_value)

    return result

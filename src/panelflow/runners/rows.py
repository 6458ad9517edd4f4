# src/panelflow/runners/rows.py
"""
Normalização de linhas de resultado.

Todas as linhas, in-process ou vindas de um worker, passam por
`normalize_value`; é isso que torna o documento JSON gravado idêntico
byte a byte entre runners.

Política (v1):
    - None / bool / str / int         → inalterados
    - float não finito (NaN, ±inf)    → None
    - Decimal integral                → int; demais → float
    - datetime / date / time          → ISO 8601
    - timedelta                       → segundos (float)
    - bytes                           → hexadecimal
    - UUID                            → str
    - escalares numpy (`.item()`)     → valor Python equivalente
    - mapas e sequências              → normalizados recursivamente
    - qualquer outro valor            → str(valor)
"""

from __future__ import annotations

import math
import uuid
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, Mapping, Sequence


def normalize_value(value: Any) -> Any:
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, int):
        return int(value)
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, Decimal):
        if not value.is_finite():
            return None
        if value == value.to_integral_value():
            return int(value)
        return float(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, timedelta):
        return value.total_seconds()
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Mapping):
        return {str(k): normalize_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [normalize_value(v) for v in value]
    item = getattr(value, "item", None)
    if callable(item):
        try:
            return normalize_value(item())
        except (TypeError, ValueError):
            pass
    return str(value)


def normalize_row(columns: Sequence[str], values: Iterable[Any]) -> Dict[str, Any]:
    return {str(c): normalize_value(v) for c, v in zip(columns, values)}


def normalize_mapping(row: Mapping[str, Any]) -> Dict[str, Any]:
    return {str(k): normalize_value(v) for k, v in row.items()}

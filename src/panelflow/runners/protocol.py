# src/panelflow/runners/protocol.py
"""
Protocolo de wire entre o engine e workers externos.

Transporte: stdin/stdout do worker, um registro JSON por linha (NDJSON),
o que permite consumo parcial do stream de linhas.

Mensagens do engine para o worker:
    {"type": "evaluate", "request_id", "panel": {"id", "kind", "content"},
     "connector": {..., "password": <texto plano>} | null}
    {"type": "shutdown"}

Mensagens do worker para o engine (todas ecoam `request_id`, exceto `ready`):
    {"type": "ready", "runtime", "pid"}           uma vez, ao iniciar
    {"type": "columns", "columns": [...]}        opcional, antes das linhas
    {"type": "row", "row": {...}}                 zero ou mais
    {"type": "done", "row_count": N}              terminal de sucesso
    {"type": "error", "error": {"type", "message", "details"}}   terminal de falha

Invariantes:
    - A senha aparece apenas na mensagem `evaluate` e nunca é ecoada
    - Todo request termina com exatamente um registro terminal
"""

from __future__ import annotations

import json
from typing import Any, Dict, Iterable, Optional

from panelflow.core.errors import ErrorPayload


READY = "ready"
EVALUATE = "evaluate"
SHUTDOWN = "shutdown"
COLUMNS = "columns"
ROW = "row"
DONE = "done"
ERROR = "error"

TERMINAL_TYPES = frozenset({DONE, ERROR})


class ProtocolViolation(ValueError):
    """Linha do stream que não é um registro válido do protocolo."""


def encode(message: Dict[str, Any]) -> str:
    return json.dumps(message, ensure_ascii=False, separators=(",", ":"), allow_nan=False) + "\n"


def decode(line: str) -> Dict[str, Any]:
    text = line.strip()
    if not text:
        raise ProtocolViolation("empty line")
    try:
        msg = json.loads(text)
    except json.JSONDecodeError as e:
        raise ProtocolViolation(f"invalid JSON record at column {e.colno}") from None
    if not isinstance(msg, dict) or not isinstance(msg.get("type"), str):
        raise ProtocolViolation("record must be an object with a string 'type'")
    return msg


def evaluate_request(
    *,
    request_id: str,
    panel_id: str,
    panel_kind: str,
    content: str,
    connector: Optional[Dict[str, Any]],
) -> Dict[str, Any]:
    return {
        "type": EVALUATE,
        "request_id": request_id,
        "panel": {"id": panel_id, "kind": panel_kind, "content": content},
        "connector": connector,
    }


def error_record(
    request_id: Optional[str],
    exc: BaseException,
    *,
    secrets: Iterable[Optional[str]] = (),
) -> Dict[str, Any]:
    payload = ErrorPayload.from_exception(exc, secrets=secrets)
    return {
        "type": ERROR,
        "request_id": request_id,
        "error": {"type": payload.type, "message": payload.message, "details": payload.details},
    }

# src/panelflow/runners/worker.py
"""
Worker de referência do protocolo NDJSON.

Executado como `python -m panelflow.runners.worker`. Anuncia `ready`,
processa um request `evaluate` por vez lendo stdin e responde no stdout
com `columns`, `row`* e um registro terminal (`done` ou `error`).

Runtimes em outras linguagens implementam o mesmo contrato descrito em
`panelflow.runners.protocol`; este worker existe para que o modo
subprocess seja testável sem toolchains externas.

Invariantes:
    - O stdout contém apenas registros do protocolo (logs vão para stderr)
    - Erros são redigidos com a senha do request antes de sair do worker
    - Um request malformado gera `error`, não derruba o worker

Limites explícitos:
    - Só atende tipos de conector com dialeto SQLAlchemy. BigQuery e
      Elasticsearch exigem um runtime externo; aqui respondem com
      UnsupportedModeError
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any, Dict, Optional, TextIO

from panelflow.connectors.info import ExecutionTarget
from panelflow.connectors.kinds import get_kind
from panelflow.core.exceptions import QueryError, RunnerCrashError, UnsupportedModeError
from panelflow.core.model.types import PanelKind

from . import protocol
from .executors import execute_in_process


logger = logging.getLogger("panelflow.worker")

RUNTIME = "python-worker"


def _write(stdout: TextIO, message: Dict[str, Any]) -> None:
    stdout.write(protocol.encode(message))
    stdout.flush()


def _ensure_served(target: ExecutionTarget) -> None:
    if get_kind(target.type).dialect is None:
        raise UnsupportedModeError(
            f"Connector type '{target.type}' is not served by the {RUNTIME} runtime",
            details={"type": target.type, "runtime": RUNTIME},
            hint="Configure um runner com runtime próprio para este tipo de conector.",
        )


def handle_request(message: Dict[str, Any], stdout: TextIO) -> None:
    request_id: Optional[str] = message.get("request_id")
    panel = message.get("panel")
    if not isinstance(panel, dict) or not isinstance(panel.get("content"), str):
        _write(stdout, protocol.error_record(request_id, QueryError("Malformed evaluate request: missing panel")))
        return

    wire = message.get("connector")
    target = ExecutionTarget.from_wire(wire) if isinstance(wire, dict) else None
    secrets = target.secrets() if target is not None else ()

    try:
        panel_kind = PanelKind(panel.get("kind", "database"))
        if panel_kind is PanelKind.DATABASE and target is not None:
            _ensure_served(target)
        record = execute_in_process(panel_kind, panel["content"], target)
    except Exception as e:  # every failure becomes an error record
        _write(stdout, protocol.error_record(request_id, e, secrets=secrets))
        return

    if record.columns:
        _write(stdout, {"type": protocol.COLUMNS, "request_id": request_id, "columns": record.columns})
    for row in record.rows:
        _write(stdout, {"type": protocol.ROW, "request_id": request_id, "row": row})
    _write(stdout, {"type": protocol.DONE, "request_id": request_id, "row_count": len(record.rows)})


def serve(stdin: TextIO, stdout: TextIO) -> int:
    _write(stdout, {"type": protocol.READY, "runtime": RUNTIME, "pid": os.getpid()})

    for line in stdin:
        if not line.strip():
            continue
        try:
            message = protocol.decode(line)
        except protocol.ProtocolViolation as e:
            _write(stdout, protocol.error_record(None, RunnerCrashError(f"Malformed request: {e}")))
            continue

        kind = message["type"]
        if kind == protocol.SHUTDOWN:
            break
        if kind != protocol.EVALUATE:
            _write(
                stdout,
                protocol.error_record(message.get("request_id"), QueryError(f"Unknown request type: {kind}")),
            )
            continue
        handle_request(message, stdout)

    logger.debug("worker %s exiting", os.getpid())
    return 0


def main() -> int:
    logging.basicConfig(
        stream=sys.stderr,
        level=os.environ.get("PANELFLOW_WORKER_LOG_LEVEL", "WARNING"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return serve(sys.stdin, sys.stdout)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())

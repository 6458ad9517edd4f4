# src/panelflow/runners/executors.py
"""
Execução in-process de painéis.

Este módulo é o "motor" compartilhado: o runner in-process chama
`execute_in_process` numa thread do engine, e o worker de referência
(`python -m panelflow.runners.worker`) chama exatamente a mesma função
dentro do subprocesso. Por isso o resultado é idêntico entre runners.

Painéis suportados:
    - database → SQLAlchemy (`exec_driver_sql`, conteúdo enviado verbatim)
    - file     → pandas (csv, json, jsonl, parquet, xlsx)

Classificação de erros:
    - falha ao abrir a conexão   → ConnectionError (ou AuthError quando
      a mensagem do driver indica credencial recusada)
    - driver ausente             → ConnectionError com hint de instalação
    - falha ao executar a query  → QueryError

Interrupção:
    - `ExecutionHandle.abort()` tenta interromper a query em andamento
      (sqlite3 `interrupt()`, psycopg2 `cancel()`); é best-effort e pode
      ser chamado de outra thread.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pandas as pd
from sqlalchemy import create_engine
from sqlalchemy.exc import ArgumentError, NoSuchModuleError, SQLAlchemyError
from sqlalchemy.pool import NullPool

from panelflow.connectors.info import ExecutionTarget
from panelflow.connectors.kinds import ConnectorKind, get_kind
from panelflow.core.exceptions import (
    AuthError,
    NotFoundError,
    PanelflowException,
    QueryError,
    SourceConnectionError,
    UnsupportedModeError,
)
from panelflow.core.model.types import PanelKind, ResultRecord

from .rows import normalize_row


logger = logging.getLogger(__name__)

_AUTH_MARKERS = (
    "authentication failed",
    "password authentication",
    "access denied",
    "login failed",
    "invalid password",
    "invalid username",
    "permission denied",
    "not authorized",
)

_FILE_READERS: Dict[str, Callable[[Path], pd.DataFrame]] = {
    ".csv": lambda p: pd.read_csv(p),
    ".tsv": lambda p: pd.read_csv(p, sep="\t"),
    ".json": lambda p: pd.read_json(p),
    ".jsonl": lambda p: pd.read_json(p, lines=True),
    ".ndjson": lambda p: pd.read_json(p, lines=True),
    ".parquet": lambda p: pd.read_parquet(p),
    ".xlsx": lambda p: pd.read_excel(p),
}


class ExecutionHandle:
    """Ponte thread-safe para interromper a query corrente."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._dbapi: Any = None
        self.aborted = False

    def bind(self, dbapi_connection: Any) -> None:
        with self._lock:
            self._dbapi = dbapi_connection
            aborted = self.aborted
        if aborted:
            self._interrupt(dbapi_connection)

    def unbind(self) -> None:
        with self._lock:
            self._dbapi = None

    def abort(self) -> None:
        with self._lock:
            self.aborted = True
            dbapi = self._dbapi
        if dbapi is not None:
            self._interrupt(dbapi)

    @staticmethod
    def _interrupt(dbapi: Any) -> None:
        for name in ("interrupt", "cancel"):
            fn = getattr(dbapi, name, None)
            if callable(fn):
                try:
                    fn()
                except Exception as e:  # driver-specific errors
                    logger.debug("interrupt via %s failed: %s", name, type(e).__name__)
                return


def _source_message(exc: BaseException) -> str:
    orig = getattr(exc, "orig", None)
    text = str(orig if orig is not None else exc).strip()
    return text.splitlines()[0] if text else type(exc).__name__


def _connection_failure(kind: ConnectorKind, target: ExecutionTarget, exc: BaseException) -> PanelflowException:
    message = _source_message(exc)
    details = {"connector_id": target.connector_id, "type": kind.type, "phase": "connect"}
    if any(m in message.lower() for m in _AUTH_MARKERS):
        return AuthError(f"{kind.label} rejected the credentials: {message}", details=details)
    return SourceConnectionError(f"Could not connect to {kind.label}: {message}", details=details)


def _execute_database(content: str, target: Optional[ExecutionTarget], handle: ExecutionHandle) -> ResultRecord:
    if target is None:
        raise NotFoundError("Database panel has no connector", hint="Associe o painel a um conector.")

    kind = get_kind(target.type)
    url = kind.sqlalchemy_url(target)

    try:
        engine = create_engine(url, poolclass=NullPool)
    except (NoSuchModuleError, ImportError, ArgumentError) as e:
        raise SourceConnectionError(
            f"{kind.label} driver is not available: {_source_message(e)}",
            details={"connector_id": target.connector_id, "type": kind.type, "dialect": kind.dialect},
            hint="Instale o extra de drivers correspondente (ex.: pip install panelflow[postgres]).",
        ) from None

    try:
        try:
            conn = engine.connect()
        except (SQLAlchemyError, ImportError) as e:
            raise _connection_failure(kind, target, e) from None

        with conn:
            handle.bind(conn.connection.dbapi_connection)
            try:
                result = conn.exec_driver_sql(content)
                if result.returns_rows:
                    columns: List[str] = [str(c) for c in result.keys()]
                    rows = [normalize_row(columns, r) for r in result]
                else:
                    columns, rows = [], []
                conn.commit()
            except SQLAlchemyError as e:
                raise QueryError(
                    _source_message(e),
                    details={"connector_id": target.connector_id, "type": kind.type, "phase": "execute"},
                ) from None
            finally:
                handle.unbind()
    finally:
        engine.dispose()

    return ResultRecord.from_rows(rows, columns)


def _execute_file(content: str) -> ResultRecord:
    path = Path(content.strip()).expanduser()
    reader = _FILE_READERS.get(path.suffix.lower())
    if reader is None:
        raise QueryError(
            f"Unsupported file type: {path.suffix or '<none>'}",
            details={"path": str(path), "supported": sorted(_FILE_READERS)},
        )
    if not path.is_file():
        raise NotFoundError(f"File not found: {path}", details={"path": str(path)})

    try:
        df = reader(path)
    except (ValueError, OSError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise QueryError(f"Could not read {path.name}: {e}", details={"path": str(path)}) from None

    columns = [str(c) for c in df.columns]
    records = json.loads(df.to_json(orient="records", date_format="iso", force_ascii=False))
    rows = [normalize_row(columns, (r.get(c) for c in columns)) for r in records]
    return ResultRecord.from_rows(rows, columns)


def execute_in_process(
    panel_kind: PanelKind,
    content: str,
    target: Optional[ExecutionTarget],
    handle: Optional[ExecutionHandle] = None,
) -> ResultRecord:
    """Executa um painel no processo corrente e devolve linhas normalizadas."""
    kind = PanelKind(panel_kind)
    if kind is PanelKind.DATABASE:
        return _execute_database(content, target, handle or ExecutionHandle())
    if kind is PanelKind.FILE:
        return _execute_file(content)
    raise UnsupportedModeError(
        f"Panels of kind '{kind.value}' are not executed by this engine",
        details={"panel_kind": kind.value},
    )

# tests/runners/test_executors.py
"""
Testes da execução in-process (SQLAlchemy + pandas).

Valida a classificação de erros da fonte:
    - conexão impossível → ConnectionError
    - SQL rejeitado      → QueryError (mensagem da fonte preservada)
    - arquivo ausente    → NotFoundError
"""

import json

import pytest

from panelflow.connectors import ExecutionTarget
from panelflow.core.exceptions import (
    NotFoundError,
    QueryError,
    SourceConnectionError,
    UnsupportedModeError,
)
from panelflow.core.model import PanelKind
from panelflow.runners import execute_in_process


@pytest.fixture
def target(sqlite_db):
    return ExecutionTarget(connector_id="local", type="sqlite", database=str(sqlite_db))


def test_select_returns_rows_in_order(target):
    record = execute_in_process(PanelKind.DATABASE, "SELECT id, name FROM people ORDER BY id", target)
    assert record.columns == ["id", "name"]
    assert record.rows == [
        {"id": 1, "name": "ana"},
        {"id": 2, "name": "bruno"},
        {"id": 3, "name": "carla"},
    ]


def test_statement_without_rows(target):
    record = execute_in_process(PanelKind.DATABASE, "CREATE TABLE extra (x INTEGER)", target)
    assert record.rows == []
    assert record.ok


def test_writes_are_committed(target):
    execute_in_process(PanelKind.DATABASE, "INSERT INTO numbers VALUES (6)", target)
    record = execute_in_process(PanelKind.DATABASE, "SELECT COUNT(*) AS c FROM numbers", target)
    assert record.rows == [{"c": 6}]


def test_query_error_keeps_source_message(target):
    with pytest.raises(QueryError) as exc:
        execute_in_process(PanelKind.DATABASE, "SELECT * FROM missing_table", target)
    assert "no such table: missing_table" in exc.value.message
    assert exc.value.details["phase"] == "execute"


def test_unreachable_database_is_connection_error(tmp_path):
    bad = ExecutionTarget(connector_id="x", type="sqlite", database=str(tmp_path / "no" / "dir.sqlite"))
    with pytest.raises(SourceConnectionError):
        execute_in_process(PanelKind.DATABASE, "SELECT 1", bad)


def test_missing_driver_is_connection_error():
    pg = ExecutionTarget(connector_id="pg", type="postgres", host="localhost", port=5432, database="d")
    try:
        import psycopg2  # noqa: F401
    except ImportError:
        with pytest.raises(SourceConnectionError) as exc:
            execute_in_process(PanelKind.DATABASE, "SELECT 1", pg)
        assert exc.value.hint
    else:
        pytest.skip("psycopg2 instalado: o caminho de driver ausente não é exercitável")


def test_database_panel_without_target():
    with pytest.raises(NotFoundError):
        execute_in_process(PanelKind.DATABASE, "SELECT 1", None)


def test_csv_file_panel(tmp_path):
    path = tmp_path / "sales.csv"
    path.write_text("region,total\nnorte,10\nsul,2.5\n", encoding="utf-8")
    record = execute_in_process(PanelKind.FILE, str(path), None)
    assert record.columns == ["region", "total"]
    assert record.rows == [{"region": "norte", "total": 10.0}, {"region": "sul", "total": 2.5}]


def test_jsonl_file_panel_with_missing_values(tmp_path):
    path = tmp_path / "events.jsonl"
    path.write_text(json.dumps({"a": 1, "b": "x"}) + "\n" + json.dumps({"a": 2}) + "\n", encoding="utf-8")
    record = execute_in_process(PanelKind.FILE, f"  {path}\n", None)
    assert record.rows == [{"a": 1, "b": "x"}, {"a": 2, "b": None}]


def test_missing_file_is_not_found(tmp_path):
    with pytest.raises(NotFoundError):
        execute_in_process(PanelKind.FILE, str(tmp_path / "nope.csv"), None)


def test_unsupported_file_type(tmp_path):
    path = tmp_path / "data.xml"
    path.write_text("<a/>", encoding="utf-8")
    with pytest.raises(QueryError):
        execute_in_process(PanelKind.FILE, str(path), None)


@pytest.mark.parametrize("kind", [PanelKind.HTTP, PanelKind.PROGRAM])
def test_http_and_program_panels_are_unsupported(kind):
    with pytest.raises(UnsupportedModeError):
        execute_in_process(kind, "GET /", None)


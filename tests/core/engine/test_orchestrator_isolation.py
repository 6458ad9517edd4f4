# tests/core/engine/test_orchestrator_isolation.py
"""
Testes do Orchestrator: resultado por painel e isolamento de falhas.

Este módulo valida o comportamento observável de `evaluate`:

    - cada painel termina em `done`, `error` ou `cancelled`
    - o resultado de cada painel é gravado no Result Store
    - a falha de um painel não interrompe os irmãos
    - dependentes de um painel com falha terminam com DependencyFailedError
      sem dispatch
    - violações de contrato do chamador são fatais e nada é gravado

Limites explícitos:
    - Dependências externas e ciclos: ver test_orchestrator_dependencies
    - Runners subprocess: ver test_orchestrator_runners
"""

import json

import pytest

from panelflow.core.engine import EvaluationOptions, Orchestrator
from panelflow.core.exceptions import EngineConfigurationError, VaultKeyMissingError
from panelflow.core.model import Panel, PanelKind, PanelStatus, Project
from panelflow.core.traceability import load_manifest
from panelflow.vault import CredentialVault


def _db(pid, sql):
    return Panel(id=pid, kind=PanelKind.DATABASE, content=sql, connector_id="local")


def _read(store, project, pid):
    return json.loads(store.results_file(project.id, pid).read_text(encoding="utf-8"))


def test_single_panel_done(orchestrator, store):
    project = Project(name="demo", panels=[_db("a", "SELECT 42 AS number")])
    result = orchestrator.evaluate(project)

    assert result.ok
    assert result.statuses() == {"a": PanelStatus.DONE}
    assert result.panels["a"].row_count == 1
    assert store.results_file("demo", "a").read_text(encoding="utf-8") == '[{"number":42}]'

    panel = project.panel("a")
    assert panel.status is PanelStatus.DONE
    assert panel.last_result_meta.status is PanelStatus.DONE
    assert panel.last_result_meta.row_count == 1
    assert store.read_meta("demo", "a") == panel.last_result_meta


def test_failure_is_isolated_and_dependents_fail(orchestrator, store):
    """
    a → done; b → QueryError; c depende de b → DependencyFailedError;
    d depende de a → done com o valor de a embutido via template.
    """
    project = Project(
        name="demo",
        panels=[
            _db("a", "SELECT 3 AS m"),
            _db("b", "SELECT * FROM does_not_exist"),
            _db("c", "SELECT {{ DM_getPanel('b') | length }} AS k"),
            _db("d", "SELECT n FROM numbers WHERE n > {{ DM_getPanel('a')[0]['m'] }} ORDER BY n"),
        ],
    )
    result = orchestrator.evaluate(project)

    assert result.statuses() == {
        "a": PanelStatus.DONE,
        "b": PanelStatus.ERROR,
        "c": PanelStatus.ERROR,
        "d": PanelStatus.DONE,
    }
    assert result.failed() == ["b", "c"]
    assert result.panels["b"].error.type == "QueryError"
    assert "no such table: does_not_exist" in result.panels["b"].error.message
    assert result.panels["c"].error.type == "DependencyFailedError"
    assert result.panels["c"].error.details["failed_dependencies"] == ["b"]

    assert _read(store, project, "d") == [{"n": 4}, {"n": 5}]
    assert _read(store, project, "b")["error"]["type"] == "QueryError"
    assert _read(store, project, "c")["error"]["type"] == "DependencyFailedError"
    assert store.read_meta("demo", "d").inputs.keys() == {"a"}


def test_transitive_dependents_fail(orchestrator):
    project = Project(
        name="demo",
        panels=[
            _db("a", "SELECT broken syntax here"),
            _db("b", "SELECT {{ DM_getPanel('a') | length }}"),
            _db("c", "SELECT {{ DM_getPanel('b') | length }}"),
        ],
    )
    result = orchestrator.evaluate(project)
    assert [result.panels[p].error.type for p in ("a", "b", "c")] == [
        "QueryError",
        "DependencyFailedError",
        "DependencyFailedError",
    ]


def test_selection_limits_evaluated_panels(orchestrator, store):
    project = Project(name="demo", panels=[_db("a", "SELECT 1 AS x"), _db("b", "SELECT 2 AS x")])
    result = orchestrator.evaluate(project, EvaluationOptions(panel_selection=["b"]))
    assert list(result.panels) == ["b"]
    assert not store.exists("demo", "a")
    assert project.panel("a").status is PanelStatus.UNEVALUATED


def test_missing_connector_is_panel_error(orchestrator):
    project = Project(name="demo", panels=[Panel(id="a", content="SELECT 1", connector_id="ghost")])
    result = orchestrator.evaluate(project)
    assert result.panels["a"].error.type == "NotFoundError"


def test_unsupported_panel_kind_is_panel_error(orchestrator, store):
    project = Project(name="demo", panels=[Panel(id="h", kind=PanelKind.HTTP, content="GET https://x")])
    result = orchestrator.evaluate(project)
    assert result.panels["h"].error.type == "UnsupportedModeError"
    assert _read(store, project, "h")["error"]["type"] == "UnsupportedModeError"


def test_template_error_is_query_error(orchestrator):
    project = Project(name="demo", panels=[_db("a", "SELECT {{ 1 + }}")])
    result = orchestrator.evaluate(project)
    assert result.panels["a"].error.type == "QueryError"
    assert result.panels["a"].error.details["phase"] == "template"


def test_timeout_is_panel_error(orchestrator):
    endless = "WITH RECURSIVE c(x) AS (SELECT 1 UNION ALL SELECT x + 1 FROM c) SELECT COUNT(*) FROM c"
    project = Project(name="demo", panels=[_db("slow", endless), _db("fast", "SELECT 1 AS x")])
    result = orchestrator.evaluate(project, EvaluationOptions(timeout_per_panel=0.5))
    assert result.panels["slow"].error.type == "TimeoutError"
    assert result.panels["fast"].status is PanelStatus.DONE


def test_manifest_is_saved(orchestrator, store):
    project = Project(name="demo", panels=[_db("a", "SELECT 1 AS x"), _db("b", "SELECT nope")])
    result = orchestrator.evaluate(project)

    manifest = load_manifest(store.manifest_file("demo"))
    assert manifest.run["run_id"] == result.run_id
    assert manifest.run["finished_at"] is not None
    assert manifest.inputs["runner"] == "in-process"
    assert manifest.panels["a"]["status"] == "done"
    assert manifest.panels["b"]["error_type"] == "QueryError"
    assert manifest.events[-1]["event_type"] == "evaluation_finished"


def test_unknown_runner_is_fatal(orchestrator, store):
    project = Project(name="demo", panels=[_db("a", "SELECT 1")])
    with pytest.raises(EngineConfigurationError):
        orchestrator.evaluate(project, EvaluationOptions(runner="cobol-worker"))
    assert not store.results_dir.exists()


def test_unknown_selected_panel_is_fatal(orchestrator):
    project = Project(name="demo", panels=[_db("a", "SELECT 1")])
    with pytest.raises(EngineConfigurationError):
        orchestrator.evaluate(project, EvaluationOptions(panel_selection=["a", "zzz"]))


@pytest.mark.parametrize(
    "options",
    [
        EvaluationOptions(concurrency_limit=0),
        EvaluationOptions(timeout_per_panel=-1),
        EvaluationOptions(panel_selection="some"),
    ],
)
def test_invalid_options_are_fatal(orchestrator, options):
    project = Project(name="demo", panels=[_db("a", "SELECT 1")])
    with pytest.raises(EngineConfigurationError):
        orchestrator.evaluate(project, options)


def test_vault_without_key_is_fatal(registry, store, engine_config, dispatch):
    orch = Orchestrator(registry=registry, vault=CredentialVault(), store=store, config=engine_config, dispatch=dispatch)
    project = Project(name="demo", panels=[_db("a", "SELECT 1")])
    with pytest.raises(VaultKeyMissingError):
        orch.evaluate(project)
    assert not store.exists("demo", "a")


def test_vault_without_key_is_fine_for_file_panels(registry, store, engine_config, dispatch, tmp_path):
    path = tmp_path / "f.csv"
    path.write_text("x\n1\n", encoding="utf-8")
    orch = Orchestrator(registry=registry, vault=CredentialVault(), store=store, config=engine_config, dispatch=dispatch)
    project = Project(name="demo", panels=[Panel(id="f", kind=PanelKind.FILE, content=str(path))])
    assert orch.evaluate(project).ok


def test_reevaluation_overwrites(orchestrator, store):
    project = Project(name="demo", panels=[_db("a", "SELECT 1 AS v")])
    orchestrator.evaluate(project)
    project.panel("a").content = "SELECT 2 AS v"
    orchestrator.evaluate(project)
    assert store.read("demo", "a").rows == [{"v": 2}]


def test_failed_result_write_of_dependent_is_panel_error(orchestrator, store):
    """O id `a/b` é recusado pelo Result Store: o erro fica no painel, não escapa de evaluate."""
    project = Project(
        name="demo",
        panels=[
            _db("x", "SELECT * FROM nope"),
            _db("a/b", "SELECT {{ DM_getPanel('x') | length }} AS k"),
        ],
    )
    result = orchestrator.evaluate(project)

    assert result.statuses() == {"x": PanelStatus.ERROR, "a/b": PanelStatus.ERROR}
    assert result.panels["a/b"].error.type == "EngineConfigurationError"
    assert load_manifest(store.manifest_file("demo")).panels["a/b"]["status"] == "error"


def test_store_oserror_is_isolated(orchestrator, store, monkeypatch):
    original = store.write

    def flaky_write(project_id, panel_id, record):
        if panel_id == "b":
            raise OSError(28, "No space left on device")
        return original(project_id, panel_id, record)

    monkeypatch.setattr(store, "write", flaky_write)
    project = Project(
        name="demo",
        panels=[
            _db("a", "SELECT 1 AS v"),
            _db("b", "SELECT 2 AS v"),
            _db("c", "SELECT {{ DM_getPanel('b') | length }} AS k"),
        ],
    )
    result = orchestrator.evaluate(project)

    assert result.statuses() == {"a": PanelStatus.DONE, "b": PanelStatus.ERROR, "c": PanelStatus.ERROR}
    assert "No space left on device" in result.panels["b"].error.message
    assert result.panels["b"].row_count == 0
    assert result.panels["c"].error.type == "DependencyFailedError"
    assert not store.exists("demo", "b")

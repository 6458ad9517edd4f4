# tests/core/engine/test_orchestrator_dependencies.py
"""
Testes do Orchestrator: dependências externas, ciclos e staleness.

Decisões validadas:
    - Referência a painel fora da seleção usa o último resultado `done`
      persistido (lido no início do dispatch do dependente)
    - Sem resultado `done` persistido → UnresolvedDependencyError, sem dispatch
    - Id inexistente → NotFoundError
    - Ciclo → CyclicDependencyError nos membros; dependentes do ciclo
      terminam com DependencyFailedError
    - Input desatualizado não falha: vira warning + `stale_inputs`
"""

import time

from panelflow.core.engine import EvaluationOptions
from panelflow.core.model import Panel, PanelKind, PanelStatus, Project


def _db(pid, sql):
    return Panel(id=pid, kind=PanelKind.DATABASE, content=sql, connector_id="local")


def _project():
    return Project(
        name="deps",
        panels=[
            _db("limit", "SELECT 2 AS k"),
            _db("top", "SELECT n FROM numbers ORDER BY n LIMIT {{ DM_getPanel('limit')[0]['k'] }}"),
        ],
    )


def test_external_dependency_uses_persisted_result(orchestrator, store):
    project = _project()
    orchestrator.evaluate(project, EvaluationOptions(panel_selection=["limit"]))
    result = orchestrator.evaluate(project, EvaluationOptions(panel_selection=["top"]))

    assert result.panels["top"].status is PanelStatus.DONE
    assert store.read("deps", "top").rows == [{"n": 1}, {"n": 2}]
    meta = store.read_meta("deps", "top")
    assert meta.inputs == {"limit": store.read_meta("deps", "limit").evaluated_at}


def test_external_dependency_without_result_is_unresolved(orchestrator, store):
    project = _project()
    result = orchestrator.evaluate(project, EvaluationOptions(panel_selection=["top"]))
    outcome = result.panels["top"]
    assert outcome.status is PanelStatus.ERROR
    assert outcome.error.type == "UnresolvedDependencyError"
    assert outcome.error.details["referenced_panel"] == "limit"
    assert store.read("deps", "top").error.type == "UnresolvedDependencyError"


def test_external_dependency_with_error_result_is_unresolved(orchestrator):
    project = _project()
    project.panel("limit").content = "SELECT * FROM nowhere"
    orchestrator.evaluate(project, EvaluationOptions(panel_selection=["limit"]))
    result = orchestrator.evaluate(project, EvaluationOptions(panel_selection=["top"]))
    assert result.panels["top"].error.type == "UnresolvedDependencyError"


def test_unknown_reference_is_not_found(orchestrator):
    project = Project(name="deps", panels=[_db("a", "SELECT {{ DM_getPanel('ghost') | length }}")])
    result = orchestrator.evaluate(project)
    assert result.panels["a"].error.type == "NotFoundError"
    assert result.panels["a"].error.details["unknown"] == ["ghost"]


def test_cycle_members_and_downstream(orchestrator, store):
    project = Project(
        name="cyc",
        panels=[
            _db("a", "SELECT {{ DM_getPanel('b') | length }}"),
            _db("b", "SELECT {{ DM_getPanel('a') | length }}"),
            _db("c", "SELECT {{ DM_getPanel('b') | length }}"),
            _db("free", "SELECT 1 AS x"),
        ],
    )
    result = orchestrator.evaluate(project)

    assert result.panels["a"].error.type == "CyclicDependencyError"
    assert result.panels["b"].error.type == "CyclicDependencyError"
    assert result.panels["a"].error.details["cycle"] == ["a", "b"]
    assert result.panels["c"].error.type == "DependencyFailedError"
    assert result.panels["free"].status is PanelStatus.DONE
    assert store.read("cyc", "a").error.type == "CyclicDependencyError"
    assert list(result.panels) == ["a", "b", "c", "free"]


def test_stale_input_is_a_warning(orchestrator, store):
    """
    `mid` foi calculado a partir de `base`; `base` é reavaliado sozinho;
    `leaf` (que lê `mid`) ainda roda, mas registra o input desatualizado.
    """
    project = Project(
        name="stale",
        panels=[
            _db("base", "SELECT 1 AS v"),
            _db("mid", "SELECT {{ DM_getPanel('base')[0]['v'] }} AS v"),
            _db("leaf", "SELECT {{ DM_getPanel('mid')[0]['v'] }} + 1 AS v"),
        ],
    )
    first = orchestrator.evaluate(project)
    assert first.ok
    assert first.panels["leaf"].warnings == []

    time.sleep(0.01)
    orchestrator.evaluate(project, EvaluationOptions(panel_selection=["base"]))
    result = orchestrator.evaluate(project, EvaluationOptions(panel_selection=["leaf"]))

    outcome = result.panels["leaf"]
    assert outcome.status is PanelStatus.DONE
    assert len(outcome.warnings) == 1
    assert "mid" in outcome.warnings[0]
    assert store.read_meta("stale", "leaf").stale_inputs == ["mid"]


def test_dependency_order_in_single_run(orchestrator, store):
    project = Project(
        name="chain",
        panels=[
            _db("c", "SELECT {{ DM_getPanel('b')[0]['v'] }} * 10 AS v"),
            _db("b", "SELECT {{ DM_getPanel('a')[0]['v'] }} + 1 AS v"),
            _db("a", "SELECT 1 AS v"),
        ],
    )
    result = orchestrator.evaluate(project, EvaluationOptions(concurrency_limit=3))
    assert result.ok
    assert store.read("chain", "c").rows == [{"v": 20}]

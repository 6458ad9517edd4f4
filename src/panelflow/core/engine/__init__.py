# src/panelflow/core/engine/__init__.py
"""
Engine de avaliação do panelflow.

Componentes:
    - planner      → extrai referências DM_getPanel e ordena o grafo
    - templating   → renderiza o conteúdo com os snapshots dos inputs
    - orchestrator → agenda, despacha, persiste e consolida a avaliação

Princípios fundamentais:
    - Planejamento acontece antes de qualquer dispatch
    - A ordem é determinística para o mesmo projeto e seleção
    - Falhas de painel ficam isoladas no painel e em seus dependentes
"""

from .orchestrator import (
    EvaluationOptions,
    EvaluationResult,
    Orchestrator,
    PanelOutcome,
    evaluate,
)
from .planner import EvaluationPlan, extract_references, plan_evaluation
from .templating import render_panel_content

__all__ = [
    "EvaluationOptions",
    "EvaluationResult",
    "Orchestrator",
    "PanelOutcome",
    "evaluate",
    "EvaluationPlan",
    "extract_references",
    "plan_evaluation",
    "render_panel_content",
]

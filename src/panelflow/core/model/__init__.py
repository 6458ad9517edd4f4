# src/panelflow/core/model/__init__.py
"""
Modelo de dados do panelflow.

Reúne o shape em memória de projetos e painéis e os tipos trocados entre
os componentes do engine:
    - project → Project, Panel
    - types   → PanelKind, PanelStatus, RunnerMode, RunnerDescriptor,
                ResultRecord, ResultMeta

Limites explícitos:
    - Não define formato de arquivo de projeto (responsabilidade do storage)
    - Não executa nem persiste nada
"""

from .project import Panel, Project
from .types import (
    PanelKind,
    PanelStatus,
    ResultMeta,
    ResultRecord,
    RunnerDescriptor,
    RunnerMode,
)

__all__ = [
    "Panel",
    "Project",
    "PanelKind",
    "PanelStatus",
    "ResultMeta",
    "ResultRecord",
    "RunnerDescriptor",
    "RunnerMode",
]

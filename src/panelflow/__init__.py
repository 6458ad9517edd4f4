# src/panelflow/__init__.py
"""
panelflow — engine de avaliação de painéis e dispatch de runners.

Um projeto é uma coleção ordenada de painéis (consultas a bancos,
leitura de arquivos). O panelflow avalia esses painéis contra data
sources externos, em paralelo quando possível, respeitando as
dependências declaradas entre eles via `DM_getPanel("<id>")`, e grava o
último resultado de cada painel em disco como um documento JSON.

Arquitetura em alto nível:
    - vault      → cifra e decifra segredos de conectores (chave global)
    - connectors → catálogo de tipos e registro de conectores
    - runners    → dispatch in-process e workers em subprocesso (NDJSON)
    - store      → arquivo de resultado por (projeto, painel), escrita atômica
    - core       → modelo, configuração, planner, orchestrator e manifest

Limites explícitos:
    - Não contém UI, editor ou servidor HTTP
    - Não implementa os runtimes externos (apenas o worker Python de referência)
"""

__version__ = "0.1.0"

from panelflow.connectors import ConnectorInfo, ConnectorRegistry, ExecutionTarget
from panelflow.core.config import EngineConfig, load_config
from panelflow.core.engine import (
    EvaluationOptions,
    EvaluationResult,
    Orchestrator,
    PanelOutcome,
    evaluate,
)
from panelflow.core.model import Panel, PanelKind, PanelStatus, Project, ResultRecord, RunnerDescriptor, RunnerMode
from panelflow.runners import RunnerDispatch, WorkerPool
from panelflow.store import ResultStore
from panelflow.vault import CredentialVault, EncryptedSecret, MasterKey

__all__ = [
    "__version__",
    "ConnectorInfo",
    "ConnectorRegistry",
    "ExecutionTarget",
    "EngineConfig",
    "load_config",
    "EvaluationOptions",
    "EvaluationResult",
    "Orchestrator",
    "PanelOutcome",
    "evaluate",
    "Panel",
    "PanelKind",
    "PanelStatus",
    "Project",
    "ResultRecord",
    "RunnerDescriptor",
    "RunnerMode",
    "RunnerDispatch",
    "WorkerPool",
    "ResultStore",
    "CredentialVault",
    "EncryptedSecret",
    "MasterKey",
]

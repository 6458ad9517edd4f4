"""
Connector Registry do panelflow.

Componentes:
    - info     → ConnectorInfo (persistível, segredo cifrado) e ExecutionTarget
    - kinds    → catálogo fechado de tipos de conector e suas capacidades
    - registry → resolução por id, verificação de modo e teste de conexão
"""

from .info import ConnectorInfo, ExecutionTarget
from .kinds import KINDS, ConnectorKind, get_kind
from .registry import ConnectionTestResult, ConnectorRegistry

__all__ = [
    "ConnectorInfo",
    "ExecutionTarget",
    "KINDS",
    "ConnectorKind",
    "get_kind",
    "ConnectionTestResult",
    "ConnectorRegistry",
]

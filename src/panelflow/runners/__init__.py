"""
Runner Dispatch do panelflow.

Componentes:
    - dispatch    → RunnerDispatch (ponto único de execução)
    - executors   → execução in-process (SQLAlchemy / pandas)
    - worker_pool → processos worker e pool limitado por runner
    - protocol    → contrato NDJSON engine ↔ worker
    - rows        → normalização de valores para JSON
    - worker      → worker de referência (`python -m panelflow.runners.worker`)
"""

from .dispatch import RunnerDispatch
from .executors import ExecutionHandle, execute_in_process
from .worker_pool import WorkerPool, WorkerProcess, WorkerState

__all__ = [
    "RunnerDispatch",
    "ExecutionHandle",
    "execute_in_process",
    "WorkerPool",
    "WorkerProcess",
    "WorkerState",
]

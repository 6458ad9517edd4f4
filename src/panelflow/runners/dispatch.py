# src/panelflow/runners/dispatch.py
"""
Runner Dispatch.

Encaminha a execução de um painel para o backend descrito pelo
`RunnerDescriptor` e devolve sempre um `ResultRecord`, qualquer que seja
o modo:

    - in-process → `execute_in_process` numa thread auxiliar do engine;
      a thread chamadora impõe timeout e cancelamento e, ao desistir,
      pede interrupção best-effort da query em andamento
    - subprocess → um worker do `WorkerPool`, via protocolo NDJSON

Invariantes:
    - O modo do runner é validado contra o tipo de conector antes de
      qualquer execução (UnsupportedModeError)
    - Timeout e cancelamento produzem TimeoutError / CancelledError
    - O texto plano do segredo existe apenas no ExecutionTarget e no
      request enviado ao worker; nunca é registrado em log
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from typing import Any, Dict, Optional

from panelflow.connectors.info import ExecutionTarget
from panelflow.connectors.kinds import get_kind
from panelflow.core.exceptions import (
    EvaluationCancelledError,
    EvaluationTimeoutError,
    UnsupportedModeError,
)
from panelflow.core.model.types import PanelKind, ResultRecord, RunnerDescriptor, RunnerMode

from . import protocol
from .executors import ExecutionHandle, execute_in_process
from .worker_pool import WorkerPool


logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.05
_EXECUTABLE_KINDS = frozenset({PanelKind.DATABASE, PanelKind.FILE})


class RunnerDispatch:
    """Ponto único de execução de painéis, independente do runner."""

    def __init__(self, *, pool: Optional[WorkerPool] = None, grace_period: float = 5.0):
        self.grace_period = grace_period
        self.pool = pool if pool is not None else WorkerPool(grace_period=grace_period)

    def execute(
        self,
        *,
        panel_kind: PanelKind,
        content: str,
        target: Optional[ExecutionTarget],
        runner: RunnerDescriptor,
        timeout: float,
        cancel: Optional[threading.Event] = None,
        panel_id: str = "",
    ) -> ResultRecord:
        runner.validate()
        kind = PanelKind(panel_kind)
        if kind not in _EXECUTABLE_KINDS:
            raise UnsupportedModeError(
                f"Panels of kind '{kind.value}' are not executed by this engine",
                details={"panel_id": panel_id, "panel_kind": kind.value},
            )
        if target is not None:
            get_kind(target.type).ensure_mode(runner.mode)

        logger.debug("dispatch panel=%s kind=%s runner=%s", panel_id, kind.value, runner.name)
        if runner.mode is RunnerMode.IN_PROCESS:
            return self._run_in_process(kind, content, target, timeout=timeout, cancel=cancel, panel_id=panel_id)
        return self._run_subprocess(kind, content, target, runner, timeout=timeout, cancel=cancel, panel_id=panel_id)

    def _run_in_process(
        self,
        kind: PanelKind,
        content: str,
        target: Optional[ExecutionTarget],
        *,
        timeout: float,
        cancel: Optional[threading.Event],
        panel_id: str,
    ) -> ResultRecord:
        handle = ExecutionHandle()
        outcome: Dict[str, Any] = {}

        def _work() -> None:
            try:
                outcome["result"] = execute_in_process(kind, content, target, handle)
            except BaseException as e:  # re-raised in the calling thread
                outcome["error"] = e

        worker = threading.Thread(target=_work, name=f"panelflow-inprocess-{panel_id}", daemon=True)
        worker.start()

        deadline = time.monotonic() + timeout
        while worker.is_alive():
            if cancel is not None and cancel.is_set():
                handle.abort()
                worker.join(self.grace_period)
                raise EvaluationCancelledError(
                    f"Evaluation of panel '{panel_id}' was cancelled",
                    details={"panel_id": panel_id},
                )
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                handle.abort()
                worker.join(self.grace_period)
                raise EvaluationTimeoutError(
                    f"Panel '{panel_id}' exceeded the timeout of {timeout:g}s",
                    details={"panel_id": panel_id, "timeout": timeout},
                )
            worker.join(min(remaining, _POLL_INTERVAL))

        if "error" in outcome:
            raise outcome["error"]
        return outcome["result"]

    def _run_subprocess(
        self,
        kind: PanelKind,
        content: str,
        target: Optional[ExecutionTarget],
        runner: RunnerDescriptor,
        *,
        timeout: float,
        cancel: Optional[threading.Event],
        panel_id: str,
    ) -> ResultRecord:
        started = time.monotonic()
        worker = self.pool.acquire(runner, timeout=timeout, cancel=cancel)
        try:
            request = protocol.evaluate_request(
                request_id=uuid.uuid4().hex,
                panel_id=panel_id,
                panel_kind=kind.value,
                content=content,
                connector=target.to_wire() if target is not None else None,
            )
            remaining = max(timeout - (time.monotonic() - started), 0.001)
            try:
                return worker.run(
                    request,
                    timeout=remaining,
                    cancel=cancel,
                    grace=self.grace_period,
                    secrets=target.secrets() if target is not None else (),
                )
            except EvaluationTimeoutError:
                raise EvaluationTimeoutError(
                    f"Panel '{panel_id}' exceeded the timeout of {timeout:g}s on runner '{runner.name}'",
                    details={"panel_id": panel_id, "runner": runner.name, "timeout": timeout},
                ) from None
        finally:
            self.pool.release(worker)

    def shutdown(self) -> None:
        self.pool.shutdown()

# src/panelflow/runners/worker_pool.py
"""
Processos worker e pool por runner.

Ciclo de vida de um worker (máquina de estados explícita):

    SPAWNED → READY → BUSY → READY        (reuso após registro terminal)
                      BUSY → DRAINING → TERMINATED
                             (timeout, cancelamento, crash, shutdown)

Responsabilidades do módulo:
    - Iniciar o executável do runner e aguardar o anúncio `ready`
    - Enviar um request e consumir o stream NDJSON até o registro terminal
    - Impor deadline e cancelamento durante a leitura do stream
    - Encerrar com SIGTERM, aguardar o grace period e então SIGKILL
    - Manter no máximo `max_workers_per_runner` processos vivos por runner

Decisões arquiteturais:
    - stdout é lido por uma thread dedicada que alimenta uma fila, o que
      permite esperar com timeout sem bloquear o engine
    - stderr é drenado continuamente; as últimas linhas entram no detalhe
      de um RunnerCrashError (redigidas)
    - Um worker só volta ao pool em READY e vivo
"""

from __future__ import annotations

import logging
import queue
import subprocess
import threading
import time
from collections import deque
from contextlib import contextmanager, suppress
from enum import Enum
from typing import Any, Deque, Dict, Iterator, List, Optional, Sequence

from panelflow.core.errors import redact
from panelflow.core.exceptions import (
    EngineConfigurationError,
    EvaluationCancelledError,
    EvaluationTimeoutError,
    PanelflowException,
    RunnerCrashError,
    exception_for_code,
)
from panelflow.core.model.types import ResultRecord, RunnerDescriptor

from . import protocol
from .rows import normalize_mapping


logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.05
_EOF = object()
_STDERR_TAIL = 50


class WorkerState(str, Enum):
    SPAWNED = "spawned"
    READY = "ready"
    BUSY = "busy"
    DRAINING = "draining"
    TERMINATED = "terminated"


class WorkerProcess:
    """Um processo worker de um runner subprocess."""

    def __init__(self, descriptor: RunnerDescriptor, *, ready_timeout: float = 15.0):
        self.descriptor = descriptor
        self.ready_timeout = ready_timeout
        self.state = WorkerState.TERMINATED
        self._proc: Optional[subprocess.Popen] = None
        self._lines: "queue.Queue[Any]" = queue.Queue()
        self._stderr: Deque[str] = deque(maxlen=_STDERR_TAIL)
        self._secrets: Sequence[str] = ()
        self._stderr_reader: Optional[threading.Thread] = None

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def pid(self) -> Optional[int]:
        return self._proc.pid if self._proc is not None else None

    @property
    def is_alive(self) -> bool:
        return self._proc is not None and self._proc.poll() is None

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    def spawn(self) -> "WorkerProcess":
        try:
            self._proc = subprocess.Popen(
                self.descriptor.command(),
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                bufsize=1,
            )
        except OSError as e:
            self.state = WorkerState.TERMINATED
            raise RunnerCrashError(
                f"Could not start runner '{self.name}': {e.strerror or e}",
                details={"runner": self.name, "binary_path": self.descriptor.binary_path},
                hint="Verifique binary_path do runner na configuração.",
            ) from None

        self.state = WorkerState.SPAWNED
        threading.Thread(target=self._pump_stdout, name=f"{self.name}-stdout", daemon=True).start()
        self._stderr_reader = threading.Thread(target=self._pump_stderr, name=f"{self.name}-stderr", daemon=True)
        self._stderr_reader.start()

        try:
            msg = self._next(deadline=time.monotonic() + self.ready_timeout, cancel=None)
        except EvaluationTimeoutError:
            self.terminate(0)
            raise RunnerCrashError(
                f"Runner '{self.name}' did not become ready within {self.ready_timeout:g}s",
                details={"runner": self.name, "stderr": list(self._stderr)[-10:]},
            ) from None
        except RunnerCrashError:
            self.terminate(0)
            raise
        if msg.get("type") != protocol.READY:
            self.terminate(0)
            raise RunnerCrashError(
                f"Runner '{self.name}' sent '{msg.get('type')}' before announcing readiness",
                details={"runner": self.name},
            )

        self.state = WorkerState.READY
        logger.info("runner %s: worker %s ready (runtime=%s)", self.name, self.pid, msg.get("runtime"))
        return self

    def terminate(self, grace: float) -> None:
        proc = self._proc
        if proc is None or self.state is WorkerState.TERMINATED:
            self.state = WorkerState.TERMINATED
            return
        self.state = WorkerState.DRAINING
        if proc.poll() is None:
            proc.terminate()
            try:
                proc.wait(timeout=grace)
            except subprocess.TimeoutExpired:
                logger.warning("runner %s: worker %s ignored SIGTERM, killing", self.name, proc.pid)
                proc.kill()
                proc.wait()
        with suppress(OSError, ValueError):
            proc.stdin.close()
        self.state = WorkerState.TERMINATED
        logger.debug("runner %s: worker %s terminated (exit=%s)", self.name, proc.pid, proc.returncode)

    def close(self, grace: float) -> None:
        """Encerramento cooperativo: `shutdown`, EOF no stdin e então terminate."""
        proc = self._proc
        if proc is None or self.state is WorkerState.TERMINATED:
            return
        self.state = WorkerState.DRAINING
        with suppress(OSError, ValueError):
            proc.stdin.write(protocol.encode({"type": protocol.SHUTDOWN}))
            proc.stdin.flush()
            proc.stdin.close()
        try:
            proc.wait(timeout=grace)
        except subprocess.TimeoutExpired:
            pass
        self.terminate(grace)

    # ------------------------------------------------------------------
    # stream
    # ------------------------------------------------------------------

    def _pump_stdout(self) -> None:
        proc = self._proc
        try:
            for line in proc.stdout:
                self._lines.put(line)
        except (OSError, ValueError):
            pass
        finally:
            self._lines.put(_EOF)

    def _pump_stderr(self) -> None:
        proc = self._proc
        with suppress(OSError, ValueError):
            for line in proc.stderr:
                self._stderr.append(line.rstrip("\n"))

    def _crash(self) -> RunnerCrashError:
        proc = self._proc
        try:
            code = proc.wait(timeout=5)
        except subprocess.TimeoutExpired:
            proc.kill()
            code = proc.wait()
        if self._stderr_reader is not None:
            self._stderr_reader.join(timeout=1.0)
        self.state = WorkerState.TERMINATED
        return RunnerCrashError(
            f"Runner '{self.name}' exited unexpectedly with status {code}",
            details={
                "runner": self.name,
                "exit_code": code,
                "stderr": redact(list(self._stderr)[-10:], self._secrets),
            },
        )

    def _next(self, *, deadline: float, cancel: Optional[threading.Event]) -> Dict[str, Any]:
        while True:
            if cancel is not None and cancel.is_set():
                raise EvaluationCancelledError(f"Evaluation on runner '{self.name}' was cancelled")
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise EvaluationTimeoutError(
                    f"Runner '{self.name}' did not finish before the deadline",
                    details={"runner": self.name},
                )
            try:
                item = self._lines.get(timeout=min(remaining, _POLL_INTERVAL))
            except queue.Empty:
                continue
            if item is _EOF:
                raise self._crash()
            try:
                return protocol.decode(item)
            except protocol.ProtocolViolation as e:
                raise RunnerCrashError(
                    f"Runner '{self.name}' violated the output protocol: {e}",
                    details={"runner": self.name},
                ) from None

    def _send(self, message: Dict[str, Any]) -> None:
        try:
            self._proc.stdin.write(protocol.encode(message))
            self._proc.stdin.flush()
        except (OSError, ValueError):
            raise self._crash() from None

    def run(
        self,
        request: Dict[str, Any],
        *,
        timeout: float,
        cancel: Optional[threading.Event] = None,
        grace: float = 5.0,
        secrets: Sequence[str] = (),
    ) -> ResultRecord:
        """Envia um request e consome o stream até o registro terminal."""
        if self.state is not WorkerState.READY:
            raise EngineConfigurationError(f"Worker of runner '{self.name}' is not ready ({self.state.value})")

        self.state = WorkerState.BUSY
        self._secrets = tuple(secrets)
        deadline = time.monotonic() + timeout
        request_id = request["request_id"]
        columns: List[str] = []
        rows: List[Dict[str, Any]] = []

        try:
            self._send(request)
            while True:
                msg = self._next(deadline=deadline, cancel=cancel)
                if msg.get("request_id") != request_id:
                    raise RunnerCrashError(
                        f"Runner '{self.name}' answered an unknown request",
                        details={"runner": self.name, "type": msg.get("type")},
                    )
                kind = msg["type"]
                if kind == protocol.COLUMNS:
                    columns = [str(c) for c in msg.get("columns") or []]
                elif kind == protocol.ROW:
                    row = msg.get("row")
                    if not isinstance(row, dict):
                        raise RunnerCrashError(
                            f"Runner '{self.name}' sent a row that is not an object",
                            details={"runner": self.name},
                        )
                    rows.append(normalize_mapping(row))
                elif kind == protocol.DONE:
                    expected = msg.get("row_count")
                    if expected is not None and expected != len(rows):
                        raise RunnerCrashError(
                            f"Runner '{self.name}' announced {expected} rows but sent {len(rows)}",
                            details={"runner": self.name},
                        )
                    self.state = WorkerState.READY
                    return ResultRecord.from_rows(rows, columns or None)
                elif kind == protocol.ERROR:
                    self.state = WorkerState.READY
                    raise self._remote_error(msg.get("error"))
                else:
                    raise RunnerCrashError(
                        f"Runner '{self.name}' sent unexpected record '{kind}'",
                        details={"runner": self.name},
                    )
        except (EvaluationTimeoutError, EvaluationCancelledError, RunnerCrashError):
            self.terminate(grace)
            raise
        finally:
            self._secrets = ()

    def _remote_error(self, error: Any) -> PanelflowException:
        error = error if isinstance(error, dict) else {}
        cls = exception_for_code(error.get("type"))
        details = error.get("details") if isinstance(error.get("details"), dict) else {}
        return cls(
            redact(str(error.get("message") or cls.code), self._secrets),
            details=redact(dict(details), self._secrets),
        )


class WorkerPool:
    """Pool limitado de workers, indexado pelo descritor do runner."""

    def __init__(
        self,
        *,
        max_workers_per_runner: int = 4,
        ready_timeout: float = 15.0,
        grace_period: float = 5.0,
    ):
        if max_workers_per_runner < 1:
            raise EngineConfigurationError("max_workers_per_runner must be >= 1")
        self.max_workers_per_runner = max_workers_per_runner
        self.ready_timeout = ready_timeout
        self.grace_period = grace_period
        self._cond = threading.Condition()
        self._idle: Dict[RunnerDescriptor, List[WorkerProcess]] = {}
        self._live: Dict[RunnerDescriptor, int] = {}
        self._closed = False

    def live_count(self, descriptor: RunnerDescriptor) -> int:
        with self._cond:
            return self._live.get(descriptor, 0)

    def acquire(
        self,
        descriptor: RunnerDescriptor,
        *,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> WorkerProcess:
        deadline = time.monotonic() + timeout if timeout is not None else None
        with self._cond:
            while True:
                if self._closed:
                    raise EngineConfigurationError("Worker pool has been shut down")
                idle = self._idle.setdefault(descriptor, [])
                while idle:
                    worker = idle.pop()
                    if worker.is_alive and worker.state is WorkerState.READY:
                        return worker
                    self._live[descriptor] -= 1
                if self._live.get(descriptor, 0) < self.max_workers_per_runner:
                    self._live[descriptor] = self._live.get(descriptor, 0) + 1
                    break
                if cancel is not None and cancel.is_set():
                    raise EvaluationCancelledError(f"Cancelled while waiting for a '{descriptor.name}' worker")
                wait = _POLL_INTERVAL
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise EvaluationTimeoutError(
                            f"No '{descriptor.name}' worker became available in time",
                            details={"runner": descriptor.name},
                        )
                    wait = min(wait, remaining)
                self._cond.wait(timeout=wait)

        worker = WorkerProcess(descriptor, ready_timeout=self.ready_timeout)
        try:
            worker.spawn()
        except BaseException:
            with self._cond:
                self._live[descriptor] -= 1
                self._cond.notify_all()
            raise
        return worker

    def release(self, worker: WorkerProcess) -> None:
        descriptor = worker.descriptor
        reusable = worker.is_alive and worker.state is WorkerState.READY
        with self._cond:
            if reusable and not self._closed:
                self._idle.setdefault(descriptor, []).append(worker)
                self._cond.notify_all()
                return
            self._live[descriptor] -= 1
            self._cond.notify_all()
        worker.terminate(self.grace_period)

    @contextmanager
    def lease(self, descriptor: RunnerDescriptor, **kwargs: Any) -> Iterator[WorkerProcess]:
        worker = self.acquire(descriptor, **kwargs)
        try:
            yield worker
        finally:
            self.release(worker)

    def shutdown(self) -> None:
        with self._cond:
            self._closed = True
            workers = [w for idle in self._idle.values() for w in idle]
            for descriptor, idle in self._idle.items():
                self._live[descriptor] -= len(idle)
            self._idle.clear()
            self._cond.notify_all()
        for worker in workers:
            worker.close(self.grace_period)
        if workers:
            logger.info("worker pool shut down (%d idle workers closed)", len(workers))

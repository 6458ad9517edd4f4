# src/panelflow/core/engine/orchestrator.py
"""
Evaluation Orchestrator do panelflow.

Recebe um projeto e uma seleção de painéis, planeja o grafo de
dependências, despacha cada painel para o runner escolhido, persiste
cada resultado e devolve o estado final de todos os painéis.

Máquina de estados por painel:

    unevaluated → running → done | error | cancelled
    done | error | cancelled → running   (ao ser selecionado de novo)

Política de execução:
    - Painéis independentes rodam em paralelo até `concurrency_limit`
    - Um painel com falha nunca interrompe os irmãos; seus dependentes
      (transitivamente) terminam em error com DependencyFailedError,
      sem dispatch
    - Referência a painel fora da avaliação usa o último resultado `done`
      persistido; sem ele, UnresolvedDependencyError sem dispatch
    - Painéis sobre um ciclo terminam com CyclicDependencyError
    - No máximo uma avaliação em andamento por (projeto, painel): uma
      segunda chamada que selecione o mesmo painel aguarda a primeira

Erros:
    - Erros de painel são capturados, redigidos e gravados no arquivo de
      resultado; nunca escapam de `evaluate`
    - Violações de contrato do chamador (runner desconhecido, opções
      inválidas, chave do Vault ausente, id selecionado inexistente) são
      fatais e levantadas antes de qualquer dispatch

Cancelamento:
    - `cancel()` sinaliza todas as avaliações em andamento; painéis
      pendentes viram `cancelled` de imediato e os em execução recebem o
      sinal no dispatch. Painéis cancelados não sobrescrevem o resultado
      anterior em disco.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set, Union

from panelflow.connectors.info import ExecutionTarget
from panelflow.connectors.registry import ConnectorRegistry
from panelflow.core.config.hashing import compute_config_hash
from panelflow.core.config.settings import EngineConfig
from panelflow.core.context import EvaluationContext
from panelflow.core.errors import (
    ErrorPayload,
    QUERY_ERROR,
    cancelled,
    cyclic_dependency,
    dependency_failed,
    redact,
)
from panelflow.core.exceptions import (
    EngineConfigurationError,
    EvaluationCancelledError,
    NotFoundError,
    PanelflowException,
    UnresolvedDependencyError,
    VaultKeyMissingError,
)
from panelflow.core.locks import KeyedLocks
from panelflow.core.model.project import Panel, Project
from panelflow.core.model.types import PanelKind, PanelStatus, ResultMeta, ResultRecord, RunnerDescriptor
from panelflow.core.traceability import manifest as mf
from panelflow.runners.dispatch import RunnerDispatch
from panelflow.runners.worker_pool import WorkerPool
from panelflow.store.result_store import ResultStore
from panelflow.vault import CredentialVault

from .planner import EvaluationPlan, plan_evaluation
from .templating import render_panel_content


logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.1


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class EvaluationOptions:
    """
    Opções de uma chamada de `evaluate`.

    Valores ausentes (None) vêm da `EngineConfig` do Orchestrator.
    `panel_selection` aceita "all" ou uma coleção de ids.
    """

    panel_selection: Union[str, Iterable[str]] = "all"
    runner: Union[RunnerDescriptor, str, None] = None
    concurrency_limit: Optional[int] = None
    timeout_per_panel: Optional[float] = None
    cancel_grace_period: Optional[float] = None


@dataclass(frozen=True)
class PanelOutcome:
    panel_id: str
    status: PanelStatus
    error: Optional[ErrorPayload] = None
    row_count: int = 0
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "panel_id": self.panel_id,
            "status": self.status.value,
            "error": self.error.to_dict() if self.error else None,
            "row_count": self.row_count,
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class EvaluationResult:
    run_id: str
    project_id: str
    panels: Dict[str, PanelOutcome]
    started_at: str
    finished_at: str

    @property
    def ok(self) -> bool:
        return all(o.status is PanelStatus.DONE for o in self.panels.values())

    def statuses(self) -> Dict[str, PanelStatus]:
        return {pid: o.status for pid, o in self.panels.items()}

    def failed(self) -> List[str]:
        return [pid for pid, o in self.panels.items() if o.status is PanelStatus.ERROR]


@dataclass
class _Run:
    """Estado interno de uma avaliação em andamento."""

    project: Project
    plan: EvaluationPlan
    runner: RunnerDescriptor
    timeout: float
    ctx: EvaluationContext
    manifest: mf.EvaluationManifest
    lock: threading.Lock = field(default_factory=threading.Lock)


class Orchestrator:
    """Avalia painéis de um projeto (planner + dispatch + result store)."""

    def __init__(
        self,
        *,
        registry: ConnectorRegistry,
        vault: CredentialVault,
        store: Optional[ResultStore] = None,
        config: Optional[EngineConfig] = None,
        dispatch: Optional[RunnerDispatch] = None,
    ):
        self.registry = registry
        self.vault = vault
        self.config = config if config is not None else EngineConfig.default()
        self.store = store if store is not None else ResultStore(self.config.results_dir)
        self.dispatch = dispatch if dispatch is not None else RunnerDispatch(
            pool=WorkerPool(
                max_workers_per_runner=self.config.max_workers_per_runner,
                ready_timeout=self.config.ready_timeout,
                grace_period=self.config.cancel_grace_period,
            ),
            grace_period=self.config.cancel_grace_period,
        )
        self._panel_locks = KeyedLocks()
        self._active: Set[EvaluationContext] = set()
        self._active_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Superfície pública
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        """Cancela todas as avaliações em andamento (thread-safe)."""
        with self._active_lock:
            contexts = list(self._active)
        for ctx in contexts:
            ctx.cancel()
        if contexts:
            logger.info("cancellation requested for %d evaluation(s)", len(contexts))

    def shutdown(self) -> None:
        self.dispatch.shutdown()

    def evaluate(self, project: Project, options: Optional[EvaluationOptions] = None) -> EvaluationResult:
        options = options or EvaluationOptions()
        runner = self._resolve_runner(options.runner)
        limit = self._positive("concurrency_limit", options.concurrency_limit, self.config.concurrency_limit)
        timeout = self._positive("timeout_per_panel", options.timeout_per_panel, self.config.timeout_per_panel)
        selection = self._resolve_selection(project, options.panel_selection)
        self._preflight_vault(project, selection)

        plan = plan_evaluation(project, selection)
        started = _utc_now()
        run_id = uuid.uuid4().hex
        ctx = EvaluationContext(
            run_id=run_id,
            project_id=project.id,
            created_at=started.isoformat(),
            config=dict(self.config.raw),
        )
        manifest = mf.create_manifest(
            run_id=run_id,
            project_id=project.id,
            started_at=started,
            panelflow_version=_version(),
            config_hash=compute_config_hash(self.config.raw),
            runner=runner.name,
        )
        run = _Run(project=project, plan=plan, runner=runner, timeout=timeout, ctx=ctx, manifest=manifest)
        logger.info(
            "evaluation %s: project=%s panels=%d runner=%s",
            run_id, project.id, len(selection), runner.name,
        )

        with self._active_lock:
            self._active.add(ctx)
        try:
            outcomes = self._schedule(run, limit)
        finally:
            with self._active_lock:
                self._active.discard(ctx)

        finished = _utc_now()
        with run.lock:
            mf.finish_manifest(manifest, ts=finished)
        self.store.results_dir.mkdir(parents=True, exist_ok=True)
        mf.save_manifest(manifest, self.store.manifest_file(project.id))

        ordered = {pid: outcomes[pid] for pid in selection}
        return EvaluationResult(
            run_id=run_id,
            project_id=project.id,
            panels=ordered,
            started_at=started.isoformat(),
            finished_at=finished.isoformat(),
        )

    # ------------------------------------------------------------------
    # Validação de entrada (fatal)
    # ------------------------------------------------------------------

    def _resolve_runner(self, runner: Union[RunnerDescriptor, str, None]) -> RunnerDescriptor:
        if runner is None:
            return self.config.runner("in-process")
        if isinstance(runner, str):
            return self.config.runner(runner)
        if isinstance(runner, RunnerDescriptor):
            return runner.validate()
        raise EngineConfigurationError(f"Invalid runner option: {runner!r}")

    @staticmethod
    def _positive(name: str, value: Optional[float], default: float) -> Any:
        value = default if value is None else value
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
            raise EngineConfigurationError(
                f"Invalid evaluation option {name}: {value!r}",
                details={"option": name},
                hint="Use um valor numérico maior que zero.",
            )
        return value

    @staticmethod
    def _resolve_selection(project: Project, selection: Union[str, Iterable[str]]) -> List[str]:
        if isinstance(selection, str):
            if selection != "all":
                raise EngineConfigurationError(
                    f"Invalid panel_selection: {selection!r}",
                    hint='Use "all" ou uma coleção de ids de painel.',
                )
            return project.panel_ids()
        wanted = set(selection)
        unknown = sorted(pid for pid in wanted if not project.has_panel(pid))
        if unknown:
            raise EngineConfigurationError(
                f"Selected panel(s) not in project '{project.id}': {', '.join(unknown)}",
                details={"project_id": project.id, "unknown": unknown},
            )
        return [pid for pid in project.panel_ids() if pid in wanted]

    def _preflight_vault(self, project: Project, selection: List[str]) -> None:
        if self.vault.has_key:
            return
        for pid in selection:
            panel = project.panel(pid)
            if panel.kind is not PanelKind.DATABASE or not panel.connector_id:
                continue
            try:
                info = self.registry.resolve(panel.connector_id)
            except NotFoundError:
                continue
            if info.password is not None:
                raise VaultKeyMissingError(
                    "Vault master key is not set but selected panels use encrypted credentials",
                    details={"panel_id": pid, "connector_id": info.id},
                    hint="Defina PANELFLOW_MASTER_KEY ou injete a chave no CredentialVault.",
                )

    # ------------------------------------------------------------------
    # Agendamento
    # ------------------------------------------------------------------

    def _schedule(self, run: _Run, limit: int) -> Dict[str, PanelOutcome]:
        plan, ctx = run.plan, run.ctx
        finished: Dict[str, PanelOutcome] = {}

        for pid, cycle in plan.cyclic.items():
            finished[pid] = self._finish(run, pid, PanelStatus.ERROR, error=cyclic_dependency(panel_id=pid, cycle=cycle))

        pending = list(plan.order)
        running: Dict[Future, str] = {}

        with ThreadPoolExecutor(max_workers=limit, thread_name_prefix="panelflow-eval") as pool:
            while pending or running:
                if ctx.cancelled and pending:
                    for pid in pending:
                        finished[pid] = self._finish(run, pid, PanelStatus.CANCELLED, error=cancelled(panel_id=pid))
                    pending.clear()

                for pid in list(pending):
                    if len(running) >= limit:
                        break
                    deps = plan.deps_in_run[pid]
                    bad = [d for d in deps if d in plan.cyclic or (d in finished and finished[d].status is not PanelStatus.DONE)]
                    if bad:
                        pending.remove(pid)
                        finished[pid] = self._finish(
                            run, pid, PanelStatus.ERROR, error=dependency_failed(panel_id=pid, failed=bad)
                        )
                        continue
                    if all(d in finished for d in deps):
                        pending.remove(pid)
                        running[pool.submit(self._run_panel, run, pid)] = pid

                if not running:
                    continue

                done, _ = wait(list(running), timeout=_POLL_INTERVAL, return_when=FIRST_COMPLETED)
                for fut in done:
                    pid = running.pop(fut)
                    try:
                        finished[pid] = fut.result()
                    except Exception as e:
                        logger.exception("evaluation %s: panel %s task failed", ctx.run_id, pid)
                        finished[pid] = self._outcome(
                            run, pid, PanelStatus.ERROR, ErrorPayload.from_exception(e), row_count=0
                        )

        return finished

    # ------------------------------------------------------------------
    # Execução de um painel
    # ------------------------------------------------------------------

    def _run_panel(self, run: _Run, pid: str) -> PanelOutcome:
        ctx = run.ctx
        lock = self._panel_locks.get((run.project.id, pid))
        while not lock.acquire(timeout=_POLL_INTERVAL):
            if ctx.cancelled:
                return self._finish(run, pid, PanelStatus.CANCELLED, error=cancelled(panel_id=pid))
        try:
            if ctx.cancelled:
                return self._finish(run, pid, PanelStatus.CANCELLED, error=cancelled(panel_id=pid))
            return self._evaluate_panel(run, run.project.panel(pid))
        finally:
            lock.release()

    def _evaluate_panel(self, run: _Run, panel: Panel) -> PanelOutcome:
        ctx, pid = run.ctx, panel.id
        panel.status = PanelStatus.RUNNING
        ctx.set_status(pid, PanelStatus.RUNNING)
        with run.lock:
            mf.panel_started(run.manifest, panel_id=pid, kind=panel.kind.value, ts=_utc_now())
        ctx.log(panel_id=pid, level="info", message="panel dispatched", runner=run.runner.name)

        target: Optional[ExecutionTarget] = None
        inputs: Dict[str, str] = {}
        stale: List[str] = []
        try:
            snapshots = self._snapshot_inputs(run, panel, inputs, stale)
            content = render_panel_content(panel.content, snapshots)
            if panel.kind is PanelKind.DATABASE:
                target = self.registry.prepare_target(panel.connector_id, vault=self.vault, mode=run.runner.mode)
            record = self.dispatch.execute(
                panel_kind=panel.kind,
                content=content,
                target=target,
                runner=run.runner,
                timeout=run.timeout,
                cancel=ctx.cancel_event,
                panel_id=pid,
            )
        except EvaluationCancelledError:
            return self._finish(run, pid, PanelStatus.CANCELLED, error=cancelled(panel_id=pid))
        except PanelflowException as e:
            secrets = target.secrets() if target is not None else ()
            return self._finish(run, pid, PanelStatus.ERROR, error=ErrorPayload.from_exception(e, secrets=secrets))
        except Exception as e:
            secrets = target.secrets() if target is not None else ()
            error = ErrorPayload(
                type=QUERY_ERROR,
                message=redact(str(e) or type(e).__name__, secrets),
                details={"exception_class": type(e).__name__},
            )
            return self._finish(run, pid, PanelStatus.ERROR, error=error)
        finally:
            target = None

        return self._finish(run, pid, PanelStatus.DONE, record=record, inputs=inputs, stale=stale)

    def _snapshot_inputs(
        self,
        run: _Run,
        panel: Panel,
        inputs: Dict[str, str],
        stale: List[str],
    ) -> Dict[str, List[Dict[str, Any]]]:
        """Lê o último resultado `done` de cada painel referenciado."""
        plan, project_id, pid = run.plan, run.project.id, panel.id
        unknown = plan.unknown.get(pid) or []
        if unknown:
            raise NotFoundError(
                f"Panel '{pid}' references unknown panel(s): {', '.join(unknown)}",
                details={"panel_id": pid, "unknown": unknown},
            )

        snapshots: Dict[str, List[Dict[str, Any]]] = {}
        for ref in plan.references.get(pid) or []:
            meta = self.store.read_meta(project_id, ref)
            if meta is None or meta.status is not PanelStatus.DONE or not self.store.exists(project_id, ref):
                raise UnresolvedDependencyError(
                    f"Panel '{pid}' references '{ref}', which has no successful result",
                    details={"panel_id": pid, "referenced_panel": ref},
                    hint="Inclua o painel referenciado na avaliação ou avalie-o antes.",
                )
            record = self.store.read(project_id, ref)
            snapshots[ref] = record.rows
            inputs[ref] = meta.evaluated_at
            if self._is_stale(project_id, meta):
                stale.append(ref)
                run.ctx.add_warning(
                    panel_id=pid,
                    message=f"Input '{ref}' was computed from inputs that have since been re-evaluated",
                )
        return snapshots

    def _is_stale(self, project_id: str, meta: ResultMeta) -> bool:
        for upstream, seen_at in meta.inputs.items():
            current = self.store.read_meta(project_id, upstream)
            if current is not None and current.status is PanelStatus.DONE and current.evaluated_at > seen_at:
                return True
        return False

    # ------------------------------------------------------------------
    # Finalização
    # ------------------------------------------------------------------

    def _finish(
        self,
        run: _Run,
        pid: str,
        status: PanelStatus,
        *,
        error: Optional[ErrorPayload] = None,
        record: Optional[ResultRecord] = None,
        inputs: Optional[Dict[str, str]] = None,
        stale: Optional[List[str]] = None,
    ) -> PanelOutcome:
        project_id = run.project.id
        row_count = len(record.rows) if record is not None else 0

        if status is not PanelStatus.CANCELLED:
            to_write = record if status is PanelStatus.DONE else ResultRecord.failure(error)
            meta = ResultMeta(
                evaluated_at=_utc_now().isoformat(),
                status=status,
                row_count=row_count,
                inputs=dict(inputs or {}),
                stale_inputs=list(stale or []),
                error_type=error.type if error else None,
            )
            try:
                self.store.write(project_id, pid, to_write)
                self.store.write_meta(project_id, pid, meta)
            except Exception as e:
                # A falha de persistência vira erro do próprio painel.
                logger.exception("evaluation %s: could not persist result of panel %s", run.ctx.run_id, pid)
                return self._outcome(run, pid, PanelStatus.ERROR, ErrorPayload.from_exception(e), row_count=0)
            run.project.panel(pid).last_result_meta = meta

        return self._outcome(run, pid, status, error, row_count=row_count)

    def _outcome(
        self,
        run: _Run,
        pid: str,
        status: PanelStatus,
        error: Optional[ErrorPayload],
        *,
        row_count: int,
    ) -> PanelOutcome:
        ctx = run.ctx
        run.project.panel(pid).status = status
        ctx.set_status(pid, status)
        warnings = ctx.warnings_for(pid)
        with run.lock:
            mf.panel_finished(
                run.manifest,
                panel_id=pid,
                ts=_utc_now(),
                status=status.value,
                row_count=row_count,
                error_type=error.type if error else None,
                warnings=warnings,
            )
        if status is PanelStatus.DONE:
            ctx.log(panel_id=pid, level="info", message="panel done", row_count=row_count)
        else:
            ctx.log(
                panel_id=pid,
                level="error" if status is PanelStatus.ERROR else "warning",
                message=error.message if error else status.value,
                error_type=error.type if error else None,
            )
            logger.info("evaluation %s: panel %s %s (%s)", ctx.run_id, pid, status.value, error.type if error else "-")
        return PanelOutcome(panel_id=pid, status=status, error=error, row_count=row_count, warnings=warnings)


def _version() -> str:
    from panelflow import __version__

    return __version__


def evaluate(
    project: Project,
    options: Optional[EvaluationOptions] = None,
    *,
    registry: ConnectorRegistry,
    vault: CredentialVault,
    store: Optional[ResultStore] = None,
    config: Optional[EngineConfig] = None,
) -> EvaluationResult:
    """Avaliação pontual: cria um Orchestrator, avalia e encerra os workers."""
    orchestrator = Orchestrator(registry=registry, vault=vault, store=store, config=config)
    try:
        return orchestrator.evaluate(project, options)
    finally:
        orchestrator.shutdown()

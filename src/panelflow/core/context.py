# src/panelflow/core/context.py
"""
EvaluationContext: contexto compartilhado de uma chamada de `evaluate`.

O contexto é o único lugar onde as tarefas de uma avaliação registram:
    - eventos estruturados (`log`)
    - warnings não fatais por painel (`add_warning`)
    - o estado corrente de cada painel (`set_status`)
    - o sinal de cancelamento cooperativo (`cancel_event`)

As tarefas rodam em threads do pool do Orchestrator, então toda mutação
passa por um lock.

Invariantes:
    - Cada avaliação tem seu próprio contexto
    - Eventos nunca carregam credenciais (apenas ids, tipos e mensagens
      já redigidas)
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List

from panelflow.core.model.types import PanelStatus


@dataclass(eq=False)
class EvaluationContext:
    """
    Campos:
    - run_id: identificador único da avaliação
    - project_id: projeto avaliado
    - created_at: timestamp UTC de criação
    - config: configuração efetiva (dict resolvido pelo loader)
    - statuses: estado corrente por panel_id
    - warnings: warnings por panel_id
    - events: log estruturado de eventos
    """

    run_id: str
    project_id: str
    created_at: str
    config: Dict[str, Any] = field(default_factory=dict)
    statuses: Dict[str, PanelStatus] = field(default_factory=dict)
    warnings: Dict[str, List[str]] = field(default_factory=dict)
    events: List[Dict[str, Any]] = field(default_factory=list)
    cancel_event: threading.Event = field(default_factory=threading.Event, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self) -> None:
        self.cancel_event.set()

    # -----------------------------
    # Estado por painel
    # -----------------------------
    def set_status(self, panel_id: str, status: PanelStatus) -> None:
        with self._lock:
            self.statuses[panel_id] = status

    def status(self, panel_id: str) -> PanelStatus:
        with self._lock:
            return self.statuses.get(panel_id, PanelStatus.UNEVALUATED)

    # -----------------------------
    # Logging & warnings
    # -----------------------------
    def log(self, *, panel_id: str, level: str, message: str, **extra: Any) -> None:
        event = {
            "run_id": self.run_id,
            "panel_id": panel_id,
            "level": level,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        event.update(extra)
        with self._lock:
            self.events.append(event)

    def add_warning(self, *, panel_id: str, message: str) -> None:
        with self._lock:
            self.warnings.setdefault(panel_id, []).append(message)
        self.log(panel_id=panel_id, level="warning", message=message)

    def warnings_for(self, panel_id: str) -> List[str]:
        with self._lock:
            return list(self.warnings.get(panel_id, []))

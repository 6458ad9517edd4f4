# src/panelflow/core/traceability/manifest.py
"""
Manifest de avaliação do panelflow.

O manifest consolida, para cada chamada de `evaluate`:
    - metadados da avaliação (run_id, project_id, início, fim, versão)
    - entradas (hash da configuração efetiva, runner utilizado)
    - estado final de cada painel (status, duração, linhas, tipo de erro)
    - o Event Log ordenado da avaliação

Decisões arquiteturais:
    - UTC é o timezone canônico de todos os timestamps
    - Toda mutação acontece por chamadas explícitas desta API
    - A persistência é atômica (mesma escrita do Result Store)

Invariantes:
    - `events` é uma lista na ordem de registro
    - `panels` é indexado por panel_id
    - Nenhum campo contém credenciais (apenas tipos e mensagens redigidas)
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from panelflow.store.atomic import write_json_atomic


def _ensure_tzaware_utc(dt: datetime) -> datetime:
    """Timestamps sem timezone são assumidos como UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _iso(dt: datetime) -> str:
    return _ensure_tzaware_utc(dt).isoformat()


def _ms_between(start: datetime, end: datetime) -> int:
    s = _ensure_tzaware_utc(start)
    e = _ensure_tzaware_utc(end)
    return max(0, int((e - s).total_seconds() * 1000))


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class EvaluationManifest:
    """
    Registro de uma avaliação de projeto.

    Campos:
        - run: run_id, project_id, started_at, finished_at, panelflow_version
        - inputs: config_hash, runner
        - panels: estado final por painel
        - events: Event Log ordenado
    """

    run: Dict[str, Any]
    inputs: Dict[str, Any]
    panels: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    events: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run": dict(self.run),
            "inputs": dict(self.inputs),
            "panels": {k: dict(v) for k, v in self.panels.items()},
            "events": [dict(e) for e in self.events],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EvaluationManifest":
        return cls(
            run=dict(data.get("run", {})),
            inputs=dict(data.get("inputs", {})),
            panels={k: dict(v) for k, v in (data.get("panels", {}) or {}).items()},
            events=[dict(e) for e in (data.get("events", []) or [])],
        )


def create_manifest(
    *,
    run_id: str,
    project_id: str,
    started_at: datetime,
    panelflow_version: str,
    config_hash: str,
    runner: str,
) -> EvaluationManifest:
    """Cria o manifest inicial. Não emite eventos implicitamente."""
    return EvaluationManifest(
        run={
            "run_id": run_id,
            "project_id": project_id,
            "started_at": _iso(started_at),
            "finished_at": None,
            "panelflow_version": panelflow_version,
        },
        inputs={"config_hash": config_hash, "runner": runner},
    )


def add_event(
    manifest: EvaluationManifest,
    *,
    event_type: str,
    ts: datetime,
    panel_id: Optional[str] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> None:
    event: Dict[str, Any] = {"event_type": event_type, "timestamp": _iso(ts)}
    if panel_id is not None:
        event["panel_id"] = panel_id
    if payload:
        event["payload"] = dict(payload)
    manifest.events.append(event)


def panel_started(manifest: EvaluationManifest, *, panel_id: str, kind: str, ts: datetime) -> None:
    manifest.panels.setdefault(panel_id, {"panel_id": panel_id})
    manifest.panels[panel_id].update({"kind": kind, "status": "running", "started_at": _iso(ts)})
    add_event(manifest, event_type="panel_started", ts=ts, panel_id=panel_id, payload={"kind": kind})


def panel_finished(
    manifest: EvaluationManifest,
    *,
    panel_id: str,
    ts: datetime,
    status: str,
    row_count: int = 0,
    error_type: Optional[str] = None,
    warnings: Optional[List[str]] = None,
) -> None:
    """
    Registra o estado final de um painel.

    Painéis que nunca foram despachados (dependência falha, ciclo,
    cancelamento antes do início) não têm `started_at`; a duração é 0.
    """
    p = manifest.panels.setdefault(panel_id, {"panel_id": panel_id})
    started_iso = p.get("started_at")
    started_dt = datetime.fromisoformat(started_iso) if started_iso else ts
    p.update(
        {
            "status": status,
            "finished_at": _iso(ts),
            "duration_ms": _ms_between(started_dt, ts),
            "row_count": row_count,
            "error_type": error_type,
            "warnings": list(warnings or []),
        }
    )
    payload: Dict[str, Any] = {"status": status, "duration_ms": p["duration_ms"]}
    if error_type:
        payload["error_type"] = error_type
    add_event(manifest, event_type="panel_finished", ts=ts, panel_id=panel_id, payload=payload)


def finish_manifest(manifest: EvaluationManifest, *, ts: datetime) -> None:
    manifest.run["finished_at"] = _iso(ts)
    add_event(manifest, event_type="evaluation_finished", ts=ts)


def save_manifest(manifest: EvaluationManifest, path: Path) -> None:
    write_json_atomic(Path(path), manifest.to_dict(), indent=2)


def load_manifest(path: Path) -> EvaluationManifest:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"Manifest inválido em {path}: raiz deve ser um objeto")
    return EvaluationManifest.from_dict(data)

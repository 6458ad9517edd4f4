# src/panelflow/core/model/project.py
"""
Projeto e painéis: a forma em memória consumida pelo engine.

O formato em disco de um projeto pertence à camada de storage (externa).
Este módulo define apenas o shape que essa camada entrega ao engine
(`Project.from_dict`) e recebe de volta (`Project.to_dict`).

Invariantes:
    - ids de painel são únicos dentro de um projeto
    - `status` e `last_result_meta` só são alterados pelo Orchestrator
    - `content` e `connector_id` só são alterados pelo editor (externo)
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional

from panelflow.core.exceptions import NotFoundError

from .types import PanelKind, PanelStatus, ResultMeta


def _new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class Panel:
    """Unidade de lógica do projeto que produz um resultado em cache."""

    kind: PanelKind = PanelKind.DATABASE
    content: str = ""
    connector_id: Optional[str] = None
    id: str = field(default_factory=_new_id)
    name: str = ""
    status: PanelStatus = PanelStatus.UNEVALUATED
    last_result_meta: Optional[ResultMeta] = None

    def __post_init__(self) -> None:
        if not isinstance(self.id, str) or not self.id.strip():
            raise ValueError("panel.id must be a non-empty string")
        self.kind = PanelKind(self.kind)
        self.status = PanelStatus(self.status)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "kind": self.kind.value,
            "content": self.content,
            "connector_id": self.connector_id,
            "status": self.status.value,
            "last_result_meta": self.last_result_meta.to_dict() if self.last_result_meta else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Panel":
        meta = data.get("last_result_meta")
        return cls(
            id=str(data.get("id") or _new_id()),
            name=str(data.get("name") or ""),
            kind=PanelKind(data.get("kind", PanelKind.DATABASE.value)),
            content=str(data.get("content") or ""),
            connector_id=data.get("connector_id"),
            status=PanelStatus(data.get("status", PanelStatus.UNEVALUATED.value)),
            last_result_meta=ResultMeta.from_dict(meta) if meta else None,
        )


@dataclass
class Project:
    """Projeto: `{id, name, panels}` com ids de painel únicos."""

    name: str
    panels: List[Panel] = field(default_factory=list)
    id: str = ""

    def __post_init__(self) -> None:
        if not self.id:
            self.id = self.name
        if not isinstance(self.id, str) or not self.id.strip():
            raise ValueError("project.id must be a non-empty string")
        seen = set()
        for p in self.panels:
            if p.id in seen:
                raise ValueError(f"Duplicate panel id: {p.id}")
            seen.add(p.id)

    def __iter__(self) -> Iterator[Panel]:
        return iter(self.panels)

    def panel_ids(self) -> List[str]:
        return [p.id for p in self.panels]

    def has_panel(self, panel_id: str) -> bool:
        return any(p.id == panel_id for p in self.panels)

    def panel(self, panel_id: str) -> Panel:
        for p in self.panels:
            if p.id == panel_id:
                return p
        raise NotFoundError(
            f"Panel '{panel_id}' not found in project '{self.id}'",
            details={"project_id": self.id, "panel_id": panel_id},
        )

    def add_panel(self, panel: Panel) -> Panel:
        if self.has_panel(panel.id):
            raise ValueError(f"Duplicate panel id: {panel.id}")
        self.panels.append(panel)
        return panel

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "panels": [p.to_dict() for p in self.panels],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Project":
        return cls(
            id=str(data.get("id") or data.get("name") or ""),
            name=str(data.get("name") or data.get("id") or ""),
            panels=[Panel.from_dict(p) for p in (data.get("panels") or [])],
        )

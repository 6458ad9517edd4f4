"""
Rastreabilidade do panelflow: manifest de avaliação e Event Log.
"""

from .manifest import (
    EvaluationManifest,
    add_event,
    create_manifest,
    finish_manifest,
    load_manifest,
    panel_finished,
    panel_started,
    save_manifest,
)

__all__ = [
    "EvaluationManifest",
    "add_event",
    "create_manifest",
    "finish_manifest",
    "load_manifest",
    "panel_finished",
    "panel_started",
    "save_manifest",
]

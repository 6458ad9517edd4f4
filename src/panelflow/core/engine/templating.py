# src/panelflow/core/engine/templating.py
"""
Renderização do conteúdo de painéis com Jinja2.

Dentro do conteúdo, `DM_getPanel("<id>")` devolve as linhas do último
resultado `done` do painel referenciado (lista de dicts), congeladas no
início do dispatch do painel dependente. Exemplo:

    SELECT * FROM t WHERE id = {{ DM_getPanel("ids")[0]["id"] }}

Conteúdo sem `{{` nem `{%` é devolvido verbatim (o SQL do usuário nunca
é reinterpretado sem necessidade).
"""

from __future__ import annotations

from copy import deepcopy
from typing import Any, Dict, List, Mapping

from jinja2 import BaseLoader, Environment, StrictUndefined, TemplateError

from panelflow.core.exceptions import QueryError, UnresolvedDependencyError


_ENV = Environment(
    loader=BaseLoader(),
    undefined=StrictUndefined,
    autoescape=False,
    keep_trailing_newline=True,
)


def needs_rendering(content: str) -> bool:
    return "{{" in content or "{%" in content


def render_panel_content(content: str, snapshots: Mapping[str, List[Dict[str, Any]]]) -> str:
    if not needs_rendering(content):
        return content

    def DM_getPanel(panel_id: str) -> List[Dict[str, Any]]:
        if panel_id not in snapshots:
            raise UnresolvedDependencyError(
                f"Panel '{panel_id}' has no result available to this evaluation",
                details={"referenced_panel": panel_id},
            )
        return deepcopy(snapshots[panel_id])

    try:
        return _ENV.from_string(content).render(DM_getPanel=DM_getPanel)
    except TemplateError as e:
        raise QueryError(
            f"Template error: {e.message or e}",
            details={"phase": "template", "exception_class": type(e).__name__},
        ) from None

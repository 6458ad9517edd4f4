# src/panelflow/core/engine/planner.py
"""
Planejador da avaliação (grafo de dependências entre painéis).

As referências entre painéis são declaradas no conteúdo, por chamadas
`DM_getPanel("<id>")` dentro de expressões Jinja2. O planner as extrai
**antes do agendamento** e classifica cada aresta:

    - deps_in_run → painel referenciado também está selecionado
    - external    → painel existe no projeto mas não foi selecionado
                    (o Orchestrator usa o último resultado `done` persistido)
    - unknown     → id inexistente no projeto (NotFoundError no painel)

Decisões arquiteturais:
    - Ordenação topológica determinística (Kahn); empates são resolvidos
      pela ordem dos painéis no projeto
    - Ciclos não são fatais: painéis sobre um ciclo são isolados em
      `cyclic` e os demais continuam planejados
    - Painéis a jusante de um ciclo permanecem em `order`; o Orchestrator
      os encerra com DependencyFailedError

Invariantes:
    - Todo painel selecionado aparece exatamente uma vez em `order` ou em `cyclic`
    - Nenhum painel em `order` aparece antes de suas dependências em `order`
    - A mesma entrada sempre produz o mesmo plano

Limites explícitos:
    - Não executa painéis
    - Não lê o Result Store
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set

from panelflow.core.model.project import Project

from .templating import needs_rendering


DM_GET_PANEL = re.compile(r"""DM_getPanel\(\s*["']([^"']+)["']\s*\)""")


def extract_references(content: str) -> List[str]:
    """Ids referenciados via DM_getPanel, sem repetição, na ordem de ocorrência.

    Conteúdo sem `{{`/`{%` nunca é renderizado e portanto não tem dependências.
    """
    if not needs_rendering(content or ""):
        return []
    seen: Dict[str, None] = {}
    for match in DM_GET_PANEL.finditer(content or ""):
        seen.setdefault(match.group(1), None)
    return list(seen)


@dataclass(frozen=True)
class EvaluationPlan:
    order: List[str] = field(default_factory=list)
    references: Dict[str, List[str]] = field(default_factory=dict)
    deps_in_run: Dict[str, List[str]] = field(default_factory=dict)
    external: Dict[str, List[str]] = field(default_factory=dict)
    unknown: Dict[str, List[str]] = field(default_factory=dict)
    cyclic: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def selected(self) -> List[str]:
        return list(self.references)


def _upstream_closure(start: str, deps: Dict[str, List[str]]) -> Set[str]:
    seen: Set[str] = set()
    stack = list(deps.get(start, []))
    while stack:
        node = stack.pop()
        if node in seen:
            continue
        seen.add(node)
        stack.extend(deps.get(node, []))
    return seen


def plan_evaluation(project: Project, selection: Optional[Iterable[str]] = None) -> EvaluationPlan:
    """
    Constrói o plano de avaliação para os painéis selecionados.

    Args:
        project: projeto com os painéis (ordem do projeto = desempate).
        selection: ids a avaliar; None avalia todos.

    Raises:
        NotFoundError: se um id selecionado não existir no projeto.
    """
    position = {pid: i for i, pid in enumerate(project.panel_ids())}
    if selection is None:
        selected = project.panel_ids()
    else:
        wanted = set(selection)
        for pid in wanted:
            project.panel(pid)
        selected = [pid for pid in project.panel_ids() if pid in wanted]
    selected_set = set(selected)

    references: Dict[str, List[str]] = {}
    deps_in_run: Dict[str, List[str]] = {}
    external: Dict[str, List[str]] = {}
    unknown: Dict[str, List[str]] = {}
    for pid in selected:
        refs = extract_references(project.panel(pid).content)
        references[pid] = refs
        deps_in_run[pid] = [r for r in refs if r in selected_set]
        external[pid] = [r for r in refs if r not in selected_set and r in position]
        unknown[pid] = [r for r in refs if r not in position]

    cyclic: Dict[str, List[str]] = {}
    closures = {pid: _upstream_closure(pid, deps_in_run) for pid in selected}
    for pid in selected:
        if pid in closures[pid]:
            members = {pid} | {u for u in closures[pid] if pid in closures[u]}
            cyclic[pid] = sorted(members, key=position.__getitem__)

    # Kahn sobre os painéis fora de ciclos
    remaining = [pid for pid in selected if pid not in cyclic]
    incoming: Dict[str, int] = {}
    outgoing: Dict[str, List[str]] = {pid: [] for pid in remaining}
    for pid in remaining:
        deps = [d for d in deps_in_run[pid] if d not in cyclic]
        incoming[pid] = len(deps)
        for dep in deps:
            outgoing[dep].append(pid)

    ready = sorted((pid for pid in remaining if incoming[pid] == 0), key=position.__getitem__)
    order: List[str] = []
    while ready:
        pid = ready.pop(0)
        order.append(pid)
        for child in outgoing[pid]:
            incoming[child] -= 1
            if incoming[child] == 0:
                ready.append(child)
        ready.sort(key=position.__getitem__)

    return EvaluationPlan(
        order=order,
        references=references,
        deps_in_run=deps_in_run,
        external=external,
        unknown=unknown,
        cyclic=cyclic,
    )

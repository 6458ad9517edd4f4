# src/panelflow/connectors/registry.py
"""
Registro de conectores.

Este módulo define o `ConnectorRegistry`, responsável por registrar
descrições de conectores, resolvê-las por id e construir o
`ExecutionTarget` que um runner usa para alcançar a fonte.

Responsabilidades do módulo:
    - Validar e normalizar conectores no momento do registro
    - Resolver `connector_id` → ConnectorInfo (NotFoundError se ausente)
    - Verificar o modo do runner contra as capacidades do tipo
    - Decifrar a senha via Vault apenas para construir o alvo
    - Testar a conexão (`SELECT 1`) pelo mesmo caminho de dispatch

Decisões arquiteturais:
    - O registry não conhece drivers: delega ao catálogo de tipos
    - A validação de modo acontece antes da decifração, para que um
      runner incompatível nunca cause manuseio de texto plano
    - Leituras e escritas são protegidas por lock (uso concorrente)

Limites explícitos:
    - Não persiste conectores (isso é do storage de projeto)
    - Não executa painéis
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping, Optional

from panelflow.core.exceptions import NotFoundError, PanelflowException
from panelflow.core.errors import redact
from panelflow.core.model.types import PanelKind, RunnerDescriptor, RunnerMode
from panelflow.vault import CredentialVault

from .info import ConnectorInfo, ExecutionTarget
from .kinds import get_kind

if TYPE_CHECKING:  # pragma: no cover
    from panelflow.runners.dispatch import RunnerDispatch


@dataclass(frozen=True)
class ConnectionTestResult:
    ok: bool
    message: str = ""
    error_type: Optional[str] = None


class ConnectorRegistry:
    """Registro canônico de conectores do processo."""

    def __init__(self, connectors: Iterable[ConnectorInfo] = ()):
        self._lock = threading.Lock()
        self._by_id: Dict[str, ConnectorInfo] = {}
        for c in connectors:
            self.register(c)

    @classmethod
    def from_dicts(cls, items: Iterable[Mapping[str, Any]]) -> "ConnectorRegistry":
        return cls(ConnectorInfo.from_dict(d) for d in items)

    def register(self, info: ConnectorInfo) -> ConnectorInfo:
        kind = get_kind(info.type)
        normalized = kind.normalize(info)
        kind.validate(normalized)
        with self._lock:
            self._by_id[normalized.id] = normalized
        return normalized

    def unregister(self, connector_id: str) -> None:
        with self._lock:
            self._by_id.pop(connector_id, None)

    def connectors(self) -> List[ConnectorInfo]:
        with self._lock:
            return list(self._by_id.values())

    def resolve(self, connector_id: Optional[str]) -> ConnectorInfo:
        with self._lock:
            info = self._by_id.get(connector_id or "")
        if info is None:
            raise NotFoundError(
                f"Connector '{connector_id}' not found",
                details={"connector_id": connector_id},
                hint="Associe o painel a um conector existente.",
            )
        return info

    def build_execution_target(self, info: ConnectorInfo, credentials: Optional[str]) -> ExecutionTarget:
        return get_kind(info.type).build_execution_target(info, credentials)

    def prepare_target(
        self,
        connector_id: Optional[str],
        *,
        vault: CredentialVault,
        mode: RunnerMode,
    ) -> ExecutionTarget:
        """Resolve, confere o modo, decifra e constrói o alvo de execução."""
        info = self.resolve(connector_id)
        get_kind(info.type).ensure_mode(mode)
        if info.password is None:
            return self.build_execution_target(info, None)
        with vault.decrypted(info.password) as plaintext:
            return self.build_execution_target(info, plaintext)

    def test_connection(
        self,
        connector_id: str,
        *,
        vault: CredentialVault,
        dispatch: "RunnerDispatch",
        runner: Optional[RunnerDescriptor] = None,
        timeout: float = 15.0,
    ) -> ConnectionTestResult:
        runner = runner or RunnerDescriptor.in_process()
        target: Optional[ExecutionTarget] = None
        try:
            target = self.prepare_target(connector_id, vault=vault, mode=runner.mode)
            dispatch.execute(
                panel_kind=PanelKind.DATABASE,
                content="SELECT 1",
                target=target,
                runner=runner,
                timeout=timeout,
            )
        except PanelflowException as e:
            secrets = target.secrets() if target is not None else ()
            return ConnectionTestResult(ok=False, message=redact(str(e), secrets), error_type=e.code)
        return ConnectionTestResult(ok=True, message="ok")

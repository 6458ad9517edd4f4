# src/panelflow/connectors/kinds.py
"""
Catálogo fechado de tipos de conector.

Cada tipo de data source (clickhouse, postgres, mysql, sqlite,
elasticsearch, snowflake, bigquery, oracle, sqlserver) é uma **variante**
registrada neste catálogo: uma instância imutável de `ConnectorKind`
que implementa a mesma interface de capacidades.

Capacidades (idênticas para todos os tipos):
    - validate(info)                  → campos obrigatórios presentes
    - normalize(info)                 → defaults de endereço/porta
    - supported_modes                 → in-process, subprocess ou ambos
    - build_execution_target(info, s) → valor opaco para o runner
    - sqlalchemy_url(target)          → URL de conexão in-process

Decisões arquiteturais:
    - Tipos novos são novas entradas do catálogo, nunca subclasses de
      um tipo existente
    - O dialeto SQLAlchemy de cada tipo é declarado aqui; os drivers em si
      são dependências opcionais do usuário (apenas sqlite vem com o Python)
    - Tipos sem dialeto SQL (elasticsearch, bigquery) só suportam subprocess

Invariantes:
    - O catálogo é fechado em tempo de import e indexado por `type`
    - Um modo não suportado sempre resulta em UnsupportedModeError

Limites explícitos:
    - Não abre conexões
    - Não decifra segredos (recebe o texto plano do Registry)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Dict, FrozenSet, Optional, Tuple

from sqlalchemy.engine import URL

from panelflow.core.exceptions import ConnectorValidationError, NotFoundError, UnsupportedModeError
from panelflow.core.model.types import RunnerMode

from .info import ConnectorInfo, ExecutionTarget


BOTH_MODES: FrozenSet[RunnerMode] = frozenset({RunnerMode.IN_PROCESS, RunnerMode.SUBPROCESS})
SUBPROCESS_ONLY: FrozenSet[RunnerMode] = frozenset({RunnerMode.SUBPROCESS})


def _split_host_port(address: str) -> Tuple[str, Optional[int]]:
    """`host:port` → (host, port). Endereços IPv6 entre colchetes são respeitados."""
    address = address.strip()
    if address.startswith("["):
        host, _, rest = address[1:].partition("]")
        port = rest.lstrip(":")
        return host, int(port) if port.isdigit() else None
    if address.count(":") == 1:
        host, port = address.split(":")
        if port.isdigit():
            return host, int(port)
    return address, None


@dataclass(frozen=True)
class ConnectorKind:
    """Variante de conector: descrição declarativa + capacidades."""

    type: str
    label: str
    required: Tuple[str, ...]
    modes: FrozenSet[RunnerMode]
    default_port: Optional[int] = None
    dialect: Optional[str] = None
    uses_host: bool = True

    @property
    def supported_modes(self) -> FrozenSet[RunnerMode]:
        return self.modes

    def validate(self, info: ConnectorInfo) -> None:
        missing = [f for f in self.required if not getattr(info, f, None)]
        if missing:
            raise ConnectorValidationError(
                f"{self.label} connector '{info.id}' is missing required field(s): {', '.join(missing)}",
                details={"connector_id": info.id, "type": self.type, "missing": missing},
            )

    def normalize(self, info: ConnectorInfo) -> ConnectorInfo:
        address, port = info.address, info.port
        if self.uses_host and address:
            host, embedded = _split_host_port(address)
            address = host
            port = port if port is not None else embedded
        if port is None:
            port = self.default_port
        database = info.database
        if self.type == "sqlite" and database and database != ":memory:":
            database = os.path.expanduser(database)
        return replace(info, type=self.type, address=address, port=port, database=database)

    def ensure_mode(self, mode: RunnerMode) -> None:
        if mode not in self.modes:
            raise UnsupportedModeError(
                f"{self.label} connectors cannot run in {mode.value} mode",
                details={
                    "type": self.type,
                    "mode": mode.value,
                    "supported_modes": sorted(m.value for m in self.modes),
                },
                hint="Escolha um runner compatível com este tipo de conector.",
            )

    def build_execution_target(self, info: ConnectorInfo, password: Optional[str]) -> ExecutionTarget:
        info = self.normalize(info)
        self.validate(info)
        return ExecutionTarget(
            connector_id=info.id,
            type=self.type,
            host=info.address,
            port=info.port,
            database=info.database,
            username=info.username,
            extra=dict(info.extra),
            secret=password or None,
        )

    def sqlalchemy_url(self, target: ExecutionTarget) -> URL:
        self.ensure_mode(RunnerMode.IN_PROCESS)
        query = {str(k): str(v) for k, v in (target.extra.get("query") or {}).items()}
        if not self.uses_host:
            return URL.create(self.dialect, database=target.database or None, query=query)
        return URL.create(
            self.dialect,
            username=target.username or None,
            password=target.secret or None,
            host=target.host or None,
            port=target.port,
            database=target.database or None,
            query=query,
        )


KINDS: Dict[str, ConnectorKind] = {
    k.type: k
    for k in (
        ConnectorKind("clickhouse", "ClickHouse", ("address",), BOTH_MODES, 8123, "clickhouse+http"),
        ConnectorKind("postgres", "PostgreSQL", ("address", "database"), BOTH_MODES, 5432, "postgresql+psycopg2"),
        ConnectorKind("mysql", "MySQL", ("address", "database"), BOTH_MODES, 3306, "mysql+pymysql"),
        ConnectorKind("sqlite", "SQLite", ("database",), BOTH_MODES, None, "sqlite", uses_host=False),
        ConnectorKind("sqlserver", "SQL Server", ("address", "database"), BOTH_MODES, 1433, "mssql+pyodbc"),
        ConnectorKind("oracle", "Oracle", ("address", "database"), BOTH_MODES, 1521, "oracle+oracledb"),
        ConnectorKind("snowflake", "Snowflake", ("address", "database"), BOTH_MODES, None, "snowflake"),
        ConnectorKind("bigquery", "BigQuery", ("database",), SUBPROCESS_ONLY, None, None, uses_host=False),
        ConnectorKind("elasticsearch", "Elasticsearch", ("address",), SUBPROCESS_ONLY, 9200, None),
    )
}


def get_kind(connector_type: str) -> ConnectorKind:
    kind = KINDS.get((connector_type or "").strip().lower())
    if kind is None:
        raise NotFoundError(
            f"Unknown connector type: {connector_type!r}",
            details={"type": connector_type, "known": sorted(KINDS)},
        )
    return kind

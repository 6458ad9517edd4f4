# src/panelflow/connectors/info.py
"""
ConnectorInfo e ExecutionTarget.

`ConnectorInfo` é a descrição persistível de como alcançar um data source:
o segredo viaja sempre cifrado (`EncryptedSecret`). `ExecutionTarget` é o
valor opaco entregue ao runner depois da decifração: é a única estrutura
que carrega a senha em texto plano, e nunca a mostra em `repr`.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

from panelflow.vault import EncryptedSecret


def _new_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class ConnectorInfo:
    """Como alcançar uma instância de data source.

    `type` seleciona uma variante do catálogo fechado de tipos
    (ver `panelflow.connectors.kinds`).
    """

    type: str
    id: str = field(default_factory=_new_id)
    name: str = ""
    address: str = ""
    port: Optional[int] = None
    database: str = ""
    username: str = ""
    password: Optional[EncryptedSecret] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "name": self.name,
            "address": self.address,
            "port": self.port,
            "database": self.database,
            "username": self.username,
            "password": self.password.to_dict() if self.password else None,
            "extra": dict(self.extra),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ConnectorInfo":
        pwd = data.get("password")
        port = data.get("port")
        return cls(
            id=str(data.get("id") or _new_id()),
            type=str(data.get("type") or "").strip().lower(),
            name=str(data.get("name") or ""),
            address=str(data.get("address") or ""),
            port=int(port) if port not in (None, "") else None,
            database=str(data.get("database") or ""),
            username=str(data.get("username") or ""),
            password=EncryptedSecret.from_dict(pwd) if pwd else None,
            extra=dict(data.get("extra") or {}),
        )


@dataclass(frozen=True)
class ExecutionTarget:
    """Parâmetros prontos para o runner alcançar a fonte.

    `secret` é a senha decifrada; existe apenas até o ponto de uso
    (abertura da conexão in-process ou mensagem ao worker).
    """

    connector_id: str
    type: str
    host: str = ""
    port: Optional[int] = None
    database: str = ""
    username: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)
    secret: Optional[str] = field(default=None, repr=False, compare=False)

    def secrets(self) -> Tuple[str, ...]:
        return (self.secret,) if self.secret else ()

    def redacted(self) -> Dict[str, Any]:
        return {
            "connector_id": self.connector_id,
            "type": self.type,
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "username": self.username,
            "extra": dict(self.extra),
        }

    def to_wire(self) -> Dict[str, Any]:
        """Descrição com a senha embutida, apenas para a mensagem ao worker."""
        wire = self.redacted()
        wire["password"] = self.secret
        return wire

    @classmethod
    def from_wire(cls, data: Mapping[str, Any]) -> "ExecutionTarget":
        port = data.get("port")
        return cls(
            connector_id=str(data.get("connector_id") or ""),
            type=str(data.get("type") or ""),
            host=str(data.get("host") or ""),
            port=int(port) if port not in (None, "") else None,
            database=str(data.get("database") or ""),
            username=str(data.get("username") or ""),
            extra=dict(data.get("extra") or {}),
            secret=data.get("password") or None,
        )

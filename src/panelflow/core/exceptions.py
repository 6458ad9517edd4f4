"""
panelflow — Exceções canônicas (v1)

Este módulo define as exceções tipadas internas do panelflow.

Objetivo:
- Permitir que Vault, Registry, Dispatch e Orchestrator levantem exceções
  semânticas tipadas
- Facilitar o mapeamento determinístico para ErrorPayload
- Manter um `code` estável por exceção (é o valor gravado em
  `error.type` no arquivo de resultado e trafegado no protocolo do worker)

Regras:
- Exceções carregam apenas dados estruturados (serializáveis) em `details`.
- Nenhuma exceção carrega credenciais decifradas. Mensagens que possam
  conter texto do data source passam por `redact` antes de serem gravadas.
- Exceções "fatais" representam violação de contrato de programação e
  atravessam `Orchestrator.evaluate`; todas as demais são capturadas por painel.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, Optional, Type


@dataclass(eq=False)
class PanelflowException(Exception):
    """Base class para exceções internas do panelflow.

    Importante:
    - `code` é o identificador estável do tipo de erro
    - Sempre carregar dados estruturados em `details`
    - Mensagem deve ser curta e humana (texto do data source é preservado)
    """

    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    hint: Optional[str] = None

    code: ClassVar[str] = "PanelflowError"
    fatal: ClassVar[bool] = False

    def __str__(self) -> str:  # pragma: no cover
        return self.message


# ---------------------------------------------------------------------------
# Credenciais / data source
# ---------------------------------------------------------------------------

@dataclass(eq=False)
class AuthError(PanelflowException):
    """Falha ao autenticar: segredo não decifrável ou credencial recusada pela fonte."""

    code: ClassVar[str] = "AuthError"


@dataclass(eq=False)
class SourceConnectionError(PanelflowException):
    """Não foi possível alcançar o data source."""

    code: ClassVar[str] = "ConnectionError"


@dataclass(eq=False)
class QueryError(PanelflowException):
    """O data source rejeitou o conteúdo do painel."""

    code: ClassVar[str] = "QueryError"


# ---------------------------------------------------------------------------
# Execução / runners
# ---------------------------------------------------------------------------

@dataclass(eq=False)
class EvaluationTimeoutError(PanelflowException):
    """Prazo por painel excedido."""

    code: ClassVar[str] = "TimeoutError"


@dataclass(eq=False)
class RunnerCrashError(PanelflowException):
    """Worker externo encerrou de forma anormal ou violou o protocolo."""

    code: ClassVar[str] = "RunnerCrashError"


@dataclass(eq=False)
class EvaluationCancelledError(PanelflowException):
    """Avaliação interrompida por pedido de cancelamento do chamador."""

    code: ClassVar[str] = "CancelledError"


@dataclass(eq=False)
class UnsupportedModeError(PanelflowException):
    """O tipo de conector (ou de painel) não suporta o modo de runner pedido."""

    code: ClassVar[str] = "UnsupportedModeError"


# ---------------------------------------------------------------------------
# Referências / dependências
# ---------------------------------------------------------------------------

@dataclass(eq=False)
class NotFoundError(PanelflowException):
    """Conector, painel ou resultado referenciado não existe."""

    code: ClassVar[str] = "NotFoundError"


@dataclass(eq=False)
class UnresolvedDependencyError(PanelflowException):
    """Painel referenciado fora da avaliação atual e sem resultado `done` persistido."""

    code: ClassVar[str] = "UnresolvedDependencyError"


@dataclass(eq=False)
class DependencyFailedError(PanelflowException):
    """Uma dependência (direta ou transitiva) falhou nesta avaliação."""

    code: ClassVar[str] = "DependencyFailedError"


@dataclass(eq=False)
class CyclicDependencyError(PanelflowException):
    """O painel participa de um ciclo de referências."""

    code: ClassVar[str] = "CyclicDependencyError"


@dataclass(eq=False)
class ConnectorValidationError(PanelflowException):
    """Campos obrigatórios ausentes para o tipo de conector."""

    code: ClassVar[str] = "ConnectorValidationError"


# ---------------------------------------------------------------------------
# Fatais (contrato de programação)
# ---------------------------------------------------------------------------

@dataclass(eq=False)
class EngineConfigurationError(PanelflowException):
    """Configuração inválida ou inconsistente para a avaliação (ex.: runner inexistente)."""

    code: ClassVar[str] = "EngineConfigurationError"
    fatal: ClassVar[bool] = True


@dataclass(eq=False)
class VaultKeyMissingError(PanelflowException):
    """O Vault não possui chave mestra e um conector precisa de decifração."""

    code: ClassVar[str] = "VaultKeyMissingError"
    fatal: ClassVar[bool] = True


_BY_CODE: Dict[str, Type[PanelflowException]] = {
    cls.code: cls
    for cls in (
        AuthError,
        SourceConnectionError,
        QueryError,
        EvaluationTimeoutError,
        RunnerCrashError,
        UnsupportedModeError,
        NotFoundError,
        UnresolvedDependencyError,
        DependencyFailedError,
        CyclicDependencyError,
        ConnectorValidationError,
    )
}

# Cancelamento só é decidido pelo engine: um worker que o reporta se comportou mal.
_BY_CODE[EvaluationCancelledError.code] = RunnerCrashError


def exception_for_code(code: Optional[str]) -> Type[PanelflowException]:
    """Resolve a classe de exceção a partir do `code` estável.

    Usado para reconstruir erros reportados por workers externos. Códigos
    desconhecidos viram QueryError: o worker executou e a fonte recusou.
    """
    return _BY_CODE.get(code or "", QueryError)

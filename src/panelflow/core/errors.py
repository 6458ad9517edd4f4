"""
panelflow — Estruturas canônicas de erro (v1)

Este módulo define o padrão canônico de erros de painel do panelflow.
Erros são artefatos de domínio e fazem parte do contrato público do
sistema: o payload é gravado no arquivo de resultado do painel e lido
diretamente por ferramentas externas. Por isso deve ser:

- explícito
- serializável
- rastreável
- livre de credenciais decifradas

Nenhuma decisão implícita é permitida.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict, field
from typing import Any, Dict, Iterable, List, Optional

from .exceptions import PanelflowException


REDACTED = "***"


# ---------------------------------------------------------------------------
# Redação de segredos
# ---------------------------------------------------------------------------

def redact(text: Any, secrets: Iterable[Optional[str]]) -> Any:
    """Substitui toda ocorrência de cada segredo por `***`.

    Strings são redigidas; dicts e listas são percorridos recursivamente;
    demais valores retornam inalterados. Segredos vazios são ignorados.
    """
    values = sorted({s for s in secrets if s}, key=len, reverse=True)
    if not values:
        return text
    return _redact(text, values)


def _redact(value: Any, secrets: List[str]) -> Any:
    if isinstance(value, str):
        for s in secrets:
            value = value.replace(s, REDACTED)
        return value
    if isinstance(value, dict):
        return {k: _redact(v, secrets) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_redact(v, secrets) for v in value]
    return value


# ---------------------------------------------------------------------------
# Payload canônico
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ErrorPayload:
    """
    Payload canônico de erro de um painel.

    Campos:
    - type: código estável do erro (ex.: QueryError, TimeoutError)
    - message: mensagem humana; preserva o texto do data source quando houver
    - details: dados estruturados relevantes para diagnóstico
    - hint: ação sugerida ao operador
    """

    type: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    hint: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Retorna representação serializável do erro."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ErrorPayload":
        return cls(
            type=str(data.get("type") or ENGINE_EXECUTION_ERROR),
            message=str(data.get("message") or ""),
            details=dict(data.get("details") or {}),
            hint=data.get("hint"),
        )

    @classmethod
    def from_exception(
        cls,
        exc: BaseException,
        *,
        secrets: Iterable[Optional[str]] = (),
    ) -> "ErrorPayload":
        """Converte exceções em ErrorPayload (serializável, acionável, redigido).

        Regras:
        - PanelflowException: já vem com code/message/details/hint.
        - Outras exceções: encapsular como ENGINE_EXECUTION_ERROR sem stack trace.
        """
        secrets = list(secrets)
        if isinstance(exc, PanelflowException):
            return cls(
                type=exc.code,
                message=redact(str(exc) or exc.code, secrets),
                details=redact(dict(exc.details or {}), secrets),
                hint=exc.hint,
            )
        return cls(
            type=ENGINE_EXECUTION_ERROR,
            message=redact(str(exc) or "Erro inesperado durante avaliação", secrets),
            details={"exception_class": exc.__class__.__name__},
            hint="Verifique o log de eventos da avaliação",
        )


# ---------------------------------------------------------------------------
# Catálogo canônico de tipos de erro (v1)
# ---------------------------------------------------------------------------

AUTH_ERROR = "AuthError"
CONNECTION_ERROR = "ConnectionError"
QUERY_ERROR = "QueryError"
TIMEOUT_ERROR = "TimeoutError"
RUNNER_CRASH_ERROR = "RunnerCrashError"
CANCELLED_ERROR = "CancelledError"
UNSUPPORTED_MODE_ERROR = "UnsupportedModeError"
NOT_FOUND_ERROR = "NotFoundError"
UNRESOLVED_DEPENDENCY_ERROR = "UnresolvedDependencyError"
DEPENDENCY_FAILED_ERROR = "DependencyFailedError"
CYCLIC_DEPENDENCY_ERROR = "CyclicDependencyError"

# Engine
ENGINE_EXECUTION_ERROR = "ENGINE_EXECUTION_ERROR"


# ---------------------------------------------------------------------------
# Helpers de fábrica
# ---------------------------------------------------------------------------

def dependency_failed(*, panel_id: str, failed: List[str]) -> ErrorPayload:
    return ErrorPayload(
        type=DEPENDENCY_FAILED_ERROR,
        message=f"Panel '{panel_id}' depends on failed panel(s): {', '.join(failed)}",
        details={"panel_id": panel_id, "failed_dependencies": list(failed)},
        hint="Corrija o painel de origem e reavalie.",
    )


def cyclic_dependency(*, panel_id: str, cycle: List[str]) -> ErrorPayload:
    return ErrorPayload(
        type=CYCLIC_DEPENDENCY_ERROR,
        message=f"Panel '{panel_id}' is part of a reference cycle: {' -> '.join(cycle)}",
        details={"panel_id": panel_id, "cycle": list(cycle)},
        hint="Remova uma das referências DM_getPanel do ciclo.",
    )


def cancelled(*, panel_id: str) -> ErrorPayload:
    return ErrorPayload(
        type=CANCELLED_ERROR,
        message=f"Evaluation of panel '{panel_id}' was cancelled",
        details={"panel_id": panel_id},
    )

# src/panelflow/core/model/types.py
"""
Tipos canônicos da avaliação de painéis do panelflow.

Este módulo define as estruturas e enums fundamentais que padronizam
a comunicação entre Orchestrator, Runner Dispatch e Result Store.

Os tipos aqui definidos representam:
    - o tipo semântico de um painel (PanelKind)
    - a máquina de estados de um painel (PanelStatus)
    - o modo de execução de um runner (RunnerMode)
    - a descrição de um runner (RunnerDescriptor)
    - o resultado de um painel (ResultRecord) e seus metadados (ResultMeta)

Princípios fundamentais:
    - Tipos são estáveis e serializáveis
    - Valores textuais dos enums são gravados em disco e não mudam
    - Nenhuma lógica de execução vive neste módulo

Invariantes:
    - ResultRecord é imutável: ou carrega linhas, ou carrega erro
    - ResultRecord tem a mesma forma para qualquer runner
    - RunnerDescriptor em modo subprocess sempre declara um binário

Limites explícitos:
    - Não executa painéis
    - Não persiste resultados
    - Não decide políticas de avaliação
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from panelflow.core.errors import ErrorPayload
from panelflow.core.exceptions import EngineConfigurationError


class PanelKind(str, Enum):
    """
    Tipo semântico de um painel.

    Apenas `database` e `file` são executados por este engine; `http` e
    `program` compartilham o mesmo contrato de dispatch mas falham com
    UnsupportedModeError quando selecionados.
    """

    DATABASE = "database"
    FILE = "file"
    HTTP = "http"
    PROGRAM = "program"


class PanelStatus(str, Enum):
    """
    Estados de um painel.

    Transições válidas:
        unevaluated -> running
        running -> done | error | cancelled
        done | error | cancelled -> running   (reavaliação)
    """

    UNEVALUATED = "unevaluated"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_final(self) -> bool:
        return self in (PanelStatus.DONE, PanelStatus.ERROR, PanelStatus.CANCELLED)


class RunnerMode(str, Enum):
    IN_PROCESS = "in-process"
    SUBPROCESS = "subprocess"


@dataclass(frozen=True)
class RunnerDescriptor:
    """
    Descrição de um backend de execução.

    Campos:
        - name: nome lógico (ex.: "in-process", "python-worker", "go-worker")
        - mode: in-process ou subprocess
        - runtime: identificador da implementação externa do worker
        - binary_path: executável do worker (obrigatório em subprocess)
        - args: argumentos extras passados ao executável

    Configuração, não estado de projeto: é fornecido por quem chama a
    avaliação ou resolvido a partir do catálogo `runners:` da configuração.
    """

    name: str
    mode: RunnerMode
    runtime: Optional[str] = None
    binary_path: Optional[str] = None
    args: Tuple[str, ...] = ()

    def validate(self) -> "RunnerDescriptor":
        if not isinstance(self.mode, RunnerMode):
            raise EngineConfigurationError(
                f"Runner '{self.name}' has invalid mode: {self.mode!r}",
                details={"runner": self.name},
            )
        if self.mode is RunnerMode.SUBPROCESS and not self.binary_path:
            raise EngineConfigurationError(
                f"Runner '{self.name}' is a subprocess runner without binary_path",
                details={"runner": self.name},
                hint="Declare binary_path para o runtime externo.",
            )
        return self

    def command(self) -> List[str]:
        if self.mode is not RunnerMode.SUBPROCESS:
            raise EngineConfigurationError(f"Runner '{self.name}' does not spawn processes")
        return [str(self.binary_path), *self.args]

    @classmethod
    def in_process(cls) -> "RunnerDescriptor":
        return cls(name="in-process", mode=RunnerMode.IN_PROCESS, runtime="python")

    @classmethod
    def from_dict(cls, name: str, data: Mapping[str, Any]) -> "RunnerDescriptor":
        raw_mode = data.get("mode", RunnerMode.IN_PROCESS.value)
        try:
            mode = RunnerMode(raw_mode)
        except ValueError as e:
            raise EngineConfigurationError(
                f"Runner '{name}' has unknown mode: {raw_mode!r}",
                details={"runner": name, "allowed": [m.value for m in RunnerMode]},
            ) from e
        args = data.get("args") or ()
        return cls(
            name=name,
            mode=mode,
            runtime=data.get("runtime"),
            binary_path=data.get("binary_path"),
            args=tuple(str(a) for a in args),
        ).validate()


@dataclass(frozen=True)
class ResultRecord:
    """
    Resultado imutável da avaliação de um painel.

    Campos:
        - rows: sequência ordenada de linhas (coluna -> escalar JSON)
        - columns: nomes de coluna na ordem reportada pela fonte
        - error: payload estruturado quando a avaliação falhou

    O documento JSON gravado em disco é `rows` (lista) no sucesso ou
    `{"error": {...}}` na falha; `columns` é derivado da primeira linha
    na leitura.
    """

    rows: List[Dict[str, Any]] = field(default_factory=list)
    columns: List[str] = field(default_factory=list)
    error: Optional[ErrorPayload] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_document(self) -> Any:
        if self.error is not None:
            return {"error": self.error.to_dict()}
        return [dict(r) for r in self.rows]

    @classmethod
    def from_document(cls, doc: Any) -> "ResultRecord":
        if isinstance(doc, dict) and "error" in doc:
            return cls(error=ErrorPayload.from_dict(doc["error"] or {}))
        if not isinstance(doc, list):
            raise ValueError(f"Result document must be a list or an error object, got {type(doc).__name__}")
        rows = [dict(r) for r in doc]
        columns = list(rows[0].keys()) if rows else []
        return cls(rows=rows, columns=columns)

    @classmethod
    def failure(cls, error: ErrorPayload) -> "ResultRecord":
        return cls(error=error)

    @classmethod
    def from_rows(cls, rows: Sequence[Mapping[str, Any]], columns: Optional[Sequence[str]] = None) -> "ResultRecord":
        rows = [dict(r) for r in rows]
        if columns is None:
            columns = list(rows[0].keys()) if rows else []
        return cls(rows=rows, columns=list(columns))


@dataclass(frozen=True)
class ResultMeta:
    """
    Metadados do último resultado persistido de um painel.

    `inputs` registra o `evaluated_at` de cada painel consumido via
    DM_getPanel no momento do dispatch; `stale_inputs` lista os inputs
    lidos do disco cujo próprio resultado estava desatualizado em
    relação às suas entradas.
    """

    evaluated_at: str
    status: PanelStatus
    row_count: int = 0
    inputs: Dict[str, str] = field(default_factory=dict)
    stale_inputs: List[str] = field(default_factory=list)
    error_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "evaluated_at": self.evaluated_at,
            "status": self.status.value,
            "row_count": self.row_count,
            "inputs": dict(self.inputs),
            "stale_inputs": list(self.stale_inputs),
            "error_type": self.error_type,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ResultMeta":
        return cls(
            evaluated_at=str(data["evaluated_at"]),
            status=PanelStatus(data.get("status", PanelStatus.UNEVALUATED.value)),
            row_count=int(data.get("row_count") or 0),
            inputs={str(k): str(v) for k, v in (data.get("inputs") or {}).items()},
            stale_inputs=[str(x) for x in (data.get("stale_inputs") or [])],
            error_type=data.get("error_type"),
        )

# src/panelflow/store/result_store.py
"""
Result Store.

Persiste o último resultado de cada painel como um documento JSON único:

    <results_dir>/.<project_id>.results<panel_id>   → linhas ou {"error": {...}}
    <results_dir>/.<project_id>.meta<panel_id>      → ResultMeta (sidecar)

Invariantes:
    - Escrita atômica (temporário no mesmo diretório + fsync + os.replace):
      leitores veem o documento anterior completo ou o novo completo
    - Sobrescrita incondicional; escritas do mesmo painel são serializadas
    - O layout do caminho é contrato público (consumidores externos leem
      o arquivo diretamente)

Limites explícitos:
    - Não apaga resultados de projetos
    - Não interpreta o conteúdo das linhas
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional, Union

from panelflow.core.exceptions import EngineConfigurationError, NotFoundError
from panelflow.core.locks import KeyedLocks
from panelflow.core.model.types import ResultMeta, ResultRecord

from .atomic import write_json_atomic


logger = logging.getLogger(__name__)


def _check_key(label: str, value: str) -> str:
    if not value or "/" in value or "\\" in value or "\x00" in value:
        raise EngineConfigurationError(
            f"Invalid {label} for the result store: {value!r}",
            details={label: value},
            hint="Ids não podem conter separadores de caminho.",
        )
    return value


class ResultStore:
    def __init__(self, results_dir: Union[str, Path]):
        self.results_dir = Path(results_dir).expanduser()
        self._locks = KeyedLocks()

    # paths -----------------------------------------------------------------

    def results_prefix(self, project_id: str) -> str:
        return str(self.results_dir / f".{_check_key('project_id', project_id)}.results")

    def results_file(self, project_id: str, panel_id: str) -> Path:
        return Path(self.results_prefix(project_id) + _check_key("panel_id", panel_id))

    def meta_file(self, project_id: str, panel_id: str) -> Path:
        project_id = _check_key("project_id", project_id)
        return self.results_dir / f".{project_id}.meta{_check_key('panel_id', panel_id)}"

    def manifest_file(self, project_id: str) -> Path:
        return self.results_dir / f".{_check_key('project_id', project_id)}.evaluation.json"

    # results ---------------------------------------------------------------

    def write(self, project_id: str, panel_id: str, record: ResultRecord) -> Path:
        path = self.results_file(project_id, panel_id)
        with self._locks.hold((project_id, panel_id)):
            write_json_atomic(path, record.to_document())
        logger.debug("wrote result %s (%s)", path.name, "ok" if record.ok else record.error.type)
        return path

    def read(self, project_id: str, panel_id: str) -> ResultRecord:
        path = self.results_file(project_id, panel_id)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise NotFoundError(
                f"No result for panel '{panel_id}' in project '{project_id}'",
                details={"project_id": project_id, "panel_id": panel_id},
            ) from None
        return ResultRecord.from_document(json.loads(text))

    def exists(self, project_id: str, panel_id: str) -> bool:
        return self.results_file(project_id, panel_id).is_file()

    # meta ------------------------------------------------------------------

    def write_meta(self, project_id: str, panel_id: str, meta: ResultMeta) -> Path:
        path = self.meta_file(project_id, panel_id)
        with self._locks.hold((project_id, panel_id, "meta")):
            write_json_atomic(path, meta.to_dict())
        return path

    def read_meta(self, project_id: str, panel_id: str) -> Optional[ResultMeta]:
        path = self.meta_file(project_id, panel_id)
        if not path.is_file():
            return None
        return ResultMeta.from_dict(json.loads(path.read_text(encoding="utf-8")))

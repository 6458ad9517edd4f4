# src/panelflow/store/atomic.py
"""
Escrita atômica de arquivos.

O arquivo temporário fica no mesmo diretório do destino para que
`os.replace` seja um swap atômico no mesmo filesystem. Cada escrita usa
um nome temporário único, então escritores concorrentes nunca
compartilham o mesmo arquivo temporário.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Optional


def write_text_atomic(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=path.name + ".", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(text)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def dumps_compact(payload: Any) -> str:
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"), allow_nan=False)


def write_json_atomic(path: Path, payload: Any, *, indent: Optional[int] = None) -> None:
    if indent is None:
        text = dumps_compact(payload)
    else:
        text = json.dumps(payload, ensure_ascii=False, indent=indent, allow_nan=False)
    write_text_atomic(path, text)

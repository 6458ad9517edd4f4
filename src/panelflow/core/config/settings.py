# src/panelflow/core/config/settings.py
"""
Configuração materializada do engine.

`EngineConfig.from_dict` converte o dicionário resolvido pelo loader em
valores tipados e validados:

    engine.results_dir            diretório do Result Store
    engine.concurrency_limit      painéis simultâneos por avaliação
    engine.timeout_per_panel      segundos por painel
    engine.cancel_grace_period    segundos entre SIGTERM e SIGKILL
    runners.<nome>                catálogo de RunnerDescriptor
    pool.max_workers_per_runner   workers vivos por runner
    pool.ready_timeout            segundos aguardando o `ready` do worker
"""

from __future__ import annotations

import sys
from copy import deepcopy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping

from panelflow.core.exceptions import EngineConfigurationError
from panelflow.core.model.types import RunnerDescriptor, RunnerMode

from .errors import ConfigError


DEFAULT_CONFIG: Dict[str, Any] = {
    "engine": {
        "results_dir": "~/.panelflow/results",
        "concurrency_limit": 4,
        "timeout_per_panel": 60,
        "cancel_grace_period": 5,
    },
    "runners": {
        "in-process": {"mode": "in-process", "runtime": "python"},
        "python-worker": {
            "mode": "subprocess",
            "runtime": "python-worker",
            "binary_path": None,
            "args": ["-m", "panelflow.runners.worker"],
        },
    },
    "pool": {
        "max_workers_per_runner": 4,
        "ready_timeout": 15,
    },
}


def _section(cfg: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = cfg.get(name) or {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Seção '{name}' deve ser um mapa, recebido: {type(value).__name__}")
    return value


def _positive(section: Mapping[str, Any], key: str, cast: type, default: Any) -> Any:
    raw = section.get(key, default)
    if isinstance(raw, bool):
        raise ConfigError(f"'{key}' deve ser numérico, recebido: {raw!r}")
    try:
        value = cast(raw)
    except (TypeError, ValueError):
        raise ConfigError(f"'{key}' deve ser numérico, recebido: {raw!r}") from None
    if value <= 0:
        raise ConfigError(f"'{key}' deve ser > 0, recebido: {raw!r}")
    return value


@dataclass(frozen=True)
class EngineConfig:
    results_dir: Path = Path("~/.panelflow/results").expanduser()
    concurrency_limit: int = 4
    timeout_per_panel: float = 60.0
    cancel_grace_period: float = 5.0
    max_workers_per_runner: int = 4
    ready_timeout: float = 15.0
    runners: Dict[str, RunnerDescriptor] = field(default_factory=dict)
    raw: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_dict(cls, cfg: Mapping[str, Any]) -> "EngineConfig":
        engine = _section(cfg, "engine")
        pool = _section(cfg, "pool")
        runners_cfg = _section(cfg, "runners")

        runners: Dict[str, RunnerDescriptor] = {}
        for name, spec in runners_cfg.items():
            if not isinstance(spec, Mapping):
                raise ConfigError(f"Runner '{name}' deve ser um mapa")
            spec = dict(spec)
            if spec.get("mode") == RunnerMode.SUBPROCESS.value and spec.get("runtime") == "python-worker":
                spec["binary_path"] = spec.get("binary_path") or sys.executable
            try:
                runners[str(name)] = RunnerDescriptor.from_dict(str(name), spec)
            except EngineConfigurationError as e:
                raise ConfigError(str(e)) from e

        return cls(
            results_dir=Path(str(engine.get("results_dir") or DEFAULT_CONFIG["engine"]["results_dir"])).expanduser(),
            concurrency_limit=_positive(engine, "concurrency_limit", int, 4),
            timeout_per_panel=_positive(engine, "timeout_per_panel", float, 60),
            cancel_grace_period=_positive(engine, "cancel_grace_period", float, 5),
            max_workers_per_runner=_positive(pool, "max_workers_per_runner", int, 4),
            ready_timeout=_positive(pool, "ready_timeout", float, 15),
            runners=runners,
            raw=deepcopy(dict(cfg)),
        )

    @classmethod
    def default(cls) -> "EngineConfig":
        return cls.from_dict(DEFAULT_CONFIG)

    def runner(self, name: str) -> RunnerDescriptor:
        """Resolve um runner do catálogo (EngineConfigurationError se desconhecido)."""
        if name == "in-process" and name not in self.runners:
            return RunnerDescriptor.in_process()
        try:
            return self.runners[name]
        except KeyError:
            raise EngineConfigurationError(
                f"Unknown runner: {name!r}",
                details={"runner": name, "known": sorted(self.runners)},
                hint="Declare o runner na seção `runners:` da configuração.",
            ) from None

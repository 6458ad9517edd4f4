# tests/core/config/test_engine_config.py
"""Testes da materialização de EngineConfig a partir do dict resolvido."""

import sys
from pathlib import Path

import pytest

from panelflow.core.config import DEFAULT_CONFIG, ConfigError, EngineConfig, deep_merge
from panelflow.core.exceptions import EngineConfigurationError
from panelflow.core.model import RunnerMode


def test_default_config_materializes():
    cfg = EngineConfig.default()
    assert cfg.concurrency_limit == 4
    assert cfg.timeout_per_panel == 60.0
    assert cfg.cancel_grace_period == 5.0
    assert cfg.max_workers_per_runner == 4
    assert cfg.results_dir == Path("~/.panelflow/results").expanduser()


def test_python_worker_defaults_to_current_interpreter():
    worker = EngineConfig.default().runner("python-worker")
    assert worker.mode is RunnerMode.SUBPROCESS
    assert worker.binary_path == sys.executable
    assert worker.command() == [sys.executable, "-m", "panelflow.runners.worker"]


def test_in_process_runner_resolves():
    runner = EngineConfig.default().runner("in-process")
    assert runner.mode is RunnerMode.IN_PROCESS


def test_unknown_runner_is_fatal():
    with pytest.raises(EngineConfigurationError) as exc:
        EngineConfig.default().runner("rust-worker")
    assert exc.value.details["runner"] == "rust-worker"


@pytest.mark.parametrize(
    "override",
    [
        {"engine": {"concurrency_limit": 0}},
        {"engine": {"timeout_per_panel": -1}},
        {"pool": {"max_workers_per_runner": 0}},
    ],
)
def test_non_positive_values_raise_config_error(override):
    with pytest.raises(ConfigError):
        EngineConfig.from_dict(deep_merge(DEFAULT_CONFIG, override))


def test_unknown_runner_mode_raises_config_error():
    cfg = deep_merge(DEFAULT_CONFIG, {"runners": {"odd": {"mode": "thread"}}})
    with pytest.raises(ConfigError):
        EngineConfig.from_dict(cfg)


def test_subprocess_runner_without_binary_raises_config_error():
    cfg = deep_merge(DEFAULT_CONFIG, {"runners": {"go-worker": {"mode": "subprocess", "runtime": "go"}}})
    with pytest.raises(ConfigError):
        EngineConfig.from_dict(cfg)

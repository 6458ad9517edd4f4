# tests/conftest.py
"""
Fixtures compartilhados para testes do panelflow.

Este módulo fornece:
- um Vault com chave mestra fixa (nunca a chave real do ambiente)
- um banco SQLite em `tmp_path` com dados determinísticos
- Registry, Result Store e EngineConfig isolados por teste
- o descritor do worker Python de referência (subprocess real)
- um gerador de runtimes falsos (scripts Python mínimos que falam o
  protocolo NDJSON, usados para simular lentidão, crash e saída inválida)

Decisões arquiteturais:
    - Nada é escrito fora de `tmp_path`
    - Runtimes falsos não importam panelflow: exercitam apenas o contrato
      de wire visto pelo engine
    - Workers reais recebem `src/` via PYTHONPATH

Invariantes:
    - A senha de teste (`SECRET`) só existe cifrada no Registry
"""

from __future__ import annotations

import os
import sqlite3
import sys
import textwrap
from pathlib import Path

import pytest

from panelflow.connectors import ConnectorInfo, ConnectorRegistry
from panelflow.core.config import DEFAULT_CONFIG, EngineConfig, deep_merge
from panelflow.core.engine import Orchestrator
from panelflow.core.model import RunnerDescriptor, RunnerMode
from panelflow.runners import RunnerDispatch, WorkerPool
from panelflow.store import ResultStore
from panelflow.vault import CredentialVault, MasterKey


SRC_DIR = Path(__file__).resolve().parents[1] / "src"

# Também é um identificador SQL válido: permite provocar "no such table: <senha>".
SECRET = "hunter2pw"


@pytest.fixture
def secret() -> str:
    return SECRET


@pytest.fixture
def master_key() -> MasterKey:
    return MasterKey.from_secret("panelflow-test-master-secret")


@pytest.fixture
def vault(master_key) -> CredentialVault:
    return CredentialVault(master_key)


@pytest.fixture
def sqlite_db(tmp_path) -> Path:
    """Banco SQLite com `numbers(n)` = 1..5 e `people(id, name)`."""
    path = tmp_path / "data.sqlite"
    conn = sqlite3.connect(str(path))
    try:
        conn.execute("CREATE TABLE numbers (n INTEGER)")
        conn.executemany("INSERT INTO numbers VALUES (?)", [(i,) for i in range(1, 6)])
        conn.execute("CREATE TABLE people (id INTEGER, name TEXT)")
        conn.executemany("INSERT INTO people VALUES (?, ?)", [(1, "ana"), (2, "bruno"), (3, "carla")])
        conn.commit()
    finally:
        conn.close()
    return path


@pytest.fixture
def registry(sqlite_db, vault) -> ConnectorRegistry:
    reg = ConnectorRegistry()
    reg.register(
        ConnectorInfo(
            type="sqlite",
            id="local",
            name="Local SQLite",
            database=str(sqlite_db),
            username="analyst",
            password=vault.encrypt(SECRET),
        )
    )
    return reg


@pytest.fixture
def results_dir(tmp_path) -> Path:
    return tmp_path / "results"


@pytest.fixture
def store(results_dir) -> ResultStore:
    return ResultStore(results_dir)


@pytest.fixture
def engine_config(results_dir) -> EngineConfig:
    cfg = deep_merge(
        DEFAULT_CONFIG,
        {
            "engine": {
                "results_dir": str(results_dir),
                "timeout_per_panel": 30,
                "cancel_grace_period": 2,
            },
            "pool": {"max_workers_per_runner": 2, "ready_timeout": 30},
        },
    )
    return EngineConfig.from_dict(cfg)


@pytest.fixture
def worker_env(monkeypatch):
    """Garante que subprocessos Python importem `panelflow` a partir de src/."""
    existing = os.environ.get("PYTHONPATH")
    value = str(SRC_DIR) if not existing else str(SRC_DIR) + os.pathsep + existing
    monkeypatch.setenv("PYTHONPATH", value)


@pytest.fixture
def python_worker(worker_env) -> RunnerDescriptor:
    return RunnerDescriptor(
        name="python-worker",
        mode=RunnerMode.SUBPROCESS,
        runtime="python-worker",
        binary_path=sys.executable,
        args=("-m", "panelflow.runners.worker"),
    )


@pytest.fixture
def dispatch():
    d = RunnerDispatch(pool=WorkerPool(max_workers_per_runner=2, ready_timeout=30, grace_period=2), grace_period=2)
    yield d
    d.shutdown()


@pytest.fixture
def orchestrator(registry, vault, store, engine_config, dispatch):
    orch = Orchestrator(registry=registry, vault=vault, store=store, config=engine_config, dispatch=dispatch)
    yield orch
    orch.shutdown()


# ---------------------------------------------------------------------------
# Runtimes falsos
# ---------------------------------------------------------------------------

_RUNTIME_PRELUDE = """\
import json
import os
import sys
import time


def send(message):
    sys.stdout.write(json.dumps(message) + "\\n")
    sys.stdout.flush()


send({"type": "ready", "runtime": "fake", "pid": os.getpid()})
"""


@pytest.fixture
def make_runtime(tmp_path):
    """
    Cria um runtime falso a partir do corpo de um loop de requests.

    O corpo recebe `req` (request já decodificado) e deve responder com
    `send(...)`. Retorna o RunnerDescriptor do runtime.
    """
    counter = {"n": 0}

    def _make(body: str, *, name: str = "fake", preamble: str = "") -> RunnerDescriptor:
        counter["n"] += 1
        script = tmp_path / f"runtime_{counter['n']}.py"
        script.write_text(
            textwrap.dedent(preamble)
            + _RUNTIME_PRELUDE
            + "for line in sys.stdin:\n"
            + "    req = json.loads(line)\n"
            + "    if req.get('type') == 'shutdown':\n"
            + "        break\n"
            + textwrap.indent(textwrap.dedent(body), "    "),
            encoding="utf-8",
        )
        return RunnerDescriptor(
            name=name,
            mode=RunnerMode.SUBPROCESS,
            runtime="fake",
            binary_path=sys.executable,
            args=(str(script),),
        )

    return _make


@pytest.fixture
def pid_file(tmp_path) -> Path:
    return tmp_path / "worker.pid"


@pytest.fixture
def slow_runtime(make_runtime, pid_file) -> RunnerDescriptor:
    """Grava o pid ao receber o request e então dorme indefinidamente."""
    return make_runtime(
        f"""
        with open({str(pid_file)!r}, "w") as fh:
            fh.write(str(os.getpid()))
        time.sleep(600)
        """,
        name="slow",
    )


@pytest.fixture
def stubborn_runtime(make_runtime, pid_file) -> RunnerDescriptor:
    """Ignora SIGTERM: só morre com SIGKILL."""
    return make_runtime(
        f"""
        with open({str(pid_file)!r}, "w") as fh:
            fh.write(str(os.getpid()))
        time.sleep(600)
        """,
        name="stubborn",
        preamble="""\
        import signal
        signal.signal(signal.SIGTERM, signal.SIG_IGN)
        """,
    )


@pytest.fixture
def crashing_runtime(make_runtime) -> RunnerDescriptor:
    return make_runtime(
        """
        sys.stderr.write("segfault simulated\\n")
        sys.stderr.flush()
        sys.exit(3)
        """,
        name="crashy",
    )


@pytest.fixture
def garbage_runtime(make_runtime) -> RunnerDescriptor:
    return make_runtime(
        """
        sys.stdout.write("this is not json\\n")
        sys.stdout.flush()
        """,
        name="garbage",
    )


@pytest.fixture
def leaky_runtime(make_runtime) -> RunnerDescriptor:
    """Devolve um erro cuja mensagem contém a senha recebida."""
    return make_runtime(
        """
        password = (req.get("connector") or {}).get("password")
        send({
            "type": "error",
            "request_id": req["request_id"],
            "error": {"type": "AuthError", "message": "login failed for password " + str(password),
                      "details": {"echo": str(password)}},
        })
        """,
        name="leaky",
    )


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


@pytest.fixture
def pid_alive():
    return _pid_alive

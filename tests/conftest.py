import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))  # noqa: E402

import core.logger as logger_mod  # noqa: E402


@pytest.fixture(autouse=True)
def _isolated_files(tmp_path, monkeypatch):
    """Route every log, cache and flag file into the test's tmp dir."""

    monkeypatch.setenv("SOLVER_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("SOLVER_LOG_LEVEL", "debug")
    monkeypatch.setenv("ERROR_LOG_FILE", str(tmp_path / "logs" / "errors.log"))
    monkeypatch.setenv("TX_LOG_FILE", str(tmp_path / "logs" / "tx_log.json"))
    monkeypatch.setenv("NONCE_CACHE_FILE", str(tmp_path / "state" / "nonce_cache.json"))
    monkeypatch.setenv("NONCE_LOG_FILE", str(tmp_path / "logs" / "nonce_log.json"))
    monkeypatch.setenv("KILL_SWITCH_FLAG_FILE", str(tmp_path / "flags" / "kill_switch.txt"))
    monkeypatch.setenv("KILL_SWITCH_LOG_FILE", str(tmp_path / "logs" / "kill_log.json"))
    monkeypatch.delenv("KILL_SWITCH", raising=False)
    monkeypatch.delenv("OPS_ALERT_WEBHOOK", raising=False)
    monkeypatch.delenv("METRICS_TOKEN", raising=False)
    monkeypatch.delenv("METRICS_PORT", raising=False)
    monkeypatch.delenv("DB_PATH", raising=False)
    yield
    logger_mod._HOOKS.clear()


@pytest.fixture
def captured():
    entries = []
    logger_mod.register_hook(entries.append)
    return entries

"""Structured JSON logger for solver modules.

Module purpose and system role:
    - Provide production-grade logging with a consistent schema.
    - Emits JSON lines keyed by intent id so a fill or refund can be traced
      across listener, pipeline and scanner output.

Integration points and dependencies:
    - ``requests`` pushes error entries to ``OPS_ALERT_WEBHOOK`` targets.
    - Other modules instantiate ``StructuredLogger`` to record events.

Simulation/test hooks:
    - Hooks allow test suites to capture log output.
    - ``SOLVER_LOG_LEVEL`` drops entries below the configured level.
"""

from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List

import requests
from hexbytes import HexBytes

LEVELS = {"debug": 10, "info": 20, "error": 40}


def _error_log_file() -> Path:
    """Return the configured error log file path."""

    return Path(os.getenv("ERROR_LOG_FILE", "logs/errors.log"))


def _threshold() -> int:
    return LEVELS.get(os.getenv("SOLVER_LOG_LEVEL", "info").lower(), LEVELS["info"])


def make_json_safe(value: Any) -> Any:
    """Convert ``value`` into something ``json.dumps`` accepts.

    Amounts larger than 2**53 are emitted as strings so downstream JSON
    consumers do not lose precision.
    """

    if isinstance(value, dict):
        return {str(k): make_json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [make_json_safe(v) for v in value]
    if isinstance(value, HexBytes):
        return value.to_0x_hex()
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, int):
        return value if abs(value) < 2**53 else str(value)
    if isinstance(value, (float, str)):
        return value
    return str(value)


def log_error(
    module: str,
    error: str,
    *,
    intent: str = "",
    chain_id: int | str | None = None,
    tx_hash: str = "",
    trace_id: str | None = None,
    **extra: Any,
) -> None:
    """Write structured error entry to ``logs/errors.log``."""

    if trace_id is None:
        trace_id = os.getenv("TRACE_ID", "")
    entry = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "module": module,
        "error": error,
        "intent": intent,
        "chain_id": chain_id,
        "tx_hash": tx_hash,
        "trace_id": trace_id,
        **extra,
    }
    path = _error_log_file()
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a") as fh:
        fh.write(json.dumps(make_json_safe(entry)) + "\n")


_HOOKS: List[Callable[[Dict[str, Any]], None]] = []


def _alert_webhooks() -> List[str]:
    return [w for w in os.getenv("OPS_ALERT_WEBHOOK", "").split(",") if w]


def _send_alert(message: str) -> None:
    for url in _alert_webhooks():
        try:  # pragma: no cover - network
            requests.post(url, json={"text": message}, timeout=5)
        except requests.RequestException as exc:
            log_error("logger", f"alert webhook failed: {exc}", event="alert_fail")


def register_hook(func: Callable[[Dict[str, Any]], None]) -> None:
    """Register ``func`` to receive every log entry."""
    _HOOKS.append(func)


def unregister_hook(func: Callable[[Dict[str, Any]], None]) -> None:
    if func in _HOOKS:
        _HOOKS.remove(func)


class StructuredLogger:
    """Write structured JSON logs to file and broadcast to hooks."""

    def __init__(self, module: str, log_file: str | None = None) -> None:
        self.module = module
        self._log_file = log_file

    @property
    def path(self) -> Path:
        # resolved per write so tests can redirect with monkeypatch.setenv
        if self._log_file is not None:
            return Path(self._log_file)
        env_var = f"{self.module.upper()}_LOG"
        log_dir = os.getenv("SOLVER_LOG_DIR", "logs")
        return Path(os.getenv(env_var, f"{log_dir}/{self.module}.json"))

    # ------------------------------------------------------------------
    def log(
        self,
        event: str,
        *,
        level: str = "info",
        intent: str = "",
        chain_id: int | str | None = None,
        tx_hash: str = "",
        error: str | None = None,
        trace_id: str | None = None,
        **extra: Any,
    ) -> None:
        """Append log entry to file and send to hooks."""

        if error and level != "error":
            level = "error"
        if LEVELS.get(level, LEVELS["info"]) < _threshold():
            return
        if trace_id is None:
            trace_id = os.getenv("TRACE_ID", "")
        entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level,
            "event": event,
            "module": self.module,
            "intent": intent,
            "chain_id": chain_id,
            "tx_hash": tx_hash,
            "error": error,
            "trace_id": trace_id,
        }
        entry.update(extra)
        entry = make_json_safe(entry)
        path = self.path
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a") as fh:
            fh.write(json.dumps(entry) + "\n")
        for hook in list(_HOOKS):
            try:
                hook(entry)
            except Exception as exc:
                # hook errors never interrupt logging
                log_error(self.module, f"hook error: {exc}", event="hook_fail", trace_id=trace_id)
        if error:
            log_error(
                self.module,
                error,
                event=event,
                intent=intent,
                chain_id=chain_id,
                tx_hash=tx_hash,
                trace_id=trace_id,
            )
            _send_alert(f"{self.module}:{event}:{intent}:{error}")

    # ------------------------------------------------------------------
    def debug(self, event: str, **kw: Any) -> None:
        self.log(event, level="debug", **kw)

    def info(self, event: str, **kw: Any) -> None:
        self.log(event, level="info", **kw)

    def error(self, event: str, error: str, **kw: Any) -> None:
        self.log(event, level="error", error=error, **kw)

"""Operational monitoring and alert agent."""

from __future__ import annotations

import os
from typing import Callable, Dict, List, Optional

import requests

from core import metrics
from core.logger import StructuredLogger
from core.store import OpenOrderStore
from core.tx_engine.kill_switch import kill_switch_triggered

LOGGER = StructuredLogger("ops_agent")


def default_checks(store: OpenOrderStore) -> Dict[str, Callable[[], bool]]:
    return {
        "kill_switch_inactive": lambda: not kill_switch_triggered(),
        "store_reachable": store.ping,
    }


class OpsAgent:
    """Monitor solver health and pause the loops when a check fails."""

    def __init__(
        self,
        health_checks: Dict[str, Callable[[], bool]],
        on_pause: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.health_checks = health_checks
        self.on_pause = on_pause
        self.paused = False

    # --------------------------------------------------------------
    def run_checks(self) -> List[str]:
        failures = []
        for name, func in self.health_checks.items():
            try:
                if not func():
                    failures.append(name)
            except Exception as exc:
                LOGGER.error("health_exception", str(exc), check=name)
                failures.append(name)
        if failures:
            LOGGER.error("health_fail", ",".join(failures), checks=failures)
            metrics.record_alert()
            self.auto_pause(reason="health_fail: " + ",".join(failures))
        else:
            LOGGER.debug("health_ok")
        return failures

    # --------------------------------------------------------------
    def auto_pause(self, reason: str) -> None:
        if self.paused:
            return
        self.paused = True
        LOGGER.error("auto_pause", reason)
        metrics.record_alert()
        if self.on_pause is not None:
            self.on_pause(reason)
        self.notify(f"solver paused: {reason}")

    def resume(self) -> None:
        self.paused = False
        LOGGER.info("resume")

    # --------------------------------------------------------------
    def notify(self, message: str) -> None:
        webhook = os.getenv("OPS_ALERT_WEBHOOK")
        if webhook:
            try:
                requests.post(webhook, json={"text": message}, timeout=5)
            except requests.RequestException as exc:
                LOGGER.log("notify_fail", error=str(exc))
        LOGGER.info("notify", message=message)

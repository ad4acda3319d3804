"""Prometheus metrics for the solver.

Module purpose and system role:
    - Count intents through each pipeline gate and refunds through the
      scanner.
    - Provide an HTTP ``/metrics`` endpoint consumable by Prometheus.

Integration points and dependencies:
    - ``prometheus_client`` counters live in a dedicated registry so tests
      can reload this module without duplicate registrations.
    - ``http.server`` serves the exposition with optional bearer auth.
"""

from __future__ import annotations

import os
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest
from prometheus_client.exposition import CONTENT_TYPE_LATEST

REGISTRY = CollectorRegistry()

INTENTS_OBSERVED = Counter(
    "solver_intents_observed_total", "Intents delivered to a filler", ["protocol"], registry=REGISTRY
)
INTENTS_FILTERED = Counter(
    "solver_intents_filtered_total", "Intents dropped by allow/block lists", ["protocol"], registry=REGISTRY
)
RULE_REJECTIONS = Counter(
    "solver_rule_rejections_total", "Intents rejected by a rule", ["protocol"], registry=REGISTRY
)
FILLS = Counter("solver_fills_total", "Confirmed fills", ["protocol"], registry=REGISTRY)
FAILURES = Counter(
    "solver_failures_total", "Pipeline failures by error type", ["protocol", "error"], registry=REGISTRY
)
SETTLEMENTS = Counter("solver_settlements_total", "Successful settlements", ["protocol"], registry=REGISTRY)
REFUNDS = Counter("solver_refunds_total", "Confirmed refunds", ["protocol"], registry=REGISTRY)
REFUND_FAILURES = Counter(
    "solver_refund_failures_total", "Refund attempts reverted to OPEN", ["protocol"], registry=REGISTRY
)
KILL_EVENTS = Counter("solver_kill_events_total", "Kill switch events", registry=REGISTRY)
ALERTS = Counter("solver_ops_alerts_total", "Ops agent alerts", registry=REGISTRY)
FILL_LATENCY = Histogram(
    "solver_fill_latency_seconds", "Detect to confirmed fill", ["protocol"], registry=REGISTRY
)


# ----------------------------------------------------------------------
# Metric update helpers
# ----------------------------------------------------------------------

def record_observed(protocol: str) -> None:
    INTENTS_OBSERVED.labels(protocol).inc()


def record_filtered(protocol: str) -> None:
    INTENTS_FILTERED.labels(protocol).inc()


def record_rule_rejection(protocol: str) -> None:
    RULE_REJECTIONS.labels(protocol).inc()


def record_fill(protocol: str, latency: float) -> None:
    FILLS.labels(protocol).inc()
    FILL_LATENCY.labels(protocol).observe(latency)


def record_failure(protocol: str, error: Exception) -> None:
    FAILURES.labels(protocol, type(error).__name__).inc()


def record_settlement(protocol: str) -> None:
    SETTLEMENTS.labels(protocol).inc()


def record_refund(protocol: str) -> None:
    REFUNDS.labels(protocol).inc()


def record_refund_failure(protocol: str) -> None:
    REFUND_FAILURES.labels(protocol).inc()


def record_kill_event() -> None:
    KILL_EVENTS.inc()


def record_alert() -> None:
    ALERTS.inc()


# ----------------------------------------------------------------------
# Metrics server
# ----------------------------------------------------------------------

class _Handler(BaseHTTPRequestHandler):
    """Serve metrics data for Prometheus scraping."""

    def do_GET(self) -> None:  # pragma: no cover - trivial
        token = os.getenv("METRICS_TOKEN")
        if token and self.headers.get("Authorization") != f"Bearer {token}":
            self.send_response(401)
            self.end_headers()
            return
        if self.path != "/metrics":
            self.send_response(404)
            self.end_headers()
            return
        body = generate_latest(REGISTRY)
        self.send_response(200)
        self.send_header("Content-Type", CONTENT_TYPE_LATEST)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args: object) -> None:
        return


class MetricsServer:
    """Background metrics HTTP server."""

    def __init__(self, host: str = "0.0.0.0", port: int | None = None) -> None:
        port = int(os.getenv("METRICS_PORT", port if port is not None else 8000))
        try:
            self.server = HTTPServer((host, port), _Handler)
        except OSError as exc:  # pragma: no cover - runtime check
            if "Address already in use" in str(exc):
                raise OSError(
                    f"Port {port} already in use. Set METRICS_PORT or metrics_port."
                ) from exc
            raise
        self.thread = threading.Thread(target=self.server.serve_forever, daemon=True)

    def start(self) -> None:
        self.thread.start()

    def stop(self) -> None:
        self.server.shutdown()
        self.thread.join()
        self.server.server_close()

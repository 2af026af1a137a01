"""
File: instrumentation.py
Purpose: Prometheus metrics collectors used across the incident server

Exports:
  - REQUESTS(route, method, status) / LATENCY(route, method): HTTP middleware metrics
  - STORE_TIME(op): persistence operation timing histogram
  - TOOL_CALLS(capability, outcome): capability invocations through the dispatcher
  - SYNC_* gauges: last sync pass aggregates, kept on their own registry so the
    batch job can push them to a Pushgateway without the HTTP series
"""

import asyncio
import logging
import time
from typing import Any, Dict

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    push_to_gateway,
)

log = logging.getLogger("incident-server.metrics")

REGISTRY = CollectorRegistry(auto_describe=True)
SYNC_REGISTRY = CollectorRegistry(auto_describe=True)

REQUESTS = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["route", "method", "status"],
    registry=REGISTRY,
)

LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    labelnames=["route", "method"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10),
    registry=REGISTRY,
)

STORE_TIME = Histogram(
    "incident_store_seconds",
    "Persistence operation durations in seconds",
    labelnames=["op"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2),
    registry=REGISTRY,
)

TOOL_CALLS = Counter(
    "capability_calls_total",
    "Capability invocations handled by the dispatcher",
    labelnames=["capability", "outcome"],
    registry=REGISTRY,
)

SYNC_FOUND = Gauge("incident_sync_found", "Incidents found by the last sync pass", registry=SYNC_REGISTRY)
SYNC_SYNCED = Gauge("incident_sync_synced", "Incidents written to the corpus by the last sync pass", registry=SYNC_REGISTRY)
SYNC_FAILED = Gauge("incident_sync_failed", "Incidents that failed in the last sync pass", registry=SYNC_REGISTRY)
SYNC_SKIPPED = Gauge("incident_sync_skipped", "Incidents skipped after exhausting sync attempts", registry=SYNC_REGISTRY)
SYNC_DURATION = Gauge("incident_sync_duration_seconds", "Duration of the last sync pass", registry=SYNC_REGISTRY)
SYNC_LAST_RUN = Gauge("incident_sync_last_run_timestamp_seconds", "Unix time of the last sync pass", registry=SYNC_REGISTRY)


def setup_metrics(app):
    """Attach registry to app.state for /metrics endpoint to read."""
    app.state.prom_registry = REGISTRY


def render_metrics():
    """Return (content_type, payload) for a Starlette/FastAPI Response."""
    return CONTENT_TYPE_LATEST, generate_latest(REGISTRY) + generate_latest(SYNC_REGISTRY)


class PrometheusMetricsSink:
    """Metrics sink for the sync pipeline: sets gauges and optionally pushes them."""

    def __init__(self, pushgateway_url: str = "", job: str = "incident-corpus-sync"):
        self.pushgateway_url = pushgateway_url
        self.job = job

    async def emit(self, metrics: Dict[str, Any]) -> None:
        SYNC_FOUND.set(metrics.get("found", 0))
        SYNC_SYNCED.set(metrics.get("synced", 0))
        SYNC_FAILED.set(metrics.get("failed", 0))
        SYNC_SKIPPED.set(metrics.get("skipped", 0))
        SYNC_DURATION.set(metrics.get("duration_ms", 0) / 1000.0)
        SYNC_LAST_RUN.set(time.time())
        if self.pushgateway_url:
            await asyncio.to_thread(
                push_to_gateway, self.pushgateway_url, job=self.job, registry=SYNC_REGISTRY
            )
            log.debug(f"Pushed sync metrics to {self.pushgateway_url}")

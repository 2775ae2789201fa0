"""Prometheus metrics helpers for the upstream client and the web service."""
from __future__ import annotations

import os
import time
from typing import Iterable

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

REGISTRY = CollectorRegistry()

_ENV = (os.getenv("APP_ENV") or "prod").strip() or "prod"


def labels(service: str) -> dict[str, str]:
    return {"env": _ENV, "service": service}


acedata_requests_total = Counter(
    "acedata_requests_total",
    "Total upstream AceData requests grouped by operation and outcome",
    labelnames=("op", "result", "env", "service"),
    registry=REGISTRY,
)

acedata_request_duration_seconds = Histogram(
    "acedata_request_duration_seconds",
    "Duration of upstream AceData requests",
    labelnames=("op", "env", "service"),
    registry=REGISTRY,
)

api_responses_total = Counter(
    "api_responses_total",
    "HTTP responses served by the proxy grouped by route and status",
    labelnames=("route", "status", "env", "service"),
    registry=REGISTRY,
)

task_callback_total = Counter(
    "task_callback_total",
    "Total task completion callbacks received from upstream",
    labelnames=("status", "env", "service"),
    registry=REGISTRY,
)

process_uptime_seconds = Gauge(
    "process_uptime_seconds",
    "Process uptime in seconds",
    registry=REGISTRY,
)

_START_TIME = time.time()


def render_metrics() -> bytes:
    """Return the current metrics payload in Prometheus text format."""

    process_uptime_seconds.set(max(0.0, time.time() - _START_TIME))
    return generate_latest(REGISTRY)


__all__: Iterable[str] = [
    "REGISTRY",
    "acedata_requests_total",
    "acedata_request_duration_seconds",
    "api_responses_total",
    "task_callback_total",
    "process_uptime_seconds",
    "labels",
    "render_metrics",
]

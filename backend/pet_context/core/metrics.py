"""Prometheus metrics instrumentation."""

from __future__ import annotations

from fastapi import Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()

REQUEST_COUNT = Counter(
    "petctx_requests_total",
    "Total HTTP requests",
    labelnames=("endpoint", "method", "status"),
    registry=REGISTRY,
)

REQUEST_LATENCY = Histogram(
    "petctx_request_latency_seconds",
    "Latency of HTTP requests",
    labelnames=("endpoint", "method"),
    registry=REGISTRY,
)

SYNC_EVENTS = Counter(
    "petctx_sync_events_total",
    "Change events processed by the index synchronizer",
    labelnames=("event_type", "state"),
    registry=REGISTRY,
)

SYNC_RETRIES = Counter(
    "petctx_sync_retries_total",
    "Retried index mutation attempts",
    registry=REGISTRY,
)

RETRIEVAL_BRANCHES = Counter(
    "petctx_retrieval_branches_total",
    "Retrieval branch outcomes",
    labelnames=("branch", "status"),
    registry=REGISTRY,
)

RETRIEVAL_LATENCY = Histogram(
    "petctx_retrieval_seconds",
    "Hybrid retrieval duration",
    registry=REGISTRY,
)

INDEX_SIZE = Gauge(
    "petctx_index_entries",
    "Number of live vector entries",
    registry=REGISTRY,
)


def metrics_response() -> Response:
    """Return Prometheus metrics as an HTTP response."""
    payload = generate_latest(REGISTRY)
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)


__all__ = [
    "REGISTRY",
    "REQUEST_COUNT",
    "REQUEST_LATENCY",
    "SYNC_EVENTS",
    "SYNC_RETRIES",
    "RETRIEVAL_BRANCHES",
    "RETRIEVAL_LATENCY",
    "INDEX_SIZE",
    "metrics_response",
]

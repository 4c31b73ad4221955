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
    "charc_requests_total",
    "Total HTTP requests",
    labelnames=("endpoint", "method", "status"),
    registry=REGISTRY,
)

SEARCH_LATENCY = Histogram(
    "charc_search_latency_seconds",
    "Latency of hybrid search queries",
    labelnames=("vector",),
    registry=REGISTRY,
)

PAGES_FETCHED = Counter(
    "charc_history_pages_total",
    "History pages fetched from the remote API",
    labelnames=("method",),
    registry=REGISTRY,
)

MESSAGES_FETCHED = Counter(
    "charc_messages_fetched_total",
    "Messages yielded by the fetch engine",
    labelnames=("method",),
    registry=REGISTRY,
)

RATE_LIMITS = Counter(
    "charc_rate_limits_total",
    "Rate-limit signals surfaced by the remote API",
    registry=REGISTRY,
)

TAKEOUT_SESSIONS = Counter(
    "charc_takeout_sessions_total",
    "Takeout session lifecycle transitions",
    labelnames=("event",),
    registry=REGISTRY,
)

EMBEDDINGS_WRITTEN = Counter(
    "charc_embeddings_total",
    "Embedding vectors processed",
    labelnames=("status",),
    registry=REGISTRY,
)

JOB_DURATION = Histogram(
    "charc_job_duration_seconds",
    "Duration of export and embed jobs",
    labelnames=("kind", "result"),
    registry=REGISTRY,
)

ARCHIVED_MESSAGES = Gauge(
    "charc_archived_messages",
    "Number of messages stored in the archive",
    registry=REGISTRY,
)


def metrics_response() -> Response:
    """Return Prometheus metrics as an HTTP response."""
    payload = generate_latest(REGISTRY)
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)


__all__ = [
    "REGISTRY",
    "REQUEST_COUNT",
    "SEARCH_LATENCY",
    "PAGES_FETCHED",
    "MESSAGES_FETCHED",
    "RATE_LIMITS",
    "TAKEOUT_SESSIONS",
    "EMBEDDINGS_WRITTEN",
    "JOB_DURATION",
    "ARCHIVED_MESSAGES",
    "metrics_response",
]

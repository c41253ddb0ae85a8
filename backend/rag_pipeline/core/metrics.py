"""Prometheus metrics instrumentation."""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

REGISTRY = CollectorRegistry()

INGEST_DURATION = Histogram(
    "ragp_ingest_duration_seconds",
    "Ingest pipeline duration",
    labelnames=("mime_type",),
    registry=REGISTRY,
)

INGEST_TOTAL = Counter(
    "ragp_ingest_total",
    "Ingest runs by outcome",
    labelnames=("status",),
    registry=REGISTRY,
)

INDEX_SIZE = Gauge(
    "ragp_index_chunks",
    "Number of chunks stored in the vector store",
    registry=REGISTRY,
)

RETRIEVAL_RESULTS = Histogram(
    "ragp_retrieval_results",
    "Chunks returned per retrieval call",
    buckets=(0, 1, 2, 4, 8, 16, 32),
    registry=REGISTRY,
)


def render_metrics() -> str:
    """Return the registry in Prometheus text exposition format."""
    return generate_latest(REGISTRY).decode("utf-8")


__all__ = [
    "REGISTRY",
    "INGEST_DURATION",
    "INGEST_TOTAL",
    "INDEX_SIZE",
    "RETRIEVAL_RESULTS",
    "render_metrics",
]

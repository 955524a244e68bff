"""Metrics utilities for the discovery pipeline."""
from __future__ import annotations

from prometheus_client import Counter, Histogram

ANALYSIS_CALLS = Counter(
    "microfinder_analysis_calls_total",
    "Count of vision analysis calls by outcome",
    labelnames=("provider", "outcome"),
)

ANALYSIS_LATENCY = Histogram(
    "microfinder_analysis_latency_seconds",
    "Latency observed for outbound vision analysis calls",
    labelnames=("provider", "outcome"),
    buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0),
)

STORE_OPERATIONS = Counter(
    "microfinder_store_operations_total",
    "Count of discovery store operations by outcome",
    labelnames=("operation", "outcome"),
)


def record_analysis_call(provider: str, outcome: str, latency: float) -> None:
    """Record the outcome and latency of one analysis call."""

    ANALYSIS_CALLS.labels(provider=provider, outcome=outcome).inc()
    ANALYSIS_LATENCY.labels(provider=provider, outcome=outcome).observe(latency)


def record_store_operation(operation: str, outcome: str) -> None:
    """Record one repository operation against the discovery store."""

    STORE_OPERATIONS.labels(operation=operation, outcome=outcome).inc()

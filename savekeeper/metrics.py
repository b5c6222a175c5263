"""Prometheus metrics for the retention daemon.

Environment Variables:
    METRICS_ENABLED: Enable/disable metrics collection (default: true)

Metric Naming Convention:
    savekeeper_{metric_name}_{unit}

All helpers are no-ops until :func:`configure_metrics` has enabled metrics.
"""

from __future__ import annotations

import os
from typing import Any

# Global state
_metrics_enabled: bool = False
_metrics_initialized: bool = False

_retention_metrics: dict[str, Any] = {}


def configure_metrics() -> None:
    """Configure Prometheus metrics.

    Environment Variables:
        METRICS_ENABLED: Set to "false" to disable metrics (default: "true")
    """
    global _metrics_enabled, _metrics_initialized

    enabled = os.environ.get("METRICS_ENABLED", "true").lower() == "true"
    _metrics_enabled = enabled

    if not enabled:
        return

    if _metrics_initialized:
        return

    _metrics_initialized = True
    _init_retention_metrics()


def _init_retention_metrics() -> None:
    """Initialize retention sweep metrics."""
    from prometheus_client import Counter, Gauge, Histogram

    _retention_metrics["sweeps_total"] = Counter(
        "savekeeper_sweeps_total",
        "Retention sweeps by outcome",
        ["status"],
    )

    _retention_metrics["records_evicted_total"] = Counter(
        "savekeeper_records_evicted_total",
        "Saves evicted by the retention policy",
        ["reason"],
    )

    _retention_metrics["removal_failures_total"] = Counter(
        "savekeeper_removal_failures_total",
        "Evicted saves whose file could not be removed",
    )

    _retention_metrics["records_retained"] = Gauge(
        "savekeeper_records_retained",
        "Saves retained after the last sweep",
    )

    _retention_metrics["sweep_duration_seconds"] = Histogram(
        "savekeeper_sweep_duration_seconds",
        "Time spent scanning, rebalancing and removing files",
        buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
    )


def start_metrics_server(port: int) -> None:
    """Expose /metrics over HTTP on a background thread."""
    if not _metrics_enabled:
        return

    from prometheus_client import start_http_server

    start_http_server(port)


def inc_sweeps(status: str) -> None:
    """Increment sweeps counter.

    Args:
        status: Sweep outcome (success, dry_run, error)
    """
    if not _metrics_enabled or "sweeps_total" not in _retention_metrics:
        return
    _retention_metrics["sweeps_total"].labels(status=status).inc()


def inc_records_evicted(reason: str) -> None:
    """Increment evicted records counter.

    Args:
        reason: Eviction reason (thinned, over_capacity)
    """
    if not _metrics_enabled or "records_evicted_total" not in _retention_metrics:
        return
    _retention_metrics["records_evicted_total"].labels(reason=reason).inc()


def inc_removal_failures() -> None:
    """Increment failed file removals counter."""
    if not _metrics_enabled or "removal_failures_total" not in _retention_metrics:
        return
    _retention_metrics["removal_failures_total"].inc()


def set_records_retained(count: int) -> None:
    """Set the number of saves retained after a sweep."""
    if not _metrics_enabled or "records_retained" not in _retention_metrics:
        return
    _retention_metrics["records_retained"].set(count)


def observe_sweep_duration(duration: float) -> None:
    """Record sweep duration in seconds."""
    if not _metrics_enabled or "sweep_duration_seconds" not in _retention_metrics:
        return
    _retention_metrics["sweep_duration_seconds"].observe(duration)

"""Prometheus metrics helpers for catalog sync."""

from __future__ import annotations

from typing import Literal

from prometheus_client import Counter, Gauge, Histogram

_job_counter = Counter(
    "catalog_sync_jobs_total",
    "Catalog sync jobs by jurisdiction and terminal status.",
    ["jurisdiction", "status"],
)
_job_duration = Histogram(
    "catalog_sync_job_duration_seconds",
    "Duration of catalog sync jobs in seconds.",
    buckets=(0.5, 1, 2, 5, 10, 30, 60, 120, 300, 600),
)
_records_changed = Counter(
    "catalog_sync_records_changed_total",
    "Catalog rows changed by sync jobs, by change type.",
    ["jurisdiction", "change_type"],
)
_skipped_unchanged = Counter(
    "catalog_sync_skipped_unchanged_total",
    "Sync jobs short-circuited because the source file was unchanged.",
    ["jurisdiction"],
)
_source_healthy = Gauge(
    "catalog_sync_source_healthy",
    "Whether a catalog source is currently healthy (1) or not (0).",
    ["jurisdiction", "data_source"],
)
_enabled_gauge = Gauge(
    "catalog_sync_enabled",
    "Whether catalog sync is enabled (1) or disabled (0).",
)


def record_sync_enabled(enabled: bool) -> None:
    _enabled_gauge.set(1 if enabled else 0)


def record_job(
    *,
    jurisdiction: str,
    status: Literal["completed", "failed"],
    duration_seconds: float | None,
    changes: dict[str, int] | None = None,
    skipped_unchanged: bool = False,
) -> None:
    """Capture metrics for a job that reached a terminal state."""

    _job_counter.labels(jurisdiction=jurisdiction, status=status).inc()
    if duration_seconds is not None:
        _job_duration.observe(duration_seconds)
    if skipped_unchanged:
        _skipped_unchanged.labels(jurisdiction=jurisdiction).inc()
    for change_type, count in (changes or {}).items():
        if count:
            _records_changed.labels(jurisdiction=jurisdiction, change_type=change_type).inc(count)


def record_source_health(*, jurisdiction: str, data_source: str, healthy: bool) -> None:
    _source_healthy.labels(jurisdiction=jurisdiction, data_source=data_source).set(1 if healthy else 0)

"""
Read-side helpers for sync history and source health.

The REST views and CLI consume these to build the health dashboard, recent
job listings, job detail payloads and daily change counts, keeping the
SQLAlchemy logic in one place.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import func
from sqlalchemy.exc import NoResultFound
from sqlalchemy.orm import Session

from catalog_app.models import ChangeType, ProductChange, SourceConfig, SyncJob, SyncJobStatus, db

from .health import as_utc, grade_source_health

DEFAULT_JOB_LIMIT = 20
MAX_JOB_LIMIT = 100
DEFAULT_CHANGE_DAYS = 30
MAX_CHANGE_DAYS = 365


def _isoformat(value: datetime | None) -> str | None:
    value = as_utc(value)
    return value.isoformat() if value else None


def _coerce_positive_int(value: Any, *, fallback: int, maximum: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return fallback
    if number <= 0:
        return fallback
    return min(number, maximum)


def coerce_status(value: str | None) -> SyncJobStatus | None:
    if value is None or value == "":
        return None
    try:
        return SyncJobStatus(str(value).lower())
    except ValueError as exc:
        raise ValueError(f"Unknown job status '{value}'.") from exc


def serialize_job(job: SyncJob) -> dict[str, Any]:
    return {
        "id": job.id,
        "source_id": job.source_id,
        "jurisdiction": job.jurisdiction,
        "data_source": job.data_source,
        "status": job.status.value,
        "triggered_by": job.triggered_by.value,
        "forced": job.forced,
        "fetch_location": job.fetch_location,
        "started_at": _isoformat(job.started_at),
        "finished_at": _isoformat(job.finished_at),
        "duration_ms": job.duration_ms,
        **job.counts(),
        "fingerprint": job.fingerprint,
        "skipped_unchanged": job.skipped_unchanged,
        "change_rate": job.change_rate,
        "anomaly_flags": job.anomaly_flags or {},
        "parse_stats": job.parse_stats_json or {},
        "error_stage": job.error_stage,
        "error_message": job.error_message,
        "error_details": job.error_details or {},
    }


@dataclass(slots=True)
class SourceHealthRow:
    """One dashboard row: source config joined with its health."""

    source: dict[str, Any]
    last_sync_at: str | None
    last_success_at: str | None
    consecutive_failures: int
    total_syncs: int
    total_failures: int
    current_record_count: int
    baseline_record_count: int | None
    record_count_pct: float | None
    failure_rate_pct: float | None
    hours_since_success: float | None
    is_healthy: bool
    health_message: str | None
    status: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "last_sync_at": self.last_sync_at,
            "last_success_at": self.last_success_at,
            "consecutive_failures": self.consecutive_failures,
            "total_syncs": self.total_syncs,
            "total_failures": self.total_failures,
            "current_record_count": self.current_record_count,
            "baseline_record_count": self.baseline_record_count,
            "record_count_pct": self.record_count_pct,
            "failure_rate_pct": self.failure_rate_pct,
            "hours_since_success": self.hours_since_success,
            "is_healthy": self.is_healthy,
            "health_message": self.health_message,
            "status": self.status,
        }


class SyncReportService:
    """Facade for sync history queries."""

    def __init__(self, session: Session | None = None) -> None:
        self.session: Session = session or db.session

    # ---------------------------------------------------------------------
    # Health
    # ---------------------------------------------------------------------

    def source_health_row(self, source: SourceConfig, *, now: datetime | None = None) -> SourceHealthRow:
        health = source.health
        grade = grade_source_health(health, now=now)
        if health is None:
            return SourceHealthRow(
                source=source.to_dict(),
                last_sync_at=None,
                last_success_at=None,
                consecutive_failures=0,
                total_syncs=0,
                total_failures=0,
                current_record_count=0,
                baseline_record_count=None,
                record_count_pct=None,
                failure_rate_pct=None,
                hours_since_success=None,
                is_healthy=True,
                health_message="Never synced",
                status=grade.status.value,
            )

        record_count_pct = None
        if health.baseline_record_count:
            record_count_pct = round(health.current_record_count / health.baseline_record_count * 100, 2)
        failure_rate_pct = None
        if health.total_syncs:
            failure_rate_pct = round(health.total_failures / health.total_syncs * 100, 2)

        return SourceHealthRow(
            source=source.to_dict(),
            last_sync_at=_isoformat(health.last_sync_at),
            last_success_at=_isoformat(health.last_success_at),
            consecutive_failures=health.consecutive_failures,
            total_syncs=health.total_syncs,
            total_failures=health.total_failures,
            current_record_count=health.current_record_count,
            baseline_record_count=health.baseline_record_count,
            record_count_pct=record_count_pct,
            failure_rate_pct=failure_rate_pct,
            hours_since_success=grade.hours_since_success,
            is_healthy=health.is_healthy,
            health_message=health.health_message,
            status=grade.status.value,
        )

    def health_dashboard(self, *, now: datetime | None = None) -> list[SourceHealthRow]:
        sources = self.session.query(SourceConfig).order_by(SourceConfig.jurisdiction, SourceConfig.data_source).all()
        return [self.source_health_row(source, now=now) for source in sources]

    def jurisdiction_overview(self, jurisdiction: str) -> dict[str, Any]:
        code = jurisdiction.strip().upper()
        sources = (
            self.session.query(SourceConfig)
            .filter(SourceConfig.jurisdiction == code)
            .order_by(SourceConfig.data_source)
            .all()
        )
        if not sources:
            raise NoResultFound(f"No sources configured for jurisdiction {code}.")
        return {
            "jurisdiction": code,
            "sources": [self.source_health_row(source).as_dict() for source in sources],
            "recent_jobs": [serialize_job(job) for job in self.recent_jobs(limit=5, jurisdiction=code)],
        }

    # ---------------------------------------------------------------------
    # Jobs
    # ---------------------------------------------------------------------

    def recent_jobs(
        self,
        *,
        limit: Any = DEFAULT_JOB_LIMIT,
        jurisdiction: str | None = None,
        status: str | SyncJobStatus | None = None,
    ) -> list[SyncJob]:
        resolved_limit = _coerce_positive_int(limit, fallback=DEFAULT_JOB_LIMIT, maximum=MAX_JOB_LIMIT)
        query = self.session.query(SyncJob)
        if jurisdiction:
            query = query.filter(SyncJob.jurisdiction == jurisdiction.strip().upper())
        resolved_status = status if isinstance(status, SyncJobStatus) else coerce_status(status)
        if resolved_status is not None:
            query = query.filter(SyncJob.status == resolved_status)
        return query.order_by(SyncJob.started_at.desc(), SyncJob.id.desc()).limit(resolved_limit).all()

    def get_job(self, job_id: int) -> SyncJob:
        job = self.session.get(SyncJob, job_id)
        if job is None:
            raise NoResultFound(f"Sync job {job_id} not found.")
        return job

    def job_detail(self, job_id: int) -> dict[str, Any]:
        job = self.get_job(job_id)
        payload = serialize_job(job)
        payload["changes"] = [change.to_dict() for change in job.changes]
        payload["change_counts"] = {
            change_type.value: sum(1 for change in job.changes if change.change_type is change_type)
            for change_type in ChangeType
        }
        return payload

    # ---------------------------------------------------------------------
    # Changes
    # ---------------------------------------------------------------------

    def daily_changes(
        self,
        *,
        days: Any = DEFAULT_CHANGE_DAYS,
        jurisdiction: str | None = None,
        now: datetime | None = None,
    ) -> list[dict[str, Any]]:
        """Change counts per day and change type, newest day first."""
        resolved_days = _coerce_positive_int(days, fallback=DEFAULT_CHANGE_DAYS, maximum=MAX_CHANGE_DAYS)
        since = (now or datetime.now(timezone.utc)) - timedelta(days=resolved_days)
        day = func.date(ProductChange.created_at)
        query = self.session.query(
            day.label("day"),
            ProductChange.jurisdiction,
            ProductChange.change_type,
            func.count(ProductChange.id),
        ).filter(ProductChange.created_at >= since)
        if jurisdiction:
            query = query.filter(ProductChange.jurisdiction == jurisdiction.strip().upper())
        rows = query.group_by(day, ProductChange.jurisdiction, ProductChange.change_type).all()

        buckets: dict[tuple[str, str], dict[str, Any]] = {}
        for day_value, code, change_type, count in rows:
            key = (str(day_value), code)
            bucket = buckets.setdefault(
                key,
                {"date": str(day_value), "jurisdiction": code, **{ct.value: 0 for ct in ChangeType}, "total": 0},
            )
            bucket[change_type.value] += count
            bucket["total"] += count
        return sorted(buckets.values(), key=lambda item: (item["date"], item["jurisdiction"]), reverse=True)

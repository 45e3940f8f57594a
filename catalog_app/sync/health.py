"""
Rolling per-source health.

``record_job_outcome`` is called for every job that reaches a terminal state.
``grade_source_health`` derives the dashboard status from freshness,
consecutive failures and success rate; the worst of the three wins.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from flask import current_app, has_app_context
from sqlalchemy import func
from sqlalchemy.orm import Session

from catalog_app.models import CatalogEntry, SourceHealth, SyncJob, SyncJobStatus, db

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_THRESHOLD = 3
SUCCESS_MESSAGE = "Last sync successful"

# Hours since the last successful sync.
FRESHNESS_DEGRADED_HOURS = 24
FRESHNESS_UNHEALTHY_HOURS = 72
FRESHNESS_CRITICAL_HOURS = 168

CONSECUTIVE_UNHEALTHY = 3
CONSECUTIVE_CRITICAL = 6

SUCCESS_RATE_HEALTHY = 95.0
SUCCESS_RATE_DEGRADED = 80.0
SUCCESS_RATE_UNHEALTHY = 50.0


class HealthStatus(str, enum.Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    CRITICAL = "critical"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]


_SEVERITY = {
    HealthStatus.HEALTHY: 0,
    HealthStatus.DEGRADED: 1,
    HealthStatus.UNHEALTHY: 2,
    HealthStatus.CRITICAL: 3,
}


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive timestamps read back from SQLite."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _failure_threshold() -> int:
    if has_app_context():
        return int(current_app.config.get("CATALOG_SYNC_FAILURE_THRESHOLD", DEFAULT_FAILURE_THRESHOLD))
    return DEFAULT_FAILURE_THRESHOLD


def get_or_create_health(session: Session, source_id: int) -> SourceHealth:
    health = session.query(SourceHealth).filter_by(source_id=source_id).one_or_none()
    if health is None:
        health = SourceHealth(
            source_id=source_id,
            consecutive_failures=0,
            total_syncs=0,
            total_failures=0,
            current_record_count=0,
            is_healthy=True,
        )
        session.add(health)
    return health


def active_record_count(session: Session, jurisdiction: str) -> int:
    return (
        session.query(func.count(CatalogEntry.id))
        .filter(CatalogEntry.jurisdiction == jurisdiction, CatalogEntry.active.is_(True))
        .scalar()
        or 0
    )


def record_job_outcome(
    job: SyncJob,
    *,
    session: Session | None = None,
    failure_threshold: int | None = None,
) -> SourceHealth | None:
    """
    Fold a terminal job into its source's health row.

    Success resets the failure streak and refreshes the record count; the first
    success also fixes the baseline. Failure extends the streak and flips the
    source unhealthy once the streak reaches the threshold. The caller commits.
    """

    if not job.is_terminal:
        raise ValueError(f"Sync job {job.id} is {job.status.value}; health is only updated for terminal jobs.")
    if job.source_id is None:
        return None

    session = session or db.session
    threshold = failure_threshold or _failure_threshold()
    health = get_or_create_health(session, job.source_id)

    health.last_job_id = job.id
    health.last_sync_at = job.finished_at or datetime.now(timezone.utc)
    health.total_syncs = (health.total_syncs or 0) + 1

    if job.status is SyncJobStatus.COMPLETED:
        count = active_record_count(session, job.jurisdiction)
        health.consecutive_failures = 0
        health.is_healthy = True
        health.health_message = SUCCESS_MESSAGE
        health.last_success_at = health.last_sync_at
        health.last_fingerprint = job.fingerprint or health.last_fingerprint
        health.current_record_count = count
        if health.baseline_record_count is None:
            health.baseline_record_count = count
    else:
        health.consecutive_failures = (health.consecutive_failures or 0) + 1
        health.total_failures = (health.total_failures or 0) + 1
        streak = health.consecutive_failures
        if streak >= threshold:
            health.is_healthy = False
            health.health_message = f"{streak} consecutive failures: {job.error_message}"
            logger.error(
                "Catalog source marked unhealthy",
                extra={
                    "catalog_sync_jurisdiction": job.jurisdiction,
                    "catalog_sync_data_source": job.data_source,
                    "catalog_sync_consecutive_failures": streak,
                },
            )
        else:
            health.health_message = f"Last sync failed ({streak}/{threshold}): {job.error_message}"

    session.flush()
    return health


# ----------------------------------------------------------------------
# Graded status
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class HealthGrade:
    status: HealthStatus
    freshness: HealthStatus
    failures: HealthStatus
    success_rate: HealthStatus
    hours_since_success: float | None
    success_rate_pct: float | None

    def as_dict(self) -> dict:
        return {
            "status": self.status.value,
            "freshness": self.freshness.value,
            "failures": self.failures.value,
            "success_rate": self.success_rate.value,
            "hours_since_success": self.hours_since_success,
            "success_rate_pct": self.success_rate_pct,
        }


def grade_freshness(hours_since_success: float | None) -> HealthStatus:
    if hours_since_success is None:
        return HealthStatus.UNHEALTHY
    if hours_since_success <= FRESHNESS_DEGRADED_HOURS:
        return HealthStatus.HEALTHY
    if hours_since_success <= FRESHNESS_UNHEALTHY_HOURS:
        return HealthStatus.DEGRADED
    if hours_since_success <= FRESHNESS_CRITICAL_HOURS:
        return HealthStatus.UNHEALTHY
    return HealthStatus.CRITICAL


def grade_failures(consecutive_failures: int) -> HealthStatus:
    if consecutive_failures <= 0:
        return HealthStatus.HEALTHY
    if consecutive_failures < CONSECUTIVE_UNHEALTHY:
        return HealthStatus.DEGRADED
    if consecutive_failures < CONSECUTIVE_CRITICAL:
        return HealthStatus.UNHEALTHY
    return HealthStatus.CRITICAL


def grade_success_rate(success_rate_pct: float | None) -> HealthStatus:
    if success_rate_pct is None or success_rate_pct >= SUCCESS_RATE_HEALTHY:
        return HealthStatus.HEALTHY
    if success_rate_pct >= SUCCESS_RATE_DEGRADED:
        return HealthStatus.DEGRADED
    if success_rate_pct >= SUCCESS_RATE_UNHEALTHY:
        return HealthStatus.UNHEALTHY
    return HealthStatus.CRITICAL


def grade_source_health(health: SourceHealth | None, *, now: datetime | None = None) -> HealthGrade:
    now = now or datetime.now(timezone.utc)
    hours = None
    success_rate = None
    streak = 0
    if health is not None:
        last_success = as_utc(health.last_success_at)
        if last_success is not None:
            hours = round(max((now - last_success).total_seconds(), 0) / 3600, 2)
        if health.total_syncs:
            success_rate = round((health.total_syncs - health.total_failures) / health.total_syncs * 100, 2)
        streak = health.consecutive_failures or 0

    freshness = grade_freshness(hours)
    failures = grade_failures(streak)
    rate = grade_success_rate(success_rate)
    worst = max((freshness, failures, rate), key=lambda status: status.severity)
    return HealthGrade(
        status=worst,
        freshness=freshness,
        failures=failures,
        success_rate=rate,
        hours_since_success=hours,
        success_rate_pct=success_rate,
    )

from datetime import datetime, timedelta, timezone

import pytest
from sync_helpers import StubFetcher, csv_bytes, product_rows

from catalog_app.models import SourceHealth, SyncJob, SyncJobStatus, db
from catalog_app.sync.health import (
    HealthStatus,
    grade_failures,
    grade_freshness,
    grade_source_health,
    grade_success_rate,
    record_job_outcome,
)
from catalog_app.sync.orchestrator import SyncOrchestrator


def _finished_job(source, status, *, message=None, fingerprint=None):
    job = SyncJob(
        source_id=source.id,
        jurisdiction=source.jurisdiction,
        data_source=source.data_source,
        status=SyncJobStatus.PENDING,
        started_at=datetime.now(timezone.utc),
        fingerprint=fingerprint,
    )
    db.session.add(job)
    db.session.flush()
    if status is SyncJobStatus.FAILED:
        job.mark_failed(stage="fetch", message=message or "HTTP 503")
    else:
        job.mark_running()
        job.mark_completed()
    return job


def test_failures_flip_health_only_at_threshold(source):
    messages = []
    for _ in range(3):
        health = record_job_outcome(_finished_job(source, SyncJobStatus.FAILED), failure_threshold=3)
        messages.append((health.is_healthy, health.health_message))

    assert messages[0] == (True, "Last sync failed (1/3): HTTP 503")
    assert messages[1] == (True, "Last sync failed (2/3): HTTP 503")
    assert messages[2] == (False, "3 consecutive failures: HTTP 503")


def test_success_resets_failure_streak(source):
    for _ in range(4):
        record_job_outcome(_finished_job(source, SyncJobStatus.FAILED))

    health = record_job_outcome(_finished_job(source, SyncJobStatus.COMPLETED, fingerprint="abc"))
    db.session.commit()

    assert health.is_healthy is True
    assert health.consecutive_failures == 0
    assert health.total_syncs == 5
    assert health.total_failures == 4
    assert health.last_fingerprint == "abc"
    assert health.health_message == "Last sync successful"
    assert health.last_success_at is not None


def test_threshold_comes_from_app_config(app, source):
    app.config["CATALOG_SYNC_FAILURE_THRESHOLD"] = 1

    health = record_job_outcome(_finished_job(source, SyncJobStatus.FAILED))

    assert health.is_healthy is False


def test_non_terminal_job_is_rejected(source):
    job = SyncJob(source_id=source.id, jurisdiction="MI", data_source="state_website", status=SyncJobStatus.RUNNING)

    with pytest.raises(ValueError, match="terminal"):
        record_job_outcome(job)


def test_baseline_is_fixed_by_first_success(source):
    orchestrator = SyncOrchestrator(fetcher=StubFetcher(csv_bytes(product_rows(4))))
    orchestrator.sync_source(source)

    orchestrator.fetcher.payloads = [csv_bytes(product_rows(6))]
    orchestrator.sync_source(source)

    health = SourceHealth.query.filter_by(source_id=source.id).one()
    assert health.baseline_record_count == 4
    assert health.current_record_count == 6


@pytest.mark.parametrize(
    "hours, expected",
    [
        (None, HealthStatus.UNHEALTHY),
        (2, HealthStatus.HEALTHY),
        (24, HealthStatus.HEALTHY),
        (48, HealthStatus.DEGRADED),
        (100, HealthStatus.UNHEALTHY),
        (200, HealthStatus.CRITICAL),
    ],
)
def test_grade_freshness(hours, expected):
    assert grade_freshness(hours) is expected


@pytest.mark.parametrize(
    "streak, expected",
    [(0, HealthStatus.HEALTHY), (2, HealthStatus.DEGRADED), (3, HealthStatus.UNHEALTHY), (6, HealthStatus.CRITICAL)],
)
def test_grade_failures(streak, expected):
    assert grade_failures(streak) is expected


@pytest.mark.parametrize(
    "rate, expected",
    [
        (None, HealthStatus.HEALTHY),
        (96.0, HealthStatus.HEALTHY),
        (85.0, HealthStatus.DEGRADED),
        (60.0, HealthStatus.UNHEALTHY),
        (10.0, HealthStatus.CRITICAL),
    ],
)
def test_grade_success_rate(rate, expected):
    assert grade_success_rate(rate) is expected


def test_grade_source_health_takes_worst_dimension():
    now = datetime(2026, 1, 10, 12, tzinfo=timezone.utc)
    health = SourceHealth(
        last_success_at=(now - timedelta(hours=2)).replace(tzinfo=None),
        consecutive_failures=1,
        total_syncs=10,
        total_failures=1,
    )

    grade = grade_source_health(health, now=now)

    assert grade.freshness is HealthStatus.HEALTHY
    assert grade.failures is HealthStatus.DEGRADED
    assert grade.success_rate is HealthStatus.DEGRADED
    assert grade.status is HealthStatus.DEGRADED
    assert grade.hours_since_success == 2.0
    assert grade.success_rate_pct == 90.0


def test_never_synced_source_grades_unhealthy():
    assert grade_source_health(None).status is HealthStatus.UNHEALTHY

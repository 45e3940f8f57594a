"""
Due-source selection and the sequential run-due loop.

Staleness stands in for schedule evaluation: a source is due when it has
never been attempted or its last attempt is older than the freshness window.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from flask import current_app, has_app_context
from sqlalchemy.orm import Session

from catalog_app.models import SourceConfig, SyncJob, SyncJobStatus, SyncTrigger, db

from .errors import SyncError
from .health import as_utc
from .orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)

DEFAULT_FRESHNESS_HOURS = 23


def _freshness_window() -> timedelta:
    hours = DEFAULT_FRESHNESS_HOURS
    if has_app_context():
        hours = current_app.config.get("CATALOG_SYNC_FRESHNESS_HOURS", DEFAULT_FRESHNESS_HOURS)
    return timedelta(hours=float(hours))


def due_sources(
    now: datetime | None = None,
    *,
    session: Session | None = None,
    freshness: timedelta | None = None,
) -> list[SourceConfig]:
    """Enabled sources that have never synced or whose last attempt is stale."""
    session = session or db.session
    now = now or datetime.now(timezone.utc)
    cutoff = now - (freshness or _freshness_window())

    due: list[SourceConfig] = []
    sources = (
        session.query(SourceConfig)
        .filter(SourceConfig.enabled.is_(True))
        .order_by(SourceConfig.jurisdiction, SourceConfig.data_source)
        .all()
    )
    for source in sources:
        last_sync = as_utc(source.health.last_sync_at) if source.health is not None else None
        if last_sync is None or last_sync < cutoff:
            due.append(source)
    return due


@dataclass
class DueRunResult:
    jurisdiction: str
    data_source: str
    job_id: int | None = None
    status: str | None = None
    error: str | None = None
    rows_added: int = 0
    rows_updated: int = 0
    rows_removed: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == SyncJobStatus.COMPLETED.value

    def as_dict(self) -> dict:
        return {
            "jurisdiction": self.jurisdiction,
            "data_source": self.data_source,
            "job_id": self.job_id,
            "status": self.status,
            "error": self.error,
            "rows_added": self.rows_added,
            "rows_updated": self.rows_updated,
            "rows_removed": self.rows_removed,
        }


@dataclass
class DueRunReport:
    results: list[DueRunResult] = field(default_factory=list)

    def summary(self) -> dict[str, int]:
        return {
            "total": len(self.results),
            "completed": sum(1 for result in self.results if result.succeeded),
            "failed": sum(1 for result in self.results if result.status == SyncJobStatus.FAILED.value),
            "skipped": sum(1 for result in self.results if result.status == "skipped"),
            "rows_added": sum(result.rows_added for result in self.results),
            "rows_updated": sum(result.rows_updated for result in self.results),
            "rows_removed": sum(result.rows_removed for result in self.results),
        }

    def as_dict(self) -> dict:
        return {"summary": self.summary(), "results": [result.as_dict() for result in self.results]}


def _result_from_job(job: SyncJob) -> DueRunResult:
    return DueRunResult(
        jurisdiction=job.jurisdiction,
        data_source=job.data_source,
        job_id=job.id,
        status=job.status.value,
        error=job.error_message,
        rows_added=job.rows_added + job.rows_reactivated,
        rows_updated=job.rows_updated,
        rows_removed=job.rows_removed,
    )


def run_sources(
    sources: list[SourceConfig],
    *,
    triggered_by: SyncTrigger = SyncTrigger.SCHEDULER,
    force: bool = False,
    orchestrator: SyncOrchestrator | None = None,
) -> DueRunReport:
    """Sync ``sources`` one after another; a failing source never stops the loop."""
    orchestrator = orchestrator or SyncOrchestrator()
    report = DueRunReport()
    for source in sources:
        jurisdiction, data_source = source.jurisdiction, source.data_source
        try:
            job = orchestrator.sync_source(source, triggered_by=triggered_by, force=force)
        except SyncError as exc:
            report.results.append(
                DueRunResult(jurisdiction=jurisdiction, data_source=data_source, status="skipped", error=str(exc))
            )
            logger.warning(
                "Catalog source not synced",
                extra={
                    "catalog_sync_jurisdiction": jurisdiction,
                    "catalog_sync_data_source": data_source,
                    "catalog_sync_error": str(exc),
                },
            )
            continue
        except Exception as exc:
            orchestrator.session.rollback()
            report.results.append(
                DueRunResult(
                    jurisdiction=jurisdiction,
                    data_source=data_source,
                    status=SyncJobStatus.FAILED.value,
                    error=str(exc),
                )
            )
            logger.exception(
                "Catalog source sync raised",
                extra={"catalog_sync_jurisdiction": jurisdiction, "catalog_sync_data_source": data_source},
            )
            continue
        report.results.append(_result_from_job(job))
    return report


def run_due(
    triggered_by: SyncTrigger = SyncTrigger.SCHEDULER,
    *,
    now: datetime | None = None,
    orchestrator: SyncOrchestrator | None = None,
) -> DueRunReport:
    orchestrator = orchestrator or SyncOrchestrator()
    sources = due_sources(now, session=orchestrator.session)
    report = run_sources(sources, triggered_by=triggered_by, orchestrator=orchestrator)
    logger.info(
        "Catalog run-due finished",
        extra={f"catalog_sync_{key}": value for key, value in report.summary().items()},
    )
    return report

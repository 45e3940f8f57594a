"""
Catalog sync Celery tasks.

``sync_source`` either runs a job prepared by the API (``job_id``) or creates
its own from a jurisdiction/data-source pair. ``run_due`` is the entry point
for a periodic scheduler such as celery beat or cron.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from celery import shared_task
from flask import current_app

from catalog_app.models import SyncJob, SyncTrigger, db

from .monitor import run_due as run_due_sources
from .orchestrator import SyncOrchestrator


def _job_payload(job: SyncJob) -> dict[str, Any]:
    return {
        "job_id": job.id,
        "jurisdiction": job.jurisdiction,
        "data_source": job.data_source,
        "status": job.status.value,
        "skipped_unchanged": job.skipped_unchanged,
        "error_stage": job.error_stage,
        "error_message": job.error_message,
        **job.counts(),
    }


@shared_task(name="catalog_sync.healthcheck", bind=True)
def catalog_sync_healthcheck(self) -> dict[str, Any]:
    """Heartbeat used by worker health checks."""
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "worker_hostname": self.request.hostname,
    }


@shared_task(name="catalog_sync.sync_source", bind=True)
def sync_source(
    self,
    *,
    job_id: int | None = None,
    jurisdiction: str | None = None,
    data_source: str | None = None,
    force: bool = False,
    triggered_by: str = SyncTrigger.SCHEDULER.value,
) -> dict[str, Any]:
    orchestrator = SyncOrchestrator(logger=current_app.logger)

    if job_id is not None:
        job = db.session.get(SyncJob, job_id)
        if job is None:
            raise ValueError(f"Sync job {job_id} not found.")
        if job.source is None:
            orchestrator.fail_job(job, stage=None, message="Source configuration was deleted before the job ran.")
            raise ValueError(f"Sync job {job_id} has no source configuration.")
        job = orchestrator.sync_source(job.source, job=job, force=force)
    else:
        if not jurisdiction:
            raise ValueError("Either job_id or jurisdiction is required.")
        job = orchestrator.sync_jurisdiction(
            jurisdiction,
            data_source,
            triggered_by=SyncTrigger(triggered_by),
            force=force,
        )
    return _job_payload(job)


@shared_task(name="catalog_sync.run_due", bind=True)
def run_due(self, *, triggered_by: str = SyncTrigger.SCHEDULER.value) -> dict[str, Any]:
    report = run_due_sources(SyncTrigger(triggered_by), orchestrator=SyncOrchestrator(logger=current_app.logger))
    current_app.logger.info(
        "Catalog run-due task completed",
        extra={f"catalog_sync_{key}": value for key, value in report.summary().items()},
    )
    return report.as_dict()

"""
Job orchestration for a single catalog source.

A sync job is committed as ``pending`` before any I/O, moves to ``running``
once the file has been fetched, and ends ``completed`` or ``failed``. Fetch,
parse and pre-validation failures roll back everything the job touched so the
catalog is left exactly as it was. Every terminal transition refreshes the
source's health row.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Iterator, Mapping

from flask import current_app, has_app_context
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from catalog_app.models import InvalidJobTransition, SourceConfig, SyncJob, SyncJobStatus, SyncTrigger, db

from . import metrics
from .differ import ReconcileSummary, reconcile
from .errors import (
    STAGE_FETCH,
    STAGE_PARSE,
    STAGE_RECONCILE,
    STAGE_VALIDATE,
    SourceDisabledError,
    SourceNotFoundError,
    SyncError,
    SyncInProgressError,
)
from .fetcher import DEFAULT_MAX_REDIRECTS, DEFAULT_TIMEOUT_SECONDS, SourceFetcher
from .health import record_job_outcome
from .parsers import ParseResult, parse_content
from .validation import assess_change_rate, check_record_count

DEFAULT_LOCK_TIMEOUT = 0.0
DEFAULT_STALE_JOB_MINUTES = 60

_locks: dict[tuple[str, str], threading.Lock] = {}
_locks_guard = threading.Lock()


def _lock_for(key: tuple[str, str]) -> threading.Lock:
    with _locks_guard:
        lock = _locks.get(key)
        if lock is None:
            lock = _locks[key] = threading.Lock()
        return lock


@contextmanager
def source_lock(key: tuple[str, str], *, timeout: float = DEFAULT_LOCK_TIMEOUT) -> Iterator[None]:
    """Serialize syncs for one (jurisdiction, data_source) pair within this process."""
    lock = _lock_for(key)
    acquired = lock.acquire(timeout=timeout) if timeout > 0 else lock.acquire(blocking=False)
    if not acquired:
        raise SyncInProgressError(
            f"A sync for {key[0]}/{key[1]} is already running in this process.",
            details={"jurisdiction": key[0], "data_source": key[1]},
        )
    try:
        yield
    finally:
        lock.release()


class SyncOrchestrator:
    """Drive fetch, parse, validate and reconcile for catalog sources."""

    def __init__(
        self,
        *,
        fetcher: SourceFetcher | None = None,
        session: Session | None = None,
        logger: logging.Logger | None = None,
        config: Mapping[str, Any] | None = None,
    ) -> None:
        if config is None:
            config = current_app.config if has_app_context() else {}
        self.config = config
        self.session = session or db.session
        self.logger = logger or logging.getLogger(__name__)
        self.fetcher = fetcher or SourceFetcher(
            timeout=float(config.get("CATALOG_SYNC_FETCH_TIMEOUT", DEFAULT_TIMEOUT_SECONDS)),
            max_redirects=int(config.get("CATALOG_SYNC_MAX_REDIRECTS", DEFAULT_MAX_REDIRECTS)),
            logger=self.logger,
        )
        self.lock_timeout = float(config.get("CATALOG_SYNC_LOCK_TIMEOUT", DEFAULT_LOCK_TIMEOUT))
        self.stale_after = timedelta(
            minutes=int(config.get("CATALOG_SYNC_STALE_JOB_MINUTES", DEFAULT_STALE_JOB_MINUTES))
        )

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def get_source(self, jurisdiction: str, data_source: str | None = None) -> SourceConfig:
        """Resolve a source; without ``data_source`` the jurisdiction's first config is used."""
        code = (jurisdiction or "").strip().upper()
        query = self.session.query(SourceConfig).filter(SourceConfig.jurisdiction == code)
        if data_source:
            query = query.filter(SourceConfig.data_source == data_source)
        source = query.order_by(SourceConfig.id).first()
        if source is None:
            label = f"{code}/{data_source}" if data_source else code
            raise SourceNotFoundError(
                f"No source configuration found for {label}.",
                details={"jurisdiction": code, "data_source": data_source},
            )
        return source

    def sync_jurisdiction(
        self,
        jurisdiction: str,
        data_source: str | None = None,
        *,
        triggered_by: SyncTrigger = SyncTrigger.MANUAL,
        force: bool = False,
    ) -> SyncJob:
        source = self.get_source(jurisdiction, data_source)
        return self.sync_source(source, triggered_by=triggered_by, force=force)

    def prepare_job(
        self,
        source: SourceConfig,
        *,
        triggered_by: SyncTrigger = SyncTrigger.MANUAL,
        force: bool = False,
    ) -> SyncJob:
        """Create and commit a pending job, for callers that hand execution to a worker."""
        self._check_enabled(source, force)
        with source_lock(source.key, timeout=self.lock_timeout):
            self._guard_active_job(source)
            return self._create_job(source, triggered_by=triggered_by, force=force)

    def sync_source(
        self,
        source: SourceConfig,
        *,
        triggered_by: SyncTrigger = SyncTrigger.MANUAL,
        force: bool = False,
        job: SyncJob | None = None,
    ) -> SyncJob:
        """
        Run one sync for ``source`` and return the terminal job.

        Expected pipeline failures are recorded on the returned job. Anything
        else is recorded and re-raised.
        """

        if job is not None:
            if job.status is not SyncJobStatus.PENDING:
                raise InvalidJobTransition(job.id, job.status, SyncJobStatus.RUNNING)
            force = force or job.forced
        self._check_enabled(source, force)
        with source_lock(source.key, timeout=self.lock_timeout):
            self._guard_active_job(source, exclude_job_id=job.id if job is not None else None)
            if job is None:
                job = self._create_job(source, triggered_by=triggered_by, force=force)
            return self._run(job, source)

    def fail_job(
        self,
        job: SyncJob,
        *,
        stage: str | None,
        message: str,
        details: Mapping[str, Any] | None = None,
        stats: Mapping[str, Any] | None = None,
    ) -> SyncJob:
        """
        Roll back uncommitted work, then record ``job`` as failed.

        ``stats`` holds job attributes gathered before the failure (row counts,
        parse statistics); they are written back after the rollback.
        """
        job_id = job.id
        self.session.rollback()
        job = self.session.get(SyncJob, job_id)
        for name, value in (stats or {}).items():
            setattr(job, name, value)
        job.mark_failed(stage=stage, message=message, details=dict(details or {}) or None)
        health = record_job_outcome(job, session=self.session)
        self.session.commit()

        metrics.record_job(
            jurisdiction=job.jurisdiction,
            status="failed",
            duration_seconds=(job.duration_ms or 0) / 1000,
        )
        if health is not None:
            metrics.record_source_health(
                jurisdiction=job.jurisdiction,
                data_source=job.data_source,
                healthy=health.is_healthy,
            )
        self.logger.error(
            "Catalog sync failed",
            extra={
                "catalog_sync_job_id": job.id,
                "catalog_sync_jurisdiction": job.jurisdiction,
                "catalog_sync_data_source": job.data_source,
                "catalog_sync_stage": stage,
                "catalog_sync_error": message,
            },
        )
        return job

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    def _check_enabled(self, source: SourceConfig, force: bool) -> None:
        if not source.enabled and not force:
            raise SourceDisabledError(
                f"Source {source.jurisdiction}/{source.data_source} is disabled; pass force to sync it anyway.",
                details={"jurisdiction": source.jurisdiction, "data_source": source.data_source},
            )

    def _guard_active_job(self, source: SourceConfig, *, exclude_job_id: int | None = None) -> None:
        """Refuse to start while another recent job for the same key is unfinished."""
        cutoff = datetime.now(timezone.utc) - self.stale_after
        query = self.session.query(SyncJob).filter(
            SyncJob.jurisdiction == source.jurisdiction,
            SyncJob.data_source == source.data_source,
            SyncJob.status.in_((SyncJobStatus.PENDING, SyncJobStatus.RUNNING)),
        )
        if exclude_job_id is not None:
            query = query.filter(SyncJob.id != exclude_job_id)

        for other in query.order_by(SyncJob.id).all():
            if other.started_at is not None and other.started_at.replace(tzinfo=None) < cutoff.replace(tzinfo=None):
                self.fail_job(
                    other,
                    stage=None,
                    message=f"Abandoned: no progress within {int(self.stale_after.total_seconds() // 60)} minutes.",
                )
                continue
            raise SyncInProgressError(
                f"Sync job {other.id} for {source.jurisdiction}/{source.data_source} is still {other.status.value}.",
                details={"job_id": other.id, "status": other.status.value},
            )

    def _create_job(self, source: SourceConfig, *, triggered_by: SyncTrigger, force: bool) -> SyncJob:
        job = SyncJob(
            source_id=source.id,
            jurisdiction=source.jurisdiction,
            data_source=source.data_source,
            status=SyncJobStatus.PENDING,
            triggered_by=triggered_by,
            forced=bool(force),
            fetch_location=source.fetch_location,
            started_at=datetime.now(timezone.utc),
        )
        self.session.add(job)
        self.session.commit()
        self.logger.info(
            "Catalog sync job created",
            extra={
                "catalog_sync_job_id": job.id,
                "catalog_sync_jurisdiction": job.jurisdiction,
                "catalog_sync_data_source": job.data_source,
                "catalog_sync_triggered_by": triggered_by.value,
                "catalog_sync_forced": job.forced,
            },
        )
        return job

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _run(self, job: SyncJob, source: SourceConfig) -> SyncJob:
        stage = STAGE_FETCH
        stats: dict[str, Any] = {}
        try:
            fetched = self.fetcher.fetch(job.fetch_location or source.fetch_location)
            job.fingerprint = fetched.fingerprint
            job.mark_running()
            self.session.commit()

            last_fingerprint = source.health.last_fingerprint if source.health is not None else None
            if not job.forced and last_fingerprint == fetched.fingerprint:
                job.skipped_unchanged = True
                job.change_rate = 0.0
                self.logger.info(
                    "Source file unchanged; skipping reconciliation",
                    extra={"catalog_sync_job_id": job.id, "catalog_sync_fingerprint": fetched.fingerprint},
                )
                return self._complete(job)

            stage = STAGE_PARSE
            parsed = parse_content(
                fetched.content,
                source.file_format,
                source.column_mapping,
                source.parser_options,
            )
            stats = {
                "parse_stats_json": parsed.statistics.as_dict(),
                "rows_processed": parsed.record_count,
                "validation_errors": parsed.statistics.rows_invalid_code,
            }
            for name, value in stats.items():
                setattr(job, name, value)

            stage = STAGE_VALIDATE
            check_record_count(parsed.record_count, source.min_expected_records)

            stage = STAGE_RECONCILE
            summary = reconcile(job, parsed.records, session=self.session)
        except SyncError as exc:
            return self.fail_job(job, stage=exc.stage or stage, message=str(exc), details=exc.details, stats=stats)
        except SQLAlchemyError as exc:
            self.fail_job(job, stage=stage, message=f"Storage error: {exc}", stats=stats)
            raise
        except Exception as exc:
            self.fail_job(job, stage=stage, message=f"Unexpected error: {exc}", stats=stats)
            raise

        self._apply_summary(job, source, parsed, summary)
        return self._complete(job)

    def _apply_summary(
        self,
        job: SyncJob,
        source: SourceConfig,
        parsed: ParseResult,
        summary: ReconcileSummary,
    ) -> None:
        job.rows_processed = parsed.record_count
        job.rows_added = summary.added
        job.rows_updated = summary.updated
        job.rows_reactivated = summary.reactivated
        job.rows_removed = summary.removed
        job.rows_unchanged = summary.unchanged
        job.validation_errors = parsed.statistics.rows_invalid_code + summary.errors

        assessment = assess_change_rate(
            changed=summary.total_changes,
            existing=summary.existing_active,
            threshold=source.max_change_rate,
        )
        job.change_rate = round(assessment.rate, 4)

        flags: dict[str, Any] = {}
        if summary.duplicates:
            flags["duplicate_codes"] = summary.duplicates
        if summary.errors:
            flags["record_errors"] = list(summary.error_samples)
        # An initial load always touches everything; only flag drift from an existing catalog.
        if summary.existing_active and assessment.exceeded:
            flags.update(assessment.as_flag())
            self.logger.warning(
                "Catalog change rate above configured maximum",
                extra={
                    "catalog_sync_job_id": job.id,
                    "catalog_sync_jurisdiction": job.jurisdiction,
                    "catalog_sync_change_rate": job.change_rate,
                    "catalog_sync_max_change_rate": source.max_change_rate,
                },
            )
        job.anomaly_flags = flags or None

    def _complete(self, job: SyncJob) -> SyncJob:
        job.mark_completed()
        health = record_job_outcome(job, session=self.session)
        self.session.commit()

        metrics.record_job(
            jurisdiction=job.jurisdiction,
            status="completed",
            duration_seconds=(job.duration_ms or 0) / 1000,
            changes={
                "added": job.rows_added,
                "updated": job.rows_updated,
                "reactivated": job.rows_reactivated,
                "removed": job.rows_removed,
            },
            skipped_unchanged=job.skipped_unchanged,
        )
        if health is not None:
            metrics.record_source_health(
                jurisdiction=job.jurisdiction,
                data_source=job.data_source,
                healthy=health.is_healthy,
            )
        self.logger.info(
            "Catalog sync completed",
            extra={
                "catalog_sync_job_id": job.id,
                "catalog_sync_jurisdiction": job.jurisdiction,
                "catalog_sync_data_source": job.data_source,
                "catalog_sync_skipped_unchanged": job.skipped_unchanged,
                **{f"catalog_sync_{name}": value for name, value in job.counts().items()},
            },
        )
        return job

"""
Reconcile a parsed record set against a jurisdiction's catalog.

The snapshot covers every entry for the jurisdiction, active or not, keyed by
code. Each parsed record is classified as added, reactivated, updated or
unchanged and applied inside its own SAVEPOINT; active snapshot entries that
the source no longer lists are soft-deleted. The caller commits the batch.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from catalog_app.models import ChangeType, CatalogEntry, ProductChange, SyncJob, TRACKED_FIELDS, db

from .parsers import CandidateRecord

logger = logging.getLogger(__name__)

MAX_ERROR_SAMPLES = 20


@dataclass
class ReconcileSummary:
    """Per-job reconciliation counters."""

    records_seen: int = 0
    added: int = 0
    updated: int = 0
    reactivated: int = 0
    removed: int = 0
    unchanged: int = 0
    errors: int = 0
    duplicates: int = 0
    existing_active: int = 0
    error_samples: list[dict[str, Any]] = field(default_factory=list)

    @property
    def total_changes(self) -> int:
        return self.added + self.reactivated + self.updated + self.removed

    def record_error(self, code: str, exc: Exception) -> None:
        self.errors += 1
        if len(self.error_samples) < MAX_ERROR_SAMPLES:
            self.error_samples.append({"code": code, "error": str(exc).splitlines()[0][:300]})

    def as_dict(self) -> dict[str, Any]:
        return {
            "records_seen": self.records_seen,
            "added": self.added,
            "updated": self.updated,
            "reactivated": self.reactivated,
            "removed": self.removed,
            "unchanged": self.unchanged,
            "errors": self.errors,
            "duplicates": self.duplicates,
            "existing_active": self.existing_active,
        }


def diff_fields(entry: CatalogEntry, record: CandidateRecord) -> dict[str, dict[str, Any]]:
    """Exact comparison of tracked fields; only differing fields are returned."""
    incoming = record.tracked_values()
    changes: dict[str, dict[str, Any]] = {}
    for name in TRACKED_FIELDS:
        old = getattr(entry, name)
        new = incoming[name]
        if old != new:
            changes[name] = {"old": old, "new": new}
    return changes


def dedupe_records(records: Iterable[CandidateRecord]) -> tuple[dict[str, CandidateRecord], int]:
    """Keep the last record per code, in first-seen order; return the duplicate count."""
    latest: dict[str, CandidateRecord] = {}
    duplicates = 0
    for record in records:
        if record.code in latest:
            duplicates += 1
        latest[record.code] = record
    return latest, duplicates


def load_snapshot(session: Session, jurisdiction: str) -> dict[str, CatalogEntry]:
    rows = session.query(CatalogEntry).filter(CatalogEntry.jurisdiction == jurisdiction).all()
    return {row.code: row for row in rows}


def reconcile(
    job: SyncJob,
    records: Iterable[CandidateRecord],
    *,
    session: Session | None = None,
    now: datetime | None = None,
) -> ReconcileSummary:
    """
    Apply ``records`` to the catalog for ``job.jurisdiction``.

    Per-record storage failures roll back that record only and are counted in
    ``errors``. Nothing is committed here.
    """

    session = session or db.session
    now = now or datetime.now(timezone.utc)
    summary = ReconcileSummary()

    snapshot = load_snapshot(session, job.jurisdiction)
    summary.existing_active = sum(1 for entry in snapshot.values() if entry.active)

    latest, summary.duplicates = dedupe_records(records)
    summary.records_seen = len(latest)

    for code, record in latest.items():
        entry = snapshot.get(code)
        try:
            with session.begin_nested():
                change_type = _apply_record(session, job, entry, record)
        except SQLAlchemyError as exc:
            summary.record_error(code, exc)
            logger.warning(
                "Catalog record rejected during reconciliation",
                extra={
                    "catalog_sync_job_id": job.id,
                    "catalog_sync_jurisdiction": job.jurisdiction,
                    "catalog_sync_code": code,
                    "catalog_sync_error": str(exc).splitlines()[0],
                },
            )
            continue
        _count(summary, change_type)

    for code, entry in snapshot.items():
        if not entry.active or code in latest:
            continue
        try:
            with session.begin_nested():
                _remove_entry(session, job, entry, now)
        except SQLAlchemyError as exc:
            summary.record_error(code, exc)
            logger.warning(
                "Catalog removal rejected during reconciliation",
                extra={"catalog_sync_job_id": job.id, "catalog_sync_code": code},
            )
            continue
        summary.removed += 1

    logger.info(
        "Reconciled catalog for %s",
        job.jurisdiction,
        extra={"catalog_sync_job_id": job.id, **{f"catalog_sync_{k}": v for k, v in summary.as_dict().items()}},
    )
    return summary


# ----------------------------------------------------------------------
# Per-record application
# ----------------------------------------------------------------------


def _count(summary: ReconcileSummary, change_type: ChangeType | None) -> None:
    if change_type is None:
        summary.unchanged += 1
    elif change_type is ChangeType.ADDED:
        summary.added += 1
    elif change_type is ChangeType.REACTIVATED:
        summary.reactivated += 1
    else:
        summary.updated += 1


def _apply_record(
    session: Session,
    job: SyncJob,
    entry: CatalogEntry | None,
    record: CandidateRecord,
) -> ChangeType | None:
    if entry is None:
        entry = CatalogEntry(
            jurisdiction=job.jurisdiction,
            code=record.code,
            active=True,
            data_source=job.data_source,
            last_synced_job_id=job.id,
            **record.tracked_values(),
        )
        session.add(entry)
        session.flush()
        _log_change(session, job, entry, ChangeType.ADDED)
        return ChangeType.ADDED

    changes = diff_fields(entry, record)
    if entry.active and not changes:
        return None

    change_type = ChangeType.UPDATED if entry.active else ChangeType.REACTIVATED
    for name, values in changes.items():
        setattr(entry, name, values["new"])
    entry.active = True
    entry.deactivated_at = None
    entry.data_source = job.data_source
    entry.last_synced_job_id = job.id
    session.flush()
    _log_change(session, job, entry, change_type, changes or None)
    return change_type


def _remove_entry(session: Session, job: SyncJob, entry: CatalogEntry, now: datetime) -> None:
    entry.active = False
    entry.deactivated_at = now
    entry.last_synced_job_id = job.id
    session.flush()
    _log_change(session, job, entry, ChangeType.REMOVED)


def _log_change(
    session: Session,
    job: SyncJob,
    entry: CatalogEntry,
    change_type: ChangeType,
    changed_fields: dict | None = None,
) -> None:
    session.add(
        ProductChange(
            job_id=job.id,
            entry_id=entry.id,
            jurisdiction=entry.jurisdiction,
            code=entry.code,
            change_type=change_type,
            changed_fields=changed_fields,
        )
    )
    session.flush()

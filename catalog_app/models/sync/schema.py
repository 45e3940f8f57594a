"""
SQLAlchemy models for catalog synchronization: source registry, job history,
per-record change log, and rolling per-source health.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Enum, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..base import BaseModel, db


class SyncJobStatus(str, enum.Enum):
    """Lifecycle states for a sync job."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncTrigger(str, enum.Enum):
    """What caused a sync job to be created."""

    SCHEDULER = "scheduler"
    MANUAL = "manual"
    WEBHOOK = "webhook"


class ChangeType(str, enum.Enum):
    ADDED = "added"
    UPDATED = "updated"
    REMOVED = "removed"
    REACTIVATED = "reactivated"


TERMINAL_JOB_STATUSES = frozenset({SyncJobStatus.COMPLETED, SyncJobStatus.FAILED})

_ALLOWED_TRANSITIONS = {
    SyncJobStatus.PENDING: frozenset({SyncJobStatus.RUNNING, SyncJobStatus.FAILED}),
    SyncJobStatus.RUNNING: frozenset({SyncJobStatus.COMPLETED, SyncJobStatus.FAILED}),
    SyncJobStatus.COMPLETED: frozenset(),
    SyncJobStatus.FAILED: frozenset(),
}


class InvalidJobTransition(RuntimeError):
    """Raised when a job is moved to a state its lifecycle does not allow."""

    def __init__(self, job_id: int | None, current: SyncJobStatus, target: SyncJobStatus):
        self.job_id = job_id
        self.current = current
        self.target = target
        super().__init__(f"Sync job {job_id} cannot move from {current.value} to {target.value}.")


class SourceConfig(BaseModel):
    """Where and how to fetch the authoritative file for one jurisdiction/source pair."""

    __tablename__ = "source_configs"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    jurisdiction: Mapped[str] = mapped_column(db.String(8), nullable=False, index=True)
    data_source: Mapped[str] = mapped_column(db.String(100), nullable=False)
    source_type: Mapped[str | None] = mapped_column(db.String(50), nullable=True)
    fetch_location: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    file_format: Mapped[str] = mapped_column(db.String(20), nullable=False)
    column_mapping: Mapped[dict | None] = mapped_column(
        db.JSON,
        nullable=True,
        comment="Logical field -> ordered list of acceptable header names.",
    )
    parser_options: Mapped[dict | None] = mapped_column(
        db.JSON,
        nullable=True,
        comment="Format-specific options (sheet, header_row, delimiter, encoding).",
    )
    schedule: Mapped[str] = mapped_column(db.String(100), nullable=False, default="0 2 * * *")
    enabled: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=True)
    min_expected_records: Mapped[int] = mapped_column(db.Integer, nullable=False, default=100)
    max_change_rate: Mapped[float] = mapped_column(db.Float, nullable=False, default=0.10)
    notes: Mapped[str | None] = mapped_column(db.Text, nullable=True)

    health = relationship(
        "SourceHealth",
        back_populates="source",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    jobs = relationship("SyncJob", back_populates="source", passive_deletes=True)

    __table_args__ = (
        UniqueConstraint("jurisdiction", "data_source", name="uq_source_configs_jurisdiction_source"),
        CheckConstraint("min_expected_records >= 0", name="ck_source_configs_min_expected"),
        CheckConstraint("max_change_rate >= 0", name="ck_source_configs_max_change_rate"),
    )

    def __repr__(self):
        return f"<SourceConfig {self.jurisdiction}/{self.data_source} format={self.file_format}>"

    @property
    def key(self) -> tuple[str, str]:
        return (self.jurisdiction, self.data_source)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "jurisdiction": self.jurisdiction,
            "data_source": self.data_source,
            "source_type": self.source_type,
            "fetch_location": self.fetch_location,
            "file_format": self.file_format,
            "column_mapping": self.column_mapping or {},
            "parser_options": self.parser_options or {},
            "schedule": self.schedule,
            "enabled": self.enabled,
            "min_expected_records": self.min_expected_records,
            "max_change_rate": self.max_change_rate,
            "notes": self.notes,
        }


class SyncJob(BaseModel):
    """One sync attempt against a single source."""

    __tablename__ = "sync_jobs"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    source_id: Mapped[int | None] = mapped_column(
        ForeignKey("source_configs.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    jurisdiction: Mapped[str] = mapped_column(db.String(8), nullable=False, index=True)
    data_source: Mapped[str] = mapped_column(db.String(100), nullable=False)
    status: Mapped[SyncJobStatus] = mapped_column(
        Enum(SyncJobStatus, name="sync_job_status_enum"),
        nullable=False,
        default=SyncJobStatus.PENDING,
        index=True,
    )
    triggered_by: Mapped[SyncTrigger] = mapped_column(
        Enum(SyncTrigger, name="sync_trigger_enum"),
        nullable=False,
        default=SyncTrigger.MANUAL,
    )
    forced: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    fetch_location: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))
    finished_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))
    duration_ms: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    rows_processed: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    rows_added: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    rows_updated: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    rows_reactivated: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    rows_removed: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    rows_unchanged: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    validation_errors: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    fingerprint: Mapped[str | None] = mapped_column(db.String(64), nullable=True)
    skipped_unchanged: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    change_rate: Mapped[float | None] = mapped_column(db.Float, nullable=True)
    anomaly_flags: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    parse_stats_json: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    error_stage: Mapped[str | None] = mapped_column(db.String(20), nullable=True)
    error_message: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    error_details: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)

    source = relationship("SourceConfig", back_populates="jobs")
    changes = relationship(
        "ProductChange",
        back_populates="job",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ProductChange.id",
    )

    __table_args__ = (
        Index("idx_sync_jobs_source_started", "jurisdiction", "data_source", "started_at"),
        Index("idx_sync_jobs_status_started", "status", "started_at"),
    )

    def __repr__(self):
        return f"<SyncJob {self.id} {self.jurisdiction}/{self.data_source} {self.status.value}>"

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES

    @property
    def total_changes(self) -> int:
        return self.rows_added + self.rows_reactivated + self.rows_updated + self.rows_removed

    def transition_to(self, target: SyncJobStatus) -> None:
        current = self.status or SyncJobStatus.PENDING
        if target not in _ALLOWED_TRANSITIONS[current]:
            raise InvalidJobTransition(self.id, current, target)
        self.status = target

    def mark_running(self) -> None:
        self.transition_to(SyncJobStatus.RUNNING)

    def mark_completed(self, *, finished_at: datetime | None = None) -> None:
        self.transition_to(SyncJobStatus.COMPLETED)
        self._stamp_finished(finished_at)

    def mark_failed(
        self,
        *,
        stage: str | None,
        message: str,
        details: dict | None = None,
        finished_at: datetime | None = None,
    ) -> None:
        self.transition_to(SyncJobStatus.FAILED)
        self.error_stage = stage
        self.error_message = message
        self.error_details = details or None
        self._stamp_finished(finished_at)

    def _stamp_finished(self, finished_at: datetime | None) -> None:
        finished = finished_at or datetime.now(timezone.utc)
        self.finished_at = finished
        if self.started_at is not None:
            started = self.started_at
            if started.tzinfo is None:
                started = started.replace(tzinfo=timezone.utc)
            self.duration_ms = max(int((finished - started).total_seconds() * 1000), 0)

    def counts(self) -> dict[str, int]:
        return {
            "rows_processed": self.rows_processed,
            "rows_added": self.rows_added,
            "rows_updated": self.rows_updated,
            "rows_reactivated": self.rows_reactivated,
            "rows_removed": self.rows_removed,
            "rows_unchanged": self.rows_unchanged,
            "validation_errors": self.validation_errors,
        }


class ProductChange(BaseModel):
    """Audit row for one classified record within a job."""

    __tablename__ = "product_changes"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[int] = mapped_column(
        ForeignKey("sync_jobs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    entry_id: Mapped[int | None] = mapped_column(
        ForeignKey("catalog_entries.id", ondelete="SET NULL"),
        nullable=True,
    )
    jurisdiction: Mapped[str] = mapped_column(db.String(8), nullable=False)
    code: Mapped[str] = mapped_column(db.String(14), nullable=False, index=True)
    change_type: Mapped[ChangeType] = mapped_column(
        Enum(ChangeType, name="product_change_type_enum"),
        nullable=False,
    )
    changed_fields: Mapped[dict | None] = mapped_column(
        db.JSON,
        nullable=True,
        comment="Field -> {'old': ..., 'new': ...} for updates and reactivations.",
    )

    job = relationship("SyncJob", back_populates="changes")

    __table_args__ = (Index("idx_product_changes_created", "created_at", "change_type"),)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "job_id": self.job_id,
            "code": self.code,
            "jurisdiction": self.jurisdiction,
            "change_type": self.change_type.value,
            "changed_fields": self.changed_fields or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class SourceHealth(BaseModel):
    """Rolling health for a source, recomputed whenever one of its jobs finishes."""

    __tablename__ = "source_health"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    source_id: Mapped[int] = mapped_column(
        ForeignKey("source_configs.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    last_job_id: Mapped[int | None] = mapped_column(
        ForeignKey("sync_jobs.id", ondelete="SET NULL"),
        nullable=True,
    )
    last_sync_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    last_success_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    last_fingerprint: Mapped[str | None] = mapped_column(db.String(64), nullable=True)
    consecutive_failures: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    total_syncs: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    total_failures: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    current_record_count: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    baseline_record_count: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    is_healthy: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=True)
    health_message: Mapped[str | None] = mapped_column(db.Text, nullable=True)

    source = relationship("SourceConfig", back_populates="health")
    last_job = relationship("SyncJob", foreign_keys=[last_job_id])

    def __repr__(self):
        return f"<SourceHealth source={self.source_id} healthy={self.is_healthy}>"

"""
Catalog sync SQLAlchemy models.

Source registry, job history, change log, and per-source health.
"""

from .schema import (
    TERMINAL_JOB_STATUSES,
    ChangeType,
    InvalidJobTransition,
    ProductChange,
    SourceConfig,
    SourceHealth,
    SyncJob,
    SyncJobStatus,
    SyncTrigger,
)

__all__ = [
    "ChangeType",
    "InvalidJobTransition",
    "ProductChange",
    "SourceConfig",
    "SourceHealth",
    "SyncJob",
    "SyncJobStatus",
    "SyncTrigger",
    "TERMINAL_JOB_STATUSES",
]

# catalog_app/models/__init__.py
"""
Database models package
"""

from .base import BaseModel, db
from .catalog import TRACKED_FIELDS, CatalogEntry
from .sync import (
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
    "db",
    "BaseModel",
    "CatalogEntry",
    "TRACKED_FIELDS",
    # Sync models
    "SourceConfig",
    "SyncJob",
    "ProductChange",
    "SourceHealth",
    # Sync enums
    "SyncJobStatus",
    "SyncTrigger",
    "ChangeType",
    "InvalidJobTransition",
]

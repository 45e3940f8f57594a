"""
Exception hierarchy shared by the catalog sync pipeline.

Each error carries the pipeline ``stage`` it belongs to so a failed job can
record where it stopped. Stage-specific subclasses live next to the code that
raises them.
"""

from __future__ import annotations

from typing import Any, Mapping

STAGE_FETCH = "fetch"
STAGE_PARSE = "parse"
STAGE_VALIDATE = "validate"
STAGE_RECONCILE = "reconcile"


class SyncError(RuntimeError):
    """Base class for catalog sync failures."""

    stage: str | None = None

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None):
        super().__init__(message)
        self.details = dict(details or {})


class SourceNotFoundError(SyncError):
    """Raised when no source configuration matches the requested key."""


class SourceDisabledError(SyncError):
    """Raised when a disabled source is synced without ``force``."""


class SyncInProgressError(SyncError):
    """Raised when another job already holds the source's sync slot."""

"""
Utility helpers for catalog sync feature flag checks.
"""

from __future__ import annotations

from typing import Iterable, Tuple

from flask import current_app


def _get_config(app=None):
    if app is not None:
        return app.config
    return current_app.config


def is_catalog_sync_enabled(app=None) -> bool:
    """Return True when the catalog sync feature flag is enabled."""
    config = _get_config(app)
    return bool(config.get("CATALOG_SYNC_ENABLED", False))


def get_catalog_sync_formats(app=None) -> Tuple[str, ...]:
    """Return the configured source format identifiers."""
    config = _get_config(app)
    formats: Iterable[str] = config.get("CATALOG_SYNC_FORMATS", ())
    return tuple(formats)

"""
Catalog synchronization feature package.

Mounts the sync blueprint and CLI when ``CATALOG_SYNC_ENABLED`` is set and
records extension state in ``app.extensions['catalog_sync']``.
"""

from __future__ import annotations

from typing import Any, Tuple

from flask import Flask

from catalog_app.utils.sync import get_catalog_sync_formats, is_catalog_sync_enabled

from .celery_app import EXTENSION_KEY, ensure_celery_app, get_celery_app
from .cli import catalog_sync_cli, get_disabled_catalog_sync_group
from .metrics import record_sync_enabled
from .monitor import DueRunReport, due_sources, run_due
from .orchestrator import SyncOrchestrator
from .registry import get_format_registry, resolve_formats
from .reporting import SyncReportService
from .views import catalog_sync_blueprint

__all__ = [
    "init_catalog_sync",
    "EXTENSION_KEY",
    "get_celery_app",
    "DueRunReport",
    "SyncOrchestrator",
    "SyncReportService",
    "due_sources",
    "run_due",
]


def _ensure_extension_state(app: Flask) -> dict[str, Any]:
    return app.extensions.setdefault(
        EXTENSION_KEY,
        {
            "enabled": False,
            "configured_formats": (),
            "active_formats": (),
            "worker_enabled": False,
            "celery_app": None,
        },
    )


def _set_cli(app: Flask, enabled: bool) -> None:
    """Register the real or the disabled CLI group, replacing any earlier registration."""
    command_name = catalog_sync_cli.name
    if command_name in app.cli.commands:
        app.cli.commands.pop(command_name)

    if enabled:
        app.cli.add_command(catalog_sync_cli)
    else:
        app.cli.add_command(get_disabled_catalog_sync_group())


def init_catalog_sync(app: Flask) -> None:
    """Conditionally mount the catalog sync blueprint, CLI and Celery app."""
    enabled = is_catalog_sync_enabled(app)
    configured_formats: Tuple[str, ...] = get_catalog_sync_formats(app)

    state = _ensure_extension_state(app)
    state.update(
        {
            "enabled": enabled,
            "configured_formats": configured_formats,
            "worker_enabled": bool(app.config.get("CATALOG_SYNC_WORKER_ENABLED", False)),
        }
    )
    record_sync_enabled(enabled)

    if not enabled:
        state["active_formats"] = ()
        _set_cli(app, enabled=False)
        app.logger.info("Catalog sync disabled via CATALOG_SYNC_ENABLED flag; skipping registration.")
        return

    state["active_formats"] = tuple(resolve_formats(configured_formats, get_format_registry()))
    ensure_celery_app(app, state)

    if catalog_sync_blueprint.name not in app.blueprints:
        app.register_blueprint(catalog_sync_blueprint)
    _set_cli(app, enabled=True)

    pending = [descriptor.name for descriptor in state["active_formats"] if not descriptor.implemented]
    if pending:
        app.logger.warning(
            "Catalog sync formats declared without a parser: %s",
            ", ".join(pending),
            extra={"catalog_sync_unimplemented_formats": pending},
        )
    app.logger.info(
        "Catalog sync enabled with formats: %s",
        ", ".join(descriptor.name for descriptor in state["active_formats"]) or "none",
    )

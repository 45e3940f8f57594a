"""
Application logging setup.

Handlers are attached to the Flask app logger and the ``catalog_app`` package
logger, so module loggers and ``current_app.logger`` share one configuration.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler

TEXT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None)).keys() | {"message", "asctime", "taskName"}
)

_HANDLER_MARKER = "_catalog_app_handler"


class JSONFormatter(logging.Formatter):
    """One JSON object per line; ``extra`` fields are merged in at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _build_formatter(log_format: str) -> logging.Formatter:
    if (log_format or "").lower() == "json":
        return JSONFormatter()
    return logging.Formatter(TEXT_FORMAT)


def _resolve_level(value) -> int:
    if isinstance(value, int):
        return value
    return getattr(logging, str(value or "INFO").upper(), logging.INFO)


def setup_logging(app) -> None:
    """Configure console and rotating file handlers from the app config."""
    level = _resolve_level(app.config.get("LOG_LEVEL", "INFO"))
    formatter = _build_formatter(app.config.get("LOG_FORMAT", "json"))

    handlers: list[logging.Handler] = []
    if app.config.get("ENABLE_CONSOLE_LOGGING", True):
        handlers.append(logging.StreamHandler())
    if app.config.get("ENABLE_FILE_LOGGING", False):
        log_dir = app.config.get("LOG_DIR", "logs")
        os.makedirs(log_dir, exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                os.path.join(log_dir, "catalog_app.log"),
                maxBytes=int(app.config.get("LOG_FILE_MAX_BYTES", 10 * 1024 * 1024)),
                backupCount=int(app.config.get("LOG_FILE_BACKUP_COUNT", 10)),
                encoding="utf-8",
            )
        )

    for target in (app.logger, logging.getLogger("catalog_app")):
        for existing in [h for h in target.handlers if getattr(h, _HANDLER_MARKER, False)]:
            target.removeHandler(existing)
            existing.close()
        for handler in handlers:
            setattr(handler, _HANDLER_MARKER, True)
            handler.setFormatter(formatter)
            handler.setLevel(level)
            target.addHandler(handler)
        target.setLevel(level)

    app.logger.info(
        "Logging configured",
        extra={"log_level": logging.getLevelName(level), "log_format": app.config.get("LOG_FORMAT", "json")},
    )

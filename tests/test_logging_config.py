import json
import logging
from logging.handlers import RotatingFileHandler

import pytest
from flask import Flask

from catalog_app.utils.logging_config import JSONFormatter, setup_logging


@pytest.fixture(autouse=True)
def restore_logging(app):
    """Reapply the test app's logging config so handlers do not leak into other tests"""
    yield
    setup_logging(app)


def _build_app(tmp_path, **overrides):
    app = Flask("logging_test")
    app.config.update(
        LOG_LEVEL="INFO",
        LOG_FORMAT="json",
        LOG_DIR=str(tmp_path / "logs"),
        ENABLE_CONSOLE_LOGGING=False,
        ENABLE_FILE_LOGGING=True,
    )
    app.config.update(overrides)
    return app


def test_json_formatter_merges_extra_fields():
    record = logging.LogRecord("catalog_app.sync", logging.INFO, __file__, 10, "Synced %s", ("MI",), None)
    record.catalog_sync_job_id = 7

    payload = json.loads(JSONFormatter().format(record))

    assert payload["message"] == "Synced MI"
    assert payload["level"] == "INFO"
    assert payload["logger"] == "catalog_app.sync"
    assert payload["catalog_sync_job_id"] == 7


def test_setup_logging_writes_rotating_json_file(tmp_path):
    app = _build_app(tmp_path)

    setup_logging(app)
    logging.getLogger("catalog_app.sync.orchestrator").info(
        "Catalog sync completed", extra={"catalog_sync_rows_added": 3}
    )
    for handler in logging.getLogger("catalog_app").handlers:
        handler.flush()

    lines = (tmp_path / "logs" / "catalog_app.log").read_text(encoding="utf-8").strip().splitlines()
    entry = json.loads(lines[-1])
    assert entry["message"] == "Catalog sync completed"
    assert entry["catalog_sync_rows_added"] == 3
    assert any(isinstance(handler, RotatingFileHandler) for handler in app.logger.handlers)


def test_setup_logging_replaces_previous_handlers(tmp_path):
    app = _build_app(tmp_path, ENABLE_CONSOLE_LOGGING=True, LOG_FORMAT="text")

    setup_logging(app)
    setup_logging(app)

    package_handlers = [h for h in logging.getLogger("catalog_app").handlers if getattr(h, "_catalog_app_handler", False)]
    assert len(package_handlers) == 2
    assert logging.getLogger("catalog_app").level == logging.INFO

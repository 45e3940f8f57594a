# config/validation.py

"""
Environment variable validation, run at startup in production.
"""

import os
import sys
from typing import List, Tuple
from urllib.parse import urlparse


def _positive_number(name: str, errors: List[str], *, cast=int) -> None:
    raw = os.environ.get(name)
    if raw is None:
        return
    try:
        value = cast(raw)
    except ValueError:
        errors.append(f"{name} must be a number, got {raw!r}")
        return
    if value <= 0:
        errors.append(f"{name} must be greater than zero")


def validate_environment(flask_env: str = None) -> Tuple[bool, List[str]]:
    """
    Validate required environment variables.

    Args:
        flask_env: Flask environment (development, production, testing)
                  If None, reads from FLASK_ENV environment variable

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    if flask_env is None:
        flask_env = os.environ.get("FLASK_ENV", "development")

    errors = []

    # Only validate in production
    if flask_env != "production":
        return True, []

    secret_key = os.environ.get("SECRET_KEY", "")
    if not secret_key or secret_key in {"your-secret-key", "your_secret_key"}:
        errors.append(
            "SECRET_KEY is required in production and must not be the default value. "
            'Generate a secure key: python -c "import secrets; print(secrets.token_hex(32))"'
        )

    if not os.environ.get("DATABASE_URL"):
        errors.append("DATABASE_URL is required in production. Set it to your PostgreSQL connection string.")

    if os.environ.get("CATALOG_SYNC_WORKER_ENABLED", "false").lower() == "true":
        if not os.environ.get("CELERY_BROKER_URL"):
            errors.append("CELERY_BROKER_URL is required when CATALOG_SYNC_WORKER_ENABLED=true")
        if not os.environ.get("CELERY_RESULT_BACKEND"):
            errors.append("CELERY_RESULT_BACKEND is required when CATALOG_SYNC_WORKER_ENABLED=true")

    webhook_token = os.environ.get("CATALOG_SYNC_WEBHOOK_TOKEN")
    if webhook_token is not None and len(webhook_token) < 16:
        errors.append("CATALOG_SYNC_WEBHOOK_TOKEN must be at least 16 characters when set")

    for name in ("CATALOG_SYNC_FRESHNESS_HOURS", "CATALOG_SYNC_FETCH_TIMEOUT"):
        _positive_number(name, errors, cast=float)
    for name in ("CATALOG_SYNC_FAILURE_THRESHOLD", "CATALOG_SYNC_STALE_JOB_MINUTES"):
        _positive_number(name, errors)

    sources_path = os.environ.get("CATALOG_SYNC_SOURCES_PATH")
    if sources_path and not os.path.exists(sources_path):
        errors.append(f"CATALOG_SYNC_SOURCES_PATH points to a missing file: {sources_path}")

    broker = os.environ.get("CELERY_BROKER_URL")
    if broker and not urlparse(broker).scheme:
        errors.append("CELERY_BROKER_URL must be a URL (e.g. redis://host:6379/0)")

    is_valid = len(errors) == 0
    return is_valid, errors


def validate_and_exit(flask_env: str = None) -> None:
    """
    Validate environment variables and exit with error if validation fails.
    Intended to be called at application startup.
    """
    is_valid, errors = validate_environment(flask_env)

    if not is_valid:
        print("=" * 80, file=sys.stderr)
        print("ENVIRONMENT VALIDATION FAILED", file=sys.stderr)
        print("=" * 80, file=sys.stderr)
        print("\nThe following environment variables are missing or invalid:\n", file=sys.stderr)

        for i, error in enumerate(errors, 1):
            print(f"{i}. {error}", file=sys.stderr)

        print("\n" + "=" * 80, file=sys.stderr)
        print("Please check your .env file or environment variables.", file=sys.stderr)
        print("=" * 80, file=sys.stderr)

        sys.exit(1)

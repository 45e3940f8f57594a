# config/base.py
import os


def _coerce_bool(value, default=False):
    """Convert environment-style truthy/falsey values to bool."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    value_str = str(value).strip().lower()
    if value_str in {"1", "true", "yes", "on"}:
        return True
    if value_str in {"0", "false", "no", "off"}:
        return False
    return default


def _parse_name_list(value):
    """
    Parse a comma-separated identifier list while keeping order and removing duplicates.

    Returns:
        tuple[str, ...]: Normalized identifiers.
    """
    if not value:
        return ()

    seen = set()
    names = []
    for raw_item in value.split(","):
        item = raw_item.strip().lower()
        if not item or item in seen:
            continue
        seen.add(item)
        names.append(item)
    return tuple(names)


def _env_number(name, default, cast=int, *, minimum=None):
    """Read a numeric environment variable, falling back to ``default`` on bad input."""
    try:
        value = cast(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default
    if minimum is not None and value < minimum:
        return default
    return value


class Config:
    _flask_env = os.environ.get("FLASK_ENV", "development")
    _is_testing = _flask_env == "testing"
    _is_production = _flask_env == "production"

    SECRET_KEY = os.environ.get("SECRET_KEY")

    # Only require SECRET_KEY in production mode
    if not SECRET_KEY and _is_production:
        raise ValueError(
            "SECRET_KEY environment variable is required in production. "
            'Generate with: python -c "import secrets; print(secrets.token_hex(32))"'
        )

    if not SECRET_KEY and not _is_testing:
        import warnings

        warnings.warn(
            "SECRET_KEY not set. Using default for development only. "
            "Set SECRET_KEY environment variable before deploying.",
            UserWarning,
        )
        SECRET_KEY = "dev-secret-key-change-in-production"

    if not SECRET_KEY:
        SECRET_KEY = "test-secret-key-placeholder"

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {}

    # Catalog sync configuration
    CATALOG_SYNC_ENABLED = _coerce_bool(os.environ.get("CATALOG_SYNC_ENABLED"), default=True)
    CATALOG_SYNC_FORMATS = _parse_name_list(os.environ.get("CATALOG_SYNC_FORMATS", "xlsx,csv,xls,html,pdf"))

    if CATALOG_SYNC_ENABLED and not CATALOG_SYNC_FORMATS:
        raise ValueError("CATALOG_SYNC_ENABLED is true but CATALOG_SYNC_FORMATS is empty. Provide at least one format.")

    CATALOG_SYNC_WORKER_ENABLED = _coerce_bool(os.environ.get("CATALOG_SYNC_WORKER_ENABLED"), default=False)
    CATALOG_SYNC_FETCH_TIMEOUT = _env_number("CATALOG_SYNC_FETCH_TIMEOUT", 30.0, float, minimum=1)
    CATALOG_SYNC_MAX_REDIRECTS = _env_number("CATALOG_SYNC_MAX_REDIRECTS", 5, minimum=0)
    CATALOG_SYNC_FRESHNESS_HOURS = _env_number("CATALOG_SYNC_FRESHNESS_HOURS", 23.0, float, minimum=1)
    CATALOG_SYNC_FAILURE_THRESHOLD = _env_number("CATALOG_SYNC_FAILURE_THRESHOLD", 3, minimum=1)
    CATALOG_SYNC_LOCK_TIMEOUT = _env_number("CATALOG_SYNC_LOCK_TIMEOUT", 0.0, float, minimum=0)
    CATALOG_SYNC_STALE_JOB_MINUTES = _env_number("CATALOG_SYNC_STALE_JOB_MINUTES", 60, minimum=1)
    CATALOG_SYNC_SOURCES_PATH = os.environ.get("CATALOG_SYNC_SOURCES_PATH")
    CATALOG_SYNC_WEBHOOK_TOKEN = os.environ.get("CATALOG_SYNC_WEBHOOK_TOKEN")
    CATALOG_SYNC_TASK_TIME_LIMIT = _env_number("CATALOG_SYNC_TASK_TIME_LIMIT", 30 * 60, minimum=60)
    CATALOG_SYNC_TASK_SOFT_TIME_LIMIT = _env_number("CATALOG_SYNC_TASK_SOFT_TIME_LIMIT", 25 * 60, minimum=60)

    CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL")
    CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND")
    CELERY_SQLITE_PATH = os.environ.get("CELERY_SQLITE_PATH")
    CELERY_CONFIG = os.environ.get("CELERY_CONFIG")


class DevelopmentConfig(Config):
    DEBUG = True
    _config_dir = os.path.dirname(os.path.abspath(__file__))
    _project_root = os.path.dirname(_config_dir)
    instance_path = os.path.join(_project_root, "instance")

    if not os.path.exists(instance_path):
        os.makedirs(instance_path, exist_ok=True)

    # SQLite URIs need forward slashes, including on Windows
    db_path = os.path.join(instance_path, "catalog_dev.db").replace("\\", "/")
    db_uri = f"sqlite:///{db_path}"

    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", db_uri)
    SQLALCHEMY_ECHO = _coerce_bool(os.environ.get("SQLALCHEMY_ECHO"), default=False)
    if SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
        SQLALCHEMY_ENGINE_OPTIONS = {
            "connect_args": {
                "check_same_thread": False,
                "timeout": 5,
            }
        }
    else:
        SQLALCHEMY_ENGINE_OPTIONS = {}


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = os.environ.get("SECRET_KEY", "test-secret-key-for-testing-only")
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ECHO = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "connect_args": {
            "check_same_thread": False,
            "timeout": 5,
        }
    }
    CATALOG_SYNC_ENABLED = True
    CATALOG_SYNC_WORKER_ENABLED = False
    CATALOG_SYNC_WEBHOOK_TOKEN = "test-webhook-token"


class ProductionConfig(Config):
    DEBUG = False
    uri = os.environ.get("DATABASE_URL")
    if uri and uri.startswith("postgres://"):
        uri = uri.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = uri
    SQLALCHEMY_ECHO = False

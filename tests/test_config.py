import pytest

from config.base import _coerce_bool, _env_number, _parse_name_list
from config.validation import validate_and_exit, validate_environment


@pytest.fixture
def production_env(monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "a" * 64)
    monkeypatch.setenv("DATABASE_URL", "postgresql://catalog@db/catalog")
    for name in (
        "CATALOG_SYNC_WORKER_ENABLED",
        "CATALOG_SYNC_WEBHOOK_TOKEN",
        "CATALOG_SYNC_FRESHNESS_HOURS",
        "CATALOG_SYNC_FETCH_TIMEOUT",
        "CATALOG_SYNC_FAILURE_THRESHOLD",
        "CATALOG_SYNC_STALE_JOB_MINUTES",
        "CATALOG_SYNC_SOURCES_PATH",
        "CELERY_BROKER_URL",
        "CELERY_RESULT_BACKEND",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.mark.parametrize(
    "value, default, expected",
    [("true", False, True), ("0", True, False), ("YES", False, True), ("maybe", True, True), (None, False, False)],
)
def test_coerce_bool(value, default, expected):
    assert _coerce_bool(value, default=default) is expected


def test_parse_name_list_dedupes_and_lowercases():
    assert _parse_name_list("XLSX, csv,,xlsx ,pdf") == ("xlsx", "csv", "pdf")
    assert _parse_name_list("") == ()


def test_env_number_falls_back_on_bad_input(monkeypatch):
    monkeypatch.setenv("CATALOG_SYNC_FETCH_TIMEOUT", "soon")
    assert _env_number("CATALOG_SYNC_FETCH_TIMEOUT", 30.0, float) == 30.0

    monkeypatch.setenv("CATALOG_SYNC_FETCH_TIMEOUT", "0")
    assert _env_number("CATALOG_SYNC_FETCH_TIMEOUT", 30.0, float, minimum=1) == 30.0

    monkeypatch.setenv("CATALOG_SYNC_FETCH_TIMEOUT", "12.5")
    assert _env_number("CATALOG_SYNC_FETCH_TIMEOUT", 30.0, float, minimum=1) == 12.5


def test_validation_skipped_outside_production():
    assert validate_environment("development") == (True, [])
    assert validate_environment("testing") == (True, [])


def test_valid_production_environment(production_env):
    assert validate_environment("production") == (True, [])


def test_production_requires_secret_and_database(production_env):
    production_env.setenv("SECRET_KEY", "your-secret-key")
    production_env.delenv("DATABASE_URL")

    is_valid, errors = validate_environment("production")

    assert is_valid is False
    assert any("SECRET_KEY" in error for error in errors)
    assert any("DATABASE_URL" in error for error in errors)


def test_worker_requires_broker_and_backend(production_env):
    production_env.setenv("CATALOG_SYNC_WORKER_ENABLED", "true")

    _, errors = validate_environment("production")

    assert any("CELERY_BROKER_URL is required" in error for error in errors)
    assert any("CELERY_RESULT_BACKEND is required" in error for error in errors)


def test_sync_settings_are_checked(production_env, tmp_path):
    production_env.setenv("CATALOG_SYNC_WEBHOOK_TOKEN", "short")
    production_env.setenv("CATALOG_SYNC_FAILURE_THRESHOLD", "0")
    production_env.setenv("CATALOG_SYNC_FETCH_TIMEOUT", "fast")
    production_env.setenv("CATALOG_SYNC_SOURCES_PATH", str(tmp_path / "missing.yaml"))
    production_env.setenv("CELERY_BROKER_URL", "localhost")

    _, errors = validate_environment("production")

    assert len(errors) == 5
    assert any("at least 16 characters" in error for error in errors)
    assert any("CATALOG_SYNC_FAILURE_THRESHOLD must be greater than zero" in error for error in errors)
    assert any("CATALOG_SYNC_FETCH_TIMEOUT must be a number" in error for error in errors)
    assert any("missing file" in error for error in errors)
    assert any("must be a URL" in error for error in errors)


def test_validate_and_exit_stops_on_errors(production_env, capsys):
    production_env.delenv("DATABASE_URL")

    with pytest.raises(SystemExit) as excinfo:
        validate_and_exit("production")

    assert excinfo.value.code == 1
    assert "ENVIRONMENT VALIDATION FAILED" in capsys.readouterr().err

import json
from typing import Any, Dict

import pytest
from flask import Flask
from sync_helpers import StubFetcher, csv_bytes, product_rows

from catalog_app.models import SyncJob, SyncJobStatus, SyncTrigger
from catalog_app.sync import get_celery_app, init_catalog_sync
from catalog_app.sync.celery_app import DEFAULT_QUEUE_NAME
from catalog_app.sync.orchestrator import SyncOrchestrator
from catalog_app.sync.tasks import run_due, sync_source


def build_sync_app(**overrides) -> Flask:
    """
    Construct a minimal Flask app with catalog sync enabled for worker tests.
    """
    instance_path_override = overrides.pop("INSTANCE_PATH", None)
    if instance_path_override:
        app = Flask(__name__, instance_path=instance_path_override)
    else:
        app = Flask(__name__)
    app.config.update(
        SECRET_KEY="test-secret",
        TESTING=True,
        CATALOG_SYNC_ENABLED=True,
        CATALOG_SYNC_FORMATS=("xlsx", "csv"),
    )
    app.config.update(overrides)
    init_catalog_sync(app)
    return app


@pytest.fixture
def stubbed_fetch(monkeypatch):
    fetcher = StubFetcher(csv_bytes(product_rows(3)))
    monkeypatch.setattr("catalog_app.sync.orchestrator.SourceFetcher", lambda **kwargs: fetcher)
    return fetcher


def test_celery_defaults_to_sqlite_transport(tmp_path):
    instance_dir = tmp_path / "instance"
    instance_dir.mkdir()
    sqlite_path = instance_dir / "custom.sqlite"

    app = build_sync_app(
        CELERY_SQLITE_PATH=str(sqlite_path),
        CELERY_CONFIG={"task_always_eager": True, "task_eager_propagates": True},
        INSTANCE_PATH=str(instance_dir),
    )

    celery_app = get_celery_app(app)
    assert celery_app is not None
    assert celery_app.conf.broker_url.startswith("sqla+sqlite:///")
    assert sqlite_path.name in celery_app.conf.broker_url
    assert celery_app.conf.result_backend.startswith("db+sqlite:///")
    assert celery_app.conf.task_default_queue == DEFAULT_QUEUE_NAME
    assert celery_app.conf.worker_prefetch_multiplier == 1
    assert "catalog_sync.sync_source" in celery_app.tasks
    assert "catalog_sync.run_due" in celery_app.tasks


def test_celery_config_json_string_is_applied(tmp_path):
    app = build_sync_app(
        CELERY_CONFIG=json.dumps({"task_always_eager": True}),
        INSTANCE_PATH=str(tmp_path),
    )

    assert get_celery_app(app).conf.task_always_eager is True


def test_disabled_sync_registers_stub_cli(tmp_path):
    app = build_sync_app(CATALOG_SYNC_ENABLED=False, INSTANCE_PATH=str(tmp_path))

    assert "catalog_sync" not in app.blueprints
    assert get_celery_app(app) is None
    result = app.test_cli_runner().invoke(args=["catalog-sync"])
    assert result.exit_code != 0
    assert "CATALOG_SYNC_ENABLED=false" in result.output


def test_unknown_format_fails_initialisation(tmp_path):
    with pytest.raises(ValueError, match="Unknown catalog sync formats"):
        build_sync_app(CATALOG_SYNC_FORMATS=("xlsx", "docx"), INSTANCE_PATH=str(tmp_path))


def test_worker_ping_cli(tmp_path):
    app = build_sync_app(
        CATALOG_SYNC_WORKER_ENABLED=True,
        CELERY_CONFIG={"task_always_eager": True, "task_eager_propagates": True},
        INSTANCE_PATH=str(tmp_path),
    )

    runner = app.test_cli_runner()
    result = runner.invoke(args=["catalog-sync", "worker", "ping"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["status"] == "ok"
    assert "timestamp" in payload
    assert "worker_hostname" in payload


def test_worker_run_invokes_celery(tmp_path):
    app = build_sync_app(
        CATALOG_SYNC_WORKER_ENABLED=True,
        CELERY_CONFIG={"task_always_eager": True, "task_eager_propagates": True},
        INSTANCE_PATH=str(tmp_path),
    )
    celery_app = get_celery_app(app)

    calls: Dict[str, Any] = {}

    def fake_worker_main(argv=None):
        calls["argv"] = argv

    celery_app.worker_main = fake_worker_main  # type: ignore[assignment]

    result = app.test_cli_runner().invoke(args=["catalog-sync", "worker", "run", "--concurrency", "2"])

    assert result.exit_code == 0, result.output
    assert calls["argv"] == ["worker", "--loglevel", "info", "-Q", DEFAULT_QUEUE_NAME, "--concurrency", "2"]


def test_sync_source_task_runs_prepared_job(source, stubbed_fetch):
    job = SyncOrchestrator().prepare_job(source, triggered_by=SyncTrigger.WEBHOOK)

    payload = sync_source.run(job_id=job.id)

    assert payload["job_id"] == job.id
    assert payload["status"] == "completed"
    assert payload["rows_added"] == 3


def test_sync_source_task_accepts_jurisdiction(source, stubbed_fetch):
    payload = sync_source.run(jurisdiction="MI", triggered_by="scheduler")

    job = SyncJob.query.one()
    assert payload["job_id"] == job.id
    assert job.triggered_by is SyncTrigger.SCHEDULER
    assert job.status is SyncJobStatus.COMPLETED


def test_sync_source_task_requires_a_target():
    with pytest.raises(ValueError, match="job_id or jurisdiction"):
        sync_source.run()
    with pytest.raises(ValueError, match="not found"):
        sync_source.run(job_id=4242)


def test_run_due_task_returns_report(make_source, stubbed_fetch):
    make_source(jurisdiction="MI")
    make_source(jurisdiction="OR")

    payload = run_due.run()

    assert payload["summary"]["total"] == 2
    assert payload["summary"]["completed"] == 2
    assert {result["jurisdiction"] for result in payload["results"]} == {"MI", "OR"}

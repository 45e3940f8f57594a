import json
from pathlib import Path
from unittest.mock import Mock, patch

import pytest
from sync_helpers import StubFetcher, csv_bytes, product_rows

from catalog_app.models import SourceConfig, SyncJob, SyncJobStatus


@pytest.fixture
def stubbed_fetch(monkeypatch):
    fetcher = StubFetcher(csv_bytes(product_rows(3)))
    monkeypatch.setattr("catalog_app.sync.orchestrator.SourceFetcher", lambda **kwargs: fetcher)
    return fetcher


def _write_registry(tmp_path: Path) -> Path:
    path = tmp_path / "sources.yaml"
    path.write_text(
        "version: 1\n"
        "sources:\n"
        "  - jurisdiction: mi\n"
        "    data_source: state_website\n"
        "    file_format: csv\n"
        "    fetch_location: https://example.test/mi.csv\n"
        "    min_expected_records: 1\n"
        "  - jurisdiction: OR\n"
        "    data_source: state_website\n"
        "    file_format: xlsx\n"
        "    enabled: false\n",
        encoding="utf-8",
    )
    return path


def test_group_lists_formats_without_subcommand(runner):
    result = runner.invoke(args=["catalog-sync"])

    assert result.exit_code == 0, result.output
    assert "Enabled catalog sync formats:" in result.output
    assert "  - xlsx" in result.output


def test_sources_load_and_list(runner, tmp_path):
    path = _write_registry(tmp_path)

    loaded = runner.invoke(args=["catalog-sync", "sources", "load", "--path", str(path)])
    listed = runner.invoke(args=["catalog-sync", "sources", "list", "--json"])

    assert loaded.exit_code == 0, loaded.output
    assert "2 created, 0 updated, 0 unchanged" in loaded.output
    payload = json.loads(listed.output)
    assert [(item["jurisdiction"], item["enabled"]) for item in payload] == [("MI", True), ("OR", False)]
    assert SourceConfig.query.count() == 2


def test_sources_load_reports_invalid_registry(runner, tmp_path):
    path = tmp_path / "broken.yaml"
    path.write_text("version: 1\nsources: {}\n", encoding="utf-8")

    result = runner.invoke(args=["catalog-sync", "sources", "load", "--path", str(path)])

    assert result.exit_code != 0
    assert "Missing 'sources' list" in result.output


def test_run_inline_prints_summary(runner, source, stubbed_fetch):
    result = runner.invoke(args=["catalog-sync", "run", "--jurisdiction", "MI", "--inline", "--summary-json"])

    assert result.exit_code == 0, result.output
    assert "finished with status completed" in result.output
    assert "rows_added        : 3" in result.output
    summary = json.loads(result.output[result.output.index("{") :])
    assert summary["rows_added"] == 3


def test_run_inline_failure_exits_non_zero(runner, make_source, stubbed_fetch):
    make_source(min_expected_records=100)

    result = runner.invoke(args=["catalog-sync", "run", "--jurisdiction", "MI", "--inline"])

    assert result.exit_code != 0
    assert "error_stage       : validate" in result.output
    assert "failed at stage validate" in result.output


def test_run_queues_by_default(runner, source):
    async_result = Mock()
    async_result.id = "celery-task-123"
    celery_app = Mock()
    celery_app.send_task.return_value = async_result

    with patch("catalog_app.sync.cli._resolve_celery", return_value=celery_app):
        result = runner.invoke(args=["catalog-sync", "run", "--jurisdiction", "MI"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output.strip())
    assert payload["status"] == "queued"
    assert payload["task_id"] == "celery-task-123"
    assert SyncJob.query.one().status is SyncJobStatus.PENDING


def test_run_rejects_unknown_source_and_summary_without_inline(runner, source):
    unknown = runner.invoke(args=["catalog-sync", "run", "--jurisdiction", "ZZ", "--inline"])
    misuse = runner.invoke(args=["catalog-sync", "run", "--jurisdiction", "MI", "--summary-json"])

    assert unknown.exit_code != 0
    assert "No source configuration found for ZZ" in unknown.output
    assert misuse.exit_code != 0
    assert "only available for --inline" in misuse.output


def test_run_due_inline_prints_results_and_summary(runner, make_source, stubbed_fetch):
    make_source(jurisdiction="MI")
    make_source(jurisdiction="OR", min_expected_records=50)

    result = runner.invoke(args=["catalog-sync", "run-due"])

    assert result.exit_code == 0, result.output
    lines = result.output.strip().splitlines()
    assert "MI/state_website: completed" in lines
    assert any(line.startswith("OR/state_website: failed (") for line in lines)
    summary = json.loads(lines[-1])
    assert summary["completed"] == 1
    assert summary["failed"] == 1


def test_due_health_and_jobs_commands(runner, source, stubbed_fetch):
    due_before = runner.invoke(args=["catalog-sync", "due"])
    runner.invoke(args=["catalog-sync", "run", "--jurisdiction", "MI", "--inline"])
    due_after = runner.invoke(args=["catalog-sync", "due"])
    health = runner.invoke(args=["catalog-sync", "health", "--json"])
    jobs = runner.invoke(args=["catalog-sync", "jobs", "--status", "completed"])

    assert due_before.output.strip() == "MI/state_website"
    assert due_after.output.strip() == "No sources are due."
    assert json.loads(health.output)[0]["status"] == "healthy"
    assert "completed" in jobs.output
    assert "+3" in jobs.output

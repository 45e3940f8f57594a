"""
CLI commands for catalog sync (``flask catalog-sync ...``).
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import click
from celery import Celery
from celery.exceptions import TimeoutError as CeleryTimeoutError
from flask.cli import ScriptInfo

from catalog_app.models import SyncJob, SyncJobStatus, SyncTrigger
from catalog_app.utils.sync import get_catalog_sync_formats, is_catalog_sync_enabled

from .celery_app import DEFAULT_QUEUE_NAME, EXTENSION_KEY, get_celery_app
from .errors import SyncError
from .mappings import MappingLoadError
from .monitor import due_sources, run_due
from .orchestrator import SyncOrchestrator
from .reporting import SyncReportService, serialize_job
from .source_registry import list_sources, upsert_source_configs


@click.group(name="catalog-sync", invoke_without_command=True)
@click.pass_context
def catalog_sync_cli(ctx):
    """
    Catalog sync management commands.

    Lists the configured source formats when invoked without a subcommand.
    """
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    if not is_catalog_sync_enabled(app):
        raise click.ClickException(
            "Catalog sync is disabled via CATALOG_SYNC_ENABLED=false. Enable it to run catalog-sync commands."
        )
    if ctx.invoked_subcommand is None:
        formats = get_catalog_sync_formats(app)
        if not formats:
            click.echo("No catalog sync formats configured.")
        else:
            click.echo("Enabled catalog sync formats:")
            for name in formats:
                click.echo(f"  - {name}")


def get_disabled_catalog_sync_group() -> click.Group:
    """Return a stub group telling the operator catalog sync is disabled."""

    @click.group(name="catalog-sync", invoke_without_command=True)
    def disabled_group():
        raise click.ClickException("Catalog sync commands are unavailable because CATALOG_SYNC_ENABLED=false.")

    return disabled_group


def _resolve_celery(app) -> Celery:
    celery_app = get_celery_app(app)
    if celery_app is None:
        raise click.ClickException(
            "Catalog sync Celery app is unavailable. Ensure CATALOG_SYNC_ENABLED=true and the "
            "catalog sync package initialises before running worker commands."
        )
    return celery_app


def _format_job(job: SyncJob) -> str:
    lines = [
        f"Job {job.id} {job.jurisdiction}/{job.data_source} finished with status {job.status.value}.",
        f"  triggered_by      : {job.triggered_by.value}",
        f"  forced            : {job.forced}",
        f"  skipped_unchanged : {job.skipped_unchanged}",
        f"  rows_processed    : {job.rows_processed}",
        f"  rows_added        : {job.rows_added}",
        f"  rows_reactivated  : {job.rows_reactivated}",
        f"  rows_updated      : {job.rows_updated}",
        f"  rows_removed      : {job.rows_removed}",
        f"  rows_unchanged    : {job.rows_unchanged}",
        f"  validation_errors : {job.validation_errors}",
        f"  change_rate       : {job.change_rate if job.change_rate is not None else 'n/a'}",
    ]
    if job.anomaly_flags:
        lines.append(f"  anomalies         : {', '.join(sorted(job.anomaly_flags))}")
    if job.status is SyncJobStatus.FAILED:
        lines.append(f"  error_stage       : {job.error_stage or 'n/a'}")
        lines.append(f"  error_message     : {job.error_message}")
    return "\n".join(lines)


# ----------------------------------------------------------------------
# Sources
# ----------------------------------------------------------------------


@catalog_sync_cli.group(name="sources")
def sources_group():
    """Inspect and seed source configurations."""


@sources_group.command("load")
@click.option(
    "--path",
    "registry_path",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    help="YAML source registry to load (defaults to CATALOG_SYNC_SOURCES_PATH or the packaged file).",
)
@click.pass_context
def sources_load(ctx, registry_path: Optional[Path]):
    """Create or update source configurations from a YAML registry."""
    app = ctx.ensure_object(ScriptInfo).load_app()
    path = registry_path or app.config.get("CATALOG_SYNC_SOURCES_PATH")
    try:
        result = upsert_source_configs(path=path)
    except MappingLoadError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(
        f"Sources loaded: {len(result.created)} created, {len(result.updated)} updated, "
        f"{len(result.unchanged)} unchanged."
    )


@sources_group.command("list")
@click.option("--json", "as_json", is_flag=True, help="Emit JSON instead of a table.")
def sources_list(as_json: bool):
    """List configured sources."""
    sources = list_sources()
    if as_json:
        click.echo(json.dumps([source.to_dict() for source in sources], indent=2))
        return
    if not sources:
        click.echo("No catalog sources configured.")
        return
    for source in sources:
        state = "enabled" if source.enabled else "disabled"
        click.echo(
            f"{source.jurisdiction:<4} {source.data_source:<16} {source.file_format:<5} {state:<8} "
            f"min={source.min_expected_records} max_change={source.max_change_rate}"
        )


# ----------------------------------------------------------------------
# Sync runs
# ----------------------------------------------------------------------


@catalog_sync_cli.command("run")
@click.option("--jurisdiction", required=True, help="Jurisdiction code, e.g. MI.")
@click.option("--data-source", default=None, help="Data source name; defaults to the jurisdiction's first source.")
@click.option("--force", is_flag=True, help="Sync even if the file is unchanged or the source is disabled.")
@click.option(
    "--inline/--no-inline",
    default=False,
    help="Run inline within the CLI process instead of queueing via Celery.",
)
@click.option("--summary-json", is_flag=True, help="Emit the job payload as JSON (inline runs only).")
@click.pass_context
def catalog_sync_run(ctx, jurisdiction: str, data_source: Optional[str], force: bool, inline: bool, summary_json: bool):
    """Sync one catalog source."""
    app = ctx.ensure_object(ScriptInfo).load_app()
    if summary_json and not inline:
        raise click.ClickException("--summary-json is only available for --inline runs.")

    orchestrator = SyncOrchestrator(logger=app.logger)
    try:
        source = orchestrator.get_source(jurisdiction, data_source)
        if inline:
            job = orchestrator.sync_source(source, triggered_by=SyncTrigger.MANUAL, force=force)
        else:
            job = orchestrator.prepare_job(source, triggered_by=SyncTrigger.MANUAL, force=force)
    except SyncError as exc:
        raise click.ClickException(str(exc)) from exc

    if not inline:
        celery_app = _resolve_celery(app)
        try:
            async_result = celery_app.send_task("catalog_sync.sync_source", kwargs={"job_id": job.id, "force": force})
        except Exception as exc:  # pragma: no cover - broker unavailable
            orchestrator.fail_job(job, stage=None, message=f"Failed to enqueue: {exc}")
            raise click.ClickException(f"Failed to enqueue sync job {job.id}: {exc}") from exc
        click.echo(json.dumps({"job_id": job.id, "task_id": async_result.id, "status": "queued"}))
        return

    click.echo(_format_job(job))
    if summary_json:
        click.echo(json.dumps(serialize_job(job), indent=2, sort_keys=True))
    if job.status is SyncJobStatus.FAILED:
        raise click.ClickException(f"Sync job {job.id} failed at stage {job.error_stage or 'unknown'}.")


@catalog_sync_cli.command("run-due")
@click.option(
    "--inline/--no-inline",
    default=True,
    help="Run due sources in this process, or queue a single run-due task.",
)
@click.pass_context
def catalog_sync_run_due(ctx, inline: bool):
    """Sync every enabled source whose last attempt is stale."""
    app = ctx.ensure_object(ScriptInfo).load_app()
    if not inline:
        celery_app = _resolve_celery(app)
        async_result = celery_app.send_task("catalog_sync.run_due", kwargs={"triggered_by": "scheduler"})
        click.echo(json.dumps({"task_id": async_result.id, "status": "queued"}))
        return

    report = run_due(SyncTrigger.SCHEDULER, orchestrator=SyncOrchestrator(logger=app.logger))
    for result in report.results:
        suffix = f" ({result.error})" if result.error else ""
        click.echo(f"{result.jurisdiction}/{result.data_source}: {result.status}{suffix}")
    click.echo(json.dumps(report.summary(), sort_keys=True))


@catalog_sync_cli.command("due")
def catalog_sync_due():
    """List sources that are due for a sync."""
    sources = due_sources()
    if not sources:
        click.echo("No sources are due.")
        return
    for source in sources:
        click.echo(f"{source.jurisdiction}/{source.data_source}")


# ----------------------------------------------------------------------
# Reporting
# ----------------------------------------------------------------------


@catalog_sync_cli.command("health")
@click.option("--json", "as_json", is_flag=True, help="Emit JSON instead of a table.")
def catalog_sync_health(as_json: bool):
    """Show per-source health."""
    rows = SyncReportService().health_dashboard()
    if as_json:
        click.echo(json.dumps([row.as_dict() for row in rows], indent=2))
        return
    if not rows:
        click.echo("No catalog sources configured.")
        return
    for row in rows:
        source = row.source
        click.echo(
            f"{source['jurisdiction']:<4} {source['data_source']:<16} {row.status:<9} "
            f"failures={row.consecutive_failures} records={row.current_record_count} "
            f"last_success={row.last_success_at or 'never'}"
        )


@catalog_sync_cli.command("jobs")
@click.option("--limit", default=20, show_default=True, type=int)
@click.option("--jurisdiction", default=None)
@click.option("--status", default=None, type=click.Choice([status.value for status in SyncJobStatus]))
def catalog_sync_jobs(limit: int, jurisdiction: Optional[str], status: Optional[str]):
    """List recent sync jobs."""
    jobs = SyncReportService().recent_jobs(limit=limit, jurisdiction=jurisdiction, status=status)
    if not jobs:
        click.echo("No sync jobs recorded.")
        return
    for job in jobs:
        click.echo(
            f"#{job.id:<5} {job.jurisdiction}/{job.data_source:<16} {job.status.value:<9} "
            f"+{job.rows_added} ~{job.rows_updated} -{job.rows_removed} errors={job.validation_errors}"
        )


# ----------------------------------------------------------------------
# Worker
# ----------------------------------------------------------------------


@catalog_sync_cli.group(name="worker")
@click.pass_context
def worker_group(ctx):
    """Manage the catalog sync background worker."""
    app = ctx.ensure_object(ScriptInfo).load_app()
    state = app.extensions.get(EXTENSION_KEY, {})
    if not state.get("worker_enabled") and not app.config.get("CATALOG_SYNC_WORKER_ENABLED"):
        click.echo(
            "Warning: CATALOG_SYNC_WORKER_ENABLED is false. Commands will still run, "
            "but enable the flag to surface accurate health status.",
            err=True,
        )


@worker_group.command("run")
@click.option("--loglevel", default="info", show_default=True)
@click.option("--concurrency", type=int, help="Number of worker processes/threads.")
@click.option("--pool", type=str, help="Celery pool implementation (e.g., 'prefork', 'solo', 'threads').")
@click.option("--queues", default=DEFAULT_QUEUE_NAME, show_default=True, help="Comma-separated queue list to consume.")
@click.pass_context
def worker_run(ctx, loglevel: str, concurrency: Optional[int], pool: Optional[str], queues: str):
    """Start the Celery worker in the current process."""
    app = ctx.ensure_object(ScriptInfo).load_app()
    celery_app = _resolve_celery(app)
    app.extensions.get(EXTENSION_KEY, {})["worker_enabled"] = True

    argv = ["worker", "--loglevel", loglevel, "-Q", queues]
    if concurrency:
        argv.extend(["--concurrency", str(concurrency)])
    if pool:
        argv.extend(["--pool", pool])

    click.echo(f"Starting catalog sync worker (queues: {queues}, loglevel: {loglevel})")
    try:
        celery_app.worker_main(argv=argv)
    except KeyboardInterrupt:
        click.echo("Worker shutdown requested. Exiting...")


@worker_group.command("ping")
@click.option("--timeout", default=10.0, show_default=True, help="Seconds to wait for a response.")
@click.pass_context
def worker_ping(ctx, timeout: float):
    """Validate worker connectivity by executing the heartbeat task."""
    app = ctx.ensure_object(ScriptInfo).load_app()
    celery_app = _resolve_celery(app)
    task = celery_app.tasks.get("catalog_sync.healthcheck")
    if task is None:
        raise click.ClickException("Heartbeat task 'catalog_sync.healthcheck' is not registered.")

    result = task.apply_async()
    try:
        payload = result.get(timeout=timeout)
    except CeleryTimeoutError as exc:
        raise click.ClickException(f"Worker did not respond within {timeout}s") from exc
    except Exception as exc:  # pragma: no cover - surfacing unexpected errors
        raise click.ClickException(f"Worker ping failed: {exc}") from exc

    click.echo(json.dumps(payload, indent=2))

"""
Catalog sync blueprint: health, history, and trigger endpoints.
"""

from __future__ import annotations

import hmac
import time
from http import HTTPStatus

from celery.exceptions import TimeoutError as CeleryTimeoutError
from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import NoResultFound

from catalog_app.models import SyncTrigger
from catalog_app.utils.sync import is_catalog_sync_enabled
from config.monitoring import SyncMonitoring

from .celery_app import DEFAULT_QUEUE_NAME, EXTENSION_KEY, get_celery_app
from .errors import SourceDisabledError, SourceNotFoundError, SyncError, SyncInProgressError
from .monitor import due_sources, run_sources
from .orchestrator import SyncOrchestrator
from .registry import FormatDescriptor
from .reporting import SyncReportService, serialize_job
from .source_registry import list_sources

catalog_sync_blueprint = Blueprint("catalog_sync", __name__, url_prefix="/catalog-sync")

WEBHOOK_TOKEN_HEADER = "X-Catalog-Sync-Token"
MAX_HEARTBEAT_TIMEOUT = 60

_ERROR_STATUS = {
    SourceNotFoundError: HTTPStatus.NOT_FOUND,
    SourceDisabledError: HTTPStatus.CONFLICT,
    SyncInProgressError: HTTPStatus.CONFLICT,
}


def _json_error(message: str, status: HTTPStatus, **extra):
    return jsonify({"error": message, **extra}), status


def _ensure_enabled_api():
    if not is_catalog_sync_enabled(current_app):
        return _json_error("Catalog sync is disabled.", HTTPStatus.NOT_FOUND)
    return None


def _json_object_body():
    """Return the request's JSON object (empty when absent), or None when it is not an object."""
    body = request.get_json(silent=True)
    if body is None:
        return {}
    return body if isinstance(body, dict) else None


def _sync_error_response(exc: SyncError):
    status = _ERROR_STATUS.get(type(exc), HTTPStatus.BAD_REQUEST)
    return _json_error(str(exc), status, details=exc.details)


def _serialize_format(descriptor: FormatDescriptor) -> dict:
    return descriptor.as_dict()


@catalog_sync_blueprint.get("/health")
def catalog_sync_healthcheck():
    """Blueprint health plus the per-source dashboard."""
    state = current_app.extensions.get(EXTENSION_KEY, {})
    rows = SyncReportService().health_dashboard()
    degraded = [row for row in rows if row.status != "healthy"]
    return (
        jsonify(
            {
                "status": "ok" if not degraded else "degraded",
                "enabled": state.get("enabled", False),
                "formats": [_serialize_format(descriptor) for descriptor in state.get("active_formats", ())],
                "sources": [row.as_dict() for row in rows],
            }
        ),
        HTTPStatus.OK,
    )


@catalog_sync_blueprint.get("/worker_health")
def catalog_sync_worker_health():
    """Validate worker availability via the heartbeat task."""
    state = current_app.extensions.get(EXTENSION_KEY, {})
    enabled = state.get("enabled", False)
    worker_enabled = state.get("worker_enabled", False)
    try:
        timeout_seconds = float(request.args.get("timeout", 5))
    except ValueError:
        return _json_error("timeout must be a number of seconds.", HTTPStatus.BAD_REQUEST)
    if not 0 < timeout_seconds <= MAX_HEARTBEAT_TIMEOUT:
        return _json_error(
            f"timeout must be greater than 0 and at most {MAX_HEARTBEAT_TIMEOUT} seconds.",
            HTTPStatus.BAD_REQUEST,
        )

    payload = {
        "catalog_sync_enabled": enabled,
        "worker_enabled": worker_enabled,
        "queue": DEFAULT_QUEUE_NAME,
        "timeout_seconds": timeout_seconds,
    }
    if not enabled or not worker_enabled:
        payload["status"] = "disabled"
        if enabled:
            payload["message"] = "Worker flag disabled; start the worker or set CATALOG_SYNC_WORKER_ENABLED=true."
        return jsonify(payload), HTTPStatus.OK

    celery_app = get_celery_app(current_app)
    if celery_app is None:
        payload.update(status="error", error="celery_app_unavailable")
        return jsonify(payload), HTTPStatus.INTERNAL_SERVER_ERROR

    task = celery_app.tasks.get("catalog_sync.healthcheck")
    if task is None:
        payload.update(status="error", error="heartbeat_task_missing")
        return jsonify(payload), HTTPStatus.INTERNAL_SERVER_ERROR

    result = task.apply_async()
    try:
        payload["heartbeat"] = result.get(timeout=timeout_seconds)
        payload["status"] = "ok"
        return jsonify(payload), HTTPStatus.OK
    except CeleryTimeoutError:
        payload["status"] = "timeout"
        return jsonify(payload), HTTPStatus.GATEWAY_TIMEOUT
    except Exception as exc:  # pragma: no cover - surfacing unexpected errors
        current_app.logger.exception("Catalog sync worker health check failed.", exc_info=exc)
        payload.update(status="error", error=str(exc))
        return jsonify(payload), HTTPStatus.INTERNAL_SERVER_ERROR


# ----------------------------------------------------------------------
# History
# ----------------------------------------------------------------------


@catalog_sync_blueprint.get("/sources")
def catalog_sync_sources():
    disabled = _ensure_enabled_api()
    if disabled:
        return disabled
    return jsonify({"sources": [source.to_dict() for source in list_sources()]}), HTTPStatus.OK


@catalog_sync_blueprint.get("/jobs")
def catalog_sync_jobs():
    disabled = _ensure_enabled_api()
    if disabled:
        return disabled

    start_time = time.perf_counter()
    try:
        jobs = SyncReportService().recent_jobs(
            limit=request.args.get("limit"),
            jurisdiction=request.args.get("jurisdiction"),
            status=request.args.get("status"),
        )
    except ValueError as exc:
        SyncMonitoring.record_request(endpoint="jobs", duration_seconds=0.0, status="invalid_request")
        return _json_error(str(exc), HTTPStatus.BAD_REQUEST)

    duration = time.perf_counter() - start_time
    SyncMonitoring.record_request(endpoint="jobs", duration_seconds=duration, status="success")
    current_app.logger.info(
        "Catalog sync jobs retrieved",
        extra={
            "catalog_sync_job_count": len(jobs),
            "catalog_sync_response_time_ms": round(duration * 1000, 2),
        },
    )
    return jsonify({"jobs": [serialize_job(job) for job in jobs], "count": len(jobs)}), HTTPStatus.OK


@catalog_sync_blueprint.get("/jobs/<int:job_id>")
def catalog_sync_job_detail(job_id: int):
    disabled = _ensure_enabled_api()
    if disabled:
        return disabled

    start_time = time.perf_counter()
    try:
        payload = SyncReportService().job_detail(job_id)
    except NoResultFound:
        SyncMonitoring.record_request(
            endpoint="job_detail", duration_seconds=time.perf_counter() - start_time, status="not_found"
        )
        return _json_error(f"Sync job {job_id} not found.", HTTPStatus.NOT_FOUND)

    SyncMonitoring.record_request(
        endpoint="job_detail", duration_seconds=time.perf_counter() - start_time, status="success"
    )
    return jsonify(payload), HTTPStatus.OK


@catalog_sync_blueprint.get("/changes")
def catalog_sync_changes():
    disabled = _ensure_enabled_api()
    if disabled:
        return disabled
    days = request.args.get("days")
    rows = SyncReportService().daily_changes(days=days, jurisdiction=request.args.get("jurisdiction"))
    return jsonify({"days": rows}), HTTPStatus.OK


@catalog_sync_blueprint.get("/due")
def catalog_sync_due():
    disabled = _ensure_enabled_api()
    if disabled:
        return disabled
    sources = due_sources()
    return jsonify({"due": [source.to_dict() for source in sources], "count": len(sources)}), HTTPStatus.OK


@catalog_sync_blueprint.get("/jurisdictions/<code>")
def catalog_sync_jurisdiction(code: str):
    disabled = _ensure_enabled_api()
    if disabled:
        return disabled
    try:
        payload = SyncReportService().jurisdiction_overview(code)
    except NoResultFound as exc:
        return _json_error(str(exc), HTTPStatus.NOT_FOUND)
    return jsonify(payload), HTTPStatus.OK


# ----------------------------------------------------------------------
# Triggers
# ----------------------------------------------------------------------


def _trigger(triggered_by: SyncTrigger):
    body = _json_object_body()
    if body is None:
        return _json_error("Request body must be a JSON object.", HTTPStatus.BAD_REQUEST)
    jurisdiction = body.get("jurisdiction")
    if not isinstance(jurisdiction, str) or not jurisdiction.strip():
        return _json_error("jurisdiction is required and must be a string.", HTTPStatus.BAD_REQUEST)
    jurisdiction = jurisdiction.strip()
    data_source = body.get("data_source") or None
    if data_source is not None and not isinstance(data_source, str):
        return _json_error("data_source must be a string.", HTTPStatus.BAD_REQUEST)
    force = body.get("force", False)
    if not isinstance(force, bool):
        return _json_error("force must be a boolean.", HTTPStatus.BAD_REQUEST)

    state = current_app.extensions.get(EXTENSION_KEY, {})
    orchestrator = SyncOrchestrator(logger=current_app.logger)
    start_time = time.perf_counter()
    try:
        source = orchestrator.get_source(jurisdiction, data_source)
        if state.get("worker_enabled"):
            job = orchestrator.prepare_job(source, triggered_by=triggered_by, force=force)
        else:
            job = orchestrator.sync_source(source, triggered_by=triggered_by, force=force)
    except SyncError as exc:
        SyncMonitoring.record_request(
            endpoint=f"trigger_{triggered_by.value}",
            duration_seconds=time.perf_counter() - start_time,
            status="rejected",
        )
        return _sync_error_response(exc)

    if state.get("worker_enabled"):
        celery_app = get_celery_app(current_app)
        if celery_app is None:
            orchestrator.fail_job(job, stage=None, message="Celery app unavailable; job was not queued.")
            return _json_error("Catalog sync worker is unavailable.", HTTPStatus.SERVICE_UNAVAILABLE)
        async_result = celery_app.send_task("catalog_sync.sync_source", kwargs={"job_id": job.id, "force": force})
        current_app.logger.info(
            "Catalog sync job queued",
            extra={
                "catalog_sync_job_id": job.id,
                "catalog_sync_task_id": async_result.id,
                "catalog_sync_triggered_by": triggered_by.value,
            },
        )
        return jsonify({"job_id": job.id, "task_id": async_result.id, "status": "queued"}), HTTPStatus.ACCEPTED

    SyncMonitoring.record_request(
        endpoint=f"trigger_{triggered_by.value}",
        duration_seconds=time.perf_counter() - start_time,
        status=job.status.value,
    )
    return jsonify({"job": serialize_job(job)}), HTTPStatus.OK


@catalog_sync_blueprint.post("/trigger")
def catalog_sync_trigger():
    disabled = _ensure_enabled_api()
    if disabled:
        return disabled
    return _trigger(SyncTrigger.MANUAL)


@catalog_sync_blueprint.post("/trigger-all")
def catalog_sync_trigger_all():
    disabled = _ensure_enabled_api()
    if disabled:
        return disabled
    body = _json_object_body()
    if body is None:
        return _json_error("Request body must be a JSON object.", HTTPStatus.BAD_REQUEST)
    force = body.get("force", False)
    if not isinstance(force, bool):
        return _json_error("force must be a boolean.", HTTPStatus.BAD_REQUEST)
    report = run_sources(
        list_sources(enabled_only=True),
        triggered_by=SyncTrigger.MANUAL,
        force=force,
        orchestrator=SyncOrchestrator(logger=current_app.logger),
    )
    return jsonify(report.as_dict()), HTTPStatus.OK


@catalog_sync_blueprint.post("/webhook")
def catalog_sync_webhook():
    disabled = _ensure_enabled_api()
    if disabled:
        return disabled
    expected = current_app.config.get("CATALOG_SYNC_WEBHOOK_TOKEN")
    if not expected:
        return _json_error("Webhook triggers are not configured.", HTTPStatus.FORBIDDEN)
    supplied = request.headers.get(WEBHOOK_TOKEN_HEADER, "")
    if not hmac.compare_digest(supplied.encode("utf-8"), str(expected).encode("utf-8")):
        current_app.logger.warning(
            "Rejected catalog sync webhook with invalid token",
            extra={"catalog_sync_remote_addr": request.remote_addr},
        )
        return _json_error("Invalid webhook token.", HTTPStatus.UNAUTHORIZED)
    return _trigger(SyncTrigger.WEBHOOK)

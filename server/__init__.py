"""Flask application exposing the generation job orchestrator and resource lifecycle via HTTP."""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

from flask import Flask, g, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from config import DRAFT_PURGE_AFTER_S, JOB_STORE_TTL_S
from domain.errors import QuizFactoryError, ValidationError
from domain.generation_config import GenerationConfig
from domain.lifecycle import LifecycleManager
from domain.resources import ResourceStore
from jobs import JobRunner, JobStore
from observability.logger import bind_trace_id, clear_trace_id, get_logger
from observability.metrics import get_registry

LOGGER = get_logger("quiz_factory.api")


@dataclass
class Services:
    jobs: JobStore
    resources: ResourceStore
    lifecycle: LifecycleManager
    runner: JobRunner


def build_services(*, runner_kwargs: Optional[Dict[str, Any]] = None) -> Services:
    jobs = JobStore(ttl_seconds=JOB_STORE_TTL_S)
    resources = ResourceStore()
    lifecycle = LifecycleManager(resources, jobs=jobs)
    runner = JobRunner(jobs, resources, lifecycle, **(runner_kwargs or {}))
    return Services(jobs=jobs, resources=resources, lifecycle=lifecycle, runner=runner)


def create_app(services: Optional[Services] = None) -> Flask:
    app = Flask(__name__)
    if hasattr(app, "json"):
        app.json.ensure_ascii = False
    CORS(app, resources={r"/api/*": {"origins": "*"}})

    svc = services or build_services()
    app.extensions["quiz_factory"] = svc

    @app.before_request
    def _bind_request_trace() -> None:
        trace_id = request.headers.get("X-Trace-Id") or uuid.uuid4().hex
        g.trace_id = trace_id
        bind_trace_id(trace_id)

    @app.after_request
    def _append_trace(response):  # type: ignore[override]
        trace_id = getattr(g, "trace_id", None)
        if trace_id:
            response.headers.setdefault("X-Trace-Id", trace_id)
        return response

    @app.teardown_request
    def _teardown_trace(_exc):  # type: ignore[override]
        clear_trace_id()

    @app.errorhandler(QuizFactoryError)
    def _handle_domain_error(exc: QuizFactoryError):  # type: ignore[override]
        LOGGER.warning(
            "api_error",
            extra={"error_type": exc.error_type, "error_message": exc.message, "code": exc.status_code},
        )
        payload = exc.to_dict()
        payload["code"] = exc.status_code
        payload["trace_id"] = getattr(g, "trace_id", None)
        return jsonify({"error": payload}), exc.status_code

    @app.errorhandler(Exception)
    def _handle_generic_error(exc: Exception):  # type: ignore[override]
        if isinstance(exc, HTTPException):
            return exc
        LOGGER.exception("Unhandled error")
        return (
            jsonify(
                {
                    "error": {
                        "type": "internal",
                        "message": "Internal server error",
                        "code": 500,
                        "trace_id": getattr(g, "trace_id", None),
                    }
                }
            ),
            500,
        )

    @app.get("/api/health")
    def health():
        return jsonify(
            {
                "status": "ok",
                "jobs": get_registry().snapshot("jobs."),
                "resources": get_registry().snapshot("resources."),
                "active_jobs": svc.jobs.active_count(),
            }
        )

    @app.post("/api/jobs")
    def create_job():
        payload = _require_json(request)
        config = GenerationConfig.from_payload(payload)
        result = svc.runner.submit(config, trace_id=getattr(g, "trace_id", None))
        response_payload = result.to_dict()
        if result.job_id is None:
            response_payload["resource"] = svc.resources.get(result.resource_id).to_dict()
            return jsonify(response_payload), 201
        response_payload["pollUrl"] = f"/api/jobs/status?jobId={result.job_id}"
        return jsonify(response_payload), 202

    @app.get("/api/jobs/status")
    def poll_status():
        job_id = str(request.args.get("jobId", "")).strip()
        if not job_id:
            raise ValidationError("Job ID is required")
        return jsonify(svc.runner.get_job(job_id))

    @app.get("/api/resources/<resource_id>")
    def get_resource(resource_id: str):
        return jsonify(svc.resources.get(resource_id).to_dict())

    @app.delete("/api/resources/<resource_id>")
    def delete_resource(resource_id: str):
        action = svc.lifecycle.delete(resource_id)
        return jsonify({"action": action, "resourceId": resource_id})

    @app.patch("/api/resources/<resource_id>")
    def update_resource_status(resource_id: str):
        payload = _require_json(request)
        new_status = svc.lifecycle.apply_action(resource_id, payload.get("action"))
        return jsonify({"newStatus": new_status.value, "resourceId": resource_id})

    @app.post("/api/resources/<resource_id>/publish")
    def publish_resource(resource_id: str):
        payload = _require_json(request, allow_empty=True)
        resource = svc.lifecycle.publish(
            resource_id,
            start_time=payload.get("startTime"),
            timezone_name=payload.get("timezone"),
        )
        return jsonify(resource.to_dict())

    @app.post("/api/maintenance/purge-drafts")
    def purge_drafts():
        payload = _require_json(request, allow_empty=True)
        older_than = _safe_int(payload.get("olderThanSeconds"), DRAFT_PURGE_AFTER_S)
        if older_than < 0:
            raise ValidationError("olderThanSeconds must not be negative")
        purged = svc.lifecycle.purge_stale_drafts(older_than)
        return jsonify({"purged": purged})

    return app


def _require_json(req, *, allow_empty: bool = False) -> Dict[str, Any]:
    if allow_empty and not req.get_data():
        return {}
    try:
        data = req.get_json(force=True)  # type: ignore[no-any-return]
    except Exception as exc:  # noqa: BLE001
        raise ValidationError("Malformed JSON body") from exc
    if not isinstance(data, dict):
        raise ValidationError("Expected a JSON object")
    return data


def _safe_int(value: Any, default: int = 0) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from client.api import JobsApiClient
from domain.resources import ResourceStatus
from server import build_services, create_app

QUESTIONS = [
    {"question": "Which book opens the Bible?", "options": ["Genesis", "Exodus"], "correct_answer": "a"},
    {"question": "Who built the ark?", "options": ["Noah", "Abraham"], "correct_answer": "a"},
]


def _start_in(minutes: int) -> str:
    return (datetime.now(timezone.utc) + timedelta(minutes=minutes)).isoformat()


def _payload(**overrides):
    payload = {
        "title": "Genesis review",
        "documentIds": ["doc-1"],
        "questionCount": 2,
        "difficulty": "easy",
        "startTime": _start_in(30),
        "timezone": "UTC",
    }
    payload.update(overrides)
    return payload


@pytest.fixture()
def services(monkeypatch):
    monkeypatch.setattr("jobs.runner.generate_assessment", lambda *_args, **_kwargs: QUESTIONS)
    services = build_services(runner_kwargs={"workers": 1, "max_runtime_s": 5, "reaper_interval_s": 60})
    yield services
    services.runner.stop()


@pytest.fixture()
def client(services):
    app = create_app(services)
    app.config.update(TESTING=True)
    return app.test_client()


def _create_and_wait(client, services, **overrides):
    response = client.post("/api/jobs", json=_payload(**overrides))
    assert response.status_code == 202
    body = response.get_json()
    assert services.runner.wait(body["jobId"], timeout=5) is True
    return body


def test_health_reports_ok(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    payload = response.get_json()
    assert payload["status"] == "ok"
    assert "active_jobs" in payload


def test_create_job_returns_accepted_and_completes(client, services):
    response = client.post("/api/jobs", json=_payload(), headers={"X-Trace-Id": "trace-abc"})
    assert response.status_code == 202
    assert response.headers["X-Trace-Id"] == "trace-abc"
    body = response.get_json()
    assert body["jobId"]
    assert body["resourceId"]
    assert body["pollUrl"] == f"/api/jobs/status?jobId={body['jobId']}"

    assert services.runner.wait(body["jobId"], timeout=5) is True
    status = client.get(f"/api/jobs/status?jobId={body['jobId']}").get_json()
    assert status["status"] == "completed"
    assert status["progress"] == 100
    assert status["resourceId"] == body["resourceId"]
    assert status["traceId"] == "trace-abc"

    resource = client.get(f"/api/resources/{body['resourceId']}").get_json()
    assert resource["status"] == "published"
    assert resource["itemsCount"] == 2


def test_create_job_validation_error_shape(client):
    response = client.post("/api/jobs", json=_payload(title=""), headers={"X-Trace-Id": "trace-400"})
    assert response.status_code == 400
    error = response.get_json()["error"]
    assert error["type"] == "validation"
    assert error["code"] == 400
    assert error["trace_id"] == "trace-400"
    assert error["message"] == "Title is required"


def test_create_job_rejects_start_time_too_soon(client, services):
    response = client.post("/api/jobs", json=_payload(startTime=_start_in(4)))
    assert response.status_code == 400
    assert "5 minutes" in response.get_json()["error"]["message"]
    assert services.resources.list() == []


def test_create_job_rejects_malformed_json(client):
    response = client.post("/api/jobs", data="{not json", content_type="application/json")
    assert response.status_code == 400
    assert response.get_json()["error"]["type"] == "validation"


def test_create_without_generation_returns_created(client):
    response = client.post("/api/jobs", json=_payload(generate=False, documentIds=[]))
    assert response.status_code == 201
    body = response.get_json()
    assert body["jobId"] is None
    assert body["resource"]["status"] == "published"


def test_duplicate_active_job_is_conflict(client, services):
    first = _create_and_wait(client, services, schedulingMode="deferred", startTime=None)
    services.jobs.create(first["resourceId"])

    response = client.post("/api/jobs", json=_payload(resourceId=first["resourceId"]))
    assert response.status_code == 409
    error = response.get_json()["error"]
    assert error["type"] == "duplicate_job"
    assert error["details"]["resource_id"] == first["resourceId"]


def test_status_requires_job_id_and_reports_unknown(client):
    missing = client.get("/api/jobs/status")
    assert missing.status_code == 400

    unknown = client.get("/api/jobs/status?jobId=nope")
    assert unknown.status_code == 404
    assert unknown.get_json()["error"]["type"] == "not_found"


def test_delete_and_status_actions(client, services):
    body = _create_and_wait(client, services)
    resource_id = body["resourceId"]

    rejected = client.patch(f"/api/resources/{resource_id}", json={"action": "activate"})
    assert rejected.status_code == 400
    assert rejected.get_json()["error"]["type"] == "invalid_transition"

    deactivated = client.patch(f"/api/resources/{resource_id}", json={"action": "deactivate"})
    assert deactivated.get_json() == {"newStatus": "archived", "resourceId": resource_id}

    activated = client.patch(f"/api/resources/{resource_id}", json={"action": "activate"})
    assert activated.get_json()["newStatus"] == "published"

    invalid = client.patch(f"/api/resources/{resource_id}", json={"action": "launch"})
    assert invalid.status_code == 400

    services.resources.set_dependents(resource_id, attempts=3)
    archived = client.delete(f"/api/resources/{resource_id}")
    assert archived.get_json()["action"] == "archived"

    services.resources.set_dependents(resource_id, attempts=0)
    deleted = client.delete(f"/api/resources/{resource_id}")
    assert deleted.get_json()["action"] == "deleted"
    assert client.get(f"/api/resources/{resource_id}").status_code == 404


def test_publish_deferred_draft(client, services):
    body = _create_and_wait(client, services, schedulingMode="deferred", startTime=None)
    resource_id = body["resourceId"]
    assert services.resources.get(resource_id).status == ResourceStatus.DRAFT

    without_time = client.post(f"/api/resources/{resource_id}/publish")
    assert without_time.status_code == 400

    too_soon = client.post(
        f"/api/resources/{resource_id}/publish",
        json={"startTime": _start_in(2), "timezone": "UTC"},
    )
    assert too_soon.status_code == 400

    published = client.post(
        f"/api/resources/{resource_id}/publish",
        json={"startTime": _start_in(60), "timezone": "Europe/London"},
    )
    assert published.status_code == 200
    payload = published.get_json()
    assert payload["status"] == "published"
    assert payload["timezone"] == "Europe/London"
    assert payload["requiresScheduling"] is False


def test_purge_drafts_endpoint(client, services):
    body = _create_and_wait(client, services, schedulingMode="deferred", startTime=None)
    resource = services.resources.get(body["resourceId"])
    resource.updated_at = datetime.now(timezone.utc) - timedelta(days=30)

    response = client.post("/api/maintenance/purge-drafts", json={"olderThanSeconds": 3600})
    assert response.get_json() == {"purged": 1}
    assert not services.resources.exists(body["resourceId"])

    negative = client.post("/api/maintenance/purge-drafts", json={"olderThanSeconds": -1})
    assert negative.status_code == 400


def test_unexpected_error_returns_internal(client, services, monkeypatch):
    def _explode(*_args, **_kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(services.runner, "submit", _explode)
    response = client.post("/api/jobs", json=_payload())
    assert response.status_code == 500
    error = response.get_json()["error"]
    assert error["type"] == "internal"
    assert "boom" not in error["message"]


def test_unknown_route_stays_not_found(client):
    assert client.get("/api/unknown").status_code == 404


def test_resource_ready_ignores_items_from_an_earlier_job(client, services, monkeypatch):
    first = _create_and_wait(client, services, schedulingMode="deferred", startTime=None)
    resource_id = first["resourceId"]

    release = threading.Event()
    monkeypatch.setattr("jobs.runner.generate_assessment", lambda *_a, **_k: release.wait(5) and QUESTIONS)
    response = client.post("/api/jobs", json=_payload(resourceId=resource_id))
    assert response.status_code == 202
    second_job_id = response.get_json()["jobId"]

    transport = httpx.WSGITransport(app=create_app(services))
    with JobsApiClient("http://quiz.test", transport=transport) as api:
        try:
            assert api.resource_ready(resource_id, job_id=first["jobId"]) is True
            assert api.resource_ready(resource_id, job_id=second_job_id) is False
        finally:
            release.set()
        assert services.runner.wait(second_job_id, timeout=5) is True
        assert api.resource_ready(resource_id, job_id=second_job_id) is True

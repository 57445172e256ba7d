from __future__ import annotations

import json

import httpx
import pytest

from client.api import JobsApiClient
from domain.errors import DuplicateJobError, TransientNetworkError, ValidationError
from domain.generation_config import GenerationConfig


def _client(handler) -> JobsApiClient:
    return JobsApiClient("http://api.test/", transport=httpx.MockTransport(handler))


def _error(status, error_type, message, details=None):
    error = {"type": error_type, "message": message, "code": status, "trace_id": "t"}
    if details:
        error["details"] = details
    return httpx.Response(status, json={"error": error})


def test_create_job_posts_camel_case_payload():
    seen = {}

    def _handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(202, json={"jobId": "job-1", "resourceId": "res-1"})

    config = GenerationConfig(title="Quiz", document_ids=["doc-1"], start_time="2030-01-01T09:00", resource_id="res-1")
    with _client(_handler) as api:
        created = api.create_job(config)

    assert created == {"jobId": "job-1", "resourceId": "res-1"}
    assert seen["path"] == "/api/jobs"
    assert seen["body"]["documentIds"] == ["doc-1"]
    assert seen["body"]["resourceId"] == "res-1"
    assert seen["body"]["schedulingMode"] == "immediate"


def test_create_job_maps_validation_and_conflict_errors():
    with _client(lambda request: _error(400, "validation", "Title is required")) as api:
        with pytest.raises(ValidationError) as excinfo:
            api.create_job({"title": ""})
    assert excinfo.value.message == "Title is required"

    conflict = _error(409, "duplicate_job", "busy", {"resource_id": "res-1", "active_job_id": "job-9"})
    with _client(lambda request: conflict) as api:
        with pytest.raises(DuplicateJobError) as excinfo:
            api.create_job({"title": "Quiz"})
    assert excinfo.value.active_job_id == "job-9"


def test_poll_status_not_found_carries_http_status():
    with _client(lambda request: _error(404, "not_found", "Job job-1 not found")) as api:
        with pytest.raises(TransientNetworkError) as excinfo:
            api.poll_status("job-1")
    assert excinfo.value.http_status == 404


def test_poll_status_transport_error_is_transient():
    def _handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with _client(_handler) as api:
        with pytest.raises(TransientNetworkError) as excinfo:
            api.poll_status("job-1")
    assert excinfo.value.http_status is None


def test_poll_status_passes_job_id_query():
    def _handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["jobId"] == "job-1"
        return httpx.Response(200, json={"jobId": "job-1", "status": "processing", "progress": 30})

    with _client(_handler) as api:
        assert api.poll_status("job-1")["progress"] == 30


@pytest.mark.parametrize(
    "response, expected",
    [
        (httpx.Response(200, json={"id": "res-1", "itemsCount": 5}), True),
        (httpx.Response(200, json={"id": "res-1", "itemsCount": 0}), False),
        (httpx.Response(404, json={"error": {"type": "not_found"}}), False),
    ],
)
def test_resource_ready(response, expected):
    with _client(lambda request: response) as api:
        assert api.resource_ready("res-1") is expected


def test_resource_ready_server_error_raises():
    with _client(lambda request: httpx.Response(500, text="oops")) as api:
        with pytest.raises(TransientNetworkError) as excinfo:
            api.resource_ready("res-1")
    assert excinfo.value.http_status == 500


@pytest.mark.parametrize(
    "last_job_id, expected",
    [("job-2", True), ("job-1", False), (None, False)],
)
def test_resource_ready_requires_items_from_the_polled_job(last_job_id, expected):
    resource = {"id": "res-1", "itemsCount": 5, "lastJobId": last_job_id}
    with _client(lambda request: httpx.Response(200, json=resource)) as api:
        assert api.resource_ready("res-1", job_id="job-2") is expected

from __future__ import annotations

import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from domain.errors import DuplicateJobError, GenerationFailure, InvalidTransitionError, ValidationError
from domain.generation_config import GenerationConfig
from domain.lifecycle import LifecycleManager
from domain.resources import ResourceStatus, ResourceStore
from jobs.runner import JobRunner
from jobs.store import JobStore

QUESTIONS = [
    {
        "question": "Which book opens the Pentateuch?",
        "options": {"A": "Genesis", "B": "Exodus", "C": "Ruth", "D": "Acts"},
        "correct_answer": "A",
        "explanation": "Genesis is the first book.",
    },
    {
        "questionText": "Who led Israel out of Egypt?",
        "options": ["Moses", "David", "Paul", "Noah"],
        "correctAnswer": "a",
    },
]


def _start_in(minutes: int) -> str:
    return (datetime.now(timezone.utc) + timedelta(minutes=minutes)).isoformat()


def _config(**overrides) -> GenerationConfig:
    payload = {
        "title": "Genesis review",
        "documentIds": ["doc-1"],
        "questionCount": 2,
        "startTime": _start_in(30),
        "timezone": "UTC",
    }
    payload.update(overrides)
    return GenerationConfig.from_payload(payload)


@pytest.fixture
def job_store() -> JobStore:
    return JobStore(ttl_seconds=30)


@pytest.fixture
def resources() -> ResourceStore:
    return ResourceStore()


@pytest.fixture
def runner(job_store, resources):
    lifecycle = LifecycleManager(resources, jobs=job_store)
    runner = JobRunner(job_store, resources, lifecycle, workers=2, max_runtime_s=5, reaper_interval_s=60)
    yield runner
    runner.stop()


def test_job_runner_success_publishes_immediate_resource(monkeypatch, runner, resources):
    seen = {}

    def _fake_generate(request_payload, *, timeout_s, progress_callback=None):
        seen.update(request_payload)
        progress_callback(progress=0.5, message="Halfway")
        return QUESTIONS

    monkeypatch.setattr("jobs.runner.generate_assessment", _fake_generate)
    result = runner.submit(_config(), trace_id="trace-1")
    assert runner.wait(result.job_id, timeout=5) is True

    snapshot = runner.get_job(result.job_id)
    assert snapshot["status"] == "completed"
    assert snapshot["progress"] == 100
    assert snapshot["itemsCount"] == 2
    assert snapshot["traceId"] == "trace-1"
    assert seen["documentIds"] == ["doc-1"]
    assert seen["resourceId"] == result.resource_id

    resource = resources.get(result.resource_id)
    assert resource.status == ResourceStatus.PUBLISHED
    assert [item["correctAnswer"] for item in resource.items] == ["a", "a"]


def test_deferred_resource_stays_draft_after_generation(monkeypatch, runner, resources):
    monkeypatch.setattr("jobs.runner.generate_assessment", lambda *_args, **_kwargs: QUESTIONS)
    result = runner.submit(_config(schedulingMode="deferred", startTime=None))
    assert runner.wait(result.job_id, timeout=5) is True

    assert runner.get_job(result.job_id)["status"] == "completed"
    resource = resources.get(result.resource_id)
    assert resource.status == ResourceStatus.DRAFT
    assert resource.to_dict()["requiresScheduling"] is True


def test_generation_failure_fails_job_and_keeps_draft(monkeypatch, runner, resources):
    def _raise_generate(*_args, **_kwargs):
        raise GenerationFailure("Generation service timed out", reason="timeout")

    monkeypatch.setattr("jobs.runner.generate_assessment", _raise_generate)
    result = runner.submit(_config())
    runner.wait(result.job_id, timeout=5)

    snapshot = runner.get_job(result.job_id)
    assert snapshot["status"] == "failed"
    assert snapshot["error"]["reason"] == "timeout"
    assert resources.get(result.resource_id).status == ResourceStatus.DRAFT


def test_unexpected_error_is_reported_as_internal_failure(monkeypatch, runner):
    def _raise_generate(*_args, **_kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr("jobs.runner.generate_assessment", _raise_generate)
    result = runner.submit(_config())
    runner.wait(result.job_id, timeout=5)

    snapshot = runner.get_job(result.job_id)
    assert snapshot["status"] == "failed"
    assert snapshot["error"]["reason"] == "internal"


def test_job_with_no_valid_questions_fails(monkeypatch, runner):
    broken = [{"question": "Missing options", "correct_answer": "a"}, {"options": ["x"], "correct_answer": "a"}]
    monkeypatch.setattr("jobs.runner.generate_assessment", lambda *_args, **_kwargs: broken)
    result = runner.submit(_config())
    runner.wait(result.job_id, timeout=5)

    snapshot = runner.get_job(result.job_id)
    assert snapshot["status"] == "failed"
    assert snapshot["error"]["reason"] == "invalid_output"
    assert snapshot["error"]["details"]["rejected"] == 2


def test_submit_returns_before_generation_finishes(monkeypatch, runner):
    release = threading.Event()

    def _slow_generate(*_args, **_kwargs):
        release.wait(5)
        return QUESTIONS

    monkeypatch.setattr("jobs.runner.generate_assessment", _slow_generate)
    started = time.monotonic()
    result = runner.submit(_config())
    assert time.monotonic() - started < 1.0
    assert runner.get_job(result.job_id)["status"] in {"queued", "processing"}

    release.set()
    assert runner.wait(result.job_id, timeout=5) is True
    assert runner.get_job(result.job_id)["status"] == "completed"


def test_invalid_start_time_rejected_before_queueing(monkeypatch, runner, job_store, resources):
    calls = []
    monkeypatch.setattr("jobs.runner.generate_assessment", lambda *args, **kwargs: calls.append(1) or QUESTIONS)

    with pytest.raises(ValidationError):
        runner.submit(_config(startTime=_start_in(4)))

    assert job_store.active_count() == 0
    assert resources.list() == []
    assert calls == []


def test_submit_without_generation_creates_resource_only(runner, resources, job_store):
    result = runner.submit(_config(generate=False, documentIds=[]))
    assert result.job_id is None
    assert resources.get(result.resource_id).status == ResourceStatus.PUBLISHED
    assert job_store.active_count() == 0


def test_regeneration_into_existing_draft_reuses_resource(monkeypatch, runner, resources):
    outcomes = iter([GenerationFailure("upstream down"), QUESTIONS])

    def _flaky_generate(*_args, **_kwargs):
        outcome = next(outcomes)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    monkeypatch.setattr("jobs.runner.generate_assessment", _flaky_generate)
    first = runner.submit(_config())
    runner.wait(first.job_id, timeout=5)
    assert runner.get_job(first.job_id)["status"] == "failed"

    second = runner.submit(_config(resourceId=first.resource_id))
    assert second.resource_id == first.resource_id
    assert second.job_id != first.job_id
    runner.wait(second.job_id, timeout=5)
    assert runner.get_job(second.job_id)["status"] == "completed"
    assert resources.get(first.resource_id).status == ResourceStatus.PUBLISHED


def test_second_job_for_active_resource_is_rejected(monkeypatch, runner):
    release = threading.Event()
    monkeypatch.setattr("jobs.runner.generate_assessment", lambda *_a, **_k: release.wait(5) and QUESTIONS)
    first = runner.submit(_config())
    try:
        with pytest.raises(DuplicateJobError):
            runner.submit(_config(resourceId=first.resource_id))
    finally:
        release.set()
        runner.wait(first.job_id, timeout=5)


def test_regeneration_rejected_for_published_resource(monkeypatch, runner):
    monkeypatch.setattr("jobs.runner.generate_assessment", lambda *_args, **_kwargs: QUESTIONS)
    first = runner.submit(_config())
    runner.wait(first.job_id, timeout=5)
    with pytest.raises(InvalidTransitionError):
        runner.submit(_config(resourceId=first.resource_id))


def test_job_exceeding_runtime_fails_with_timeout(monkeypatch, job_store, resources):
    lifecycle = LifecycleManager(resources, jobs=job_store)
    runner = JobRunner(job_store, resources, lifecycle, workers=1, max_runtime_s=0.2, reaper_interval_s=60)

    def _slow_generate(*_args, progress_callback=None, **_kwargs):
        time.sleep(0.3)
        progress_callback(progress=40, message="still going")
        return QUESTIONS

    monkeypatch.setattr("jobs.runner.generate_assessment", _slow_generate)
    try:
        result = runner.submit(_config())
        runner.wait(result.job_id, timeout=5)
        snapshot = runner.get_job(result.job_id)
        assert snapshot["status"] == "failed"
        assert snapshot["error"]["reason"] == "timeout"
    finally:
        runner.stop()


def test_reap_stalled_fails_jobs_past_runtime(job_store, resources):
    lifecycle = LifecycleManager(resources, jobs=job_store)
    runner = JobRunner(job_store, resources, lifecycle, workers=1, max_runtime_s=60, reaper_interval_s=60)
    job = job_store.create("res-stuck")
    job.created_at = datetime.now(timezone.utc) - timedelta(minutes=5)

    assert runner.reap_stalled() == 1
    assert job_store.snapshot(job.id)["error"]["reason"] == "timeout"


def test_regeneration_keeps_stored_schedule_after_clock_moves(monkeypatch, runner, resources):
    outcomes = iter([GenerationFailure("upstream down"), QUESTIONS])

    def _flaky_generate(*_args, **_kwargs):
        outcome = next(outcomes)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    monkeypatch.setattr("jobs.runner.generate_assessment", _flaky_generate)
    first = runner.submit(_config(startTime=_start_in(6)))
    runner.wait(first.job_id, timeout=5)
    assert runner.get_job(first.job_id)["status"] == "failed"
    scheduled = resources.get(first.resource_id).scheduled_start_time

    # the original start is now inside the minimum lead time
    later = datetime.now(timezone.utc) + timedelta(minutes=2)
    monkeypatch.setattr("jobs.runner.utcnow", lambda: later)
    retry = runner.submit(_config(startTime=_start_in(6), resourceId=first.resource_id))
    runner.wait(retry.job_id, timeout=5)

    assert runner.get_job(retry.job_id)["status"] == "completed"
    resource = resources.get(first.resource_id)
    assert resource.scheduled_start_time == scheduled
    assert resource.status == ResourceStatus.PUBLISHED


def test_completed_job_stamps_resource_with_its_id(monkeypatch, runner, resources):
    monkeypatch.setattr("jobs.runner.generate_assessment", lambda *_args, **_kwargs: QUESTIONS)
    result = runner.submit(_config(schedulingMode="deferred"))
    runner.wait(result.job_id, timeout=5)

    resource = resources.get(result.resource_id)
    assert resource.status == ResourceStatus.DRAFT
    assert resource.last_job_id == result.job_id
    assert resource.to_dict()["lastJobId"] == result.job_id
    assert resource.generated_at is not None


def test_job_reaped_before_completion_leaves_draft_for_retry(monkeypatch, runner, resources, job_store):
    monkeypatch.setattr("jobs.runner.generate_assessment", lambda *_args, **_kwargs: QUESTIONS)
    original_set_items = resources.set_items

    def _set_items_then_reap(resource_id, items):
        stored = original_set_items(resource_id, items)
        active = job_store.find_active(resource_id)
        if active is not None:
            job_store.fail(active.id, "Job exceeded maximum runtime")
        return stored

    monkeypatch.setattr(resources, "set_items", _set_items_then_reap)
    first = runner.submit(_config())
    runner.wait(first.job_id, timeout=5)

    assert runner.get_job(first.job_id)["status"] == "failed"
    resource = resources.get(first.resource_id)
    assert resource.status == ResourceStatus.DRAFT
    assert resource.last_job_id is None
    assert resource.items == []

    monkeypatch.setattr(resources, "set_items", original_set_items)
    retry = runner.submit(_config(resourceId=first.resource_id))
    runner.wait(retry.job_id, timeout=5)
    assert runner.get_job(retry.job_id)["status"] == "completed"
    assert resources.get(first.resource_id).status == ResourceStatus.PUBLISHED

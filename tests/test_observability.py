from __future__ import annotations

import json
import logging

import pytest

from observability.logger import JsonFormatter, bind_trace_id, clear_trace_id, current_trace_id, trace_scope
from observability.metrics import MetricsRegistry


def test_registry_reuses_metrics_by_name():
    registry = MetricsRegistry()
    counter = registry.counter("jobs.completed_total")
    counter.inc()
    registry.counter("jobs.completed_total").inc(2)
    registry.gauge("jobs.active").set(3)

    assert registry.get("jobs.completed_total") is counter
    assert registry.snapshot("jobs.") == {"jobs.completed_total": 3.0, "jobs.active": 3.0}


def test_registry_rejects_kind_mismatch_and_negative_increments():
    registry = MetricsRegistry()
    registry.counter("jobs.failed_total")
    with pytest.raises(TypeError):
        registry.gauge("jobs.failed_total")
    with pytest.raises(ValueError):
        registry.counter("jobs.failed_total").inc(-1)


def test_summary_tracks_count_total_and_max():
    summary = MetricsRegistry().summary("jobs.duration_seconds")
    assert summary.snapshot()["mean"] == 0.0

    summary.observe(2.0)
    summary.observe(4.0)

    assert summary.snapshot() == {"count": 2.0, "sum": 6.0, "max": 4.0, "mean": 3.0}


def test_trace_scope_restores_previous_trace():
    bind_trace_id("request-trace")
    try:
        with trace_scope("job-trace"):
            assert current_trace_id() == "job-trace"
        assert current_trace_id() == "request-trace"
    finally:
        clear_trace_id()
    assert current_trace_id() is None


def test_json_formatter_includes_trace_and_extras():
    record = logging.LogRecord("quiz_factory.test", logging.INFO, __file__, 1, "job_enqueued", None, None)
    record.job_id = "job-1"
    with trace_scope("trace-7"):
        payload = json.loads(JsonFormatter().format(record))

    assert payload["message"] == "job_enqueued"
    assert payload["job_id"] == "job-1"
    assert payload["trace_id"] == "trace-7"
    assert payload["level"] == "INFO"

"""Background execution engine for assessment generation jobs."""
from __future__ import annotations

import queue
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from config import JOB_MAX_RUNTIME_S, JOB_REAPER_INTERVAL_S, JOB_WORKERS
from domain.errors import GenerationFailure, InvalidTransitionError, NotFoundError
from domain.generation_config import GenerationConfig
from domain.lifecycle import LifecycleManager
from domain.resources import Resource, ResourceStatus, ResourceStore
from domain.scheduling import resolve_schedule, utcnow
from observability.logger import get_logger, log_step, trace_scope
from observability.metrics import get_registry
from services.generation import generate_assessment
from services.questions import normalize_questions

from .store import JobStore

LOGGER = get_logger("quiz_factory.jobs.runner")
REGISTRY = get_registry()
QUEUE_GAUGE = REGISTRY.gauge("jobs.queue_length")
ACTIVE_GAUGE = REGISTRY.gauge("jobs.active")
COMPLETED_COUNTER = REGISTRY.counter("jobs.completed_total")
FAILED_COUNTER = REGISTRY.counter("jobs.failed_total")
DURATION_SUMMARY = REGISTRY.summary("jobs.duration_seconds")

# stage -> (base percent, span percent)
PROGRESS_STAGE_WEIGHTS = {
    "prepare": (5, 0),
    "generate": (10, 75),
    "validate": (90, 0),
    "store": (95, 0),
}
PRE_VALIDATION_CAP = 89

PROGRESS_STAGE_MESSAGES = {
    "prepare": "Preparing assessment generation...",
    "generate": "Generating questions from your documents...",
    "validate": "Validating generated questions...",
    "store": "Saving questions...",
}

_SHUTDOWN = "__shutdown__"


@dataclass
class RunnerTask:
    job_id: str
    resource_id: str
    config: Optional[GenerationConfig]
    deadline: float
    trace_id: Optional[str] = None


@dataclass
class SubmitResult:
    job_id: Optional[str]
    resource_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {"jobId": self.job_id, "resourceId": self.resource_id}


class JobRunner:
    """Worker pool executing generation jobs off the request path."""

    def __init__(
        self,
        store: JobStore,
        resources: ResourceStore,
        lifecycle: LifecycleManager,
        *,
        workers: int = JOB_WORKERS,
        max_runtime_s: float = JOB_MAX_RUNTIME_S,
        reaper_interval_s: float = JOB_REAPER_INTERVAL_S,
    ) -> None:
        self._store = store
        self._resources = resources
        self._lifecycle = lifecycle
        self._max_runtime_s = max_runtime_s
        self._reaper_interval_s = reaper_interval_s
        self._tasks: "queue.Queue[RunnerTask]" = queue.Queue()
        self._events: Dict[str, threading.Event] = {}
        self._events_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._threads: List[threading.Thread] = [
            threading.Thread(target=self._worker, name=f"job-runner-{index}", daemon=True)
            for index in range(max(1, workers))
        ]
        self._reaper = threading.Thread(target=self._reap_loop, name="job-reaper", daemon=True)
        self._start_lock = threading.Lock()
        self._started = False

    def start(self) -> None:
        with self._start_lock:
            if self._started:
                return
            for thread in self._threads:
                thread.start()
            self._reaper.start()
            self._started = True

    def stop(self) -> None:
        self._stop_event.set()
        for _ in self._threads:
            self._tasks.put(RunnerTask(job_id=_SHUTDOWN, resource_id="", config=None, deadline=0.0))
        if self._started:
            for thread in self._threads:
                thread.join(timeout=1.0)
            self._reaper.join(timeout=1.0)

    def submit(self, config: GenerationConfig, *, trace_id: Optional[str] = None) -> SubmitResult:
        """Create the draft resource and queue its generation job.

        Returns as soon as the job is queued. ``ValidationError`` and
        ``DuplicateJobError`` are raised before any work is scheduled.
        """

        if config.resource_id:
            # a regenerated draft keeps the schedule validated when it was created
            resource = self._resources.get(config.resource_id)
            if resource.status != ResourceStatus.DRAFT:
                raise InvalidTransitionError(
                    "Only draft resources can be regenerated",
                    current=resource.status.value,
                    requested="regenerate",
                )
            job = self._store.create(resource.id, trace_id=trace_id)
        else:
            schedule = resolve_schedule(
                config.scheduling_mode,
                start_time=config.start_time,
                timezone_name=config.timezone,
                now=utcnow(),
            )
            resource = self._resources.create(
                title=config.title,
                description=config.description,
                schedule=schedule,
                document_ids=config.document_ids,
                question_count=config.question_count,
                difficulty=config.difficulty,
                duration_minutes=config.duration_minutes,
            )
            if not config.generate:
                self._lifecycle.finalize_generated(resource.id)
                LOGGER.info(
                    "resource_created_without_generation",
                    extra={"resource_id": resource.id, "mode": schedule.mode.value},
                )
                return SubmitResult(job_id=None, resource_id=resource.id)
            job = self._store.create(resource.id, trace_id=trace_id)

        event = threading.Event()
        with self._events_lock:
            self._events[job.id] = event
        self._tasks.put(
            RunnerTask(
                job_id=job.id,
                resource_id=resource.id,
                config=config,
                deadline=time.monotonic() + self._max_runtime_s,
                trace_id=trace_id,
            )
        )
        QUEUE_GAUGE.set(float(self._tasks.qsize()))
        self.start()
        LOGGER.info("job_enqueued", extra={"job_id": job.id, "resource_id": resource.id})
        return SubmitResult(job_id=job.id, resource_id=resource.id)

    def wait(self, job_id: str, timeout: Optional[float] = None) -> bool:
        with self._events_lock:
            event = self._events.get(job_id)
        if not event:
            try:
                return self._store.get(job_id).status.is_terminal
            except NotFoundError:
                return False
        return event.wait(timeout)

    def get_job(self, job_id: str) -> dict:
        return self._store.snapshot(job_id)

    def reap_stalled(self) -> int:
        reaped = self._store.fail_stalled(self._max_runtime_s)
        for job in reaped:
            FAILED_COUNTER.inc()
            LOGGER.warning(
                "job_reaped",
                extra={"job_id": job.id, "resource_id": job.resource_id, "max_runtime_s": self._max_runtime_s},
            )
            self._signal(job.id)
        ACTIVE_GAUGE.set(float(self._store.active_count()))
        return len(reaped)

    def _reap_loop(self) -> None:
        while not self._stop_event.wait(self._reaper_interval_s):
            try:
                self.reap_stalled()
            except Exception:  # noqa: BLE001
                LOGGER.exception("job_reaper_failed")

    def _worker(self) -> None:
        while not self._stop_event.is_set():
            task = self._tasks.get()
            QUEUE_GAUGE.set(float(self._tasks.qsize()))
            if task.job_id == _SHUTDOWN:
                break
            try:
                with trace_scope(task.trace_id):
                    self._run_job(task)
            except Exception as exc:  # noqa: BLE001
                LOGGER.exception("job_failed", extra={"job_id": task.job_id, "error": str(exc)})
            finally:
                self._signal(task.job_id)

    def _signal(self, job_id: str) -> None:
        with self._events_lock:
            event = self._events.pop(job_id, None)
        if event:
            event.set()

    def _run_job(self, task: RunnerTask) -> None:
        try:
            job = self._store.get(task.job_id)
        except NotFoundError:
            LOGGER.warning("job_missing", extra={"job_id": task.job_id})
            return
        if job.status.is_terminal:
            LOGGER.info("job_already_settled", extra={"job_id": job.id, "status": job.status.value})
            return

        ACTIVE_GAUGE.set(float(self._store.active_count()))
        started = time.monotonic()
        try:
            self._record_progress(task, "prepare", 0.0)
            resource = self._resources.get(task.resource_id)
            raw_items = self._run_generate_step(task, resource)
            items = self._run_validate_step(task, resource, raw_items)
            self._run_store_step(task, items)
        except GenerationFailure as exc:
            self._fail(task, exc)
        except InvalidTransitionError:
            LOGGER.warning("job_settled_elsewhere", extra={"job_id": task.job_id})
        except NotFoundError as exc:
            self._fail(task, GenerationFailure(str(exc), reason="resource_missing"))
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("job_internal_error", extra={"job_id": task.job_id})
            self._fail(
                task,
                GenerationFailure("Internal error during generation", reason="internal", details={"error": str(exc)}),
            )
        finally:
            DURATION_SUMMARY.observe(time.monotonic() - started)
            ACTIVE_GAUGE.set(float(self._store.active_count()))

    def _run_generate_step(self, task: RunnerTask, resource: Resource) -> List[Dict[str, Any]]:
        self._record_progress(task, "generate", 0.0)

        def _progress_event(*, progress: Any = 0.0, message: Optional[str] = None) -> None:
            self._check_deadline(task)
            try:
                ratio = float(progress)
            except (TypeError, ValueError):
                ratio = 0.0
            # upstream reports either a 0..1 ratio or a percentage
            if ratio > 1.0:
                ratio /= 100.0
            self._record_progress(task, "generate", ratio, message=message)

        raw_items = generate_assessment(
            self._build_request(task, resource),
            timeout_s=self._remaining(task),
            progress_callback=_progress_event,
        )
        self._check_deadline(task)
        self._record_progress(task, "generate", 1.0)
        log_step(LOGGER, job_id=task.job_id, step="generate", status="succeeded", items=len(raw_items))
        return raw_items

    def _run_validate_step(
        self,
        task: RunnerTask,
        resource: Resource,
        raw_items: List[Dict[str, Any]],
    ) -> List[Dict[str, Any]]:
        self._record_progress(task, "validate", 0.0)
        levels = task.config.levels if task.config else []
        normalized = normalize_questions(
            raw_items,
            difficulty=resource.difficulty,
            level=levels[0] if levels else "knowledge",
        )
        if not normalized.ok:
            raise GenerationFailure(
                "No valid questions were generated",
                reason="invalid_output",
                details={"received": len(raw_items), "rejected": normalized.rejected},
            )
        log_step(
            LOGGER,
            job_id=task.job_id,
            step="validate",
            status="degraded" if normalized.rejected else "succeeded",
            accepted=len(normalized.items),
            rejected=normalized.rejected,
        )
        return normalized.items

    def _run_store_step(self, task: RunnerTask, items: List[Dict[str, Any]]) -> None:
        self._check_deadline(task)
        self._record_progress(task, "store", 0.0)
        previous_items = list(self._resources.get(task.resource_id).items)
        self._resources.set_items(task.resource_id, items)
        try:
            self._store.complete(task.job_id, items_count=len(items))
        except InvalidTransitionError:
            # reaped meanwhile; the draft keeps its earlier items for a fresh job
            self._resources.set_items(task.resource_id, previous_items)
            raise
        self._resources.record_generation(task.resource_id, task.job_id)
        resource = self._lifecycle.finalize_generated(task.resource_id)
        COMPLETED_COUNTER.inc()
        log_step(
            LOGGER,
            job_id=task.job_id,
            step="done",
            status="completed",
            resource_id=resource.id,
            resource_status=resource.status.value,
        )

    def _fail(self, task: RunnerTask, failure: GenerationFailure) -> None:
        try:
            self._store.fail(task.job_id, failure)
        except (InvalidTransitionError, NotFoundError):
            LOGGER.warning("job_fail_ignored", extra={"job_id": task.job_id, "reason": failure.reason})
            return
        FAILED_COUNTER.inc()
        log_step(LOGGER, job_id=task.job_id, step="failed", status="failed", reason=failure.reason, error=failure.message)

    def _record_progress(
        self,
        task: RunnerTask,
        stage: str,
        ratio: float,
        *,
        message: Optional[str] = None,
    ) -> None:
        base, span = PROGRESS_STAGE_WEIGHTS.get(stage, (0, 0))
        try:
            normalized = float(ratio)
        except (TypeError, ValueError):
            normalized = 0.0
        normalized = max(0.0, min(1.0, normalized))
        value = int(base + normalized * span)
        if base < PROGRESS_STAGE_WEIGHTS["validate"][0]:
            value = min(value, PRE_VALIDATION_CAP)
        self._store.update(task.job_id, value, message or PROGRESS_STAGE_MESSAGES.get(stage))

    def _remaining(self, task: RunnerTask) -> float:
        return task.deadline - time.monotonic()

    def _check_deadline(self, task: RunnerTask) -> None:
        if self._remaining(task) <= 0:
            raise GenerationFailure(
                "Job exceeded its maximum runtime",
                reason="timeout",
                details={"max_runtime_s": self._max_runtime_s},
            )

    def _build_request(self, task: RunnerTask, resource: Resource) -> Dict[str, Any]:
        config = task.config
        return {
            "jobId": task.job_id,
            "resourceId": resource.id,
            "title": resource.title,
            "description": resource.description,
            "documentIds": list(resource.document_ids),
            "questionCount": resource.question_count,
            "difficulty": resource.difficulty,
            "topics": list(config.topics) if config else [],
            "levels": list(config.levels) if config else [],
            "timeLimit": resource.duration_minutes,
        }


__all__ = ["JobRunner", "RunnerTask", "SubmitResult", "PROGRESS_STAGE_WEIGHTS"]

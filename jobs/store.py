"""In-memory job store with TTL semantics and one active job per resource."""
from __future__ import annotations

import threading
import time
import uuid
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from domain.errors import DuplicateJobError, GenerationFailure, InvalidTransitionError, NotFoundError

from .models import Job, JobStatus, can_transition, utcnow


class JobStore:
    """Thread-safe in-memory storage for jobs.

    Every mutation touches a single job under the store lock. Terminal jobs
    expire ``ttl_seconds`` after their last update; active jobs are kept until
    they settle.
    """

    def __init__(self, *, ttl_seconds: int = 3600) -> None:
        self._ttl_seconds = max(1, int(ttl_seconds))
        self._jobs: Dict[str, Job] = {}
        self._expiry: Dict[str, float] = {}
        self._active_by_resource: Dict[str, str] = {}
        self._lock = threading.RLock()

    def create(self, resource_id: str, *, trace_id: Optional[str] = None) -> Job:
        with self._lock:
            self._purge_expired_locked()
            active_id = self._active_by_resource.get(resource_id)
            if active_id is not None:
                raise DuplicateJobError(resource_id, active_id)
            job = Job(id=uuid.uuid4().hex, resource_id=resource_id, trace_id=trace_id)
            self._jobs[job.id] = job
            self._active_by_resource[resource_id] = job.id
            return job

    def get(self, job_id: str) -> Job:
        with self._lock:
            self._purge_expired_locked()
            job = self._jobs.get(job_id)
            if job is None:
                raise NotFoundError(f"Job {job_id} not found")
            return job

    def find_active(self, resource_id: str) -> Optional[Job]:
        with self._lock:
            job_id = self._active_by_resource.get(resource_id)
            return self._jobs.get(job_id) if job_id else None

    def update(self, job_id: str, progress: int, message: Optional[str] = None) -> Job:
        with self._lock:
            job = self.get(job_id)
            self._check_transition(job, JobStatus.PROCESSING)
            job.mark_processing(progress, message)
            return job

    def complete(self, job_id: str, *, message: Optional[str] = None, items_count: Optional[int] = None) -> Job:
        with self._lock:
            job = self.get(job_id)
            self._check_transition(job, JobStatus.COMPLETED)
            if items_count is not None:
                job.items_count = items_count
            job.mark_completed(message)
            self._settle_locked(job)
            return job

    def fail(self, job_id: str, error: str | dict | GenerationFailure) -> Job:
        with self._lock:
            job = self.get(job_id)
            self._check_transition(job, JobStatus.FAILED)
            job.mark_failed(error.to_dict() if isinstance(error, GenerationFailure) else error)
            self._settle_locked(job)
            return job

    def fail_stalled(self, max_runtime_s: float, *, now: Optional[datetime] = None) -> List[Job]:
        """Fail active jobs that have been running longer than ``max_runtime_s``."""

        current = now or utcnow()
        cutoff = current - timedelta(seconds=max_runtime_s)
        failed: List[Job] = []
        with self._lock:
            for job_id in list(self._active_by_resource.values()):
                job = self._jobs.get(job_id)
                if job is None or job.created_at > cutoff:
                    continue
                error = GenerationFailure(
                    "Job timed out after extended processing time",
                    reason="timeout",
                    details={"max_runtime_s": max_runtime_s},
                )
                job.mark_failed(error.to_dict())
                self._settle_locked(job)
                failed.append(job)
        return failed

    def snapshot(self, job_id: str) -> dict:
        return self.get(job_id).to_dict()

    def delete(self, job_id: str) -> None:
        with self._lock:
            job = self._jobs.pop(job_id, None)
            self._expiry.pop(job_id, None)
            if job is not None and self._active_by_resource.get(job.resource_id) == job_id:
                self._active_by_resource.pop(job.resource_id, None)

    def active_count(self) -> int:
        with self._lock:
            return len(self._active_by_resource)

    def _check_transition(self, job: Job, target: JobStatus) -> None:
        if not can_transition(job.status, target):
            raise InvalidTransitionError(
                f"Job {job.id} cannot move from {job.status.value} to {target.value}",
                current=job.status.value,
                requested=target.value,
            )

    def _settle_locked(self, job: Job) -> None:
        if self._active_by_resource.get(job.resource_id) == job.id:
            self._active_by_resource.pop(job.resource_id, None)
        self._expiry[job.id] = time.time() + self._ttl_seconds

    def _purge_expired_locked(self) -> None:
        now = time.time()
        expired = [job_id for job_id, deadline in self._expiry.items() if deadline <= now]
        for job_id in expired:
            self._jobs.pop(job_id, None)
            self._expiry.pop(job_id, None)

    def __len__(self) -> int:  # pragma: no cover - trivial
        with self._lock:
            self._purge_expired_locked()
            return len(self._jobs)

"""Data models describing asynchronous generation jobs."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utcnow() -> datetime:
    """Return a timezone-aware UTC datetime."""

    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    """Lifecycle states for a background job."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES


TERMINAL_STATUSES: FrozenSet[JobStatus] = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})
ACTIVE_STATUSES: FrozenSet[JobStatus] = frozenset({JobStatus.QUEUED, JobStatus.PROCESSING})

ALLOWED_TRANSITIONS: Dict[JobStatus, FrozenSet[JobStatus]] = {
    JobStatus.QUEUED: frozenset({JobStatus.PROCESSING, JobStatus.FAILED}),
    JobStatus.PROCESSING: frozenset({JobStatus.PROCESSING, JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}

STATUS_MESSAGES = {
    JobStatus.QUEUED: "Preparing assessment generation...",
    JobStatus.PROCESSING: "Generating questions...",
    JobStatus.COMPLETED: "Assessment created successfully",
    JobStatus.FAILED: "Generation failed",
}


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


@dataclass
class Job:
    """Representation of a long-running generation request."""

    id: str
    resource_id: str
    status: JobStatus = JobStatus.QUEUED
    progress: int = 0
    message: str = STATUS_MESSAGES[JobStatus.QUEUED]
    error: Optional[Dict[str, Any]] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    trace_id: Optional[str] = None
    items_count: int = 0

    def mark_processing(self, progress: int, message: Optional[str]) -> None:
        if self.status == JobStatus.QUEUED:
            self.status = JobStatus.PROCESSING
            self.started_at = utcnow()
        self.progress = max(self.progress, max(0, min(100, int(progress))))
        if message:
            self.message = message
        self.updated_at = utcnow()

    def mark_completed(self, message: Optional[str] = None) -> None:
        self.status = JobStatus.COMPLETED
        self.progress = 100
        self.message = message or STATUS_MESSAGES[JobStatus.COMPLETED]
        self.error = None
        self.finished_at = utcnow()
        self.updated_at = self.finished_at

    def mark_failed(self, error: str | Dict[str, Any]) -> None:
        self.status = JobStatus.FAILED
        self.error = {"type": "generation_failure", "message": error} if isinstance(error, str) else dict(error)
        self.message = STATUS_MESSAGES[JobStatus.FAILED]
        self.finished_at = utcnow()
        self.updated_at = self.finished_at

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "jobId": self.id,
            "resourceId": self.resource_id,
            "status": self.status.value,
            "progress": self.progress,
            "message": self.message,
            "itemsCount": self.items_count,
            "createdAt": self.created_at.strftime(ISO_FORMAT),
            "updatedAt": self.updated_at.strftime(ISO_FORMAT),
            "startedAt": self.started_at.strftime(ISO_FORMAT) if self.started_at else None,
            "finishedAt": self.finished_at.strftime(ISO_FORMAT) if self.finished_at else None,
            "traceId": self.trace_id,
        }
        if self.status == JobStatus.FAILED and self.error:
            payload["error"] = self.error
        return payload

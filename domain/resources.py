"""Assessment resources produced by generation jobs and their in-memory store."""
from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import NotFoundError
from .scheduling import Schedule, SchedulingMode, utcnow

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


class ResourceStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


@dataclass
class Resource:
    """A scheduled assessment, created in ``draft`` before generation finishes."""

    id: str
    title: str
    scheduling_mode: SchedulingMode
    scheduled_start_time: datetime
    timezone: str
    status: ResourceStatus = ResourceStatus.DRAFT
    description: str = ""
    document_ids: List[str] = field(default_factory=list)
    question_count: int = 0
    difficulty: str = "medium"
    duration_minutes: int = 30
    items: List[Dict[str, Any]] = field(default_factory=list)
    scheduled_at: Optional[datetime] = None
    last_job_id: Optional[str] = None
    generated_at: Optional[datetime] = None
    attempt_count: int = 0
    enrollment_count: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def touch(self) -> None:
        self.updated_at = utcnow()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "schedulingMode": self.scheduling_mode.value,
            "scheduledStartTime": self.scheduled_start_time.strftime(ISO_FORMAT),
            "timezone": self.timezone,
            "scheduledAt": self.scheduled_at.strftime(ISO_FORMAT) if self.scheduled_at else None,
            "requiresScheduling": self.scheduling_mode == SchedulingMode.DEFERRED and self.scheduled_at is None,
            "documentIds": list(self.document_ids),
            "questionCount": self.question_count,
            "difficulty": self.difficulty,
            "duration": self.duration_minutes,
            "itemsCount": len(self.items),
            "lastJobId": self.last_job_id,
            "generatedAt": self.generated_at.strftime(ISO_FORMAT) if self.generated_at else None,
            "attemptCount": self.attempt_count,
            "enrollmentCount": self.enrollment_count,
            "createdAt": self.created_at.strftime(ISO_FORMAT),
            "updatedAt": self.updated_at.strftime(ISO_FORMAT),
        }


class ResourceStore:
    """Thread-safe in-memory storage for resources."""

    def __init__(self) -> None:
        self._resources: Dict[str, Resource] = {}
        self._lock = threading.RLock()

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def create(
        self,
        *,
        title: str,
        schedule: Schedule,
        description: str = "",
        document_ids: Optional[List[str]] = None,
        question_count: int = 0,
        difficulty: str = "medium",
        duration_minutes: int = 30,
    ) -> Resource:
        resource = Resource(
            id=str(uuid.uuid4()),
            title=title,
            description=description,
            scheduling_mode=schedule.mode,
            scheduled_start_time=schedule.start_time,
            timezone=schedule.timezone,
            scheduled_at=schedule.scheduled_at,
            document_ids=list(document_ids or []),
            question_count=question_count,
            difficulty=difficulty,
            duration_minutes=duration_minutes,
        )
        with self._lock:
            self._resources[resource.id] = resource
        return resource

    def get(self, resource_id: str) -> Resource:
        with self._lock:
            resource = self._resources.get(resource_id)
            if resource is None:
                raise NotFoundError(f"Resource {resource_id} not found")
            return resource

    def exists(self, resource_id: str) -> bool:
        with self._lock:
            return resource_id in self._resources

    def set_items(self, resource_id: str, items: List[Dict[str, Any]]) -> Resource:
        with self._lock:
            resource = self.get(resource_id)
            resource.items = list(items)
            resource.touch()
            return resource

    def record_generation(self, resource_id: str, job_id: str) -> Resource:
        """Stamp the job whose items the resource now carries."""

        with self._lock:
            resource = self.get(resource_id)
            resource.last_job_id = job_id
            resource.generated_at = utcnow()
            resource.touch()
            return resource

    def set_dependents(
        self,
        resource_id: str,
        *,
        attempts: Optional[int] = None,
        enrollments: Optional[int] = None,
    ) -> Resource:
        """Record dependent counts reported by the attempts/enrollments collaborators."""

        with self._lock:
            resource = self.get(resource_id)
            if attempts is not None:
                resource.attempt_count = max(0, int(attempts))
            if enrollments is not None:
                resource.enrollment_count = max(0, int(enrollments))
            return resource

    def delete(self, resource_id: str) -> None:
        with self._lock:
            if self._resources.pop(resource_id, None) is None:
                raise NotFoundError(f"Resource {resource_id} not found")

    def list(self, status: Optional[ResourceStatus] = None) -> List[Resource]:
        with self._lock:
            resources = list(self._resources.values())
        if status is not None:
            resources = [resource for resource in resources if resource.status == status]
        return resources

    def __len__(self) -> int:  # pragma: no cover - trivial
        with self._lock:
            return len(self._resources)


__all__ = ["Resource", "ResourceStatus", "ResourceStore"]

"""State machine governing resource status and the guarded delete/activate/deactivate operations."""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Optional, Union

from observability.logger import get_logger
from observability.metrics import get_registry

from .errors import InvalidTransitionError, ValidationError
from .resources import Resource, ResourceStatus, ResourceStore
from .scheduling import SchedulingMode, normalize_start_time, utcnow, validate_start_time

if TYPE_CHECKING:  # pragma: no cover
    from jobs.store import JobStore

LOGGER = get_logger("quiz_factory.lifecycle")
REGISTRY = get_registry()
DELETED_COUNTER = REGISTRY.counter("resources.deleted_total")
ARCHIVED_COUNTER = REGISTRY.counter("resources.archived_total")
PUBLISHED_COUNTER = REGISTRY.counter("resources.published_total")

ACTION_DELETED = "deleted"
ACTION_ARCHIVED = "archived"


class LifecycleManager:
    """Applies status transitions to resources held in a :class:`ResourceStore`.

    Every transition runs under the store lock so the guard check and the
    status write observe the same record.
    """

    def __init__(self, resources: ResourceStore, *, jobs: Optional["JobStore"] = None) -> None:
        self._resources = resources
        self._jobs = jobs

    def delete(self, resource_id: str) -> str:
        """Hard-delete the resource or archive it when dependents exist.

        Returns ``"deleted"`` or ``"archived"``.
        """

        with self._resources.lock:
            resource = self._resources.get(resource_id)
            if resource.status == ResourceStatus.DRAFT:
                self._resources.delete(resource_id)
                return self._record(resource, ACTION_DELETED, reason="draft")
            if resource.attempt_count > 0:
                return self._archive_for_delete(resource, reason="attempts")
            if resource.enrollment_count > 0:
                return self._archive_for_delete(resource, reason="enrollments")
            self._resources.delete(resource_id)
            return self._record(resource, ACTION_DELETED, reason="no_dependents")

    def activate(self, resource_id: str) -> ResourceStatus:
        with self._resources.lock:
            resource = self._resources.get(resource_id)
            if resource.status != ResourceStatus.ARCHIVED:
                raise InvalidTransitionError(
                    "Only archived resources can be activated",
                    current=resource.status.value,
                    requested="activate",
                )
            self._set_status(resource, ResourceStatus.PUBLISHED)
            return resource.status

    def deactivate(self, resource_id: str) -> ResourceStatus:
        with self._resources.lock:
            resource = self._resources.get(resource_id)
            if resource.status != ResourceStatus.PUBLISHED:
                raise InvalidTransitionError(
                    "Only published resources can be deactivated",
                    current=resource.status.value,
                    requested="deactivate",
                )
            self._set_status(resource, ResourceStatus.ARCHIVED)
            return resource.status

    def apply_action(self, resource_id: str, action: str) -> ResourceStatus:
        normalized = str(action or "").strip().lower()
        if normalized == "activate":
            return self.activate(resource_id)
        if normalized == "deactivate":
            return self.deactivate(resource_id)
        raise ValidationError("Invalid action. Use 'activate' or 'deactivate'", details={"action": action})

    def publish(
        self,
        resource_id: str,
        *,
        start_time: Union[str, datetime, None] = None,
        timezone_name: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Resource:
        """Publish a draft, assigning a real start time to deferred drafts."""

        current = now or utcnow()
        with self._resources.lock:
            resource = self._resources.get(resource_id)
            if resource.status != ResourceStatus.DRAFT:
                raise InvalidTransitionError(
                    "Only draft resources can be published",
                    current=resource.status.value,
                    requested="publish",
                )
            if start_time is None:
                if resource.scheduling_mode == SchedulingMode.DEFERRED:
                    raise ValidationError("Start time and timezone are required to publish a deferred draft")
                validate_start_time(resource.scheduled_start_time, now=current)
            else:
                zone_name = timezone_name or resource.timezone
                normalized = normalize_start_time(start_time, zone_name)
                validate_start_time(normalized, now=current)
                resource.scheduled_start_time = normalized
                resource.timezone = zone_name
                resource.scheduled_at = current
            self._set_status(resource, ResourceStatus.PUBLISHED)
            PUBLISHED_COUNTER.inc()
            return resource

    def finalize_generated(self, resource_id: str) -> Resource:
        """Place a freshly generated resource in the terminal status of its creation path."""

        with self._resources.lock:
            resource = self._resources.get(resource_id)
            if resource.status != ResourceStatus.DRAFT:
                return resource
            if resource.scheduling_mode == SchedulingMode.DEFERRED:
                LOGGER.info("resource_left_draft", extra={"resource_id": resource_id, "mode": "deferred"})
                return resource
            self._set_status(resource, ResourceStatus.PUBLISHED)
            PUBLISHED_COUNTER.inc()
            return resource

    def purge_stale_drafts(self, older_than_s: int, *, now: Optional[datetime] = None) -> int:
        cutoff = (now or utcnow()) - timedelta(seconds=max(0, older_than_s))
        purged = 0
        with self._resources.lock:
            for resource in self._resources.list(ResourceStatus.DRAFT):
                if resource.updated_at > cutoff:
                    continue
                if self._jobs is not None and self._jobs.find_active(resource.id) is not None:
                    continue
                self._resources.delete(resource.id)
                purged += 1
        if purged:
            LOGGER.info("drafts_purged", extra={"count": purged, "cutoff": cutoff.isoformat()})
        return purged

    def _archive_for_delete(self, resource: Resource, *, reason: str) -> str:
        if resource.status != ResourceStatus.ARCHIVED:
            self._set_status(resource, ResourceStatus.ARCHIVED)
        return self._record(resource, ACTION_ARCHIVED, reason=reason)

    def _set_status(self, resource: Resource, status: ResourceStatus) -> None:
        previous = resource.status
        resource.status = status
        resource.touch()
        LOGGER.info(
            "resource_transition",
            extra={"resource_id": resource.id, "from": previous.value, "to": status.value},
        )

    def _record(self, resource: Resource, action: str, *, reason: str) -> str:
        if action == ACTION_DELETED:
            DELETED_COUNTER.inc()
        else:
            ARCHIVED_COUNTER.inc()
        LOGGER.info(
            "resource_delete_requested",
            extra={
                "resource_id": resource.id,
                "action": action,
                "reason": reason,
                "attempts": resource.attempt_count,
                "enrollments": resource.enrollment_count,
            },
        )
        return action


__all__ = ["LifecycleManager", "ACTION_DELETED", "ACTION_ARCHIVED"]

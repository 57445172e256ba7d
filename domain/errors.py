"""Error taxonomy shared by the job orchestrator, the lifecycle manager and the client."""
from __future__ import annotations

from typing import Any, Dict, Optional


class QuizFactoryError(Exception):
    """Base error translated into an HTTP error response by the server."""

    status_code = 500
    error_type = "internal"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"type": self.error_type, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(QuizFactoryError):
    """Bad configuration or start time; rejected before any job is queued."""

    status_code = 400
    error_type = "validation"


class InvalidTransitionError(QuizFactoryError):
    """A lifecycle or job status change not allowed from the current status."""

    status_code = 400
    error_type = "invalid_transition"

    def __init__(self, message: str, *, current: Optional[str] = None, requested: Optional[str] = None) -> None:
        details = {}
        if current is not None:
            details["current"] = current
        if requested is not None:
            details["requested"] = requested
        super().__init__(message, details=details)
        self.current = current
        self.requested = requested


class NotFoundError(QuizFactoryError):
    status_code = 404
    error_type = "not_found"


class DuplicateJobError(QuizFactoryError):
    """Another queued/processing job already targets the same resource."""

    status_code = 409
    error_type = "duplicate_job"

    def __init__(self, resource_id: str, active_job_id: str) -> None:
        super().__init__(
            f"Resource {resource_id} already has an active generation job",
            details={"resource_id": resource_id, "active_job_id": active_job_id},
        )
        self.resource_id = resource_id
        self.active_job_id = active_job_id


class GenerationFailure(QuizFactoryError):
    """Terminal failure of the background work. Needs a fresh job, never a resume."""

    error_type = "generation_failure"

    def __init__(self, message: str, *, reason: str = "upstream", details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, details=details)
        self.reason = reason

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["reason"] = self.reason
        return payload


class TransientNetworkError(QuizFactoryError):
    """Polling I/O failure. Counted by the poller, never surfaced on its own."""

    error_type = "transient_network"

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.http_status = status_code


class PollTimeoutError(QuizFactoryError):
    """Poll budget exhausted; the job may still finish server-side."""

    error_type = "timeout"


class DuplicateSubmissionError(QuizFactoryError):
    """A submission is already in flight on this client."""

    status_code = 409
    error_type = "duplicate_submission"


__all__ = [
    "QuizFactoryError",
    "ValidationError",
    "InvalidTransitionError",
    "NotFoundError",
    "DuplicateJobError",
    "GenerationFailure",
    "TransientNetworkError",
    "PollTimeoutError",
    "DuplicateSubmissionError",
]

"""Client-side polling of a generation job until it settles."""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from config import (
    POLL_INTERVAL_S,
    POLL_MAX_ATTEMPTS,
    POLL_MAX_CONSECUTIVE_ERRORS,
    POLL_NOT_FOUND_GRACE_S,
)
from domain.errors import GenerationFailure, PollTimeoutError, QuizFactoryError, TransientNetworkError
from observability.logger import get_logger

LOGGER = get_logger("quiz_factory.client.poller")

FALLBACK_PROGRESS_BASE = 5
FALLBACK_PROGRESS_CAP = 90

# (threshold seconds, message) checked from the longest wait down.
ADVISORY_TIERS = (
    (900, "Still generating. Large document sets can take up to 20 minutes; you can check back later."),
    (600, "Generation is taking a while. Questions are still being written and reviewed."),
    (300, "Analyzing your documents in depth to build meaningful questions..."),
    (120, "Working through your documents. Longer assessments take a few minutes."),
    (60, "Carefully studying your documents to generate questions..."),
)


class CancellationToken:
    """One-shot cancel flag shared between the poll loop and its owner."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()

    def cancel(self) -> bool:
        """Set the token. Returns ``True`` only for the call that set it."""

        with self._lock:
            if self._event.is_set():
                return False
            self._event.set()
            return True

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        return self._event.wait(timeout)


class PollOutcomeKind(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CONNECTIVITY_LOST = "connectivity_lost"
    CANCELLED = "cancelled"


@dataclass
class PollOutcome:
    kind: PollOutcomeKind
    job_id: str
    resource_id: Optional[str]
    progress: int = 0
    message: Optional[str] = None
    error: Optional[Dict[str, Any]] = None
    recovered: bool = False
    attempts: int = 0

    @property
    def succeeded(self) -> bool:
        return self.kind == PollOutcomeKind.COMPLETED

    def raise_for_outcome(self) -> None:
        """Raise the error matching a non-successful outcome."""

        if self.kind == PollOutcomeKind.FAILED:
            error = self.error or {}
            raise GenerationFailure(
                str(error.get("message") or "Generation failed"),
                reason=str(error.get("reason") or "upstream"),
            )
        if self.kind == PollOutcomeKind.TIMED_OUT:
            raise PollTimeoutError(
                f"Job {self.job_id} is still running; check back later",
                details={"job_id": self.job_id, "resource_id": self.resource_id},
            )
        if self.kind == PollOutcomeKind.CONNECTIVITY_LOST:
            raise TransientNetworkError(f"Lost contact with the server while polling job {self.job_id}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "jobId": self.job_id,
            "resourceId": self.resource_id,
            "progress": self.progress,
            "message": self.message,
            "error": self.error,
            "recovered": self.recovered,
            "attempts": self.attempts,
        }


@dataclass
class PollUpdate:
    job_id: str
    status: str
    progress: int
    message: str
    elapsed_s: float
    attempt: int


def advisory_message(elapsed_s: float, status: str, server_message: Optional[str]) -> str:
    """Map elapsed time to reassurance text. Display only."""

    if status == "processing":
        for threshold, text in ADVISORY_TIERS:
            if elapsed_s > threshold:
                return text
    if server_message:
        return server_message
    return "Processing..."


def estimate_progress(elapsed_s: float, reported: Any) -> int:
    try:
        value = float(reported)
    except (TypeError, ValueError):
        value = 0.0
    if value > 0:
        return int(min(value, 100))
    return int(min(FALLBACK_PROGRESS_BASE + int(elapsed_s // 10), FALLBACK_PROGRESS_CAP))


def _classify_error(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, dict):
        error = dict(raw)
        error.setdefault("type", "generation_failure")
        error.setdefault("message", "Generation failed")
        return error
    message = str(raw or "Generation failed")
    lowered = message.lower()
    if "timeout" in lowered or "timed out" in lowered:
        reason = "timeout"
    elif "missing required fields" in lowered or "invalid" in lowered:
        reason = "invalid_output"
    else:
        reason = "upstream"
    return {"type": "generation_failure", "message": message, "reason": reason}


class StatusPoller:
    """Poll ``GET /api/jobs/status`` at a fixed cadence until the job settles."""

    def __init__(
        self,
        api: Any,
        *,
        interval_s: float = POLL_INTERVAL_S,
        max_attempts: int = POLL_MAX_ATTEMPTS,
        max_consecutive_errors: int = POLL_MAX_CONSECUTIVE_ERRORS,
        not_found_grace_s: float = POLL_NOT_FOUND_GRACE_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._api = api
        self._interval_s = interval_s
        self._max_attempts = max_attempts
        self._max_consecutive_errors = max_consecutive_errors
        self._not_found_grace_s = not_found_grace_s
        self._clock = clock
        self.consecutive_errors = 0

    def poll(
        self,
        job_id: str,
        resource_id: Optional[str],
        token: CancellationToken,
        *,
        on_update: Optional[Callable[[PollUpdate], None]] = None,
    ) -> PollOutcome:
        started = self._clock()
        attempts = 0
        last_progress = 0
        self.consecutive_errors = 0

        while True:
            if token.cancelled:
                LOGGER.info("poll_cancelled", extra={"job_id": job_id, "attempts": attempts})
                return PollOutcome(PollOutcomeKind.CANCELLED, job_id, resource_id, last_progress, attempts=attempts)
            if attempts >= self._max_attempts:
                LOGGER.warning("poll_timed_out", extra={"job_id": job_id, "attempts": attempts})
                return PollOutcome(
                    PollOutcomeKind.TIMED_OUT,
                    job_id,
                    resource_id,
                    last_progress,
                    message="Generation is taking longer than expected. Check back later.",
                    attempts=attempts,
                )

            attempts += 1
            elapsed = self._clock() - started
            try:
                status_payload = self._api.poll_status(job_id)
            except TransientNetworkError as exc:
                if exc.http_status == 404 and elapsed < self._not_found_grace_s:
                    LOGGER.info("poll_not_found_yet", extra={"job_id": job_id, "elapsed_s": round(elapsed, 2)})
                else:
                    self.consecutive_errors += 1
                    LOGGER.warning(
                        "poll_error",
                        extra={
                            "job_id": job_id,
                            "consecutive_errors": self.consecutive_errors,
                            "max_errors": self._max_consecutive_errors,
                            "http_status": exc.http_status,
                            "error_message": exc.message,
                        },
                    )
                    if self.consecutive_errors >= self._max_consecutive_errors:
                        return self._fallback(job_id, resource_id, token, last_progress, attempts)
                token.wait(self._interval_s)
                continue

            self.consecutive_errors = 0
            status = str(status_payload.get("status") or "").lower()
            resource_id = status_payload.get("resourceId") or resource_id
            last_progress = max(last_progress, estimate_progress(elapsed, status_payload.get("progress")))

            if status == "completed":
                if not token.cancel():
                    return PollOutcome(PollOutcomeKind.CANCELLED, job_id, resource_id, last_progress, attempts=attempts)
                LOGGER.info("poll_completed", extra={"job_id": job_id, "attempts": attempts})
                return PollOutcome(
                    PollOutcomeKind.COMPLETED,
                    job_id,
                    resource_id,
                    100,
                    message=status_payload.get("message"),
                    attempts=attempts,
                )
            if status == "failed":
                if not token.cancel():
                    return PollOutcome(PollOutcomeKind.CANCELLED, job_id, resource_id, last_progress, attempts=attempts)
                error = _classify_error(status_payload.get("error"))
                LOGGER.warning(
                    "poll_job_failed",
                    extra={"job_id": job_id, "attempts": attempts, "reason": error.get("reason")},
                )
                return PollOutcome(
                    PollOutcomeKind.FAILED,
                    job_id,
                    resource_id,
                    last_progress,
                    message=error.get("message"),
                    error=error,
                    attempts=attempts,
                )

            if on_update is not None:
                on_update(
                    PollUpdate(
                        job_id=job_id,
                        status=status,
                        progress=last_progress,
                        message=advisory_message(elapsed, status, status_payload.get("message")),
                        elapsed_s=elapsed,
                        attempt=attempts,
                    )
                )
            token.wait(self._interval_s)

    def _fallback(
        self,
        job_id: str,
        resource_id: Optional[str],
        token: CancellationToken,
        progress: int,
        attempts: int,
    ) -> PollOutcome:
        LOGGER.warning("poll_fallback_check", extra={"job_id": job_id, "resource_id": resource_id})
        exists = False
        if resource_id:
            try:
                exists = bool(self._api.resource_ready(resource_id, job_id=job_id))
            except QuizFactoryError as exc:
                LOGGER.warning(
                    "poll_fallback_failed",
                    extra={"job_id": job_id, "resource_id": resource_id, "error_message": exc.message},
                )
        if exists:
            if not token.cancel():
                return PollOutcome(PollOutcomeKind.CANCELLED, job_id, resource_id, progress, attempts=attempts)
            return PollOutcome(
                PollOutcomeKind.COMPLETED,
                job_id,
                resource_id,
                100,
                message="Resource found despite polling errors",
                recovered=True,
                attempts=attempts,
            )
        return PollOutcome(
            PollOutcomeKind.CONNECTIVITY_LOST,
            job_id,
            resource_id,
            progress,
            message="Connection issues detected. The resource may still have been created.",
            error={"type": "transient_network", "message": "Too many consecutive polling errors"},
            attempts=attempts,
        )


__all__ = [
    "ADVISORY_TIERS",
    "CancellationToken",
    "PollOutcome",
    "PollOutcomeKind",
    "PollUpdate",
    "StatusPoller",
    "advisory_message",
    "estimate_progress",
]

"""Submit generation jobs and follow them to completion from the client side."""
from __future__ import annotations

import dataclasses
import threading
from typing import Any, Callable, Optional

from config import CLIENT_MAX_RETRIES
from domain.errors import DuplicateSubmissionError
from domain.generation_config import GenerationConfig
from observability.logger import get_logger

from .poller import CancellationToken, PollOutcome, PollOutcomeKind, PollUpdate, StatusPoller

LOGGER = get_logger("quiz_factory.client.submitter")


class SubmissionGuard:
    """Single in-flight flag readable synchronously from any thread."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._in_flight = False

    def try_acquire(self) -> bool:
        with self._lock:
            if self._in_flight:
                return False
            self._in_flight = True
            return True

    def release(self) -> None:
        with self._lock:
            self._in_flight = False

    @property
    def in_flight(self) -> bool:
        with self._lock:
            return self._in_flight


@dataclasses.dataclass
class _Session:
    token: CancellationToken
    job_id: Optional[str] = None
    resource_id: Optional[str] = None
    cancelled: bool = False
    completed: bool = False


class GenerationHandle:
    """Background submission started by :meth:`JobSubmitter.start`."""

    def __init__(self, submitter: "JobSubmitter", session: _Session, config: GenerationConfig) -> None:
        self._submitter = submitter
        self._session = session
        self._outcome: Optional[PollOutcome] = None
        self._error: Optional[BaseException] = None
        self._thread = threading.Thread(
            target=self._run,
            args=(config,),
            name="quiz-factory-submission",
            daemon=True,
        )

    def _run(self, config: GenerationConfig) -> None:
        try:
            self._outcome = self._submitter._drive(self._session, config)
        except Exception as exc:  # noqa: BLE001
            self._error = exc
        finally:
            self._submitter._finish(self._session)

    @property
    def job_id(self) -> Optional[str]:
        return self._session.job_id

    @property
    def resource_id(self) -> Optional[str]:
        return self._session.resource_id

    def done(self) -> bool:
        return not self._thread.is_alive()

    def cancel(self) -> None:
        self._submitter._cancel_session(self._session)

    def result(self, timeout: Optional[float] = None) -> Optional[PollOutcome]:
        self._thread.join(timeout)
        if self._thread.is_alive():
            raise TimeoutError("Submission is still running")
        if self._error is not None:
            raise self._error
        return self._outcome


class JobSubmitter:
    """Create a job, poll it, and resubmit fresh jobs after failures.

    At most one submission is outstanding per submitter. ``on_complete`` fires
    exactly once per successful submission, including one recovered by the
    poller's fallback check.
    """

    def __init__(
        self,
        api: Any,
        *,
        poller: Optional[StatusPoller] = None,
        max_retries: int = CLIENT_MAX_RETRIES,
        on_complete: Optional[Callable[[PollOutcome], None]] = None,
        on_update: Optional[Callable[[PollUpdate], None]] = None,
    ) -> None:
        self._api = api
        self._poller = poller or StatusPoller(api)
        self._max_retries = max(0, int(max_retries))
        self._on_complete = on_complete
        self._on_update = on_update
        self._guard = SubmissionGuard()
        self._lock = threading.Lock()
        self._session: Optional[_Session] = None

    @property
    def in_flight(self) -> bool:
        return self._guard.in_flight

    @property
    def current_job_id(self) -> Optional[str]:
        with self._lock:
            return self._session.job_id if self._session else None

    def submit(self, config: GenerationConfig) -> Optional[PollOutcome]:
        """Blocking submission. Returns ``None`` when another one is outstanding."""

        session = self._begin()
        if session is None:
            LOGGER.info("submission_ignored", extra={"reason": "in_flight"})
            return None
        try:
            return self._drive(session, config)
        finally:
            self._finish(session)

    def start(self, config: GenerationConfig) -> GenerationHandle:
        session = self._begin()
        if session is None:
            raise DuplicateSubmissionError("A generation request is already in progress")
        handle = GenerationHandle(self, session, config)
        handle._thread.start()
        return handle

    def cancel(self) -> None:
        with self._lock:
            session = self._session
        if session is not None:
            self._cancel_session(session)

    def _begin(self) -> Optional[_Session]:
        if not self._guard.try_acquire():
            return None
        session = _Session(token=CancellationToken())
        with self._lock:
            self._session = session
        return session

    def _finish(self, session: _Session) -> None:
        with self._lock:
            if self._session is not session:
                return
            self._session = None
        self._guard.release()

    def _cancel_session(self, session: _Session) -> None:
        with self._lock:
            session.cancelled = True
            token = session.token
            job_id = session.job_id
            session.job_id = None
        token.cancel()
        LOGGER.info("submission_cancelled", extra={"job_id": job_id, "resource_id": session.resource_id})
        self._finish(session)

    def _next_token(self, session: _Session) -> Optional[CancellationToken]:
        with self._lock:
            if session.cancelled:
                return None
            session.token = CancellationToken()
            return session.token

    def _drive(self, session: _Session, config: GenerationConfig) -> PollOutcome:
        attempt_config = config
        retries = 0
        token = session.token
        while True:
            created = self._api.create_job(attempt_config)
            job_id = created.get("jobId")
            resource_id = created.get("resourceId")
            with self._lock:
                session.resource_id = resource_id
                session.job_id = job_id if not session.cancelled else None

            if job_id is None:
                outcome = PollOutcome(PollOutcomeKind.COMPLETED, "", resource_id, 100, message="Saved without generation")
                if token.cancel():
                    self._fire_complete(session, outcome)
                    return outcome
                return dataclasses.replace(outcome, kind=PollOutcomeKind.CANCELLED, progress=0)

            LOGGER.info(
                "submission_polling",
                extra={"job_id": job_id, "resource_id": resource_id, "retry": retries},
            )
            outcome = self._poller.poll(job_id, resource_id, token, on_update=self._on_update)

            if outcome.kind == PollOutcomeKind.COMPLETED:
                self._fire_complete(session, outcome)
                return outcome
            if outcome.kind != PollOutcomeKind.FAILED or retries >= self._max_retries:
                return outcome

            next_token = self._next_token(session)
            if next_token is None:
                return dataclasses.replace(outcome, kind=PollOutcomeKind.CANCELLED)
            token = next_token
            retries += 1
            attempt_config = dataclasses.replace(config, resource_id=resource_id or config.resource_id)
            LOGGER.warning(
                "submission_retry",
                extra={
                    "failed_job_id": job_id,
                    "resource_id": resource_id,
                    "retry": retries,
                    "max_retries": self._max_retries,
                },
            )

    def _fire_complete(self, session: _Session, outcome: PollOutcome) -> None:
        with self._lock:
            if session.completed:
                return
            session.completed = True
        if self._on_complete is not None:
            self._on_complete(outcome)


__all__ = ["GenerationHandle", "JobSubmitter", "SubmissionGuard"]

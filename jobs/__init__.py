"""Generation jobs: status records, the in-memory store and the worker pool that runs them."""

from .models import TERMINAL_STATUSES, Job, JobStatus  # noqa: F401
from .runner import PROGRESS_STAGE_WEIGHTS, JobRunner, RunnerTask, SubmitResult  # noqa: F401
from .store import JobStore  # noqa: F401

__all__ = [
    "Job",
    "JobRunner",
    "JobStatus",
    "JobStore",
    "PROGRESS_STAGE_WEIGHTS",
    "RunnerTask",
    "SubmitResult",
    "TERMINAL_STATUSES",
]

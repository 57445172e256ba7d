"""Client-side submission and polling of generation jobs."""

from .api import JobsApiClient  # noqa: F401
from .poller import (  # noqa: F401
    CancellationToken,
    PollOutcome,
    PollOutcomeKind,
    PollUpdate,
    StatusPoller,
    advisory_message,
    estimate_progress,
)
from .submitter import GenerationHandle, JobSubmitter, SubmissionGuard  # noqa: F401

__all__ = [
    "CancellationToken",
    "GenerationHandle",
    "JobSubmitter",
    "JobsApiClient",
    "PollOutcome",
    "PollOutcomeKind",
    "PollUpdate",
    "StatusPoller",
    "SubmissionGuard",
    "advisory_message",
    "estimate_progress",
]

"""Domain-level models: resources, their lifecycle, scheduling and errors."""

from .errors import (  # noqa: F401
    DuplicateJobError,
    GenerationFailure,
    InvalidTransitionError,
    NotFoundError,
    QuizFactoryError,
    ValidationError,
)
from .generation_config import GenerationConfig  # noqa: F401
from .lifecycle import LifecycleManager  # noqa: F401
from .resources import Resource, ResourceStatus, ResourceStore  # noqa: F401
from .scheduling import SchedulingMode  # noqa: F401

__all__ = [
    "DuplicateJobError",
    "GenerationConfig",
    "GenerationFailure",
    "InvalidTransitionError",
    "LifecycleManager",
    "NotFoundError",
    "QuizFactoryError",
    "Resource",
    "ResourceStatus",
    "ResourceStore",
    "SchedulingMode",
    "ValidationError",
]

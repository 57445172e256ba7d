"""Service layer utilities."""

from .generation import generate_assessment  # noqa: F401
from .questions import NormalizedQuestions, normalize_questions  # noqa: F401

__all__ = [
    "generate_assessment",
    "NormalizedQuestions",
    "normalize_questions",
]

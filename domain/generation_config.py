"""Parsing of create-job request bodies into a typed generation configuration."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from config import (
    DEFAULT_DIFFICULTY,
    DEFAULT_DURATION_MINUTES,
    DEFAULT_QUESTION_COUNT,
    DEFAULT_TIMEZONE,
    GENERATION_MAX_QUESTIONS,
)

from .errors import ValidationError
from .scheduling import SchedulingMode

ALLOWED_DIFFICULTIES = {"easy", "medium", "intermediate", "hard", "expert"}


@dataclass
class GenerationConfig:
    title: str
    document_ids: List[str] = field(default_factory=list)
    description: str = ""
    question_count: int = DEFAULT_QUESTION_COUNT
    difficulty: str = DEFAULT_DIFFICULTY
    topics: List[str] = field(default_factory=list)
    levels: List[str] = field(default_factory=lambda: ["knowledge"])
    duration_minutes: int = DEFAULT_DURATION_MINUTES
    scheduling_mode: SchedulingMode = SchedulingMode.IMMEDIATE
    start_time: Optional[str] = None
    timezone: str = DEFAULT_TIMEZONE
    generate: bool = True
    resource_id: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "GenerationConfig":
        if not isinstance(payload, dict):
            raise ValidationError("Expected a JSON object")

        title = str(payload.get("title") or "").strip()
        if not title:
            raise ValidationError("Title is required", details={"field": "title"})

        generate = _as_bool(payload.get("generate"), default=True)
        document_ids = _string_list(payload.get("documentIds", payload.get("document_ids")), "documentIds")
        if generate and not document_ids:
            raise ValidationError("At least one document is required", details={"field": "documentIds"})

        question_count = _as_int(payload.get("questionCount", payload.get("question_count")), DEFAULT_QUESTION_COUNT)
        if not 1 <= question_count <= GENERATION_MAX_QUESTIONS:
            raise ValidationError(
                f"questionCount must be between 1 and {GENERATION_MAX_QUESTIONS}",
                details={"field": "questionCount"},
            )

        duration = _as_int(payload.get("duration", payload.get("duration_minutes")), DEFAULT_DURATION_MINUTES)
        if duration <= 0:
            raise ValidationError("duration must be positive", details={"field": "duration"})

        difficulty = str(payload.get("difficulty") or DEFAULT_DIFFICULTY).strip().lower()
        if difficulty not in ALLOWED_DIFFICULTIES:
            raise ValidationError(f"Unsupported difficulty: {difficulty}", details={"field": "difficulty"})

        raw_mode = payload.get("schedulingMode", payload.get("scheduling_mode"))
        if raw_mode is None and "useDeferredScheduling" in payload:
            raw_mode = "deferred" if _as_bool(payload.get("useDeferredScheduling")) else "immediate"
        try:
            mode = SchedulingMode(str(raw_mode or SchedulingMode.IMMEDIATE.value).strip().lower())
        except ValueError as exc:
            raise ValidationError(f"Unknown scheduling mode: {raw_mode}", details={"field": "schedulingMode"}) from exc

        start_time = payload.get("startTime", payload.get("start_time"))
        resource_id = payload.get("resourceId", payload.get("resource_id"))
        return cls(
            title=title,
            document_ids=document_ids,
            description=str(payload.get("description") or "").strip(),
            question_count=question_count,
            difficulty=difficulty,
            topics=_string_list(payload.get("topics"), "topics"),
            levels=_string_list(payload.get("levels", payload.get("bloomsLevels")), "levels") or ["knowledge"],
            duration_minutes=duration,
            scheduling_mode=mode,
            start_time=str(start_time).strip() if start_time else None,
            timezone=str(payload.get("timezone") or DEFAULT_TIMEZONE).strip(),
            generate=generate,
            resource_id=str(resource_id).strip() if resource_id else None,
        )

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "title": self.title,
            "description": self.description,
            "documentIds": list(self.document_ids),
            "questionCount": self.question_count,
            "difficulty": self.difficulty,
            "topics": list(self.topics),
            "levels": list(self.levels),
            "duration": self.duration_minutes,
            "schedulingMode": self.scheduling_mode.value,
            "timezone": self.timezone,
            "generate": self.generate,
        }
        if self.start_time:
            payload["startTime"] = self.start_time
        if self.resource_id:
            payload["resourceId"] = self.resource_id
        return payload


def _as_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _as_int(value: Any, default: int) -> int:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise ValidationError("Expected an integer")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Expected an integer, got {value!r}") from exc


def _string_list(value: Any, name: str) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise ValidationError(f"{name} must be a list", details={"field": name})
    return [str(item).strip() for item in value if str(item).strip()]


__all__ = ["GenerationConfig", "ALLOWED_DIFFICULTIES"]

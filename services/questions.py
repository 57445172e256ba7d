"""Normalization of generated questions before they are attached to a resource."""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List

_CONTROL_CHARS = re.compile(r"[\x00-\x1F\x7F]")

MAX_QUESTION_CHARS = 2000
MAX_EXPLANATION_CHARS = 2000
MAX_OPTION_CHARS = 500
MAX_TOPIC_CHARS = 100
MAX_ANSWER_CHARS = 10


@dataclass
class NormalizedQuestions:
    items: List[Dict[str, Any]] = field(default_factory=list)
    rejected: int = 0

    @property
    def ok(self) -> bool:
        return bool(self.items)


def clean_text(value: Any, limit: int) -> str:
    if value is None:
        return ""
    return _CONTROL_CHARS.sub("", str(value)).strip()[:limit]


def normalize_options(raw: Any) -> List[Dict[str, str]]:
    if isinstance(raw, dict):
        return [
            {"id": str(key).lower(), "text": clean_text(value, MAX_OPTION_CHARS)}
            for key, value in raw.items()
        ]
    if not isinstance(raw, list):
        return []
    options: List[Dict[str, str]] = []
    for index, option in enumerate(raw):
        if isinstance(option, dict) and "text" in option:
            option_id = str(option.get("id") or chr(ord("a") + index)).lower()
            options.append({"id": option_id, "text": clean_text(option.get("text"), MAX_OPTION_CHARS)})
        elif isinstance(option, str):
            options.append({"id": chr(ord("a") + index), "text": clean_text(option, MAX_OPTION_CHARS)})
    return [option for option in options if option["text"]]


def normalize_questions(raw_items: Iterable[Dict[str, Any]], *, difficulty: str, level: str) -> NormalizedQuestions:
    result = NormalizedQuestions()
    for index, raw in enumerate(raw_items):
        question_text = clean_text(raw.get("question") or raw.get("questionText"), MAX_QUESTION_CHARS)
        options = normalize_options(raw.get("options"))
        answer = clean_text(raw.get("correct_answer") or raw.get("correctAnswer"), MAX_ANSWER_CHARS).lower()
        if not question_text or not options or not answer:
            result.rejected += 1
            continue
        result.items.append(
            {
                "questionText": question_text,
                "options": options,
                "correctAnswer": answer,
                "explanation": clean_text(raw.get("explanation"), MAX_EXPLANATION_CHARS),
                "difficulty": str(raw.get("difficulty") or difficulty),
                "level": str(raw.get("level") or raw.get("bloomsLevel") or level),
                "topic": clean_text(raw.get("topic") or raw.get("question_type"), MAX_TOPIC_CHARS),
                "orderIndex": len(result.items),
                "sourceIndex": index,
            }
        )
    return result


__all__ = ["NormalizedQuestions", "clean_text", "normalize_options", "normalize_questions"]

"""HTTP client for the upstream question generation service."""
from __future__ import annotations

import json
from typing import Any, Callable, Dict, List, Optional

import httpx

from config import GENERATION_CONNECT_TIMEOUT_S, GENERATION_SERVICE_URL
from domain.errors import GenerationFailure
from observability.logger import get_logger

LOGGER = get_logger("quiz_factory.services.generation")

NDJSON_CONTENT_TYPES = {"application/x-ndjson", "application/jsonl", "application/json-seq"}

ProgressCallback = Callable[..., None]


def _build_timeout(read_timeout_s: float) -> httpx.Timeout:
    read_value = max(1.0, float(read_timeout_s))
    return httpx.Timeout(
        connect=GENERATION_CONNECT_TIMEOUT_S,
        read=read_value,
        write=GENERATION_CONNECT_TIMEOUT_S,
        pool=GENERATION_CONNECT_TIMEOUT_S,
    )


def _extract_questions(payload: Any) -> List[Dict[str, Any]]:
    if not isinstance(payload, dict):
        raise GenerationFailure("Generation service returned a non-object payload", reason="invalid_response")
    status = str(payload.get("status") or "success").strip().lower()
    if status in {"error", "failed", "failure"}:
        message = str(payload.get("error") or payload.get("message") or "Generation service reported a failure")
        raise GenerationFailure(message, reason="upstream")
    questions = payload.get("questionsData", payload.get("questions"))
    if not isinstance(questions, list):
        raise GenerationFailure("Generation service returned no questions", reason="invalid_response")
    return [item for item in questions if isinstance(item, dict)]


def _consume_event_stream(response: httpx.Response, progress_callback: Optional[ProgressCallback]) -> List[Dict[str, Any]]:
    result: Optional[List[Dict[str, Any]]] = None
    for line in response.iter_lines():
        line = line.strip()
        if not line:
            continue
        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            LOGGER.warning("generation_event_unparsable", extra={"line": line[:200]})
            continue
        if not isinstance(event, dict):
            continue
        kind = str(event.get("event") or "").strip().lower()
        if kind == "progress":
            if progress_callback is not None:
                progress_callback(
                    progress=event.get("progress", 0.0),
                    message=event.get("message"),
                )
        elif kind in {"result", "done"}:
            result = _extract_questions(event)
        elif kind == "error":
            raise GenerationFailure(
                str(event.get("message") or event.get("error") or "Generation service reported a failure"),
                reason="upstream",
            )
    if result is None:
        raise GenerationFailure("Generation stream ended without a result", reason="invalid_response")
    return result


def generate_assessment(
    request_payload: Dict[str, Any],
    *,
    timeout_s: float,
    progress_callback: Optional[ProgressCallback] = None,
    service_url: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Run one generation request and return the raw generated questions.

    The service either answers with a single JSON document or streams
    newline-delimited events (``progress`` ... ``result``). Any failure is
    raised as :class:`GenerationFailure`.
    """

    url = (service_url or GENERATION_SERVICE_URL).strip()
    if not url:
        raise GenerationFailure("Question generation service is not configured", reason="not_configured")

    try:
        with httpx.Client(timeout=_build_timeout(timeout_s)) as client:
            with client.stream("POST", url, json=request_payload) as response:
                response.raise_for_status()
                content_type = response.headers.get("content-type", "").split(";")[0].strip().lower()
                if content_type in NDJSON_CONTENT_TYPES:
                    return _consume_event_stream(response, progress_callback)
                response.read()
                try:
                    payload = response.json()
                except ValueError as exc:
                    raise GenerationFailure(
                        "Generation service returned invalid JSON", reason="invalid_response"
                    ) from exc
                return _extract_questions(payload)
    except httpx.TimeoutException as exc:
        LOGGER.warning("generation_timeout", extra={"url": url, "timeout_s": timeout_s})
        raise GenerationFailure("Generation service timed out", reason="timeout") from exc
    except httpx.HTTPStatusError as exc:
        status_code = exc.response.status_code
        LOGGER.warning("generation_http_error", extra={"url": url, "status_code": status_code})
        raise GenerationFailure(
            f"Generation service failed: HTTP {status_code}",
            reason="upstream",
            details={"status_code": status_code},
        ) from exc
    except httpx.TransportError as exc:
        LOGGER.warning("generation_unreachable", extra={"url": url, "error": str(exc)})
        raise GenerationFailure("Failed to reach question generation service", reason="unreachable") from exc


__all__ = ["generate_assessment", "ProgressCallback"]

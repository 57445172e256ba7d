"""Thin httpx wrapper around the job API used by the submitter and the poller."""
from __future__ import annotations

from typing import Any, Dict, Optional, Union

import httpx

from config import API_BASE_URL, API_TIMEOUT_S
from domain.errors import DuplicateJobError, TransientNetworkError, ValidationError
from domain.generation_config import GenerationConfig
from observability.logger import current_trace_id, get_logger

LOGGER = get_logger("quiz_factory.client.api")


def _error_body(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    error = data.get("error") if isinstance(data, dict) else None
    return error if isinstance(error, dict) else {}


def _error_message(response: httpx.Response) -> str:
    body = _error_body(response)
    message = body.get("message")
    if isinstance(message, str) and message.strip():
        return message.strip()
    return f"HTTP {response.status_code}"


class JobsApiClient:
    """Blocking client for ``/api/jobs`` and ``/api/resources``.

    Every I/O or non-2xx failure on the polling paths is raised as
    :class:`TransientNetworkError` carrying the HTTP status, so the poller can
    tell a not-yet-committed job (404) apart from other failures.
    """

    def __init__(
        self,
        base_url: str = API_BASE_URL,
        *,
        timeout_s: float = API_TIMEOUT_S,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout_s),
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "JobsApiClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def create_job(self, config: Union[GenerationConfig, Dict[str, Any]]) -> Dict[str, Any]:
        payload = config.to_payload() if isinstance(config, GenerationConfig) else dict(config)
        response = self._request("POST", "/api/jobs", json=payload)
        if response.status_code == 400:
            raise ValidationError(_error_message(response), details=_error_body(response).get("details"))
        if response.status_code == 409:
            details = _error_body(response).get("details") or {}
            raise DuplicateJobError(
                str(details.get("resource_id") or payload.get("resourceId") or ""),
                str(details.get("active_job_id") or ""),
            )
        if not response.is_success:
            raise TransientNetworkError(_error_message(response), status_code=response.status_code)
        return self._json(response)

    def poll_status(self, job_id: str) -> Dict[str, Any]:
        response = self._request("GET", "/api/jobs/status", params={"jobId": job_id})
        if not response.is_success:
            raise TransientNetworkError(_error_message(response), status_code=response.status_code)
        return self._json(response)

    def resource_ready(self, resource_id: str, job_id: Optional[str] = None) -> bool:
        """True when the resource exists and carries items stored by ``job_id``.

        Without ``job_id`` any stored items count.
        """

        response = self._request("GET", f"/api/resources/{resource_id}")
        if response.status_code == 404:
            return False
        if not response.is_success:
            raise TransientNetworkError(_error_message(response), status_code=response.status_code)
        resource = self._json(response)
        if int(resource.get("itemsCount") or 0) <= 0:
            return False
        return job_id is None or resource.get("lastJobId") == job_id

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        headers = {}
        trace_id = current_trace_id()
        if trace_id:
            headers["X-Trace-Id"] = trace_id
        try:
            return self._client.request(method, path, headers=headers, **kwargs)
        except httpx.TimeoutException as exc:
            raise TransientNetworkError(f"{method} {path} timed out") from exc
        except httpx.HTTPError as exc:
            raise TransientNetworkError(f"{method} {path} failed: {exc}") from exc

    @staticmethod
    def _json(response: httpx.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as exc:
            raise TransientNetworkError("Response body is not JSON", status_code=response.status_code) from exc
        if not isinstance(data, dict):
            raise TransientNetworkError("Response body is not a JSON object", status_code=response.status_code)
        return data


__all__ = ["JobsApiClient"]

# -*- coding: utf-8 -*-

import os

from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    value = str(os.getenv(name, "")).strip()
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    value = str(os.getenv(name, "")).strip()
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = str(os.getenv(name, "")).strip().lower()
    if not raw:
        return default
    return raw not in {"0", "false", "off", "no"}


# Server-side job execution
JOB_MAX_RUNTIME_S = max(1, _env_int("JOB_MAX_RUNTIME_S", 25 * 60))
JOB_STORE_TTL_S = max(60, _env_int("JOB_STORE_TTL_S", 2 * 60 * 60))
JOB_REAPER_INTERVAL_S = max(0.05, _env_float("JOB_REAPER_INTERVAL_S", 30.0))
JOB_WORKERS = max(1, _env_int("JOB_WORKERS", 4))

# Upstream generation service (webhook-style)
GENERATION_SERVICE_URL = str(os.getenv("GENERATION_SERVICE_URL", "")).strip()
GENERATION_CONNECT_TIMEOUT_S = max(1.0, _env_float("GENERATION_CONNECT_TIMEOUT_S", 10.0))
GENERATION_MAX_QUESTIONS = max(1, _env_int("GENERATION_MAX_QUESTIONS", 50))

# Client-side polling protocol
POLL_INTERVAL_S = max(0.0, _env_float("POLL_INTERVAL_S", 1.0))
POLL_MAX_ATTEMPTS = max(1, _env_int("POLL_MAX_ATTEMPTS", 1200))
POLL_MAX_CONSECUTIVE_ERRORS = max(1, _env_int("POLL_MAX_CONSECUTIVE_ERRORS", 10))
POLL_NOT_FOUND_GRACE_S = max(0.0, _env_float("POLL_NOT_FOUND_GRACE_S", 5.0))
CLIENT_MAX_RETRIES = max(0, _env_int("CLIENT_MAX_RETRIES", 3))
API_BASE_URL = str(os.getenv("API_BASE_URL", "http://127.0.0.1:8000")).strip()
API_TIMEOUT_S = max(1.0, _env_float("API_TIMEOUT_S", 15.0))

# Scheduling
MIN_START_LEAD_S = max(0, _env_int("MIN_START_LEAD_S", 5 * 60))
MAX_START_AHEAD_DAYS = max(1, _env_int("MAX_START_AHEAD_DAYS", 365))
DEFAULT_TIMEZONE = str(os.getenv("DEFAULT_TIMEZONE", "UTC")).strip() or "UTC"
DEFAULT_DURATION_MINUTES = 30
DEFAULT_QUESTION_COUNT = 10
DEFAULT_DIFFICULTY = "medium"

# Drafts abandoned by cancelled jobs are left in place until purged explicitly.
DRAFT_PURGE_AFTER_S = max(60, _env_int("DRAFT_PURGE_AFTER_S", 7 * 24 * 60 * 60))

LOG_JSON = _env_bool("LOG_JSON", True)

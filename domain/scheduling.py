"""Start time normalization and validation for immediate and deferred scheduling."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from config import MAX_START_AHEAD_DAYS, MIN_START_LEAD_S

from .errors import ValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SchedulingMode(str, Enum):
    IMMEDIATE = "immediate"
    DEFERRED = "deferred"


@dataclass(frozen=True)
class Schedule:
    mode: SchedulingMode
    start_time: datetime
    timezone: str
    scheduled_at: Optional[datetime]

    @property
    def is_placeholder(self) -> bool:
        return self.mode == SchedulingMode.DEFERRED


def resolve_zone(timezone_name: str) -> ZoneInfo:
    name = str(timezone_name or "").strip()
    if not name:
        raise ValidationError("Timezone is required")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValidationError(f"Unknown timezone: {name}") from exc


def normalize_start_time(value: Union[str, datetime], timezone_name: str) -> datetime:
    """Convert a caller-local start time into an aware UTC datetime.

    Naive values (``2025-03-01T09:30`` from a datetime-local input) are wall
    clock times in ``timezone_name``. Values that already carry an offset keep
    it; the timezone name is still validated so it can be stored alongside.
    """

    zone = resolve_zone(timezone_name)
    if isinstance(value, datetime):
        parsed = value
    else:
        raw = str(value or "").strip()
        if not raw:
            raise ValidationError("Start time is required")
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError as exc:
            raise ValidationError("Invalid start time provided", details={"start_time": str(value)}) from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=zone)
    return parsed.astimezone(timezone.utc)


def validate_start_time(
    start_time: datetime,
    *,
    now: Optional[datetime] = None,
    min_lead_s: int = MIN_START_LEAD_S,
    max_ahead_days: int = MAX_START_AHEAD_DAYS,
) -> datetime:
    current = now or utcnow()
    earliest = current + timedelta(seconds=min_lead_s)
    if start_time < earliest:
        minutes = max(1, min_lead_s // 60)
        raise ValidationError(
            f"Start time must be at least {minutes} minutes in the future",
            details={"start_time": start_time.isoformat(), "earliest": earliest.isoformat()},
        )
    latest = current + timedelta(days=max_ahead_days)
    if start_time > latest:
        raise ValidationError(
            "Start time cannot be more than 1 year in the future",
            details={"start_time": start_time.isoformat(), "latest": latest.isoformat()},
        )
    return start_time


def placeholder_start_time(now: Optional[datetime] = None) -> datetime:
    current = now or utcnow()
    try:
        return current.replace(year=current.year + 1)
    except ValueError:
        # 29 February
        return current.replace(year=current.year + 1, day=28)


def resolve_schedule(
    mode: SchedulingMode,
    *,
    start_time: Union[str, datetime, None],
    timezone_name: str,
    now: Optional[datetime] = None,
) -> Schedule:
    current = now or utcnow()
    if mode == SchedulingMode.DEFERRED:
        resolve_zone(timezone_name)
        return Schedule(
            mode=mode,
            start_time=placeholder_start_time(current),
            timezone=timezone_name,
            scheduled_at=None,
        )
    if start_time is None or (isinstance(start_time, str) and not start_time.strip()):
        raise ValidationError("Start time is required for immediate scheduling")
    normalized = normalize_start_time(start_time, timezone_name)
    validate_start_time(normalized, now=current)
    return Schedule(mode=mode, start_time=normalized, timezone=timezone_name, scheduled_at=current)


__all__ = [
    "Schedule",
    "SchedulingMode",
    "normalize_start_time",
    "placeholder_start_time",
    "resolve_schedule",
    "resolve_zone",
    "utcnow",
    "validate_start_time",
]

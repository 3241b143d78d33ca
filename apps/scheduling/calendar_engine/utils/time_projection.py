"""Instant <-> wall-clock projection through IANA timezones.

Every conversion between a stored UTC instant and a human wall-clock value
goes through this module. The timezone is always an explicit argument; no
process-wide default zone is read or mutated.

DST policy for local -> instant:
- Non-existent local time (spring-forward gap): the post-gap instant, i.e.
  the wall clock is shifted forward by the length of the gap
  (02:30 on a New York spring-forward day becomes 03:30 EDT).
- Ambiguous local time (fall-back overlap): the earlier of the two instants.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone as dt_timezone
from enum import Enum
from functools import lru_cache
from typing import NamedTuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from calendar_engine.core.errors import InvalidTimezoneError

UTC = dt_timezone.utc


class CivilTime(NamedTuple):
    """Zone-less wall-clock value (what a person would write down)."""

    year: int
    month: int
    day: int
    hour: int = 0
    minute: int = 0

    @classmethod
    def from_datetime(cls, value: datetime) -> CivilTime:
        """Take the wall-clock fields of a datetime, ignoring any tzinfo."""
        return cls(value.year, value.month, value.day, value.hour, value.minute)

    @classmethod
    def combine(cls, day: date, at: time) -> CivilTime:
        return cls(day.year, day.month, day.day, at.hour, at.minute)

    def to_naive(self) -> datetime:
        """Naive datetime with the same wall-clock fields."""
        return datetime(self.year, self.month, self.day, self.hour, self.minute)

    def date(self) -> date:
        return date(self.year, self.month, self.day)

    def time(self) -> time:
        return time(self.hour, self.minute)

    def isoformat(self) -> str:
        return f"{self.year:04d}-{self.month:02d}-{self.day:02d}T{self.hour:02d}:{self.minute:02d}"


class LocalTimeKind(str, Enum):
    """How a wall-clock value maps onto instants in a timezone."""
    NORMAL = "normal"
    NONEXISTENT = "nonexistent"  # Inside a spring-forward gap
    AMBIGUOUS = "ambiguous"  # Inside a fall-back overlap


@lru_cache(maxsize=64)
def get_timezone(name: str) -> ZoneInfo:
    """
    Resolve an IANA timezone identifier.

    Raises:
        InvalidTimezoneError: If the identifier is empty or unknown. There is
            no fallback to the system zone or to a default zone.
    """
    if not isinstance(name, str) or not name.strip():
        raise InvalidTimezoneError(name)
    try:
        return ZoneInfo(name.strip())
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise InvalidTimezoneError(name) from e


def ensure_utc(instant: datetime) -> datetime:
    """Validate that an instant is timezone-aware and normalize it to UTC."""
    if instant.tzinfo is None or instant.utcoffset() is None:
        raise ValueError(f"Instant must be timezone-aware, got naive datetime {instant.isoformat()}")
    return instant.astimezone(UTC)


def to_civil(instant: datetime, timezone: str) -> CivilTime:
    """Project an absolute instant onto the wall clock of a timezone.

    Seconds and microseconds are truncated.
    """
    tz = get_timezone(timezone)
    local = ensure_utc(instant).astimezone(tz)
    return CivilTime.from_datetime(local)


def _candidates(civil: CivilTime, tz: ZoneInfo) -> tuple[datetime, datetime]:
    naive = civil.to_naive()
    first = naive.replace(tzinfo=tz, fold=0).astimezone(UTC)
    second = naive.replace(tzinfo=tz, fold=1).astimezone(UTC)
    return first, second


def local_time_kind(civil: CivilTime, timezone: str) -> LocalTimeKind:
    """Classify a wall-clock value as normal, non-existent or ambiguous."""
    tz = get_timezone(timezone)
    first, second = _candidates(civil, tz)
    if first == second:
        return LocalTimeKind.NORMAL
    # In a gap neither candidate projects back to the requested wall clock
    if CivilTime.from_datetime(first.astimezone(tz)) != civil:
        return LocalTimeKind.NONEXISTENT
    return LocalTimeKind.AMBIGUOUS


def to_instant(civil: CivilTime, timezone: str) -> datetime:
    """Convert a wall-clock value in a timezone to a UTC instant.

    Total for every valid CivilTime; see the module docstring for the
    gap/overlap policy.
    """
    tz = get_timezone(timezone)
    first, second = _candidates(civil, tz)
    if first == second:
        return first
    if CivilTime.from_datetime(first.astimezone(tz)) != civil:
        # Spring-forward gap: take the candidate that lands after the gap
        return max(first, second)
    return min(first, second)


def utc_offset(instant: datetime, timezone: str) -> timedelta:
    """UTC offset of a timezone at a given instant."""
    tz = get_timezone(timezone)
    offset = ensure_utc(instant).astimezone(tz).utcoffset()
    if offset is None:
        raise ValueError(f"Timezone {timezone!r} has no UTC offset at {instant.isoformat()}")
    return offset


def local_date(instant: datetime, timezone: str) -> date:
    """Calendar date of an instant in a timezone."""
    return to_civil(instant, timezone).date()


def start_of_local_day(day: date, timezone: str) -> datetime:
    """First instant of a local calendar day (midnight, or post-gap if skipped)."""
    return to_instant(CivilTime(day.year, day.month, day.day), timezone)


def iter_local_dates(window_start: datetime, window_end: datetime, timezone: str) -> list[date]:
    """Local calendar dates touched by the half-open window [start, end)."""
    start = ensure_utc(window_start)
    end = ensure_utc(window_end)
    if end <= start:
        return []
    first = local_date(start, timezone)
    # The window is half-open; the last touched moment is just before end
    last = local_date(end - timedelta(microseconds=1), timezone)
    days: list[date] = []
    current = first
    while current <= last:
        days.append(current)
        current += timedelta(days=1)
    return days

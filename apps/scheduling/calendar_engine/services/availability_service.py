"""Availability service - weekly templates resolved into per-day intervals.

Handles:
- Write-time validation of weekly templates (no overlapping windows per day)
- Resolving a template plus date overrides into wall-clock intervals
- Projecting resolved intervals into instants
"""

import logging
from collections import defaultdict
from datetime import date, datetime
from typing import Iterable

from calendar_engine.core.errors import OverlappingAvailabilityWindowError
from calendar_engine.schemas.calendar import (
    AvailabilityOverride,
    AvailabilityWindow,
    LocalInterval,
)
from calendar_engine.utils.time_projection import (
    CivilTime,
    get_timezone,
    iter_local_dates,
    to_instant,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Template Validation
# =============================================================================

def validate_template(windows: Iterable[AvailabilityWindow]) -> tuple[AvailabilityWindow, ...]:
    """
    Validate a weekly template before it is stored.

    Windows on the same day may touch (09:00-12:00 and 12:00-17:00) but not
    overlap. Inactive windows are not checked.

    Returns:
        The windows sorted by day_of_week, then start_time.

    Raises:
        OverlappingAvailabilityWindowError: If two active windows on the same
            day overlap.
    """
    ordered = tuple(sorted(windows, key=lambda w: (w.day_of_week, w.start_time, w.end_time)))
    previous: AvailabilityWindow | None = None
    for window in ordered:
        if not window.is_active:
            continue
        if (
            previous is not None
            and previous.day_of_week == window.day_of_week
            and window.start_time < previous.end_time
        ):
            raise OverlappingAvailabilityWindowError(
                f"Availability windows overlap on day {window.day_of_week}: "
                f"{previous.start_time:%H:%M}-{previous.end_time:%H:%M} and "
                f"{window.start_time:%H:%M}-{window.end_time:%H:%M}"
            )
        if previous is None or previous.day_of_week != window.day_of_week or window.end_time > previous.end_time:
            previous = window
    return ordered


# =============================================================================
# Resolution
# =============================================================================

def _intervals_for(day: date, windows: list[AvailabilityWindow]) -> list[LocalInterval]:
    return [
        LocalInterval(
            start=CivilTime.combine(day, window.start_time),
            end=CivilTime.combine(day, window.end_time),
        )
        for window in windows
    ]


def available_intervals(
    template: Iterable[AvailabilityWindow],
    window_start: datetime,
    window_end: datetime,
    timezone: str,
    overrides: Iterable[AvailabilityOverride] = (),
) -> dict[date, list[LocalInterval]]:
    """
    Resolve a weekly template into wall-clock intervals for each day of a window.

    Every calendar day (in ``timezone``) touched by [window_start, window_end)
    is a key; days with no availability map to an empty list. An override
    replaces the template for its date. Input is assumed to be validated.
    """
    get_timezone(timezone)

    # Day-of-week lookup is built once and reused for every matching day
    by_day: dict[int, list[AvailabilityWindow]] = defaultdict(list)
    for window in template:
        if window.is_active:
            by_day[window.day_of_week].append(window)
    for windows in by_day.values():
        windows.sort(key=lambda w: w.start_time)

    override_map = {o.override_date: o for o in overrides}

    result: dict[date, list[LocalInterval]] = {}
    for day in iter_local_dates(window_start, window_end, timezone):
        override = override_map.get(day)
        if override is not None:
            if override.is_unavailable:
                result[day] = []
            else:
                result[day] = [
                    LocalInterval(
                        start=CivilTime.combine(day, override.start_time),
                        end=CivilTime.combine(day, override.end_time),
                    )
                ]
            continue
        result[day] = _intervals_for(day, by_day.get(AvailabilityWindow.day_of_week_for(day), []))
    logger.debug("Resolved availability for %d days in %s", len(result), timezone)
    return result


def interval_instants(interval: LocalInterval, timezone: str) -> tuple[datetime, datetime]:
    """Convert a wall-clock interval in ``timezone`` to UTC instants."""
    return to_instant(interval.start, timezone), to_instant(interval.end, timezone)

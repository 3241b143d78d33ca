"""Working hours service - the viewer's visible hour range on the calendar grid.

Working hours are a display preference in the viewer's local hours. The
range always spans at least MIN_WORKING_HOURS_GAP hours; out-of-range input
is clamped, never rejected.
"""

import json
import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, model_validator

from calendar_engine.core.constants import (
    DEFAULT_WORKING_HOURS_END,
    DEFAULT_WORKING_HOURS_START,
    FIRST_GRID_HOUR,
    LAST_GRID_HOUR,
    MIN_WORKING_HOURS_GAP,
)

logger = logging.getLogger(__name__)

# Latest start that still leaves room for the minimum gap
LAST_START_HOUR = LAST_GRID_HOUR - MIN_WORKING_HOURS_GAP
FIRST_END_HOUR = FIRST_GRID_HOUR + MIN_WORKING_HOURS_GAP


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


class WorkingHoursPreference(BaseModel):
    """Visible hour range [start_hour, end_hour] in the viewer's local time."""

    model_config = ConfigDict(frozen=True)

    start_hour: int = DEFAULT_WORKING_HOURS_START
    end_hour: int = DEFAULT_WORKING_HOURS_END

    @model_validator(mode="before")
    @classmethod
    def _clamp_hours(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        start = int(data.get("start_hour", DEFAULT_WORKING_HOURS_START))
        end = int(data.get("end_hour", DEFAULT_WORKING_HOURS_END))
        start = _clamp(start, FIRST_GRID_HOUR, LAST_START_HOUR)
        end = _clamp(end, FIRST_END_HOUR, LAST_GRID_HOUR)
        if end - start < MIN_WORKING_HOURS_GAP:
            end = start + MIN_WORKING_HOURS_GAP
        return {**data, "start_hour": start, "end_hour": end}


def normalize_working_hours(start: int, end: int) -> WorkingHoursPreference:
    """Clamp both hours into the grid and enforce the minimum gap (moving end)."""
    return WorkingHoursPreference(start_hour=start, end_hour=end)


def on_working_hours_change(
    current: WorkingHoursPreference,
    start: int | None = None,
    end: int | None = None,
) -> WorkingHoursPreference:
    """
    Apply a user edit to one bound, keeping the other bound consistent.

    Moving the start pushes the end out to at least start + gap; moving the
    end pulls the start in to at most end - gap.
    """
    if start is not None and end is not None:
        return normalize_working_hours(start, end)
    if start is not None:
        start = _clamp(start, FIRST_GRID_HOUR, LAST_START_HOUR)
        return normalize_working_hours(start, max(current.end_hour, start + MIN_WORKING_HOURS_GAP))
    if end is not None:
        end = _clamp(end, FIRST_END_HOUR, LAST_GRID_HOUR)
        return normalize_working_hours(min(current.start_hour, end - MIN_WORKING_HOURS_GAP), end)
    return current


def _is_hour(value: Any) -> bool:
    # bool is an int subclass but never a valid stored hour
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and value.is_integer()


def load_working_hours(raw: str | dict | None) -> WorkingHoursPreference:
    """
    Load a stored preference ({"start": h, "end": h}, as JSON or a dict).

    Missing, unparseable or non-numeric values fall back to the defaults.
    """
    if raw is None:
        return WorkingHoursPreference()
    data: Any = raw
    if isinstance(raw, (str, bytes)):
        try:
            data = json.loads(raw)
        except ValueError:
            logger.debug("Ignoring unparseable stored working hours")
            return WorkingHoursPreference()
    if not isinstance(data, dict):
        return WorkingHoursPreference()
    start, end = data.get("start"), data.get("end")
    if not (_is_hour(start) and _is_hour(end)):
        return WorkingHoursPreference()
    return normalize_working_hours(int(start), int(end))


def dump_working_hours(preference: WorkingHoursPreference) -> dict[str, int]:
    """Storable form of a preference."""
    return {"start": preference.start_hour, "end": preference.end_hour}

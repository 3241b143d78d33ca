"""Utility modules."""

from calendar_engine.utils.rrule_parser import RecurrenceRule, build_rule, parse_rule
from calendar_engine.utils.time_projection import (
    CivilTime,
    LocalTimeKind,
    get_timezone,
    local_time_kind,
    to_civil,
    to_instant,
    utc_offset,
)

__all__ = [
    # Time projection
    "CivilTime",
    "LocalTimeKind",
    "get_timezone",
    "local_time_kind",
    "to_civil",
    "to_instant",
    "utc_offset",
    # Recurrence rules
    "RecurrenceRule",
    "build_rule",
    "parse_rule",
]

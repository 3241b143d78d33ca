from datetime import date, time

import pytest

from calendar_engine.core.errors import InvalidTimezoneError, OverlappingAvailabilityWindowError
from calendar_engine.schemas import AvailabilityOverride, AvailabilityWindow, LocalInterval
from calendar_engine.services.availability_service import (
    available_intervals,
    interval_instants,
    validate_template,
)
from calendar_engine.utils.time_projection import CivilTime

from conftest import utc

CHICAGO = "America/Chicago"


def _window(day: int, start: str, end: str, **kwargs) -> AvailabilityWindow:
    return AvailabilityWindow(
        day_of_week=day,
        start_time=time.fromisoformat(start),
        end_time=time.fromisoformat(end),
        **kwargs,
    )


MONDAY_TEMPLATE = [_window(1, "13:00", "17:00"), _window(1, "09:00", "12:00")]


def test_day_of_week_is_sunday_based():
    assert AvailabilityWindow.day_of_week_for(date(2024, 3, 3)) == 0  # Sunday
    assert AvailabilityWindow.day_of_week_for(date(2024, 3, 4)) == 1  # Monday
    assert AvailabilityWindow.day_of_week_for(date(2024, 3, 9)) == 6  # Saturday


def test_validate_template_sorts_windows():
    template = [_window(3, "09:00", "17:00"), *MONDAY_TEMPLATE]
    ordered = validate_template(template)
    assert [(w.day_of_week, w.start_time) for w in ordered] == [
        (1, time(9)),
        (1, time(13)),
        (3, time(9)),
    ]


def test_validate_template_rejects_overlap():
    with pytest.raises(OverlappingAvailabilityWindowError):
        validate_template([_window(2, "09:00", "12:00"), _window(2, "11:30", "15:00")])


def test_validate_template_rejects_window_nested_after_long_window():
    with pytest.raises(OverlappingAvailabilityWindowError):
        validate_template(
            [_window(2, "08:00", "18:00"), _window(2, "09:00", "10:00"), _window(2, "12:00", "13:00")]
        )


def test_validate_template_allows_touching_and_inactive_windows():
    template = [
        _window(2, "09:00", "12:00"),
        _window(2, "12:00", "17:00"),
        _window(2, "10:00", "11:00", is_active=False),
        _window(3, "10:00", "11:00"),
    ]
    assert len(validate_template(template)) == 4


def test_window_requires_start_before_end():
    with pytest.raises(ValueError):
        _window(1, "17:00", "09:00")


def test_available_intervals_covers_every_day_in_window():
    # Monday 00:00 CST through Wednesday 00:00 CST
    result = available_intervals(MONDAY_TEMPLATE, utc(2024, 3, 4, 6), utc(2024, 3, 6, 6), CHICAGO)

    assert list(result) == [date(2024, 3, 4), date(2024, 3, 5)]
    assert result[date(2024, 3, 4)] == [
        LocalInterval(CivilTime(2024, 3, 4, 9, 0), CivilTime(2024, 3, 4, 12, 0)),
        LocalInterval(CivilTime(2024, 3, 4, 13, 0), CivilTime(2024, 3, 4, 17, 0)),
    ]
    assert result[date(2024, 3, 5)] == []


def test_template_is_reused_for_each_matching_weekday():
    result = available_intervals(MONDAY_TEMPLATE, utc(2024, 3, 1, 6), utc(2024, 3, 29, 5), CHICAGO)
    mondays = [day for day, intervals in result.items() if intervals]
    assert mondays == [date(2024, 3, 4), date(2024, 3, 11), date(2024, 3, 18), date(2024, 3, 25)]


def test_inactive_windows_are_ignored():
    template = [_window(1, "09:00", "12:00", is_active=False)]
    result = available_intervals(template, utc(2024, 3, 4, 6), utc(2024, 3, 5, 6), CHICAGO)
    assert result == {date(2024, 3, 4): []}


def test_unavailable_override_clears_day():
    override = AvailabilityOverride(override_date=date(2024, 3, 4), is_unavailable=True, reason="Holiday")
    result = available_intervals(
        MONDAY_TEMPLATE, utc(2024, 3, 4, 6), utc(2024, 3, 5, 6), CHICAGO, [override]
    )
    assert result[date(2024, 3, 4)] == []


def test_custom_hours_override_replaces_template():
    override = AvailabilityOverride(
        override_date=date(2024, 3, 5),
        is_unavailable=False,
        start_time=time(10),
        end_time=time(14),
    )
    result = available_intervals(
        MONDAY_TEMPLATE, utc(2024, 3, 4, 6), utc(2024, 3, 6, 6), CHICAGO, [override]
    )
    assert result[date(2024, 3, 5)] == [
        LocalInterval(CivilTime(2024, 3, 5, 10, 0), CivilTime(2024, 3, 5, 14, 0))
    ]
    assert len(result[date(2024, 3, 4)]) == 2


def test_custom_hours_override_requires_hours():
    with pytest.raises(ValueError):
        AvailabilityOverride(override_date=date(2024, 3, 5), is_unavailable=False)


def test_invalid_timezone_fails():
    with pytest.raises(InvalidTimezoneError):
        available_intervals(MONDAY_TEMPLATE, utc(2024, 3, 4), utc(2024, 3, 5), "Nowhere/City")


def test_interval_instants_follow_dst():
    before = LocalInterval(CivilTime(2024, 3, 8, 9, 0), CivilTime(2024, 3, 8, 17, 0))
    after = LocalInterval(CivilTime(2024, 3, 11, 9, 0), CivilTime(2024, 3, 11, 17, 0))

    assert interval_instants(before, CHICAGO) == (utc(2024, 3, 8, 15), utc(2024, 3, 8, 23))
    assert interval_instants(after, CHICAGO) == (utc(2024, 3, 11, 14), utc(2024, 3, 11, 22))

import logging
from datetime import date, time

import pytest

from calendar_engine.core.errors import InvalidTimezoneError
from calendar_engine.schemas import (
    AppointmentStatus,
    AvailabilityWindow,
    BusySourceKind,
    CalendarSources,
    ExternalBusyBlock,
    ManualBlock,
)
from calendar_engine.services.calendar_view_service import build_calendar_view
from calendar_engine.services.working_hours_service import (
    WorkingHoursPreference,
    on_working_hours_change,
)
from calendar_engine.utils.time_projection import CivilTime

from conftest import utc

LOS_ANGELES = "America/Los_Angeles"
# March 2024 as seen from Los Angeles (PST until March 10, PDT after)
LA_MARCH = (utc(2024, 3, 1, 8), utc(2024, 4, 1, 7))


class RecordingObserver:
    def __init__(self):
        self.calls = []

    def view_built(self, **kwargs):
        self.calls.append(kwargs)


def test_invalid_viewer_timezone_fails_fast(weekly_tuesday_series):
    sources = CalendarSources(series=[weekly_tuesday_series])
    with pytest.raises(InvalidTimezoneError):
        build_calendar_view("staff-1", "Mars/Olympus_Mons", *LA_MARCH, sources=sources)


def test_reversed_window_is_rejected():
    with pytest.raises(ValueError):
        build_calendar_view("staff-1", LOS_ANGELES, LA_MARCH[1], LA_MARCH[0], sources=CalendarSources())


def test_events_are_projected_into_viewer_wall_clock(weekly_tuesday_series):
    view = build_calendar_view(
        "staff-1",
        LOS_ANGELES,
        *LA_MARCH,
        sources=CalendarSources(series=[weekly_tuesday_series]),
        now=utc(2024, 3, 5, 20, 30),
    )

    assert [e.start for e in view.events] == [
        CivilTime(2024, 3, 5, 11, 0),
        CivilTime(2024, 3, 12, 11, 0),
        CivilTime(2024, 3, 19, 11, 0),
        CivilTime(2024, 3, 26, 11, 0),
    ]
    assert all(e.end.hour == 12 for e in view.events)
    assert all(e.source_kind == BusySourceKind.APPOINTMENT and e.mutable for e in view.events)
    assert view.events[1].start_instant == utc(2024, 3, 12, 18, 0)
    assert view.events[0].label == "Weekly check-in"
    assert view.now_marker == CivilTime(2024, 3, 5, 12, 30)


def test_working_hours_scenario(weekly_tuesday_series):
    hours = on_working_hours_change(WorkingHoursPreference(), start=20)

    view = build_calendar_view(
        "staff-1",
        LOS_ANGELES,
        *LA_MARCH,
        hours,
        sources=CalendarSources(series=[weekly_tuesday_series]),
        now=utc(2024, 3, 5, 20, 30),
    )

    assert (view.working_hours.start_hour, view.working_hours.end_hour) == (20, 22)
    assert view.grid_start == CivilTime(2024, 3, 1, 20, 0)
    assert view.grid_end == CivilTime(2024, 3, 1, 22, 0)


def test_default_grid_uses_first_viewer_day():
    view = build_calendar_view("staff-1", LOS_ANGELES, *LA_MARCH, sources=CalendarSources())
    assert view.grid_start == CivilTime(2024, 3, 1, 7, 0)
    assert view.grid_end == CivilTime(2024, 3, 1, 21, 0)


def test_unparseable_series_is_skipped(weekly_tuesday_series, caplog):
    broken = weekly_tuesday_series.model_copy(update={"id": "series-broken", "recurrence_rule": "FREQ=WEEKLY;BYDAY=XX"})

    with caplog.at_level(logging.WARNING):
        view = build_calendar_view(
            "staff-1",
            LOS_ANGELES,
            *LA_MARCH,
            sources=CalendarSources(series=[broken, weekly_tuesday_series]),
        )

    assert len(view.events) == 4
    assert [s.series_id for s in view.skipped_series] == ["series-broken"]
    assert any(r.levelno == logging.WARNING for r in caplog.records)


def test_cancelled_appointments_are_hidden_by_default(make_appointment):
    cancelled = make_appointment(
        "appt-cancelled", utc(2024, 3, 7, 17), utc(2024, 3, 7, 18), status=AppointmentStatus.CANCELLED
    )
    sources = CalendarSources(appointments=[cancelled])

    hidden = build_calendar_view("staff-1", LOS_ANGELES, *LA_MARCH, sources=sources)
    shown = build_calendar_view("staff-1", LOS_ANGELES, *LA_MARCH, sources=sources, include_cancelled=True)

    assert hidden.events == []
    assert [e.id for e in shown.events] == ["appt-cancelled"]
    assert shown.events[0].status == AppointmentStatus.CANCELLED


def test_blocks_and_conflicts_in_view(weekly_tuesday_series):
    manual = ManualBlock(id="manual-1", start=utc(2024, 3, 12, 18, 30), end=utc(2024, 3, 12, 20))
    external = ExternalBusyBlock(id="google-1", start=utc(2024, 3, 13, 16), end=utc(2024, 3, 13, 17))
    outside = ExternalBusyBlock(id="google-2", start=utc(2024, 4, 13, 16), end=utc(2024, 4, 13, 17))
    sources = CalendarSources(
        series=[weekly_tuesday_series],
        manual_blocks=[manual],
        external_blocks=[external, outside],
    )

    view = build_calendar_view("staff-1", LOS_ANGELES, *LA_MARCH, sources=sources)

    kinds = {e.id: e for e in view.events}
    assert len(view.events) == 6
    assert "google-2" not in kinds
    assert kinds["manual-1"].start == CivilTime(2024, 3, 12, 11, 30)
    assert not kinds["google-1"].mutable
    assert [(c.first, c.second) for c in view.conflicts] == [
        ("appointment:series-tue:20240312T180000Z", "manual_block:manual-1")
    ]


def test_availability_is_projected_into_viewer_days():
    # Tuesday 09:00-17:00 in New York
    sources = CalendarSources(
        availability=[AvailabilityWindow(day_of_week=2, start_time=time(9), end_time=time(17))],
        staff_timezone="America/New_York",
    )

    view = build_calendar_view(
        "staff-1", LOS_ANGELES, utc(2024, 3, 5, 8), utc(2024, 3, 6, 8), sources=sources
    )

    assert list(view.availability) == [date(2024, 3, 5)]
    slots = view.availability[date(2024, 3, 5)]
    assert len(slots) == 1
    assert (slots[0].start, slots[0].end) == (CivilTime(2024, 3, 5, 6, 0), CivilTime(2024, 3, 5, 14, 0))
    assert slots[0].start_instant == utc(2024, 3, 5, 14)


def test_availability_from_distant_staff_zone_stays_in_window_days():
    # Tuesday 09:00-18:00 in Tokyo is Monday 16:00 to Tuesday 01:00 in Los Angeles
    sources = CalendarSources(
        availability=[AvailabilityWindow(day_of_week=2, start_time=time(9), end_time=time(18))],
        staff_timezone="Asia/Tokyo",
    )

    view = build_calendar_view(
        "staff-1", LOS_ANGELES, utc(2024, 3, 5, 8), utc(2024, 3, 6, 8), sources=sources
    )

    assert list(view.availability) == [date(2024, 3, 5)]
    slots = view.availability[date(2024, 3, 5)]
    assert len(slots) == 1
    assert slots[0].start == CivilTime(2024, 3, 4, 16, 0)
    assert (slots[0].start_instant, slots[0].end_instant) == (utc(2024, 3, 5, 0), utc(2024, 3, 5, 9))


def test_availability_emptied_by_spring_forward_gap_is_dropped():
    # 02:30 does not exist in New York on 2024-03-10 and resolves to 03:30
    sources = CalendarSources(
        availability=[
            AvailabilityWindow(day_of_week=0, start_time=time(2, 30), end_time=time(3)),
            AvailabilityWindow(day_of_week=0, start_time=time(9), end_time=time(12)),
        ],
        staff_timezone="America/New_York",
    )

    view = build_calendar_view(
        "staff-1", "America/New_York", utc(2024, 3, 10, 5), utc(2024, 3, 11, 4), sources=sources
    )

    slots = view.availability[date(2024, 3, 10)]
    assert [(s.start_instant, s.end_instant) for s in slots] == [(utc(2024, 3, 10, 13), utc(2024, 3, 10, 16))]
    assert all(s.start_instant < s.end_instant for s in slots)


def test_availability_requires_staff_timezone():
    with pytest.raises(ValueError):
        CalendarSources(availability=[AvailabilityWindow(day_of_week=2, start_time=time(9), end_time=time(17))])


def test_observer_receives_counts(weekly_tuesday_series):
    observer = RecordingObserver()

    build_calendar_view(
        "staff-1",
        LOS_ANGELES,
        *LA_MARCH,
        sources=CalendarSources(series=[weekly_tuesday_series]),
        observer=observer,
    )

    assert len(observer.calls) == 1
    call = observer.calls[0]
    assert call["staff_id"] == "staff-1"
    assert call["event_count"] == 4
    assert call["skipped_count"] == 0
    assert call["duration_seconds"] >= 0


def test_view_serializes_wall_clock_as_plain_strings(weekly_tuesday_series):
    view = build_calendar_view(
        "staff-1",
        LOS_ANGELES,
        *LA_MARCH,
        sources=CalendarSources(series=[weekly_tuesday_series]),
        now=utc(2024, 3, 5, 20, 30),
    )

    payload = view.model_dump(mode="json")

    assert payload["events"][0]["start"] == "2024-03-05T11:00"
    assert payload["events"][0]["source_kind"] == "appointment"
    assert payload["grid_start"] == "2024-03-01T07:00"
    assert payload["now_marker"] == "2024-03-05T12:30"


def test_same_inputs_same_view(weekly_tuesday_series):
    sources = CalendarSources(series=[weekly_tuesday_series])
    now = utc(2024, 3, 5, 20, 30)
    first = build_calendar_view("staff-1", LOS_ANGELES, *LA_MARCH, sources=sources, now=now)
    second = build_calendar_view("staff-1", LOS_ANGELES, *LA_MARCH, sources=sources, now=now)
    assert first == second

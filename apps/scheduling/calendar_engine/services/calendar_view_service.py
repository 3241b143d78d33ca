"""Calendar view service - builds the render-ready model for one staff calendar.

All computation happens on UTC instants; the viewer timezone is applied only
at the end, when events, availability, grid bounds and the now marker are
projected onto the viewer's wall clock.
"""

import logging
import time
from datetime import date, datetime
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field

from calendar_engine.core.structured_logging import build_log_context
from calendar_engine.schemas.calendar import (
    AvailabilitySlot,
    BlockConflict,
    BusyBlock,
    CalendarEvent,
    CalendarSources,
    CivilField,
    SkippedSeries,
    UtcDatetime,
)
from calendar_engine.schemas.enums import AppointmentStatus
from calendar_engine.services import availability_service, busy_block_service, recurrence_service
from calendar_engine.services.working_hours_service import WorkingHoursPreference
from calendar_engine.utils.time_projection import (
    UTC,
    CivilTime,
    ensure_utc,
    get_timezone,
    iter_local_dates,
    local_date,
    to_civil,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Types
# =============================================================================

class CalendarViewObserver(Protocol):
    """Receives build timing and counts (metrics hook, injected per call)."""

    def view_built(
        self,
        *,
        staff_id: str,
        duration_seconds: float,
        event_count: int,
        skipped_count: int,
    ) -> None: ...


class CalendarViewModel(BaseModel):
    """Everything a calendar grid needs to render one staff member's window."""

    model_config = ConfigDict(frozen=True)

    staff_id: str
    viewer_timezone: str
    window_start: UtcDatetime
    window_end: UtcDatetime
    working_hours: WorkingHoursPreference
    events: list[CalendarEvent] = Field(default_factory=list)
    # Keyed by viewer-local date; every date in the window is present
    availability: dict[date, list[AvailabilitySlot]] = Field(default_factory=dict)
    grid_start: CivilField
    grid_end: CivilField
    now_marker: CivilField
    skipped_series: list[SkippedSeries] = Field(default_factory=list)
    conflicts: list[BlockConflict] = Field(default_factory=list)


# =============================================================================
# Projection Helpers
# =============================================================================

def _to_event(block: BusyBlock, viewer_timezone: str) -> CalendarEvent:
    return CalendarEvent(
        id=block.id,
        source_kind=block.source_kind,
        mutable=block.mutable,
        label=block.label,
        start=to_civil(block.start, viewer_timezone),
        end=to_civil(block.end, viewer_timezone),
        start_instant=block.start,
        end_instant=block.end,
        series_id=block.series_id,
        status=block.status,
    )


def _project_availability(
    sources: CalendarSources,
    window_start: datetime,
    window_end: datetime,
    viewer_timezone: str,
) -> dict[date, list[AvailabilitySlot]]:
    """Resolve availability in the staff timezone, regroup by viewer-local date."""
    projected: dict[date, list[AvailabilitySlot]] = {
        day: [] for day in iter_local_dates(window_start, window_end, viewer_timezone)
    }
    if sources.staff_timezone is None:
        return projected

    staff_days = availability_service.available_intervals(
        sources.availability,
        window_start,
        window_end,
        sources.staff_timezone,
        sources.availability_overrides,
    )
    for intervals in staff_days.values():
        for interval in intervals:
            start, end = availability_service.interval_instants(interval, sources.staff_timezone)
            if end <= start:
                # A spring-forward gap pushed the start past the end
                logger.debug("Dropping availability interval collapsed by DST gap: %s", interval)
                continue
            if not (start < window_end and end > window_start):
                continue
            slot = AvailabilitySlot(
                start=to_civil(start, viewer_timezone),
                end=to_civil(end, viewer_timezone),
                start_instant=start,
                end_instant=end,
            )
            # A slot straddling window_start belongs to the first viewer day
            projected[local_date(max(start, window_start), viewer_timezone)].append(slot)

    for slots in projected.values():
        slots.sort(key=lambda s: s.start_instant)
    return projected


# =============================================================================
# View Building
# =============================================================================

def build_calendar_view(
    staff_id: str,
    viewer_timezone: str,
    window_start: datetime,
    window_end: datetime,
    working_hours: WorkingHoursPreference | None = None,
    *,
    sources: CalendarSources,
    now: datetime | None = None,
    include_cancelled: bool = False,
    observer: CalendarViewObserver | None = None,
) -> CalendarViewModel:
    """
    Build the calendar view model for a staff member and window.

    Raises:
        InvalidTimezoneError: If ``viewer_timezone`` is not a known IANA zone.
        ValueError: If the window is empty or reversed, or an instant is naive.
    """
    # Fail fast on the viewer zone before any work is done
    get_timezone(viewer_timezone)
    window_start = ensure_utc(window_start)
    window_end = ensure_utc(window_end)
    if window_end <= window_start:
        raise ValueError("window_start must be before window_end")

    started = time.perf_counter()
    log_context = build_log_context(
        staff_id=staff_id,
        viewer_timezone=viewer_timezone,
        window_start=window_start,
        window_end=window_end,
    )

    expansion = recurrence_service.expand(
        sources.series,
        sources.exceptions,
        window_start,
        window_end,
        sources.appointments,
    )
    occurrences = [
        o for o in expansion.occurrences
        if include_cancelled or o.status != AppointmentStatus.CANCELLED
    ]
    blocks = busy_block_service.merge(
        occurrences,
        [b for b in sources.manual_blocks if b.overlaps(window_start, window_end)],
        [b for b in sources.external_blocks if b.overlaps(window_start, window_end)],
    )
    events = [_to_event(block, viewer_timezone) for block in blocks]
    conflicts = busy_block_service.find_conflicts(blocks)
    availability = _project_availability(sources, window_start, window_end, viewer_timezone)

    hours = working_hours or WorkingHoursPreference()
    first_day = local_date(window_start, viewer_timezone)
    grid_start = CivilTime(first_day.year, first_day.month, first_day.day, hours.start_hour)
    grid_end = CivilTime(first_day.year, first_day.month, first_day.day, hours.end_hour)
    now_marker = to_civil(now if now is not None else datetime.now(UTC), viewer_timezone)

    view = CalendarViewModel(
        staff_id=staff_id,
        viewer_timezone=viewer_timezone,
        window_start=window_start,
        window_end=window_end,
        working_hours=hours,
        events=events,
        availability=availability,
        grid_start=grid_start,
        grid_end=grid_end,
        now_marker=now_marker,
        skipped_series=expansion.errors,
        conflicts=conflicts,
    )

    duration = time.perf_counter() - started
    logger.info(
        "Built calendar view with %d events",
        len(events),
        extra={**log_context, "skipped_series": len(expansion.errors), "conflicts": len(conflicts)},
    )
    if observer is not None:
        observer.view_built(
            staff_id=staff_id,
            duration_seconds=duration,
            event_count=len(events),
            skipped_count=len(expansion.errors),
        )
    return view

"""Recurrence service - expands recurring series into concrete occurrences.

Handles:
- Walking a series' RRULE in the series' own timezone (civil time)
- End conditions (rule COUNT/UNTIL and the series' own end condition)
- Cancel/reschedule exceptions keyed by the original computed start
- Merging standalone and already-materialized appointments
- Series edit actions: this occurrence only, this and future occurrences

Time model: the rule is evaluated on wall-clock values in the series timezone
so "every Tuesday at 2pm" stays at 2pm local across DST changes; every
generated wall-clock start is converted to an instant with to_instant.
"""

import dataclasses
import hashlib
import logging
from datetime import datetime, timedelta
from itertools import islice
from typing import Iterable, Iterator, NamedTuple

from dateutil import rrule as du

from calendar_engine.core.config import settings
from calendar_engine.core.errors import UnparseableRecurrenceRuleError
from calendar_engine.core.structured_logging import build_log_context
from calendar_engine.schemas.calendar import (
    AppointmentOccurrence,
    RecurringSeries,
    SeriesEndCondition,
    SeriesException,
    SkippedSeries,
)
from calendar_engine.schemas.enums import (
    AppointmentStatus,
    EndConditionKind,
    ExceptionChangeType,
)
from calendar_engine.utils.rrule_parser import FREQUENCIES, RecurrenceRule, parse_rule
from calendar_engine.utils.time_projection import (
    CivilTime,
    ensure_utc,
    start_of_local_day,
    to_civil,
    to_instant,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Types
# =============================================================================

class ExpansionResult(NamedTuple):
    """Occurrences for a window plus the series that had to be skipped."""
    occurrences: list[AppointmentOccurrence]
    errors: list[SkippedSeries]


class SeriesSplit(NamedTuple):
    """Result of a "this and future occurrences" edit."""
    head: RecurringSeries
    tail: RecurringSeries
    # Exceptions at/after the split, re-keyed to the tail series
    moved_exceptions: list[SeriesException]
    # Exceptions at/after the split that no longer match any tail occurrence
    orphaned_exceptions: list[SeriesException]


# =============================================================================
# Occurrence Generation
# =============================================================================

def occurrence_id(series_id: str, original_start: datetime) -> str:
    """Deterministic id for a generated occurrence."""
    return f"{series_id}:{ensure_utc(original_start):%Y%m%dT%H%M%SZ}"


def _rule_until(rule: RecurrenceRule, timezone: str) -> datetime | None:
    if rule.until is not None:
        return rule.until
    if rule.until_date is not None:
        # Date-only UNTIL covers the whole local day in the series timezone
        next_day = start_of_local_day(rule.until_date + timedelta(days=1), timezone)
        return next_day - timedelta(microseconds=1)
    return None


def _effective_until(series: RecurringSeries, rule: RecurrenceRule) -> datetime | None:
    """Tightest inclusive upper bound on occurrence starts, if any."""
    bounds: list[datetime] = []
    rule_until = _rule_until(rule, series.timezone)
    if rule_until is not None:
        bounds.append(rule_until)
    if series.end_condition.kind == EndConditionKind.AFTER_DATE and series.end_condition.until:
        bounds.append(series.end_condition.until)
    return min(bounds) if bounds else None


def _effective_count(series: RecurringSeries, rule: RecurrenceRule) -> int | None:
    counts = [rule.count]
    if series.end_condition.kind == EndConditionKind.AFTER_COUNT:
        counts.append(series.end_condition.count)
    present = [c for c in counts if c is not None]
    return min(present) if present else None


def iter_original_starts(
    series: RecurringSeries,
    rule: RecurrenceRule | None = None,
    *,
    stop_at: datetime | None = None,
) -> Iterator[datetime]:
    """
    Lazily yield the rule-computed (original) occurrence starts as UTC instants.

    Each call starts a fresh walk from the anchor, so the sequence is
    restartable. It ends at the rule's COUNT/UNTIL, the series end condition,
    or the first start at or after ``stop_at``; without any of those it is
    unbounded and callers must slice it.

    Raises:
        UnparseableRecurrenceRuleError: If the series rule cannot be parsed.
    """
    if rule is None:
        rule = parse_rule(series.recurrence_rule)
    if stop_at is not None:
        stop_at = ensure_utc(stop_at)

    anchor = to_civil(series.anchor_start, series.timezone)
    until = _effective_until(series, rule)
    walker = du.rrule(
        FREQUENCIES[rule.freq],
        dtstart=anchor.to_naive(),
        count=_effective_count(series, rule),
        **rule.dateutil_kwargs(),
    )
    for local_start in walker:
        start = to_instant(CivilTime.from_datetime(local_start), series.timezone)
        if until is not None and start > until:
            return
        if stop_at is not None and start >= stop_at:
            return
        yield start


def preview_occurrences(series: RecurringSeries, limit: int = 5) -> list[datetime]:
    """First ``limit`` original starts of a series, for rule previews."""
    return list(islice(iter_original_starts(series), max(limit, 0)))


def _check_window(window_start: datetime, window_end: datetime) -> tuple[datetime, datetime]:
    window_start = ensure_utc(window_start)
    window_end = ensure_utc(window_end)
    if window_end <= window_start:
        raise ValueError("window_start must be before window_end")
    return window_start, window_end


def expand_series(
    series: RecurringSeries,
    exceptions: Iterable[SeriesException],
    window_start: datetime,
    window_end: datetime,
    appointments: Iterable[AppointmentOccurrence] = (),
) -> list[AppointmentOccurrence]:
    """
    Expand one series into the occurrences intersecting [window_start, window_end).

    - Cancelled exceptions drop their slot.
    - Rescheduled exceptions drop their slot; the replacement appointment row
      (looked up by id in ``appointments``) is emitted with its own instants.
    - Stored rows of this series within the match tolerance of a generated
      start are materialized instances; the generated copy is suppressed.
    - Inactive series generate nothing.

    Returned occurrences are sorted by (start, id).

    Raises:
        UnparseableRecurrenceRuleError: If the series rule cannot be parsed.
    """
    window_start, window_end = _check_window(window_start, window_end)
    if not series.is_active:
        return []

    rule = parse_rule(series.recurrence_rule)
    appointments = list(appointments)
    rows_by_id = {a.id: a for a in appointments}
    series_exceptions = {e.original_start: e for e in exceptions if e.series_id == series.id}
    replacement_ids = {
        e.replacement_appointment_id
        for e in series_exceptions.values()
        if e.change_type == ExceptionChangeType.RESCHEDULED
    }
    materialized_starts = [
        a.original_start or a.start
        for a in appointments
        if a.series_id == series.id and not a.is_virtual and a.id not in replacement_ids
    ]
    tolerance = timedelta(seconds=settings.MATERIALIZED_MATCH_TOLERANCE_SECONDS)
    duration = timedelta(minutes=series.duration_minutes)

    occurrences: list[AppointmentOccurrence] = []
    for original_start in iter_original_starts(series, rule, stop_at=window_end):
        end = original_start + duration
        if end <= window_start:
            continue
        if original_start in series_exceptions:
            continue
        if any(abs(m - original_start) <= tolerance for m in materialized_starts):
            continue
        occurrences.append(
            AppointmentOccurrence(
                id=occurrence_id(series.id, original_start),
                series_id=series.id,
                start=original_start,
                end=end,
                status=AppointmentStatus.SCHEDULED,
                metadata=dict(series.metadata),
                original_start=original_start,
                is_virtual=True,
            )
        )
        if len(occurrences) >= settings.MAX_OCCURRENCES_PER_SERIES:
            logger.warning(
                "Occurrence ceiling reached, truncating expansion",
                extra={
                    **build_log_context(
                        series_id=series.id,
                        window_start=window_start,
                        window_end=window_end,
                    ),
                    "limit": settings.MAX_OCCURRENCES_PER_SERIES,
                },
            )
            break

    for exception in series_exceptions.values():
        if exception.change_type != ExceptionChangeType.RESCHEDULED:
            continue
        replacement = rows_by_id.get(exception.replacement_appointment_id)
        if replacement is None:
            logger.debug(
                "Replacement appointment %s not provided",
                exception.replacement_appointment_id,
                extra=build_log_context(series_id=series.id),
            )
            continue
        if not replacement.overlaps(window_start, window_end):
            continue
        occurrences.append(
            replacement.model_copy(
                update={
                    "series_id": replacement.series_id or series.id,
                    "original_start": exception.original_start,
                }
            )
        )

    occurrences.sort(key=lambda o: (o.start, o.id))
    return occurrences


def expand(
    series_list: Iterable[RecurringSeries],
    exceptions: Iterable[SeriesException],
    window_start: datetime,
    window_end: datetime,
    appointments: Iterable[AppointmentOccurrence] = (),
) -> ExpansionResult:
    """
    Expand every series and merge standalone appointments for a window.

    A series whose rule cannot be parsed is skipped and reported in
    ``errors``; the rest of the window is still computed. The result is
    sorted by (start, id) and holds each occurrence id once.
    """
    window_start, window_end = _check_window(window_start, window_end)
    exceptions = list(exceptions)
    appointments = list(appointments)

    by_id: dict[str, AppointmentOccurrence] = {}
    errors: list[SkippedSeries] = []

    for series in sorted(series_list, key=lambda s: s.id):
        try:
            expanded = expand_series(series, exceptions, window_start, window_end, appointments)
        except UnparseableRecurrenceRuleError as e:
            logger.warning(
                "Skipping series with unparseable recurrence rule",
                extra={**build_log_context(series_id=series.id), "reason": e.reason},
            )
            errors.append(SkippedSeries(series_id=series.id, message=str(e)))
            continue
        for occurrence in expanded:
            by_id.setdefault(occurrence.id, occurrence)

    for appointment in appointments:
        if appointment.id in by_id:
            continue
        if appointment.overlaps(window_start, window_end):
            by_id[appointment.id] = appointment

    occurrences = sorted(by_id.values(), key=lambda o: (o.start, o.id))
    return ExpansionResult(occurrences=occurrences, errors=errors)


def expansion_cache_key(
    series: RecurringSeries,
    window_start: datetime,
    window_end: datetime,
    exceptions: Iterable[SeriesException],
) -> tuple[str, str, str, str]:
    """
    Memoization key for expand_series.

    The version component changes whenever the series definition or any of
    its exceptions change.
    """
    relevant = sorted(
        (
            e.original_start.isoformat(),
            e.change_type.value,
            e.replacement_appointment_id or "",
        )
        for e in exceptions
        if e.series_id == series.id
    )
    raw = f"{series.model_dump_json()}|{relevant!r}".encode()
    version = hashlib.sha256(raw).hexdigest()[:16]
    return (
        series.id,
        ensure_utc(window_start).isoformat(),
        ensure_utc(window_end).isoformat(),
        version,
    )


# =============================================================================
# Series Edit Actions
# =============================================================================

def _occurrence_index(series: RecurringSeries, rule: RecurrenceRule, original_start: datetime) -> int:
    """0-based position of an original start in the series; ValueError if absent."""
    original_start = ensure_utc(original_start)
    starts = iter_original_starts(series, rule, stop_at=original_start + timedelta(seconds=1))
    for index, start in enumerate(starts):
        if start == original_start:
            return index
    raise ValueError(
        f"{original_start.isoformat()} is not an occurrence of series {series.id}"
    )


def cancel_occurrence(
    series: RecurringSeries,
    original_start: datetime,
    notes: str | None = None,
) -> SeriesException:
    """Cancel a single occurrence ("this occurrence only")."""
    rule = parse_rule(series.recurrence_rule)
    _occurrence_index(series, rule, original_start)
    return SeriesException(
        series_id=series.id,
        original_start=original_start,
        change_type=ExceptionChangeType.CANCELLED,
        notes=notes or "Single occurrence cancelled",
    )


def reschedule_occurrence(
    series: RecurringSeries,
    original_start: datetime,
    replacement_appointment_id: str,
    notes: str | None = None,
) -> SeriesException:
    """Move a single occurrence to a separately stored replacement appointment."""
    rule = parse_rule(series.recurrence_rule)
    _occurrence_index(series, rule, original_start)
    return SeriesException(
        series_id=series.id,
        original_start=original_start,
        change_type=ExceptionChangeType.RESCHEDULED,
        replacement_appointment_id=replacement_appointment_id,
        notes=notes,
    )


def split_series(
    series: RecurringSeries,
    original_start: datetime,
    new_series_id: str,
    *,
    anchor_start: datetime | None = None,
    duration_minutes: int | None = None,
    recurrence_rule: str | None = None,
    exceptions: Iterable[SeriesException] = (),
) -> SeriesSplit:
    """
    Apply a "this and future occurrences" edit.

    The original series (head) is ended just before ``original_start``; a new
    series (tail) starts there with the optional new anchor, duration or rule.
    Count-based end conditions are divided between head and tail so the total
    number of occurrences is unchanged.

    Raises:
        ValueError: If ``original_start`` is not an occurrence of the series or
            is its first occurrence (edit the whole series instead).
        UnparseableRecurrenceRuleError: If either rule cannot be parsed.
    """
    original_start = ensure_utc(original_start)
    rule = parse_rule(series.recurrence_rule)
    index = _occurrence_index(series, rule, original_start)
    if index == 0:
        raise ValueError("Cannot split a series at its first occurrence")

    tail_rule = parse_rule(recurrence_rule) if recurrence_rule is not None else rule
    total = _effective_count(series, rule)
    if total is not None:
        head_condition = SeriesEndCondition.after_count(index)
        tail_condition = SeriesEndCondition.after_count(total - index)
        # The count now lives on the end condition only; any date bound of
        # the original series moves into the tail rule as UNTIL
        bounds = [
            b for b in (_effective_until(series, rule), _rule_until(tail_rule, series.timezone))
            if b is not None
        ]
        tail_rule = dataclasses.replace(
            tail_rule,
            count=None,
            until=min(bounds) if bounds else None,
            until_date=None,
        )
    else:
        head_condition = SeriesEndCondition.after_date(original_start - timedelta(seconds=1))
        tail_condition = series.end_condition

    head = series.model_copy(update={"end_condition": head_condition})
    tail = series.model_copy(
        update={
            "id": new_series_id,
            "anchor_start": ensure_utc(anchor_start) if anchor_start is not None else original_start,
            "duration_minutes": duration_minutes or series.duration_minutes,
            "recurrence_rule": tail_rule.to_string(),
            "end_condition": tail_condition,
        }
    )

    later = [
        e for e in exceptions
        if e.series_id == series.id and e.original_start >= original_start
    ]
    schedule_unchanged = anchor_start is None and recurrence_rule is None
    if schedule_unchanged:
        moved = [e.model_copy(update={"series_id": new_series_id}) for e in later]
        orphaned: list[SeriesException] = []
    else:
        last = max((e.original_start for e in later), default=original_start)
        tail_starts = set(iter_original_starts(tail, stop_at=last + timedelta(seconds=1)))
        moved = [
            e.model_copy(update={"series_id": new_series_id})
            for e in later
            if e.original_start in tail_starts
        ]
        orphaned = [e for e in later if e.original_start not in tail_starts]
        if orphaned:
            logger.info(
                "%d exceptions no longer match the edited series",
                len(orphaned),
                extra=build_log_context(series_id=series.id),
            )
    return SeriesSplit(head=head, tail=tail, moved_exceptions=moved, orphaned_exceptions=orphaned)

"""Service layer modules."""

from calendar_engine.services.recurrence_service import (
    ExpansionResult,
    SeriesSplit,
    cancel_occurrence,
    expand,
    expand_series,
    expansion_cache_key,
    iter_original_starts,
    preview_occurrences,
    reschedule_occurrence,
    split_series,
)
from calendar_engine.services.availability_service import (
    available_intervals,
    validate_template,
)
from calendar_engine.services.busy_block_service import (
    create_manual_block,
    ensure_mutable,
    find_conflicts,
    merge,
)
from calendar_engine.services.working_hours_service import (
    WorkingHoursPreference,
    dump_working_hours,
    load_working_hours,
    normalize_working_hours,
    on_working_hours_change,
)
from calendar_engine.services.calendar_view_service import (
    CalendarViewModel,
    CalendarViewObserver,
    build_calendar_view,
)

# Import service modules (not individual functions) for cleaner access
from calendar_engine.services import calendar_sync_service

__all__ = [
    # Recurrence service
    "ExpansionResult",
    "SeriesSplit",
    "expand",
    "expand_series",
    "expansion_cache_key",
    "iter_original_starts",
    "preview_occurrences",
    "cancel_occurrence",
    "reschedule_occurrence",
    "split_series",
    # Availability service
    "validate_template",
    "available_intervals",
    # Busy-block service
    "merge",
    "ensure_mutable",
    "find_conflicts",
    "create_manual_block",
    # Working hours
    "WorkingHoursPreference",
    "normalize_working_hours",
    "on_working_hours_change",
    "load_working_hours",
    "dump_working_hours",
    # Calendar view
    "CalendarViewModel",
    "CalendarViewObserver",
    "build_calendar_view",
    # Service modules
    "calendar_sync_service",
]

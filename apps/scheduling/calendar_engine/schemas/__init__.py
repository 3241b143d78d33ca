"""Pydantic schemas for engine inputs and projections."""

from calendar_engine.schemas.calendar import (
    AppointmentOccurrence,
    AvailabilityOverride,
    AvailabilitySlot,
    AvailabilityWindow,
    BlockConflict,
    BusyBlock,
    CalendarEvent,
    CalendarSources,
    ExternalBusyBlock,
    LocalInterval,
    ManualBlock,
    RecurringSeries,
    SeriesEndCondition,
    SeriesException,
    SkippedSeries,
)
from calendar_engine.schemas.enums import (
    AppointmentStatus,
    BusySourceKind,
    EndConditionKind,
    ExceptionChangeType,
)

__all__ = [
    # Appointments and series
    "AppointmentOccurrence",
    "RecurringSeries",
    "SeriesEndCondition",
    "SeriesException",
    "SkippedSeries",
    # Availability
    "AvailabilityOverride",
    "AvailabilitySlot",
    "AvailabilityWindow",
    "LocalInterval",
    # Blocks
    "BlockConflict",
    "BusyBlock",
    "CalendarEvent",
    "ExternalBusyBlock",
    "ManualBlock",
    # Sources
    "CalendarSources",
    # Enums
    "AppointmentStatus",
    "BusySourceKind",
    "EndConditionKind",
    "ExceptionChangeType",
]

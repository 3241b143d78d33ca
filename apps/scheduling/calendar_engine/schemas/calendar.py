"""Calendar schemas - Pydantic models for engine inputs and projections.

Every instant field must be timezone-aware and is normalized to UTC.
Records are frozen: the engine never mutates what the data-access layer hands it.
"""

from datetime import date, datetime, time
from typing import Annotated, Any, NamedTuple

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    field_validator,
    model_validator,
)

from calendar_engine.core.constants import (
    DEFAULT_EXTERNAL_BLOCK_SUMMARY,
    DEFAULT_MANUAL_BLOCK_SUMMARY,
    GOOGLE_BLOCK_SOURCE,
    MANUAL_BLOCK_SOURCE,
)
from calendar_engine.schemas.enums import (
    AppointmentStatus,
    BusySourceKind,
    EndConditionKind,
    ExceptionChangeType,
)
from calendar_engine.utils.time_projection import CivilTime, ensure_utc, get_timezone


def _validate_timezone(value: str) -> str:
    get_timezone(value)
    return value.strip()


UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]
TimezoneName = Annotated[str, AfterValidator(_validate_timezone)]
# Wall-clock values serialize as "YYYY-MM-DDTHH:MM" (no offset) in JSON
CivilField = Annotated[
    CivilTime,
    PlainSerializer(lambda value: value.isoformat(), return_type=str, when_used="json"),
]


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True)


class _Interval(_Record):
    start: UtcDatetime
    end: UtcDatetime

    @model_validator(mode="after")
    def _check_order(self):
        if self.start >= self.end:
            raise ValueError("start must be before end")
        return self

    def overlaps(self, start: datetime, end: datetime) -> bool:
        """Half-open overlap test against [start, end)."""
        return self.start < end and self.end > start


# =============================================================================
# Appointments and Series
# =============================================================================

class AppointmentOccurrence(_Interval):
    """A standalone appointment or one concrete instance of a series."""
    id: str
    series_id: str | None = None
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    metadata: dict[str, Any] = Field(default_factory=dict)
    # Rule-computed start for generated instances; exceptions key off this
    original_start: UtcDatetime | None = None
    is_virtual: bool = False


class SeriesEndCondition(_Record):
    """When a series stops: never, after an instant (inclusive), or after N occurrences."""
    kind: EndConditionKind = EndConditionKind.NONE
    until: UtcDatetime | None = None
    count: int | None = Field(None, ge=1)

    @model_validator(mode="after")
    def _check_kind(self):
        if self.kind == EndConditionKind.AFTER_DATE and self.until is None:
            raise ValueError("after_date end condition requires 'until'")
        if self.kind == EndConditionKind.AFTER_COUNT and self.count is None:
            raise ValueError("after_count end condition requires 'count'")
        return self

    @classmethod
    def after_date(cls, until: datetime) -> "SeriesEndCondition":
        return cls(kind=EndConditionKind.AFTER_DATE, until=until)

    @classmethod
    def after_count(cls, count: int) -> "SeriesEndCondition":
        return cls(kind=EndConditionKind.AFTER_COUNT, count=count)


class RecurringSeries(_Record):
    """A recurring appointment definition, walked in its own timezone."""
    id: str
    anchor_start: UtcDatetime
    duration_minutes: int = Field(..., gt=0, le=24 * 60)
    recurrence_rule: str
    timezone: TimezoneName
    is_active: bool = True
    end_condition: SeriesEndCondition = Field(default_factory=SeriesEndCondition)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("anchor_start")
    @classmethod
    def _check_minute_aligned(cls, value: datetime) -> datetime:
        # Occurrences are walked at minute resolution in local time
        if value.second or value.microsecond:
            raise ValueError("anchor_start must fall on a whole minute")
        return value


class SeriesException(_Record):
    """Per-occurrence override, keyed by the original computed start."""
    series_id: str
    original_start: UtcDatetime
    change_type: ExceptionChangeType
    replacement_appointment_id: str | None = None
    notes: str | None = None

    @model_validator(mode="after")
    def _check_replacement(self):
        if self.change_type == ExceptionChangeType.RESCHEDULED and not self.replacement_appointment_id:
            raise ValueError("rescheduled exceptions require replacement_appointment_id")
        return self

    @property
    def key(self) -> tuple[str, datetime]:
        return (self.series_id, self.original_start)


class SkippedSeries(_Record):
    """A series left out of an expansion, with the reason."""
    series_id: str
    message: str


# =============================================================================
# Availability
# =============================================================================

class AvailabilityWindow(_Record):
    """Weekly availability window in the staff member's local time."""
    day_of_week: int = Field(..., ge=0, le=6, description="Sunday=0, Saturday=6")
    start_time: time
    end_time: time
    is_active: bool = True

    @model_validator(mode="after")
    def _check_order(self):
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self

    @staticmethod
    def day_of_week_for(day: date) -> int:
        """Sunday-based weekday number for a calendar date."""
        return (day.weekday() + 1) % 7


class AvailabilityOverride(_Record):
    """Date-specific replacement for the weekly template."""
    override_date: date
    is_unavailable: bool = True
    start_time: time | None = None
    end_time: time | None = None
    reason: str | None = Field(None, max_length=255)

    @model_validator(mode="after")
    def _check_hours(self):
        if self.is_unavailable:
            return self
        if self.start_time is None or self.end_time is None:
            raise ValueError("custom-hours overrides require start_time and end_time")
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self


class LocalInterval(NamedTuple):
    """Half-open wall-clock interval [start, end)."""
    start: CivilTime
    end: CivilTime


class AvailabilitySlot(_Record):
    """An availability interval projected into the viewer's wall clock."""
    start: CivilField
    end: CivilField
    start_instant: UtcDatetime
    end_instant: UtcDatetime


# =============================================================================
# Staff Calendar Blocks
# =============================================================================

class ManualBlock(_Interval):
    """Time blocked by staff directly on their calendar."""
    id: str
    summary: str = DEFAULT_MANUAL_BLOCK_SUMMARY
    source: str = MANUAL_BLOCK_SOURCE

    @field_validator("summary", mode="before")
    @classmethod
    def _default_summary(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return DEFAULT_MANUAL_BLOCK_SUMMARY
        return value.strip() if isinstance(value, str) else value


class ExternalBusyBlock(_Interval):
    """Busy period mirrored from a connected third-party calendar."""
    id: str
    summary: str = DEFAULT_EXTERNAL_BLOCK_SUMMARY
    source: str = GOOGLE_BLOCK_SOURCE

    @field_validator("summary", mode="before")
    @classmethod
    def _default_summary(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return DEFAULT_EXTERNAL_BLOCK_SUMMARY
        return value.strip() if isinstance(value, str) else value


class BusyBlock(_Interval):
    """Any interval that renders as occupied, tagged by origin."""
    id: str
    source_kind: BusySourceKind
    mutable: bool
    label: str
    series_id: str | None = None
    status: AppointmentStatus | None = None

    @property
    def key(self) -> str:
        """Identifier unique across sources."""
        return f"{self.source_kind.value}:{self.id}"


class BlockConflict(_Record):
    """Two busy blocks that overlap, with the shared interval."""
    first: str
    second: str
    start: UtcDatetime
    end: UtcDatetime


class CalendarEvent(_Record):
    """A busy block projected into the viewer's wall clock."""
    id: str
    source_kind: BusySourceKind
    mutable: bool
    label: str
    start: CivilField
    end: CivilField
    start_instant: UtcDatetime
    end_instant: UtcDatetime
    series_id: str | None = None
    status: AppointmentStatus | None = None


# =============================================================================
# Sources
# =============================================================================

class CalendarSources(_Record):
    """Everything the data-access layer fetched for one staff member and window."""
    series: list[RecurringSeries] = Field(default_factory=list)
    exceptions: list[SeriesException] = Field(default_factory=list)
    appointments: list[AppointmentOccurrence] = Field(default_factory=list)
    availability: list[AvailabilityWindow] = Field(default_factory=list)
    availability_overrides: list[AvailabilityOverride] = Field(default_factory=list)
    staff_timezone: TimezoneName | None = None
    manual_blocks: list[ManualBlock] = Field(default_factory=list)
    external_blocks: list[ExternalBusyBlock] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_staff_timezone(self):
        if (self.availability or self.availability_overrides) and self.staff_timezone is None:
            raise ValueError("staff_timezone is required when availability is provided")
        return self

"""Enum definitions for calendar records."""

from enum import Enum


class AppointmentStatus(str, Enum):
    """Lifecycle status of an appointment or generated occurrence."""
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ExceptionChangeType(str, Enum):
    """How a series exception overrides its original occurrence."""
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"


class EndConditionKind(str, Enum):
    """When a recurring series stops generating occurrences."""
    NONE = "none"
    AFTER_DATE = "after_date"
    AFTER_COUNT = "after_count"


class BusySourceKind(str, Enum):
    """
    Origin of a busy block.

    Declaration order is the render precedence used to break ties when
    blocks start at the same instant: appointment > manual_block > external_sync.
    """
    APPOINTMENT = "appointment"
    MANUAL_BLOCK = "manual_block"
    EXTERNAL_SYNC = "external_sync"

    @property
    def precedence(self) -> int:
        return list(BusySourceKind).index(self)

    @property
    def is_mutable(self) -> bool:
        """Staff can edit/delete appointments and manual blocks, never synced blocks."""
        return self is not BusySourceKind.EXTERNAL_SYNC

"""Engine error types.

Policy per error kind:
- InvalidTimezoneError: fatal for the whole request, never falls back
- UnparseableRecurrenceRuleError: the affected series is skipped and reported
- OverlappingAvailabilityWindowError: raised when a template is written
- ImmutableBlockError: edit/delete attempted on an externally synced block
- CalendarSyncError: the external calendar could not be read
"""


class CalendarEngineError(Exception):
    """Base exception for calendar engine errors."""

    pass


class InvalidTimezoneError(CalendarEngineError, ValueError):
    """Timezone is not a known IANA identifier."""

    def __init__(self, timezone: object):
        self.timezone = timezone
        super().__init__(f"Unknown timezone: {timezone!r}")


class UnparseableRecurrenceRuleError(CalendarEngineError, ValueError):
    """Recurrence rule does not follow the supported RRULE grammar."""

    def __init__(self, rule: object, reason: str):
        self.rule = rule
        self.reason = reason
        super().__init__(f"Unparseable recurrence rule {rule!r}: {reason}")


class OverlappingAvailabilityWindowError(CalendarEngineError):
    """Two availability windows on the same weekday overlap."""

    pass


class ImmutableBlockError(CalendarEngineError):
    """Block mirrors a third-party calendar and cannot be edited or deleted."""

    pass


class CalendarSyncError(CalendarEngineError):
    """External calendar busy periods could not be fetched."""

    pass

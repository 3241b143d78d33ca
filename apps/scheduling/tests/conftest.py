"""
Test configuration and fixtures.

Provides:
- anyio backend pinned to asyncio
- Sample recurring series and query windows
"""
from datetime import datetime, timezone

import pytest

from calendar_engine.schemas import AppointmentOccurrence, RecurringSeries


# =============================================================================
# Configuration
# =============================================================================

@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


# =============================================================================
# Sample Data
# =============================================================================

def utc(*args: int) -> datetime:
    """Shorthand for an aware UTC datetime."""
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def weekly_tuesday_series() -> RecurringSeries:
    """Weekly Tuesday 2:00 PM New York appointment, first held 2024-01-02."""
    return RecurringSeries(
        id="series-tue",
        anchor_start=utc(2024, 1, 2, 19, 0),
        duration_minutes=60,
        recurrence_rule="FREQ=WEEKLY;BYDAY=TU",
        timezone="America/New_York",
        metadata={"label": "Weekly check-in"},
    )


@pytest.fixture
def march_window() -> tuple[datetime, datetime]:
    return utc(2024, 3, 1), utc(2024, 4, 1)


@pytest.fixture
def make_appointment():
    def _make(appointment_id: str, start: datetime, end: datetime, **kwargs) -> AppointmentOccurrence:
        return AppointmentOccurrence(id=appointment_id, start=start, end=end, **kwargs)

    return _make

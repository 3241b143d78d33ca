"""Calendar sync service - busy periods from connected Google calendars.

Handles:
- Freebusy queries against the Google Calendar API
- Converting freebusy payloads into read-only external busy blocks

Note: Requires the calendar.readonly scope. Token refresh is the caller's job.
"""

import hashlib
import logging
from datetime import datetime
from typing import Any

import httpx

from calendar_engine.core.config import settings
from calendar_engine.core.constants import GOOGLE_BLOCK_SOURCE
from calendar_engine.core.errors import CalendarSyncError
from calendar_engine.schemas.calendar import ExternalBusyBlock
from calendar_engine.utils.time_projection import ensure_utc

logger = logging.getLogger(__name__)


# =============================================================================
# Payload Parsing
# =============================================================================

def _parse_instant(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def external_block_id(calendar_id: str, start: datetime, end: datetime) -> str:
    """Deterministic id so repeated syncs of the same period yield the same block."""
    raw = f"{calendar_id}|{ensure_utc(start).isoformat()}|{ensure_utc(end).isoformat()}"
    return f"{GOOGLE_BLOCK_SOURCE}:{hashlib.sha256(raw.encode()).hexdigest()[:16]}"


def parse_freebusy_payload(payload: dict[str, Any], calendar_id: str) -> list[ExternalBusyBlock]:
    """
    Convert a freeBusy response body into external busy blocks.

    Raises:
        CalendarSyncError: If Google reports errors for the calendar or a
            busy entry is malformed.
    """
    calendar_data = payload.get("calendars", {}).get(calendar_id, {})
    errors = calendar_data.get("errors") or []
    if errors:
        reasons = ", ".join(str(e.get("reason", "unknown")) for e in errors)
        raise CalendarSyncError(f"Google reported errors for calendar: {reasons}")

    blocks: list[ExternalBusyBlock] = []
    for entry in calendar_data.get("busy", []):
        try:
            start = _parse_instant(entry["start"])
            end = _parse_instant(entry["end"])
        except (KeyError, TypeError, ValueError) as e:
            raise CalendarSyncError(f"Malformed busy entry: {entry!r}") from e
        if end <= start:
            # Zero-length periods carry no busy time
            continue
        blocks.append(
            ExternalBusyBlock(
                id=external_block_id(calendar_id, start, end),
                start=start,
                end=end,
                source=GOOGLE_BLOCK_SOURCE,
            )
        )
    blocks.sort(key=lambda b: (b.start, b.id))
    return blocks


# =============================================================================
# Freebusy Queries
# =============================================================================

async def _post_freebusy(
    client: httpx.AsyncClient,
    access_token: str,
    calendar_id: str,
    time_min: datetime,
    time_max: datetime,
) -> httpx.Response:
    return await client.post(
        settings.GOOGLE_FREEBUSY_URL,
        headers={
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        },
        json={
            "timeMin": ensure_utc(time_min).isoformat(),
            "timeMax": ensure_utc(time_max).isoformat(),
            "items": [{"id": calendar_id}],
        },
        timeout=settings.GOOGLE_REQUEST_TIMEOUT_SECONDS,
    )


async def get_google_busy_blocks(
    access_token: str,
    calendar_id: str,
    time_min: datetime,
    time_max: datetime,
    client: httpx.AsyncClient | None = None,
) -> list[ExternalBusyBlock]:
    """
    Get busy periods from Google Calendar as external busy blocks.

    Uses the freebusy API. Pass ``client`` to reuse a connection pool.

    Raises:
        CalendarSyncError: On transport errors, non-200 responses, or
            per-calendar errors in the response.
    """
    try:
        if client is None:
            async with httpx.AsyncClient() as owned_client:
                response = await _post_freebusy(owned_client, access_token, calendar_id, time_min, time_max)
        else:
            response = await _post_freebusy(client, access_token, calendar_id, time_min, time_max)
    except httpx.HTTPError as e:
        logger.warning("Google freebusy request failed: %s", type(e).__name__)
        raise CalendarSyncError("Google freebusy request failed") from e

    if response.status_code != 200:
        logger.warning("Google freebusy returned HTTP %s", response.status_code)
        raise CalendarSyncError(f"Google freebusy returned HTTP {response.status_code}")

    try:
        data = response.json()
    except ValueError as e:
        raise CalendarSyncError("Google freebusy returned invalid JSON") from e

    return parse_freebusy_payload(data, calendar_id)

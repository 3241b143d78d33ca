"""Busy-block service - unify appointments and calendar blocks for rendering.

Handles:
- Tagging occurrences, manual blocks and synced blocks with their origin
- Ordering with source precedence (appointment > manual_block > external_sync)
- Conflict detection between overlapping blocks
- Guarding synced blocks against edits
- Converting staff wall-clock input into manual blocks
"""

import logging
from datetime import date, datetime, time
from typing import Iterable

from calendar_engine.core.constants import DEFAULT_APPOINTMENT_LABEL
from calendar_engine.core.errors import ImmutableBlockError
from calendar_engine.schemas.calendar import (
    AppointmentOccurrence,
    BlockConflict,
    BusyBlock,
    ExternalBusyBlock,
    ManualBlock,
)
from calendar_engine.schemas.enums import AppointmentStatus, BusySourceKind
from calendar_engine.utils.time_projection import CivilTime, to_instant

logger = logging.getLogger(__name__)


# =============================================================================
# Merge
# =============================================================================

def _appointment_label(occurrence: AppointmentOccurrence) -> str:
    for key in ("label", "title", "appointment_type"):
        value = occurrence.metadata.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return DEFAULT_APPOINTMENT_LABEL


def block_sort_key(block: BusyBlock) -> tuple:
    """Start, then source precedence, then id."""
    return (block.start, block.source_kind.precedence, block.id)


def merge(
    occurrences: Iterable[AppointmentOccurrence],
    manual_blocks: Iterable[ManualBlock],
    external_blocks: Iterable[ExternalBusyBlock],
) -> list[BusyBlock]:
    """
    Combine all busy sources into one ordered list.

    Overlapping blocks are all kept; nothing is collapsed or dropped.
    """
    blocks: list[BusyBlock] = []
    for occurrence in occurrences:
        blocks.append(
            BusyBlock(
                id=occurrence.id,
                start=occurrence.start,
                end=occurrence.end,
                source_kind=BusySourceKind.APPOINTMENT,
                mutable=BusySourceKind.APPOINTMENT.is_mutable,
                label=_appointment_label(occurrence),
                series_id=occurrence.series_id,
                status=occurrence.status,
            )
        )
    for manual in manual_blocks:
        blocks.append(
            BusyBlock(
                id=manual.id,
                start=manual.start,
                end=manual.end,
                source_kind=BusySourceKind.MANUAL_BLOCK,
                mutable=BusySourceKind.MANUAL_BLOCK.is_mutable,
                label=manual.summary,
            )
        )
    for external in external_blocks:
        blocks.append(
            BusyBlock(
                id=external.id,
                start=external.start,
                end=external.end,
                source_kind=BusySourceKind.EXTERNAL_SYNC,
                mutable=BusySourceKind.EXTERNAL_SYNC.is_mutable,
                label=external.summary,
            )
        )
    blocks.sort(key=block_sort_key)
    return blocks


def ensure_mutable(block: BusyBlock) -> BusyBlock:
    """
    Check that a block may be edited or deleted.

    Raises:
        ImmutableBlockError: If the block mirrors an external calendar.
    """
    if not block.mutable or not block.source_kind.is_mutable:
        raise ImmutableBlockError(
            f"Block {block.key} is synced from an external calendar and cannot be modified"
        )
    return block


# =============================================================================
# Conflicts
# =============================================================================

def find_conflicts(blocks: Iterable[BusyBlock]) -> list[BlockConflict]:
    """
    Find every pair of overlapping blocks.

    Cancelled appointments do not occupy time and are ignored. Touching
    blocks (one ends when the next starts) do not conflict.
    """
    active = sorted(
        (b for b in blocks if b.status != AppointmentStatus.CANCELLED),
        key=block_sort_key,
    )
    conflicts: list[BlockConflict] = []
    for i, block in enumerate(active):
        for other in active[i + 1:]:
            if other.start >= block.end:
                break
            conflicts.append(
                BlockConflict(
                    first=block.key,
                    second=other.key,
                    start=max(block.start, other.start),
                    end=min(block.end, other.end),
                )
            )
    if conflicts:
        logger.debug("Found %d overlapping block pairs", len(conflicts))
    return conflicts


# =============================================================================
# Manual Blocks
# =============================================================================

def create_manual_block(
    block_id: str,
    on_date: date,
    start_time: time,
    end_time: time,
    timezone: str,
    summary: str = "",
) -> ManualBlock:
    """
    Build a manual block from wall-clock input in the staff member's timezone.

    Raises:
        InvalidTimezoneError: If the timezone is unknown.
        ValueError: If the end is not after the start.
    """
    if end_time <= start_time:
        raise ValueError("End time must be after start time")
    start = to_instant(CivilTime.combine(on_date, start_time), timezone)
    end = to_instant(CivilTime.combine(on_date, end_time), timezone)
    if end <= start:
        # Both ends fell into the same spring-forward gap
        raise ValueError("Block does not cover any time on this date")
    return ManualBlock(id=block_id, start=start, end=end, summary=summary)

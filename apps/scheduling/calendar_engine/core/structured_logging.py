"""Structured logging helpers (PHI-safe)."""

from datetime import datetime
from typing import Any


def build_log_context(
    *,
    staff_id: str | None = None,
    series_id: str | None = None,
    viewer_timezone: str | None = None,
    window_start: datetime | None = None,
    window_end: datetime | None = None,
) -> dict[str, Any]:
    """Return a PHI-safe log context dict.

    Only identifiers and window bounds are included; labels and metadata
    (client names, service names) never are.
    """
    context: dict[str, Any] = {}
    if staff_id:
        context["staff_id"] = staff_id
    if series_id:
        context["series_id"] = series_id
    if viewer_timezone:
        context["viewer_timezone"] = viewer_timezone
    if window_start:
        context["window_start"] = window_start.isoformat()
    if window_end:
        context["window_end"] = window_end.isoformat()
    return context

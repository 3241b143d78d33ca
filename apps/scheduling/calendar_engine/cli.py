"""CLI tools for inspecting calendar projections."""

import json
import logging
from datetime import datetime
from pathlib import Path

import click
from pydantic import ValidationError

from calendar_engine.core.config import settings
from calendar_engine.core.errors import CalendarEngineError
from calendar_engine.schemas.calendar import CalendarSources, RecurringSeries
from calendar_engine.services.calendar_view_service import build_calendar_view
from calendar_engine.services.recurrence_service import preview_occurrences
from calendar_engine.services.working_hours_service import (
    WorkingHoursPreference,
    load_working_hours,
    on_working_hours_change,
)
from calendar_engine.utils.time_projection import to_civil


def _parse_instant(ctx, param, value: str | None) -> datetime | None:
    if value is None:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise click.BadParameter(f"not an ISO 8601 instant: {value}")
    if parsed.tzinfo is None:
        raise click.BadParameter("instant must include a UTC offset (e.g. 2024-03-01T00:00Z)")
    return parsed


@click.group()
def cli():
    """Calendar engine CLI tools."""
    logging.basicConfig(level=settings.log_level_name)


@cli.command("render-view")
@click.argument("fixture", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--timezone", "viewer_timezone", required=True, help="Viewer IANA timezone")
@click.option("--start", "window_start", required=True, callback=_parse_instant, help="Window start (ISO 8601 with offset)")
@click.option("--end", "window_end", required=True, callback=_parse_instant, help="Window end (ISO 8601 with offset)")
@click.option("--now", callback=_parse_instant, default=None, help="Instant for the now marker (default: current time)")
@click.option("--start-hour", type=int, default=None, help="Working hours start (local hour)")
@click.option("--end-hour", type=int, default=None, help="Working hours end (local hour)")
@click.option("--include-cancelled", is_flag=True, help="Keep cancelled appointments in the view")
def render_view(
    fixture: Path,
    viewer_timezone: str,
    window_start: datetime,
    window_end: datetime,
    now: datetime | None,
    start_hour: int | None,
    end_hour: int | None,
    include_cancelled: bool,
):
    """
    Build a calendar view from a JSON fixture and print it as JSON.

    The fixture holds the calendar sources (series, exceptions, appointments,
    availability, staff_timezone, manual_blocks, external_blocks) plus an
    optional staff_id and stored working_hours ({"start": 7, "end": 21}).

    Example:
        calendar-engine render-view week.json --timezone America/Los_Angeles \\
            --start 2024-03-04T08:00Z --end 2024-03-11T07:00Z
    """
    try:
        data = json.loads(fixture.read_text())
        if not isinstance(data, dict):
            raise ValueError("fixture must be a JSON object")
        sources = CalendarSources.model_validate(
            {k: v for k, v in data.items() if k not in ("staff_id", "working_hours")}
        )
    except (ValueError, ValidationError) as e:
        click.echo(f"❌ Invalid fixture: {e}", err=True)
        raise SystemExit(1)

    hours: WorkingHoursPreference = load_working_hours(data.get("working_hours"))
    hours = on_working_hours_change(hours, start=start_hour)
    hours = on_working_hours_change(hours, end=end_hour)

    try:
        view = build_calendar_view(
            str(data.get("staff_id", "staff")),
            viewer_timezone,
            window_start,
            window_end,
            hours,
            sources=sources,
            now=now,
            include_cancelled=include_cancelled,
        )
    except (CalendarEngineError, ValueError) as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise SystemExit(1)

    click.echo(json.dumps(view.model_dump(mode="json"), indent=2))


@cli.command("preview-rule")
@click.argument("rule")
@click.option("--anchor", required=True, callback=_parse_instant, help="First occurrence (ISO 8601 with offset)")
@click.option("--timezone", "series_timezone", required=True, help="Series IANA timezone")
@click.option("--count", default=5, show_default=True, help="Number of occurrences to show")
def preview_rule(rule: str, anchor: datetime, series_timezone: str, count: int):
    """
    Show the next occurrences of a recurrence rule in local time.

    Example:
        calendar-engine preview-rule "FREQ=WEEKLY;BYDAY=TU" \\
            --anchor 2024-01-02T19:00Z --timezone America/New_York
    """
    try:
        series = RecurringSeries(
            id="preview",
            anchor_start=anchor,
            duration_minutes=60,
            recurrence_rule=rule,
            timezone=series_timezone,
        )
        starts = preview_occurrences(series, limit=count)
    except (CalendarEngineError, ValidationError, ValueError) as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise SystemExit(1)

    for start in starts:
        click.echo(f"{to_civil(start, series_timezone).isoformat()}  ({start.isoformat()})")


if __name__ == "__main__":
    cli()

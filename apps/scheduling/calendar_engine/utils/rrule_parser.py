"""iCalendar RRULE parsing and building.

Supported grammar: FREQ (DAILY, WEEKLY, MONTHLY, YEARLY), INTERVAL, BYDAY
(with optional signed ordinal such as 2TU or -1FR), BYMONTHDAY, BYSETPOS,
UNTIL (date or UTC date-time), COUNT and WKST. An optional "RRULE:" prefix is
accepted. Anything else is rejected rather than silently ignored.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Iterable

from dateutil import rrule as du

from calendar_engine.core.errors import UnparseableRecurrenceRuleError

FREQUENCIES = {
    "DAILY": du.DAILY,
    "WEEKLY": du.WEEKLY,
    "MONTHLY": du.MONTHLY,
    "YEARLY": du.YEARLY,
}

# iCalendar weekday codes, Monday first (dateutil / Python weekday order)
WEEKDAY_CODES = ("MO", "TU", "WE", "TH", "FR", "SA", "SU")

SUPPORTED_KEYS = {"FREQ", "INTERVAL", "BYDAY", "BYMONTHDAY", "BYSETPOS", "UNTIL", "COUNT", "WKST"}

_BYDAY_PATTERN = re.compile(r"^([+-]?\d{1,2})?(MO|TU|WE|TH|FR|SA|SU)$")
_UNTIL_DATETIME_PATTERN = re.compile(r"^\d{8}T\d{6}Z$")
_UNTIL_DATE_PATTERN = re.compile(r"^\d{8}$")


@dataclass(frozen=True)
class WeekdaySpec:
    """A BYDAY entry: weekday (0=Monday) with an optional ordinal."""
    weekday: int
    ordinal: int | None = None

    def to_string(self) -> str:
        prefix = str(self.ordinal) if self.ordinal is not None else ""
        return f"{prefix}{WEEKDAY_CODES[self.weekday]}"

    def to_dateutil(self) -> du.weekday:
        day = du.weekdays[self.weekday]
        return day(self.ordinal) if self.ordinal is not None else day


@dataclass(frozen=True)
class RecurrenceRule:
    """Parsed recurrence rule."""
    freq: str
    interval: int = 1
    by_day: tuple[WeekdaySpec, ...] = ()
    by_month_day: tuple[int, ...] = ()
    by_set_pos: tuple[int, ...] = ()
    until: datetime | None = None  # UTC instant, inclusive
    until_date: date | None = None  # Date-only UNTIL, inclusive local day
    count: int | None = None
    week_start: int | None = None

    def to_string(self) -> str:
        """Render the canonical RRULE body (without the RRULE: prefix)."""
        parts = [f"FREQ={self.freq}", f"INTERVAL={self.interval}"]
        if self.by_day:
            parts.append("BYDAY=" + ",".join(d.to_string() for d in self.by_day))
        if self.by_month_day:
            parts.append("BYMONTHDAY=" + ",".join(str(d) for d in self.by_month_day))
        if self.by_set_pos:
            parts.append("BYSETPOS=" + ",".join(str(p) for p in self.by_set_pos))
        if self.until is not None:
            parts.append(f"UNTIL={self.until.astimezone(timezone.utc):%Y%m%dT%H%M%SZ}")
        elif self.until_date is not None:
            parts.append(f"UNTIL={self.until_date:%Y%m%d}")
        if self.count is not None:
            parts.append(f"COUNT={self.count}")
        if self.week_start is not None:
            parts.append(f"WKST={WEEKDAY_CODES[self.week_start]}")
        return ";".join(parts)

    def dateutil_kwargs(self) -> dict:
        """Keyword arguments for dateutil.rrule.rrule, excluding bounds."""
        kwargs: dict = {"interval": self.interval}
        if self.by_day:
            kwargs["byweekday"] = [d.to_dateutil() for d in self.by_day]
        if self.by_month_day:
            kwargs["bymonthday"] = list(self.by_month_day)
        if self.by_set_pos:
            kwargs["bysetpos"] = list(self.by_set_pos)
        if self.week_start is not None:
            kwargs["wkst"] = self.week_start
        return kwargs


def _parse_int(rule: str, key: str, raw: str, *, minimum: int | None = None) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise UnparseableRecurrenceRuleError(rule, f"{key} must be an integer, got {raw!r}") from None
    if minimum is not None and value < minimum:
        raise UnparseableRecurrenceRuleError(rule, f"{key} must be >= {minimum}, got {value}")
    return value


def _parse_int_list(rule: str, key: str, raw: str, limit: int) -> tuple[int, ...]:
    values = []
    for item in raw.split(","):
        value = _parse_int(rule, key, item.strip())
        if value == 0 or abs(value) > limit:
            raise UnparseableRecurrenceRuleError(rule, f"{key} value out of range: {value}")
        values.append(value)
    return tuple(values)


def _parse_by_day(rule: str, raw: str) -> tuple[WeekdaySpec, ...]:
    specs = []
    for item in raw.split(","):
        match = _BYDAY_PATTERN.match(item.strip().upper())
        if not match:
            raise UnparseableRecurrenceRuleError(rule, f"Invalid BYDAY entry: {item!r}")
        ordinal_raw, code = match.groups()
        ordinal = int(ordinal_raw) if ordinal_raw else None
        if ordinal is not None and (ordinal == 0 or abs(ordinal) > 53):
            raise UnparseableRecurrenceRuleError(rule, f"Invalid BYDAY ordinal: {item!r}")
        specs.append(WeekdaySpec(weekday=WEEKDAY_CODES.index(code), ordinal=ordinal))
    return tuple(specs)


def _parse_until(rule: str, raw: str) -> tuple[datetime | None, date | None]:
    value = raw.strip().upper()
    try:
        if _UNTIL_DATETIME_PATTERN.match(value):
            parsed = datetime.strptime(value, "%Y%m%dT%H%M%SZ")
            return parsed.replace(tzinfo=timezone.utc), None
        if _UNTIL_DATE_PATTERN.match(value):
            return None, datetime.strptime(value, "%Y%m%d").date()
    except ValueError:
        pass
    raise UnparseableRecurrenceRuleError(rule, f"Invalid UNTIL value: {raw!r}")


def parse_rule(text: str) -> RecurrenceRule:
    """
    Parse an RRULE string.

    Raises:
        UnparseableRecurrenceRuleError: On any grammar violation, unknown key,
            missing FREQ, or when both COUNT and UNTIL are present.
    """
    if not isinstance(text, str) or not text.strip():
        raise UnparseableRecurrenceRuleError(text, "Rule is empty")

    body = text.strip()
    if body.upper().startswith("RRULE:"):
        body = body[len("RRULE:"):]

    components: dict[str, str] = {}
    for part in body.split(";"):
        if not part.strip():
            continue
        key, sep, value = part.partition("=")
        key = key.strip().upper()
        if not sep or not value.strip():
            raise UnparseableRecurrenceRuleError(text, f"Malformed component: {part!r}")
        if key not in SUPPORTED_KEYS:
            raise UnparseableRecurrenceRuleError(text, f"Unsupported component: {key}")
        if key in components:
            raise UnparseableRecurrenceRuleError(text, f"Duplicate component: {key}")
        components[key] = value.strip()

    freq = components.get("FREQ", "").upper()
    if not freq:
        raise UnparseableRecurrenceRuleError(text, "FREQ is required")
    if freq not in FREQUENCIES:
        raise UnparseableRecurrenceRuleError(text, f"Unsupported FREQ: {freq}")
    if "COUNT" in components and "UNTIL" in components:
        raise UnparseableRecurrenceRuleError(text, "COUNT and UNTIL are mutually exclusive")

    by_day = _parse_by_day(text, components["BYDAY"]) if "BYDAY" in components else ()
    if freq in ("DAILY", "WEEKLY") and any(d.ordinal is not None for d in by_day):
        raise UnparseableRecurrenceRuleError(text, f"BYDAY ordinals are not allowed with FREQ={freq}")

    until, until_date = (None, None)
    if "UNTIL" in components:
        until, until_date = _parse_until(text, components["UNTIL"])

    week_start = None
    if "WKST" in components:
        code = components["WKST"].upper()
        if code not in WEEKDAY_CODES:
            raise UnparseableRecurrenceRuleError(text, f"Invalid WKST: {code!r}")
        week_start = WEEKDAY_CODES.index(code)

    return RecurrenceRule(
        freq=freq,
        interval=_parse_int(text, "INTERVAL", components["INTERVAL"], minimum=1)
        if "INTERVAL" in components else 1,
        by_day=by_day,
        by_month_day=_parse_int_list(text, "BYMONTHDAY", components["BYMONTHDAY"], 31)
        if "BYMONTHDAY" in components else (),
        by_set_pos=_parse_int_list(text, "BYSETPOS", components["BYSETPOS"], 366)
        if "BYSETPOS" in components else (),
        until=until,
        until_date=until_date,
        count=_parse_int(text, "COUNT", components["COUNT"], minimum=1)
        if "COUNT" in components else None,
        week_start=week_start,
    )


def build_rule(
    freq: str = "WEEKLY",
    interval: int = 1,
    weekdays: Iterable[int] = (),
    month_day: int | None = None,
    set_position: int | None = None,
    until: datetime | None = None,
    count: int | None = None,
) -> str:
    """
    Build an RRULE string from form-style choices.

    Weekly rules repeat on ``weekdays`` (0=Monday). Monthly rules either repeat
    on ``month_day`` or, with ``set_position``, on the nth (or last, -1)
    occurrence of the single weekday given in ``weekdays``.
    """
    freq = freq.upper()
    days = tuple(sorted(set(weekdays)))
    by_day: tuple[WeekdaySpec, ...] = ()
    by_month_day: tuple[int, ...] = ()
    by_set_pos: tuple[int, ...] = ()

    if freq == "WEEKLY":
        by_day = tuple(WeekdaySpec(d) for d in days)
    elif freq == "MONTHLY":
        if set_position is not None:
            if len(days) != 1:
                raise ValueError("Monthly nth-weekday rules need exactly one weekday")
            by_day = (WeekdaySpec(days[0]),)
            by_set_pos = (set_position,)
        elif month_day is not None:
            by_month_day = (month_day,)

    rule = RecurrenceRule(
        freq=freq,
        interval=interval,
        by_day=by_day,
        by_month_day=by_month_day,
        by_set_pos=by_set_pos,
        until=until.astimezone(timezone.utc) if until is not None else None,
        count=count,
    )
    text = rule.to_string()
    # Round-trip through the parser so callers only ever persist valid rules
    parse_rule(text)
    return text

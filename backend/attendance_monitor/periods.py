from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

MONTH_NAMES = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)
WEEKDAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")

FIRST_HALF_START_DAY = 11
FIRST_HALF_END_DAY = 25
SECOND_HALF_START_DAY = 26
SECOND_HALF_END_DAY = 10

_ISO_DATE_PREFIX_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})(?:$|[T ])")


class InvalidDateInput(ValueError):
    pass


@dataclass(frozen=True)
class DateRange:
    from_date: str | None = None
    to_date: str | None = None

    @property
    def is_unbounded(self) -> bool:
        return not self.from_date and not self.to_date

    def as_payload(self) -> dict[str, str | None]:
        return {"fromDate": self.from_date, "toDate": self.to_date}


def parse_calendar_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if value is None:
        raise InvalidDateInput("date is required")

    text = str(value).strip()
    match = _ISO_DATE_PREFIX_RE.match(text)
    if not match:
        raise InvalidDateInput(f"Invalid Date: {text!r}")

    year, month, day = (int(part) for part in match.groups())
    try:
        return date(year, month, day)
    except ValueError as exc:
        raise InvalidDateInput(f"Invalid Date: {text!r}") from exc


def to_iso(value: date) -> str:
    return f"{value.year:04d}-{value.month:02d}-{value.day:02d}"


def _shift_month(year: int, month: int, offset: int) -> tuple[int, int]:
    index = (year * 12 + (month - 1)) + offset
    return index // 12, (index % 12) + 1


def default_period(reference_date: date | datetime | None = None) -> DateRange:
    """Return the cut-off window that contains ``reference_date``.

    Days 11-25 map to the same month's 11th-25th; days from the 26th map to
    the 26th through the 10th of the next month; days up to the 10th map to
    the previous month's 26th through this month's 10th.
    """
    reference = parse_calendar_date(reference_date if reference_date is not None else date.today())
    year, month, day = reference.year, reference.month, reference.day

    if FIRST_HALF_START_DAY <= day <= FIRST_HALF_END_DAY:
        start = date(year, month, FIRST_HALF_START_DAY)
        end = date(year, month, FIRST_HALF_END_DAY)
    elif day >= SECOND_HALF_START_DAY:
        next_year, next_month = _shift_month(year, month, 1)
        start = date(year, month, SECOND_HALF_START_DAY)
        end = date(next_year, next_month, SECOND_HALF_END_DAY)
    else:
        prev_year, prev_month = _shift_month(year, month, -1)
        start = date(prev_year, prev_month, SECOND_HALF_START_DAY)
        end = date(year, month, SECOND_HALF_END_DAY)

    return DateRange(from_date=to_iso(start), to_date=to_iso(end))


def resolve_range(
    from_date: Any = None,
    to_date: Any = None,
    *,
    reference_date: date | datetime | None = None,
) -> DateRange:
    if not from_date and not to_date:
        return default_period(reference_date)

    start = parse_calendar_date(from_date) if from_date else None
    end = parse_calendar_date(to_date) if to_date else None
    if start and end and start > end:
        raise InvalidDateInput("from_date must be on or before to_date")

    return DateRange(
        from_date=to_iso(start) if start else None,
        to_date=to_iso(end) if end else None,
    )


def format_date_for_display(value: Any) -> str:
    parsed = parse_calendar_date(value)
    return f"{MONTH_NAMES[parsed.month - 1]} {parsed.day}, {parsed.year}"


def format_long_day(value: Any) -> str:
    parsed = parse_calendar_date(value)
    return f"{WEEKDAY_NAMES[parsed.weekday()]}, {format_date_for_display(parsed)}"


def format_range(from_value: Any, to_value: Any) -> str:
    """Render ``from`` and ``to`` as ``"March 11, 2025 - March 25, 2025"``.

    Raises ``InvalidDateInput`` for values that are not calendar dates.
    """
    return f"{format_date_for_display(from_value)} - {format_date_for_display(to_value)}"


def is_sunday(value: Any) -> bool:
    return parse_calendar_date(value).weekday() == 6


def is_saturday(value: Any) -> bool:
    return parse_calendar_date(value).weekday() == 5

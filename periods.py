from dataclasses import dataclass
from datetime import date
from errors import ValidationError


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


def month_end(year: int, month: int) -> date:
    if month == 12:
        return date(year + 1, 1, 1) - date.resolution
    return date(year, month + 1, 1) - date.resolution


def _clamped(year: int, month: int, day: int) -> date:
    return date(year, month, min(day, month_end(year, month).day))


def _check_month(year: int, month: int) -> None:
    if not 1 <= month <= 12:
        raise ValidationError("Month must be between 1 and 12")
    if not 1970 <= year <= 3000:
        raise ValidationError("Year out of range")


def month_period(year: int, month: int) -> Period:
    _check_month(year, month)
    return Period("month", date(year, month, 1), month_end(year, month))


def resolve_cycle(year: int, month: int, cycle_start_day: int) -> Period:
    """Accounting cycle labelled (year, month) for the given start day.

    With a start day of 1 this is the calendar month. Otherwise the cycle
    runs from the start day of the previous month to the day before the
    start day in the labelled month, e.g. start day 25 and January 2026
    gives 2025-12-25..2026-01-24. Either bound that does not exist in its
    month (start day 31 in April, or day 29 in a non-leap February) falls
    on that month's last day.
    """
    _check_month(year, month)
    if not 1 <= cycle_start_day <= 31:
        raise ValidationError("Cycle start day must be between 1 and 31")
    if cycle_start_day == 1:
        period = month_period(year, month)
        return Period("cycle", period.start, period.end)

    prev_month = 12 if month == 1 else month - 1
    prev_year = year - 1 if month == 1 else year
    start = _clamped(prev_year, prev_month, cycle_start_day)
    end = _clamped(year, month, cycle_start_day - 1)
    return Period("cycle", start, end)


def current_cycle(today: date, cycle_start_day: int) -> tuple[int, int]:
    """(year, month) label of the cycle that contains ``today``."""
    if cycle_start_day == 1:
        return today.year, today.month
    year, month = today.year, today.month
    if today > resolve_cycle(year, month, cycle_start_day).end:
        if month == 12:
            return year + 1, 1
        return year, month + 1
    return year, month


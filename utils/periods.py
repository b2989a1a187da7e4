"""
Date helpers for billing periods (YYYY-MM) and closed date windows.
"""
import calendar
from datetime import date, timedelta
from typing import Iterator, Tuple


def parse_period(period: str) -> Tuple[int, int]:
    """
    Parse a YYYY-MM period label into (year, month).

    Raises ValueError for malformed labels or months outside 1-12.
    """
    try:
        year_str, month_str = period.split("-")
        year, month = int(year_str), int(month_str)
    except (AttributeError, ValueError):
        raise ValueError(f"Invalid period {period!r}, expected YYYY-MM")
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid period {period!r}, month out of range")
    return year, month


def period_of(day: date) -> str:
    """Period label containing the given date."""
    return f"{day.year:04d}-{day.month:02d}"


def period_bounds(period: str) -> Tuple[date, date]:
    """First and last calendar day of a YYYY-MM period."""
    year, month = parse_period(period)
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def previous_period(period: str) -> str:
    """The period immediately before the given one (2026-01 -> 2025-12)."""
    year, month = parse_period(period)
    if month == 1:
        return f"{year - 1:04d}-12"
    return f"{year:04d}-{month - 1:02d}"


def iter_dates(start: date, end: date) -> Iterator[date]:
    """Every date in [start, end], inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def is_sunday(day: date) -> bool:
    return day.weekday() == 6

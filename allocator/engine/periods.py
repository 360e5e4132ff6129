"""
Calendar month handling.
Months travel as 'YYYY-MM' strings and are stored as the first day of the month.
"""

import calendar
import re
from datetime import date
from typing import Iterable

from allocator.engine.errors import ValidationError

MONTH_PATTERN = re.compile(r"^(\d{4})-(\d{2})$")


def parse_month(month: str) -> tuple[date, date]:
    """
    Parse 'YYYY-MM' into (first_day, last_day), both inclusive.
    Raises ValidationError for anything else.
    """
    m = MONTH_PATTERN.match(month.strip()) if isinstance(month, str) else None
    if not m:
        raise ValidationError(f"Malformed month {month!r}, expected YYYY-MM", "ERR_INVALID_MONTH")

    year, month_num = int(m.group(1)), int(m.group(2))
    if not 1 <= month_num <= 12 or year < 1900:
        raise ValidationError(f"Month out of range: {month!r}", "ERR_INVALID_MONTH")

    last_day = calendar.monthrange(year, month_num)[1]
    return date(year, month_num, 1), date(year, month_num, last_day)


def month_key(day: date) -> str:
    """date -> 'YYYY-MM'."""
    return f"{day.year:04d}-{day.month:02d}"


def unique_months(days: Iterable[date]) -> list[str]:
    """Sorted distinct 'YYYY-MM' keys for the given dates."""
    return sorted({month_key(d) for d in days if d is not None})

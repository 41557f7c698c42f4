"""
Money and calendar helpers.

Amounts are ``Decimal`` quantised to cents.  Calendar helpers work on
naive ``date`` values; callers derive "today" from the injected clock.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime, time
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)

Amount = Union[Decimal, int, float, str]


def money(value: Optional[Amount]) -> Decimal:
    """Quantise *value* to cents.  ``None`` counts as zero."""
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min)


def end_of_day(day: date) -> datetime:
    return datetime.combine(day, time.max)


def month_bounds(day: date) -> tuple[date, date]:
    """First and last calendar day of *day*'s month."""
    last = calendar.monthrange(day.year, day.month)[1]
    return day.replace(day=1), day.replace(day=last)


def shift_month(day: date, months: int) -> date:
    """Move *day* by whole months, clamping to the target month's length."""
    index = day.year * 12 + (day.month - 1) + months
    year, month = divmod(index, 12)
    return clamped_date(year, month + 1, day.day)


def clamped_date(year: int, month: int, day: int) -> date:
    """``date(year, month, day)`` with *day* clamped to the month's length."""
    last = calendar.monthrange(year, month)[1]
    return date(year, month, min(day, last))


def month_label(day: date) -> str:
    return f"{MONTH_NAMES[day.month - 1]} {day.year}"

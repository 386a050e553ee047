"""Month-granularity date helpers for effective windows.

Rate tables are effective for whole calendar months, so every comparison
on an effective window is made on the first day of the month.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime


def floor_to_month(value: date | datetime) -> date:
    """First day of the month containing ``value``."""
    return date(value.year, value.month, 1)


def month_before(value: date) -> date:
    """Last day of the month preceding ``value``'s month."""
    year, month = (value.year - 1, 12) if value.month == 1 else (value.year, value.month - 1)
    return date(year, month, calendar.monthrange(year, month)[1])


def month_after(value: date) -> date:
    """First day of the month following ``value``'s month."""
    if value.month == 12:
        return date(value.year + 1, 1, 1)
    return date(value.year, value.month + 1, 1)


def month_label(value: date | None) -> str | None:
    """``YYYY-MM`` label for messages, or None for an open end."""
    if value is None:
        return None
    return f"{value.year:04d}-{value.month:02d}"

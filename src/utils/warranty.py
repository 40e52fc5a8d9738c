"""
Warranty date derivation.

A registration starts on the first day of the purchase month and stays
valid for a fixed number of months.
"""

import calendar
from datetime import date
from typing import Tuple


def add_months(start: date, months: int) -> date:
    """
    Shift a date by whole months, clamping the day to the target month.

    Examples:
        >>> add_months(date(2024, 3, 1), 12)
        datetime.date(2025, 3, 1)
        >>> add_months(date(2024, 1, 31), 1)
        datetime.date(2024, 2, 29)
    """
    month_index = start.year * 12 + (start.month - 1) + months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def purchase_date(month: int, year: int) -> date:
    """First day of the purchase month."""
    return date(year, month, 1)


def warranty_dates(month: int, year: int, months_to_expire: int) -> Tuple[str, str]:
    """
    Compute ISO purchase and expiry dates for a registration.

    Args:
        month: Purchase month (1-12)
        year: Purchase year
        months_to_expire: Validity window in months

    Returns:
        (purchase_date, expiry_date) as YYYY-MM-DD strings
    """
    start = purchase_date(month, year)
    return start.isoformat(), add_months(start, months_to_expire).isoformat()

"""License Clock - Legacy day numbering and wall-clock checks.

Pure functions, no state. Upstream systems name their distribution files and
stamp their exports with spreadsheet-style day numbers, so the token scheme and
the embedded export expiry both go through excel_day_number().

No timezone normalization is performed: the deployment is assumed to live in a
single timezone and all datetimes are naive local time.
"""

from datetime import date, datetime, timedelta
from typing import Optional, Union

EXCEL_EPOCH = date(1900, 1, 1)

# 1900-01-01 is day 1, plus the phantom 1900-02-29 of the spreadsheet calendar.
EXCEL_DAY_OFFSET = 2


def _as_date(value: Union[date, datetime]) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def excel_day_number(value: Union[date, datetime]) -> int:
    """Return the legacy spreadsheet day number for a calendar date.

    Parameters:
        value: Date (or datetime, whose time part is ignored)

    Returns:
        int: Days elapsed since 1900-01-01 plus the compatibility offset of 2

    Example:
        ```python
        excel_day_number(date(2024, 1, 1))  # 45292
        ```
    """
    return (_as_date(value) - EXCEL_EPOCH).days + EXCEL_DAY_OFFSET


def date_from_excel_day_number(day_number: int) -> date:
    """Inverse of excel_day_number()."""
    return EXCEL_EPOCH + timedelta(days=day_number - EXCEL_DAY_OFFSET)


def is_past(timestamp: datetime, now: Optional[datetime] = None) -> bool:
    """Return True when now is strictly after timestamp.

    Parameters:
        timestamp: Point in time to compare against
        now: Reference time (defaults to wall-clock time)
    """
    now = now or datetime.now()
    return now > timestamp


def add_days(days: int, now: Optional[datetime] = None) -> datetime:
    """Return now + days."""
    now = now or datetime.now()
    return now + timedelta(days=days)

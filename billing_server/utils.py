"""Time helpers shared by the billing services.

All timestamps are stored as naive UTC datetimes, the same way SQLite hands
them back.
"""

import calendar
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def add_months(moment: datetime, months: int) -> datetime:
    """Shift ``moment`` by whole calendar months.

    The day is clamped to the last day of the target month, so Jan 31 plus one
    month is Feb 28 (or 29).
    """
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def today_key(now: datetime = None) -> str:
    return (now or utcnow()).date().isoformat()

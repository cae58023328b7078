"""
Host-local calendar arithmetic on millisecond timestamps.

Buckets are aligned to the local timezone of the host, matching SQLite's
'localtime' modifier, so a local day can be 23 or 25 hours long.
"""

import time
from datetime import date, datetime, timedelta

MS_PER_HOUR = 3_600_000
MS_PER_DAY = 24 * MS_PER_HOUR


def now_ms() -> int:
    return int(time.time() * 1000)


def to_local(ts_ms: int) -> datetime:
    """Naive local datetime for a millisecond timestamp."""
    return datetime.fromtimestamp(ts_ms / 1000)


def from_local(dt: datetime) -> int:
    """Millisecond timestamp for a naive local datetime."""
    return int(dt.timestamp()) * 1000


def local_date(ts_ms: int) -> date:
    return to_local(ts_ms).date()


def date_start_ms(day: date) -> int:
    return from_local(datetime(day.year, day.month, day.day))


def day_start(ts_ms: int) -> int:
    return date_start_ms(local_date(ts_ms))


def shift_days(ts_ms: int, days: int) -> int:
    """Start of the local day `days` calendar days away from ts_ms's day."""
    return date_start_ms(local_date(ts_ms) + timedelta(days=days))


def hour_start(ts_ms: int) -> int:
    dt = to_local(ts_ms)
    return from_local(dt.replace(minute=0, second=0, microsecond=0))


def week_start(ts_ms: int) -> int:
    """Start of the local ISO week (Monday) containing ts_ms."""
    day = local_date(ts_ms)
    return date_start_ms(day - timedelta(days=day.weekday()))


def month_start(ts_ms: int) -> int:
    dt = to_local(ts_ms)
    return from_local(datetime(dt.year, dt.month, 1))


def shift_months(ts_ms: int, months: int) -> int:
    """Start of the local month `months` away from ts_ms's month."""
    dt = to_local(ts_ms)
    index = dt.year * 12 + (dt.month - 1) + months
    return from_local(datetime(index // 12, index % 12 + 1, 1))


def local_hour(ts_ms: int) -> int:
    return to_local(ts_ms).hour


def is_weekend(ts_ms: int) -> bool:
    """Saturday or Sunday in local time."""
    return local_date(ts_ms).weekday() >= 5

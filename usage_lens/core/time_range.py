"""
Time range resolution.

Turns a logical range selector into absolute local-time millisecond bounds.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from . import localtime


class RangeKind(Enum):
    """Logical time range selectors."""
    TODAY = "today"
    LAST_24_HOURS = "last24h"
    LAST_7_DAYS = "last7d"
    LAST_30_DAYS = "last30d"
    ALL_TIME = "all"
    CUSTOM = "custom"


@dataclass(frozen=True)
class TimeRange:
    """A range selector; custom ranges carry explicit millisecond bounds."""
    kind: RangeKind
    start_ms: Optional[int] = None
    end_ms: Optional[int] = None

    def __post_init__(self):
        """Validate custom bounds."""
        if self.kind == RangeKind.CUSTOM:
            if self.start_ms is None or self.end_ms is None:
                raise ValueError("custom range requires start_ms and end_ms")
            if self.start_ms > self.end_ms:
                raise ValueError("custom range start_ms must not be after end_ms")

    @classmethod
    def today(cls) -> "TimeRange":
        return cls(RangeKind.TODAY)

    @classmethod
    def last_24_hours(cls) -> "TimeRange":
        return cls(RangeKind.LAST_24_HOURS)

    @classmethod
    def last_7_days(cls) -> "TimeRange":
        return cls(RangeKind.LAST_7_DAYS)

    @classmethod
    def last_30_days(cls) -> "TimeRange":
        return cls(RangeKind.LAST_30_DAYS)

    @classmethod
    def all_time(cls) -> "TimeRange":
        return cls(RangeKind.ALL_TIME)

    @classmethod
    def custom(cls, start_ms: int, end_ms: int) -> "TimeRange":
        return cls(RangeKind.CUSTOM, start_ms, end_ms)

    @classmethod
    def parse(cls, value: str) -> "TimeRange":
        """Build a non-custom selector from its name (e.g. "last7d")."""
        kind = RangeKind(value.lower())
        if kind == RangeKind.CUSTOM:
            raise ValueError("custom ranges need explicit bounds")
        return cls(kind)


@dataclass(frozen=True)
class ResolvedRange:
    """Absolute [start_ms, end_ms) bounds for a selector."""
    kind: RangeKind
    start_ms: int
    end_ms: int

    @property
    def is_today(self) -> bool:
        return self.kind == RangeKind.TODAY

    def contains(self, ts_ms: int) -> bool:
        return self.start_ms <= ts_ms < self.end_ms


def resolve(
    selector: TimeRange,
    min_created_at: Optional[int],
    now_ms: Optional[int] = None,
) -> ResolvedRange:
    """Resolve a selector against the current time.

    Args:
        selector: Range selector
        min_created_at: Earliest event timestamp in the store, None when empty
        now_ms: Current time; defaults to the wall clock

    Returns:
        ResolvedRange in host-local alignment
    """
    now = localtime.now_ms() if now_ms is None else now_ms
    kind = selector.kind

    if kind == RangeKind.TODAY:
        start = localtime.day_start(now)
        return ResolvedRange(kind, start, localtime.shift_days(start, 1))
    if kind == RangeKind.LAST_24_HOURS:
        return ResolvedRange(kind, now - 24 * localtime.MS_PER_HOUR, now)
    if kind in (RangeKind.LAST_7_DAYS, RangeKind.LAST_30_DAYS):
        days = 7 if kind == RangeKind.LAST_7_DAYS else 30
        today_start = localtime.day_start(now)
        return ResolvedRange(kind, localtime.shift_days(today_start, -days), today_start)
    if kind == RangeKind.ALL_TIME:
        # An empty store resolves to (0, now) and callers see zeroed results
        return ResolvedRange(kind, min_created_at or 0, now)
    return ResolvedRange(kind, selector.start_ms, selector.end_ms)

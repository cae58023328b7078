"""
Time bucketing and gap filling.

Groups timestamped values into local-time buckets and pads series to the
fixed, contiguous lengths the charts expect.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple, Union

from . import localtime
from .metrics import Granularity
from .time_range import RangeKind, ResolvedRange

HOURS_PER_WINDOW = 24
HISTORY_DAYS = 30
HISTORY_MONTHS = 12

RowValue = Union[float, Dict[str, float]]


@dataclass(frozen=True)
class TimeSeriesPoint:
    """One chart bucket.

    `value` is the primary metric; multi-series charts carry their named
    values in `fields`.
    """
    bucket_start: int
    label: str
    value: float
    bucket_index: int
    has_data: bool
    fields: Dict[str, float] = field(default_factory=dict)

    def field_value(self, name: str) -> float:
        return self.fields.get(name, 0.0)


@dataclass(frozen=True)
class BucketWindow:
    """Ordered bucket starts that a filled series must cover."""
    granularity: Granularity
    starts: Tuple[int, ...]

    def __len__(self) -> int:
        return len(self.starts)

    @property
    def start_ms(self) -> int:
        return self.starts[0]

    @property
    def end_ms(self) -> int:
        return bucket_end(self.starts[-1], self.granularity)


def bucket_start(ts_ms: int, granularity: Granularity) -> int:
    if granularity == Granularity.HOURLY:
        return localtime.hour_start(ts_ms)
    if granularity == Granularity.DAILY:
        return localtime.day_start(ts_ms)
    if granularity == Granularity.WEEKLY:
        return localtime.week_start(ts_ms)
    return localtime.month_start(ts_ms)


def bucket_end(start_ms: int, granularity: Granularity) -> int:
    if granularity == Granularity.HOURLY:
        return start_ms + localtime.MS_PER_HOUR
    if granularity == Granularity.DAILY:
        return localtime.shift_days(start_ms, 1)
    if granularity == Granularity.WEEKLY:
        return localtime.shift_days(start_ms, 7)
    return localtime.shift_months(start_ms, 1)


def bucket_label(start_ms: int, granularity: Granularity) -> str:
    dt = localtime.to_local(start_ms)
    if granularity == Granularity.HOURLY:
        return f"{dt.hour}:00"
    if granularity == Granularity.DAILY:
        return dt.strftime("%Y-%m-%d")
    if granularity == Granularity.WEEKLY:
        iso_year, iso_week, _ = dt.isocalendar()
        return f"{iso_year}-W{iso_week:02d}"
    return dt.strftime("%Y-%m")


def _split(value: RowValue, primary: Optional[str]) -> Tuple[float, Dict[str, float]]:
    if isinstance(value, dict):
        fields = {name: float(v) for name, v in value.items()}
        if primary is not None:
            return fields.get(primary, 0.0), fields
        return sum(fields.values()), fields
    return float(value), {}


def bucket(
    rows: Iterable[Tuple[int, RowValue]],
    granularity: Granularity,
    primary: Optional[str] = None,
) -> List[TimeSeriesPoint]:
    """Sum timestamped values into ordered local-time buckets.

    Args:
        rows: (timestamp_ms, value) pairs; value may be a dict of named values
        granularity: Bucket width
        primary: Field used as the point value for dict rows; sum of fields if None

    Returns:
        Points for the buckets present in rows, in chronological order
    """
    totals: Dict[int, Dict[str, float]] = {}
    plain: Dict[int, float] = {}
    for ts_ms, value in rows:
        start = bucket_start(int(ts_ms), granularity)
        if isinstance(value, dict):
            target = totals.setdefault(start, {})
            for name, v in value.items():
                target[name] = target.get(name, 0.0) + float(v)
        else:
            plain[start] = plain.get(start, 0.0) + float(value)

    points = []
    for index, start in enumerate(sorted(set(totals) | set(plain))):
        if start in totals:
            value, fields = _split(totals[start], primary)
        else:
            value, fields = plain[start], {}
        points.append(TimeSeriesPoint(
            bucket_start=start,
            label=bucket_label(start, granularity),
            value=value,
            bucket_index=index,
            has_data=True,
            fields=fields,
        ))
    return points


def plan_window(resolved: ResolvedRange, granularity: Granularity) -> BucketWindow:
    """Buckets a filled series must cover for a resolved range.

    Hourly series over `today` are anchored to local midnight; every other
    hourly range is anchored to the hour containing the range end. All-time
    monthly series cover the last HISTORY_MONTHS months.
    """
    start_ms, end_ms = resolved.start_ms, resolved.end_ms
    if resolved.kind == RangeKind.ALL_TIME and start_ms == 0:
        start_ms = localtime.day_start(end_ms)

    if granularity == Granularity.HOURLY:
        if resolved.kind == RangeKind.TODAY:
            midnight = localtime.day_start(start_ms)
            starts = tuple(midnight + h * localtime.MS_PER_HOUR for h in range(HOURS_PER_WINDOW))
        else:
            anchor = localtime.hour_start(max(end_ms - 1, start_ms))
            starts = tuple(reversed([
                anchor - h * localtime.MS_PER_HOUR for h in range(HOURS_PER_WINDOW)
            ]))
        return BucketWindow(granularity, starts)

    if granularity == Granularity.MONTHLY and resolved.kind == RangeKind.ALL_TIME:
        return history_window(granularity, end_ms)

    starts = []
    current = bucket_start(start_ms, granularity)
    while current < end_ms:
        starts.append(current)
        current = bucket_end(current, granularity)
    if not starts:
        starts.append(bucket_start(start_ms, granularity))
    return BucketWindow(granularity, tuple(starts))


def last_24_hour_window_anchored_to_current_hour(now_ms: int) -> Tuple[int, int]:
    """(current hour - 23h, current hour + 1h)."""
    current_hour = localtime.hour_start(now_ms)
    return (
        current_hour - (HOURS_PER_WINDOW - 1) * localtime.MS_PER_HOUR,
        current_hour + localtime.MS_PER_HOUR,
    )


def history_window(granularity: Granularity, now_ms: int) -> BucketWindow:
    """Fixed history windows: 24 hours, 30 days or 12 months ending now."""
    if granularity == Granularity.HOURLY:
        start, _ = last_24_hour_window_anchored_to_current_hour(now_ms)
        starts = tuple(start + h * localtime.MS_PER_HOUR for h in range(HOURS_PER_WINDOW))
    elif granularity == Granularity.DAILY:
        today = localtime.day_start(now_ms)
        starts = tuple(
            localtime.shift_days(today, offset) for offset in range(-(HISTORY_DAYS - 1), 1)
        )
    elif granularity == Granularity.MONTHLY:
        this_month = localtime.month_start(now_ms)
        starts = tuple(
            localtime.shift_months(this_month, offset) for offset in range(-(HISTORY_MONTHS - 1), 1)
        )
    else:
        raise ValueError(f"No history window for {granularity.value} granularity")
    return BucketWindow(granularity, starts)


def fill(series: List[TimeSeriesPoint], window: Optional[BucketWindow]) -> List[TimeSeriesPoint]:
    """Pad a bucketed series to every bucket of the window.

    Points outside the window are dropped; missing buckets become zero-valued
    points with has_data False. Without a window the series is re-indexed
    and returned as is.
    """
    if window is None:
        return [
            TimeSeriesPoint(p.bucket_start, p.label, p.value, i, p.has_data, p.fields)
            for i, p in enumerate(series)
        ]

    by_start = {point.bucket_start: point for point in series}
    field_names = sorted({name for point in series for name in point.fields})

    filled = []
    for index, start in enumerate(window.starts):
        point = by_start.get(start)
        label = bucket_label(start, window.granularity)
        if point is None:
            filled.append(TimeSeriesPoint(
                bucket_start=start,
                label=label,
                value=0.0,
                bucket_index=index,
                has_data=False,
                fields={name: 0.0 for name in field_names},
            ))
        else:
            filled.append(TimeSeriesPoint(
                bucket_start=start,
                label=label,
                value=point.value,
                bucket_index=index,
                has_data=True,
                fields=dict(point.fields),
            ))
    return filled

"""
Usage rhythm: when during the day and week activity happens.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Mapping, Tuple

from . import localtime

NIGHT_START_HOUR = 22
NIGHT_END_HOUR = 6


class TimeCluster(Enum):
    MORNING = "morning"      # 06-11
    AFTERNOON = "afternoon"  # 12-17
    EVENING = "evening"      # 18-23
    NIGHT = "night"          # 00-05


class ActivityIntensity(Enum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class TimeClusterShare:
    cluster: TimeCluster
    count: int
    percentage: float


@dataclass(frozen=True)
class WeekdayWeekendStats:
    """Totals and per-active-day averages split by day type."""
    weekday_total: float
    weekend_total: float
    weekday_days: int
    weekend_days: int
    weekday_avg: float
    weekend_avg: float


@dataclass(frozen=True)
class RhythmInsights:
    """Peak hour, night-owl and weekend ratios at message and session level."""
    peak_hour: int
    peak_hour_count: int
    night_owl_ratio: float
    weekend_ratio: float
    session_peak_hour: int
    session_night_owl_ratio: float
    session_weekend_ratio: float
    total_messages: int
    total_sessions: int


def ratio(part: float, total: float) -> float:
    return part / total if total > 0 else 0.0


def is_night_hour(hour: int) -> bool:
    return hour >= NIGHT_START_HOUR or hour < NIGHT_END_HOUR


def cluster_for_hour(hour: int) -> TimeCluster:
    if 6 <= hour <= 11:
        return TimeCluster.MORNING
    if 12 <= hour <= 17:
        return TimeCluster.AFTERNOON
    if 18 <= hour <= 23:
        return TimeCluster.EVENING
    return TimeCluster.NIGHT


def peak_hour(hour_counts: Mapping[int, int]) -> Tuple[int, int]:
    """Earliest hour holding the maximum count; (0, 0) when there is no activity."""
    best_hour, best_count = 0, 0
    for hour in range(24):
        count = hour_counts.get(hour, 0)
        if count > best_count:
            best_hour, best_count = hour, count
    return best_hour, best_count


def cluster_distribution(hour_counts: Mapping[int, int]) -> List[TimeClusterShare]:
    """Share of activity per time-of-day cluster, in cluster order."""
    counts = {cluster: 0 for cluster in TimeCluster}
    for hour, count in hour_counts.items():
        counts[cluster_for_hour(hour)] += count
    total = sum(counts.values())
    return [
        TimeClusterShare(cluster, counts[cluster], ratio(counts[cluster], total) * 100)
        for cluster in TimeCluster
    ]


def split_weekday_weekend(day_values: Mapping[int, float]) -> WeekdayWeekendStats:
    """Split per-day values (keyed by local day start) into weekday and weekend.

    Averages are per active day, so days with no activity do not dilute them.
    """
    weekday_total = weekend_total = 0.0
    weekday_days = weekend_days = 0
    for day_start_ms, value in day_values.items():
        if localtime.is_weekend(day_start_ms):
            weekend_total += value
            weekend_days += 1
        else:
            weekday_total += value
            weekday_days += 1
    return WeekdayWeekendStats(
        weekday_total=weekday_total,
        weekend_total=weekend_total,
        weekday_days=weekday_days,
        weekend_days=weekend_days,
        weekday_avg=ratio(weekday_total, weekday_days),
        weekend_avg=ratio(weekend_total, weekend_days),
    )


def build_rhythm_insights(
    hourly_messages: Mapping[int, int],
    hourly_sessions: Mapping[int, int],
    weekend_messages: int,
    total_sessions: int,
    night_sessions: int,
    weekend_sessions: int,
) -> RhythmInsights:
    """Assemble rhythm insights from per-hour counts and session tallies.

    Args:
        hourly_messages: Message count per local hour
        hourly_sessions: Distinct sessions per local hour
        weekend_messages: Messages sent on Saturday or Sunday
        total_sessions: Distinct sessions in range
        night_sessions: Distinct sessions with a message between 22:00 and 06:00
        weekend_sessions: Distinct sessions with a weekend message
    """
    total_messages = sum(hourly_messages.values())
    night_messages = sum(c for h, c in hourly_messages.items() if is_night_hour(h))
    hour, count = peak_hour(hourly_messages)
    session_hour, _ = peak_hour(hourly_sessions)
    return RhythmInsights(
        peak_hour=hour,
        peak_hour_count=count,
        night_owl_ratio=ratio(night_messages, total_messages),
        weekend_ratio=ratio(weekend_messages, total_messages),
        session_peak_hour=session_hour,
        session_night_owl_ratio=ratio(night_sessions, total_sessions),
        session_weekend_ratio=ratio(weekend_sessions, total_sessions),
        total_messages=total_messages,
        total_sessions=total_sessions,
    )


def activity_intensity(count: int) -> ActivityIntensity:
    if count <= 0:
        return ActivityIntensity.NONE
    if count < 5:
        return ActivityIntensity.LOW
    if count < 20:
        return ActivityIntensity.MEDIUM
    return ActivityIntensity.HIGH


def hourly_counts(rows: List[Tuple[int, int]]) -> Dict[int, int]:
    """Dense 0..23 mapping from sparse (hour, count) rows."""
    counts = {hour: 0 for hour in range(24)}
    for hour, count in rows:
        if hour is not None and 0 <= int(hour) <= 23:
            counts[int(hour)] += int(count or 0)
    return counts

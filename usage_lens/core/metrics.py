"""
Metric, granularity and dimension vocabularies.

SQL fragments for both computation paths live in enum-keyed tables here so
that the raw-scan and rollup paths share one definition of every counter,
dimension and bucket boundary.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict

from usage_lens.storage.models import coerce_float, coerce_int


class SourceKind(Enum):
    """Where a query reads its counters from."""
    RAW = "raw"
    ROLLUP = "rollup"


class Granularity(Enum):
    """Trend bucket widths."""
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

    @property
    def dimension(self) -> "Dimension":
        return {
            Granularity.HOURLY: Dimension.HOUR,
            Granularity.DAILY: Dimension.DAY,
            Granularity.WEEKLY: Dimension.WEEK,
            Granularity.MONTHLY: Dimension.MONTH,
        }[self]


class Dimension(Enum):
    """Grouping keys understood by every MetricSource."""
    PROJECT = "project"
    PROVIDER = "provider"
    MODEL = "model"
    ROLE = "role"
    AGENT = "agent"
    TOOL = "tool"
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    HOUR_OF_DAY = "hour_of_day"
    WEEKDAY = "weekday"


class TrendMetric(Enum):
    """Metrics plotted by the trend charts."""
    MESSAGES = "messages"
    TOKENS = "tokens"
    COST = "cost"
    SESSIONS = "sessions"


class InsightMetric(Enum):
    """Metrics used by heatmaps and intensity breakdowns."""
    INPUT_TOKENS = "input_tokens"
    MESSAGES = "messages"
    COST = "cost"


class HistoryMetric(Enum):
    """Metrics shown by the fixed-window history charts."""
    INPUT_TOKENS = "input_tokens"
    OUTPUT_TOKENS = "output_tokens"
    COST = "cost"
    SESSIONS = "sessions"
    MESSAGES = "messages"
    DURATION_HOURS = "duration_hours"


class DayTypeFilter(Enum):
    ALL = "all"
    WEEKDAYS = "weekdays"
    WEEKENDS = "weekends"


TIMESTAMP_COLUMN = {
    SourceKind.RAW: "m.created_at",
    SourceKind.ROLLUP: "time_bucket_ms",
}

# Additive counters, in the order they are selected.
COUNTERS = (
    "session_count",
    "message_count",
    "input_tokens",
    "output_tokens",
    "reasoning_tokens",
    "cache_read",
    "cache_write",
    "duration_ms",
    "timed_message_count",
    "cost",
    "net_code_lines",
    "file_count",
    "last_created_at",
)

FLOAT_COUNTERS = frozenset({"cost"})


def _token_sum(column: str) -> str:
    return f"COALESCE(SUM(CAST(COALESCE({column}, '0') AS INTEGER)), 0)"


_RAW_DURATION = "CASE WHEN m.completed_at > m.created_at THEN m.completed_at - m.created_at ELSE 0 END"

COUNTER_EXPRESSIONS: Dict[SourceKind, Dict[str, str]] = {
    SourceKind.RAW: {
        "session_count": "COUNT(DISTINCT m.session_id)",
        "message_count": "COUNT(*)",
        "input_tokens": _token_sum("m.token_input"),
        "output_tokens": _token_sum("m.token_output"),
        "reasoning_tokens": _token_sum("m.token_reasoning"),
        "cache_read": "COALESCE(SUM(m.cache_read), 0)",
        "cache_write": "COALESCE(SUM(m.cache_write), 0)",
        "duration_ms": f"COALESCE(SUM({_RAW_DURATION}), 0)",
        "timed_message_count": "COALESCE(SUM(CASE WHEN m.completed_at > m.created_at THEN 1 ELSE 0 END), 0)",
        "cost": "COALESCE(SUM(m.cost), 0)",
        "net_code_lines": (
            "COALESCE(SUM(COALESCE(m.summary_total_additions, 0)"
            " - COALESCE(m.summary_total_deletions, 0)), 0)"
        ),
        "file_count": "COALESCE(SUM(COALESCE(m.summary_file_count, 0)), 0)",
        "last_created_at": "MAX(m.created_at)",
    },
    SourceKind.ROLLUP: {
        "session_count": "COALESCE(SUM(session_count), 0)",
        "message_count": "COALESCE(SUM(message_count), 0)",
        "input_tokens": "COALESCE(SUM(input_tokens), 0)",
        "output_tokens": "COALESCE(SUM(output_tokens), 0)",
        "reasoning_tokens": "COALESCE(SUM(reasoning_tokens), 0)",
        "cache_read": "COALESCE(SUM(cache_read), 0)",
        "cache_write": "COALESCE(SUM(cache_write), 0)",
        "duration_ms": "COALESCE(SUM(CASE WHEN duration_ms > 0 THEN duration_ms ELSE 0 END), 0)",
        "timed_message_count": "COALESCE(SUM(CASE WHEN duration_ms > 0 THEN message_count ELSE 0 END), 0)",
        "cost": "COALESCE(SUM(cost), 0)",
        "net_code_lines": "COALESCE(SUM(net_code_lines), 0)",
        "file_count": "COALESCE(SUM(file_count), 0)",
        "last_created_at": "MAX(last_created_at_ms)",
    },
}

DIMENSION_COLUMNS: Dict[SourceKind, Dict[Dimension, str]] = {
    SourceKind.RAW: {
        Dimension.PROJECT: "COALESCE(s.project_name, 'unknown project')",
        Dimension.PROVIDER: "COALESCE(m.provider_id, 'unknown')",
        Dimension.MODEL: "COALESCE(m.model_id, 'unknown')",
        Dimension.ROLE: "COALESCE(m.role, 'unknown')",
        Dimension.AGENT: "COALESCE(m.agent, 'unknown')",
        Dimension.TOOL: "COALESCE(m.tool_id, 'opencode')",
    },
    SourceKind.ROLLUP: {
        Dimension.PROJECT: "project_id",
        Dimension.PROVIDER: "provider_id",
        Dimension.MODEL: "model_id",
        Dimension.ROLE: "role",
        Dimension.AGENT: "agent",
        Dimension.TOOL: "tool_id",
    },
}

_LOCAL = "{column} / 1000, 'unixepoch', 'localtime'"

# strftime modifiers that move a local timestamp to its bucket start.
_BUCKET_MODIFIERS = {
    Dimension.DAY: "'start of day'",
    Dimension.WEEK: "'start of day', '-6 days', 'weekday 1'",
    Dimension.MONTH: "'start of month'",
}


def time_expression(dimension: Dimension, source: SourceKind) -> str:
    """SQL expression for a time-derived dimension on the given source.

    Bucket dimensions evaluate to the local-aligned bucket start in
    milliseconds; HOUR_OF_DAY and WEEKDAY evaluate to local integers.
    """
    local = _LOCAL.format(column=TIMESTAMP_COLUMN[source])
    if dimension == Dimension.HOUR:
        return (
            f"CAST(strftime('%s', strftime('%Y-%m-%d %H:00:00', {local}), 'utc') AS INTEGER) * 1000"
        )
    if dimension in _BUCKET_MODIFIERS:
        return (
            f"CAST(strftime('%s', {local}, {_BUCKET_MODIFIERS[dimension]}, 'utc') AS INTEGER) * 1000"
        )
    if dimension == Dimension.HOUR_OF_DAY:
        return f"CAST(strftime('%H', {local}) AS INTEGER)"
    if dimension == Dimension.WEEKDAY:
        return f"CAST(strftime('%w', {local}) AS INTEGER)"
    raise ValueError(f"{dimension} is not a time dimension")


def dimension_expression(dimension: Dimension, source: SourceKind) -> str:
    columns = DIMENSION_COLUMNS[source]
    if dimension in columns:
        return columns[dimension]
    return time_expression(dimension, source)


def day_type_condition(day_filter: DayTypeFilter, source: SourceKind) -> str:
    """WHERE clause restricting rows to weekdays or weekends; empty for ALL."""
    weekday = time_expression(Dimension.WEEKDAY, source)
    if day_filter == DayTypeFilter.WEEKDAYS:
        return f"{weekday} BETWEEN 1 AND 5"
    if day_filter == DayTypeFilter.WEEKENDS:
        return f"{weekday} IN (0, 6)"
    return ""


@dataclass(frozen=True)
class CounterRow:
    """Additive counters for one group of a MetricSource aggregation."""
    keys: Dict[Dimension, Any] = field(default_factory=dict)
    session_count: int = 0
    message_count: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    reasoning_tokens: int = 0
    cache_read: int = 0
    cache_write: int = 0
    duration_ms: int = 0
    timed_message_count: int = 0
    cost: float = 0.0
    net_code_lines: int = 0
    file_count: int = 0
    last_created_at: int = 0

    @classmethod
    def from_row(cls, row, dimensions) -> "CounterRow":
        """Build from a result row whose columns are dimensions then COUNTERS."""
        offset = len(dimensions)
        keys = {dimension: row[i] for i, dimension in enumerate(dimensions)}
        values = {}
        for i, name in enumerate(COUNTERS):
            raw = row[offset + i]
            values[name] = coerce_float(raw) if name in FLOAT_COUNTERS else coerce_int(raw)
        return cls(keys=keys, **values)

    def key(self, dimension: Dimension) -> Any:
        return self.keys.get(dimension)

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens + self.reasoning_tokens


TREND_METRIC_VALUES = {
    TrendMetric.MESSAGES: lambda row: row.message_count,
    TrendMetric.TOKENS: lambda row: row.total_tokens,
    TrendMetric.COST: lambda row: row.cost,
    TrendMetric.SESSIONS: lambda row: row.session_count,
}

INSIGHT_METRIC_VALUES = {
    InsightMetric.INPUT_TOKENS: lambda row: row.input_tokens,
    InsightMetric.MESSAGES: lambda row: row.message_count,
    InsightMetric.COST: lambda row: row.cost,
}

HISTORY_METRIC_VALUES = {
    HistoryMetric.INPUT_TOKENS: lambda row: row.input_tokens,
    HistoryMetric.OUTPUT_TOKENS: lambda row: row.output_tokens + row.reasoning_tokens,
    HistoryMetric.COST: lambda row: row.cost,
    HistoryMetric.SESSIONS: lambda row: row.session_count,
    HistoryMetric.MESSAGES: lambda row: row.message_count,
    HistoryMetric.DURATION_HOURS: lambda row: row.duration_ms / 3_600_000,
}

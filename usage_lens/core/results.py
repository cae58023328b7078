"""
Typed results returned by the statistics façade.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Generic, List, Optional, TypeVar

from .bucketing import TimeSeriesPoint
from .metrics import CounterRow, InsightMetric
from .rhythm import ActivityIntensity
from usage_lens.storage.db import QueryError

T = TypeVar("T")


@dataclass(frozen=True)
class QueryResult(Generic[T]):
    """Outcome of one façade query: a value, or the error that prevented it."""
    value: Optional[T]
    error: Optional[QueryError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class OverviewStats:
    total_sessions: int = 0
    total_messages: int = 0
    total_cost: float = 0.0
    total_tokens: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    reasoning_tokens: int = 0
    cache_read: int = 0
    cache_write: int = 0

    @classmethod
    def from_counters(cls, row: CounterRow) -> "OverviewStats":
        return cls(
            total_sessions=row.session_count,
            total_messages=row.message_count,
            total_cost=row.cost,
            total_tokens=row.total_tokens,
            input_tokens=row.input_tokens,
            output_tokens=row.output_tokens,
            reasoning_tokens=row.reasoning_tokens,
            cache_read=row.cache_read,
            cache_write=row.cache_write,
        )


@dataclass(frozen=True)
class KPITrends:
    """Gap-filled daily series backing the overview KPI sparklines."""
    sessions: List[TimeSeriesPoint] = field(default_factory=list)
    messages: List[TimeSeriesPoint] = field(default_factory=list)
    cost: List[TimeSeriesPoint] = field(default_factory=list)
    input_tokens: List[TimeSeriesPoint] = field(default_factory=list)
    output_tokens: List[TimeSeriesPoint] = field(default_factory=list)
    reasoning_tokens: List[TimeSeriesPoint] = field(default_factory=list)
    cache_read: List[TimeSeriesPoint] = field(default_factory=list)
    cache_write: List[TimeSeriesPoint] = field(default_factory=list)
    avg_tokens_per_session: List[TimeSeriesPoint] = field(default_factory=list)


@dataclass(frozen=True)
class HourValue:
    hour: int
    value: float


@dataclass(frozen=True)
class DayActivity:
    day_start_ms: int
    label: str
    value: float
    intensity: ActivityIntensity


@dataclass(frozen=True)
class ProjectUsage:
    project: str
    label: str
    session_count: int
    message_count: int
    input_tokens: int
    output_tokens: int
    reasoning_tokens: int
    total_tokens: int
    cache_read: int
    cache_write: int
    net_code_lines: int
    file_count: int
    cost: float
    active_days: int


@dataclass(frozen=True)
class ModelUsage:
    provider_id: str
    model_id: str
    session_count: int
    message_count: int
    total_tokens: int
    input_tokens: int
    output_tokens: int
    reasoning_tokens: int
    cost: float
    avg_tokens_per_message: float
    avg_cost_per_message: float


@dataclass(frozen=True)
class ProjectActivityStats:
    project: str
    first_active_ms: Optional[int]
    last_active_ms: Optional[int]
    active_days: int
    net_code_lines: int
    total_duration_ms: int


class DailyTopOrder(Enum):
    """Columns a project's top days may be ranked by."""
    NET_CODE_LINES = "net_code_lines"
    INPUT_TOKENS = "input_tokens"
    MESSAGE_COUNT = "message_count"
    DURATION_MS = "duration_ms"
    COST = "cost"


@dataclass(frozen=True)
class DailyTopStat:
    day_start_ms: int
    label: str
    net_code_lines: int
    input_tokens: int
    message_count: int
    total_duration_ms: int
    cost: float


@dataclass(frozen=True)
class ProjectConsumptionStats:
    cost: float
    input_tokens: int
    output_tokens: int
    reasoning_tokens: int
    net_code_lines: int


@dataclass(frozen=True)
class ModelContribution:
    model_id: str
    provider_id: str
    input_tokens: int
    percentage: float


@dataclass(frozen=True)
class AgentUsage:
    agent: str
    message_count: int
    percentage: float


@dataclass(frozen=True)
class ProjectModelAgentStats:
    model_contributions: List[ModelContribution]
    agent_usages: List[AgentUsage]
    automation_level: float


@dataclass(frozen=True)
class DailyUsage:
    """One local day of activity for a single project or model."""
    day_start_ms: int
    label: str
    session_count: int
    message_count: int
    input_tokens: int
    output_tokens: int
    reasoning_tokens: int
    cost: float
    duration_ms: int
    net_code_lines: int
    file_count: int


@dataclass(frozen=True)
class ModelProcessingStat:
    provider_id: str
    model_id: str
    session_count: int
    input_tokens: int
    output_tokens: int
    reasoning_tokens: int
    billed_cost: float

    @property
    def input_per_session(self) -> float:
        return self.input_tokens / self.session_count if self.session_count > 0 else 0.0

    @property
    def reasoning_output_ratio(self) -> float:
        return self.reasoning_tokens / self.output_tokens if self.output_tokens > 0 else 0.0


@dataclass(frozen=True)
class UserAgentCounts:
    user_count: int = 0
    agent_count: int = 0


@dataclass(frozen=True)
class UserAgentSessionCounts:
    user_sessions: int = 0
    agent_sessions: int = 0
    total_sessions: int = 0


@dataclass(frozen=True)
class AgentSessionCount:
    name: str
    session_count: int


@dataclass(frozen=True)
class SessionDepthDistribution:
    shallow: int = 0
    medium: int = 0
    deep: int = 0


@dataclass(frozen=True)
class CodeOutputStats:
    total_additions: int = 0
    total_deletions: int = 0
    file_count: int = 0

    @property
    def net(self) -> int:
        return self.total_additions - self.total_deletions


@dataclass(frozen=True)
class DailyHeatPoint:
    label: str
    day_start_ms: int
    value: float


@dataclass(frozen=True)
class WeekdayWeekendIntensity:
    weekday_total: float = 0.0
    weekend_total: float = 0.0
    weekday_average: float = 0.0
    weekend_average: float = 0.0


class ModelLensGroupBy(Enum):
    MODEL = "model"
    PROVIDER = "provider"


class ModelLensMetric(Enum):
    INPUT_TOKENS = "input_tokens"
    OUTPUT_TPS = "output_tps"


@dataclass(frozen=True)
class ModelLensRow:
    """Throughput view of one model (or provider)."""
    dimension_name: str
    provider_id: str
    input_tokens: float
    output_tps: float
    output_tokens: float
    duration_seconds: float
    valid_duration_message_ratio: float

    def value(self, metric: ModelLensMetric) -> float:
        if metric == ModelLensMetric.OUTPUT_TPS:
            return self.output_tps
        return self.input_tokens


HeatmapBundle = Dict[InsightMetric, List[DailyHeatPoint]]

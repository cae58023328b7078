"""
Statistics query façade.

Read-only operations consumed by the presentation layer. Each call resolves
its time range, opens one read transaction, picks a rollup or raw source and
returns a typed result. Store failures never reach the caller: they are
logged and replaced by an empty, correctly shaped value.
"""

import logging
import sqlite3
from collections import Counter
from dataclasses import replace
from datetime import date
from typing import Callable, Dict, List, Optional, Sequence, Tuple, TypeVar, Union

from . import localtime
from .anomaly import EMPTY_ANOMALY_STATS, AnomalyStats, compute_anomaly_stats
from .breakdown import (
    BillingCostStats,
    RankedEntry,
    automation_level,
    billing_coverage,
    percentage,
    project_label,
    rank_with_overflow,
    session_depth,
    SessionDepth,
    tokens_per_second,
)
from .bucketing import (
    BucketWindow,
    RowValue,
    TimeSeriesPoint,
    bucket,
    bucket_label,
    fill,
    history_window,
    plan_window,
)
from .metrics import (
    HISTORY_METRIC_VALUES,
    INSIGHT_METRIC_VALUES,
    TREND_METRIC_VALUES,
    CounterRow,
    DayTypeFilter,
    Dimension,
    Granularity,
    HistoryMetric,
    InsightMetric,
    SourceKind,
    TrendMetric,
    time_expression,
)
from .results import (
    AgentSessionCount,
    AgentUsage,
    CodeOutputStats,
    DailyHeatPoint,
    DailyTopOrder,
    DailyTopStat,
    DailyUsage,
    DayActivity,
    HeatmapBundle,
    HourValue,
    KPITrends,
    ModelContribution,
    ModelLensGroupBy,
    ModelLensMetric,
    ModelLensRow,
    ModelProcessingStat,
    ModelUsage,
    OverviewStats,
    ProjectActivityStats,
    ProjectConsumptionStats,
    ProjectModelAgentStats,
    ProjectUsage,
    QueryResult,
    SessionDepthDistribution,
    UserAgentCounts,
    UserAgentSessionCounts,
    WeekdayWeekendIntensity,
)
from .rhythm import (
    RhythmInsights,
    TimeClusterShare,
    WeekdayWeekendStats,
    activity_intensity,
    build_rhythm_insights,
    cluster_distribution,
    hourly_counts,
    split_weekday_weekend,
)
from .sources import MetricSource, RawEventSource, has_usable_rollup, select_source
from .time_range import ResolvedRange, RangeKind, TimeRange, resolve
from usage_lens.config.loader import Settings, default_settings
from usage_lens.storage.db import QueryError, read_transaction
from usage_lens.storage.models import RollupTable, coerce_float, coerce_int
from usage_lens.storage.repository import RollupStore, UsageEventStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

Fetch = Callable[[sqlite3.Connection, int, int], List[Tuple[int, RowValue]]]

TREND_TABLES = {
    Granularity.HOURLY: (RollupTable.HOURLY,),
    Granularity.DAILY: (RollupTable.DAILY,),
    Granularity.WEEKLY: (RollupTable.DAILY,),
    Granularity.MONTHLY: (RollupTable.MONTHLY, RollupTable.DAILY),
}
MODEL_LENS_TABLES = (RollupTable.MONTHLY, RollupTable.DAILY)
PROJECT_MODEL_LIMIT = 11
OTHER_MODEL_ID = "other"
TOP_DAYS = 3

_RAW_RANGE = ["m.created_at >= ?", "m.created_at < ?"]
_AGENT_MESSAGE = "(m.role = 'assistant' OR (m.agent IS NOT NULL AND m.agent != ''))"


def _is_user(row: CounterRow) -> bool:
    return row.key(Dimension.ROLE) == "user"


def _is_agent(row: CounterRow) -> bool:
    agent = row.key(Dimension.AGENT)
    return row.key(Dimension.ROLE) == "assistant" or agent not in (None, "", "unknown")


def _dense_hours(values: Dict[int, float]) -> List[HourValue]:
    return [HourValue(hour, float(values.get(hour, 0))) for hour in range(24)]


class StatisticsService:
    """Query façade over a usage store.

    Args:
        db_path: SQLite database to read; defaults to the configured path
        settings: Engine settings; defaults to default_settings()
        clock: Returns the current time in milliseconds
    """

    def __init__(
        self,
        db_path: Optional[str] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.settings = settings or default_settings()
        self.db_path = db_path or self.settings.database.path
        self._clock = clock or localtime.now_ms

    # Plumbing

    def run(self, operation: Callable[[sqlite3.Connection], T]) -> QueryResult[T]:
        """Run an operation inside one read transaction, capturing store failures."""
        try:
            with read_transaction(self.db_path) as conn:
                return QueryResult(operation(conn))
        except QueryError as exc:
            return QueryResult(None, exc)

    def _degrade(self, name: str, default: T, operation: Callable[[sqlite3.Connection], T]) -> T:
        result = self.run(operation)
        if not result.ok:
            logger.warning("%s failed, returning empty result: %s", name, result.error)
            return default
        return result.value

    def _resolve(self, conn: sqlite3.Connection, time_range: TimeRange, now_ms: Optional[int] = None) -> ResolvedRange:
        min_created_at = None
        if time_range.kind == RangeKind.ALL_TIME:
            min_created_at = UsageEventStore(conn).min_created_at()
        return resolve(time_range, min_created_at, self._clock() if now_ms is None else now_ms)

    def _all_time(self, conn: sqlite3.Connection) -> ResolvedRange:
        return self._resolve(conn, TimeRange.all_time())

    @staticmethod
    def _overview_tables(resolved: ResolvedRange) -> Tuple[RollupTable, ...]:
        return (RollupTable.HOURLY,) if resolved.is_today else (RollupTable.DAILY,)

    def _last_days_window(self, days: int) -> BucketWindow:
        today = localtime.day_start(self._clock())
        return BucketWindow(
            Granularity.DAILY,
            tuple(localtime.shift_days(today, -offset) for offset in range(days - 1, -1, -1)),
        )

    @staticmethod
    def _counter_fetch(
        granularity: Granularity,
        value_of: Callable[[CounterRow], RowValue],
        tables: Sequence[RollupTable],
        extra_dimensions: Sequence[Dimension] = (),
        filters: Optional[Dict[Dimension, str]] = None,
    ) -> Fetch:
        """Fetch bucketed values through whichever source covers the range."""
        def fetch(conn, start_ms, end_ms):
            source = select_source(conn, tables, start_ms, end_ms)
            rows = source.aggregate([granularity.dimension, *extra_dimensions], filters)
            return [(row.key(granularity.dimension), value_of(row)) for row in rows]
        return fetch

    def _trend(
        self,
        name: str,
        time_range: TimeRange,
        granularity: Granularity,
        fetch: Fetch,
        primary: Optional[str] = None,
    ) -> List[TimeSeriesPoint]:
        now = self._clock()
        fallback = fill([], plan_window(resolve(time_range, None, now), granularity))

        def query(conn):
            resolved = self._resolve(conn, time_range, now)
            window = plan_window(resolved, granularity)
            start_ms, end_ms = resolved.start_ms, resolved.end_ms
            start_ms = max(start_ms, window.start_ms)
            end_ms = min(end_ms, window.end_ms)
            if end_ms <= start_ms:
                return fill([], window)
            return fill(bucket(fetch(conn, start_ms, end_ms), granularity, primary), window)

        return self._degrade(name, fallback, query)

    # Overview and trends

    def get_overview_stats(self, time_range: TimeRange) -> OverviewStats:
        """Totals for sessions, messages, cost and every token class."""
        def query(conn):
            resolved = self._resolve(conn, time_range)
            source = select_source(conn, self._overview_tables(resolved), resolved.start_ms, resolved.end_ms)
            stats = OverviewStats.from_counters(source.totals())
            if source.kind == SourceKind.ROLLUP:
                # Rollup session counts repeat per dimension tuple
                sessions = UsageEventStore(conn).scan_messages(
                    ["COUNT(DISTINCT m.session_id)"], _RAW_RANGE, [resolved.start_ms, resolved.end_ms]
                )[0][0]
                stats = replace(stats, total_sessions=coerce_int(sessions))
            return stats
        return self._degrade("get_overview_stats", OverviewStats(), query)

    def get_kpi_trends(self, last_n_days: Optional[int] = None) -> KPITrends:
        """Daily KPI series for the trailing N days, today included."""
        days = max(1, last_n_days or self.settings.queries.kpi_days)
        window = self._last_days_window(days)

        def series(rows, value_of):
            data = [(row.key(Dimension.DAY), value_of(row)) for row in rows]
            return fill(bucket(data, Granularity.DAILY), window)

        def build(rows):
            return KPITrends(
                sessions=series(rows, lambda r: r.session_count),
                messages=series(rows, lambda r: r.message_count),
                cost=series(rows, lambda r: r.cost),
                input_tokens=series(rows, lambda r: r.input_tokens),
                output_tokens=series(rows, lambda r: r.output_tokens),
                reasoning_tokens=series(rows, lambda r: r.reasoning_tokens),
                cache_read=series(rows, lambda r: r.cache_read),
                cache_write=series(rows, lambda r: r.cache_write),
                avg_tokens_per_session=series(
                    rows, lambda r: r.total_tokens / r.session_count if r.session_count > 0 else 0.0
                ),
            )

        def query(conn):
            source = select_source(conn, (RollupTable.DAILY,), window.start_ms, window.end_ms)
            return build(source.aggregate([Dimension.DAY]))

        return self._degrade("get_kpi_trends", build([]), query)

    def get_trend_data(
        self,
        time_range: TimeRange,
        metric: TrendMetric,
        granularity: Granularity = Granularity.DAILY,
    ) -> List[TimeSeriesPoint]:
        """Gap-filled series of one metric.

        Hourly series over `today` run 0:00..23:00; other hourly ranges end
        at the current hour. All-time monthly series hold the last 12 months.
        """
        fetch = self._counter_fetch(granularity, TREND_METRIC_VALUES[metric], TREND_TABLES[granularity])
        return self._trend("get_trend_data", time_range, granularity, fetch)

    def get_token_diverging_data(
        self, time_range: TimeRange, granularity: Granularity = Granularity.DAILY
    ) -> List[TimeSeriesPoint]:
        """Input and output tokens per bucket (fields "input" and "output")."""
        fetch = self._counter_fetch(
            granularity,
            lambda r: {"input": r.input_tokens, "output": r.output_tokens},
            TREND_TABLES[granularity],
        )
        return self._trend("get_token_diverging_data", time_range, granularity, fetch, primary="input")

    def get_dual_axis_data(
        self, time_range: TimeRange, granularity: Granularity = Granularity.DAILY
    ) -> List[TimeSeriesPoint]:
        """Messages and sessions per bucket (fields "messages" and "sessions")."""
        fetch = self._counter_fetch(
            granularity,
            lambda r: {"messages": r.message_count, "sessions": r.session_count},
            TREND_TABLES[granularity],
        )
        return self._trend("get_dual_axis_data", time_range, granularity, fetch, primary="messages")

    def get_user_agent_message_trend(
        self, time_range: TimeRange, granularity: Granularity = Granularity.DAILY
    ) -> List[TimeSeriesPoint]:
        """User and agent message counts per bucket (fields "user" and "agent")."""
        fetch = self._counter_fetch(
            granularity,
            lambda r: {
                "user": r.message_count if _is_user(r) else 0,
                "agent": r.message_count if _is_agent(r) else 0,
            },
            TREND_TABLES[granularity],
            extra_dimensions=(Dimension.ROLE, Dimension.AGENT),
        )
        return self._trend("get_user_agent_message_trend", time_range, granularity, fetch)

    def get_code_output_cost_trend(
        self, time_range: TimeRange, granularity: Granularity = Granularity.DAILY
    ) -> List[TimeSeriesPoint]:
        """Additions, deletions and billed cost per bucket; value is billed cost."""
        def fetch(conn, start_ms, end_ms):
            key = time_expression(granularity.dimension, SourceKind.RAW)
            rows = UsageEventStore(conn).scan_messages(
                [
                    key,
                    "COALESCE(SUM(m.summary_total_additions), 0)",
                    "COALESCE(SUM(m.summary_total_deletions), 0)",
                    "COALESCE(SUM(CASE WHEN m.cost > 0 THEN m.cost ELSE 0 END), 0)",
                ],
                _RAW_RANGE,
                [start_ms, end_ms],
                group_by=[key],
            )
            return [
                (row[0], {
                    "additions": coerce_int(row[1]),
                    "deletions": coerce_int(row[2]),
                    "billed_cost": coerce_float(row[3]),
                })
                for row in rows
            ]
        return self._trend("get_code_output_cost_trend", time_range, granularity, fetch, primary="billed_cost")

    def get_history_series(
        self,
        metric: HistoryMetric,
        granularity: Granularity,
        now_ms: Optional[int] = None,
    ) -> List[TimeSeriesPoint]:
        """Fixed windows: 24 hours to the current hour, 30 days or 12 months to now."""
        window = history_window(granularity, self._clock() if now_ms is None else now_ms)
        fetch = self._counter_fetch(granularity, HISTORY_METRIC_VALUES[metric], TREND_TABLES[granularity])

        def query(conn):
            return fill(bucket(fetch(conn, window.start_ms, window.end_ms), granularity), window)

        return self._degrade("get_history_series", fill([], window), query)

    # Time of day and calendar breakdowns

    def get_hourly_breakdown(self, time_range: TimeRange, metric: TrendMetric = TrendMetric.MESSAGES) -> List[HourValue]:
        """Metric per local hour of day, always 24 entries."""
        value_of = TREND_METRIC_VALUES[metric]

        def query(conn):
            resolved = self._resolve(conn, time_range)
            source = select_source(conn, (RollupTable.HOURLY,), resolved.start_ms, resolved.end_ms)
            rows = source.aggregate([Dimension.HOUR_OF_DAY])
            return _dense_hours({row.key(Dimension.HOUR_OF_DAY): value_of(row) for row in rows})

        return self._degrade("get_hourly_breakdown", _dense_hours({}), query)

    def get_time_cluster_distribution(self, time_range: TimeRange) -> List[TimeClusterShare]:
        """Message share for morning, afternoon, evening and night."""
        def query(conn):
            resolved = self._resolve(conn, time_range)
            source = select_source(conn, (RollupTable.HOURLY,), resolved.start_ms, resolved.end_ms)
            rows = source.aggregate([Dimension.HOUR_OF_DAY])
            return cluster_distribution(
                hourly_counts([(row.key(Dimension.HOUR_OF_DAY), row.message_count) for row in rows])
            )
        return self._degrade("get_time_cluster_distribution", cluster_distribution({}), query)

    def get_weekday_vs_weekend_stats(self, time_range: TimeRange) -> WeekdayWeekendStats:
        """Message totals and per-active-day averages for weekdays vs weekends."""
        def query(conn):
            resolved = self._resolve(conn, time_range)
            source = select_source(conn, (RollupTable.DAILY,), resolved.start_ms, resolved.end_ms)
            rows = source.aggregate([Dimension.DAY])
            return split_weekday_weekend({row.key(Dimension.DAY): row.message_count for row in rows})
        return self._degrade("get_weekday_vs_weekend_stats", split_weekday_weekend({}), query)

    def get_monthly_stats(self, time_range: TimeRange, metric: TrendMetric = TrendMetric.MESSAGES) -> List[TimeSeriesPoint]:
        """One point per calendar month of the range; all-time covers the last 12 months."""
        return self.get_trend_data(time_range, metric, Granularity.MONTHLY)

    def get_active_streak_data(self, year: int) -> List[DayActivity]:
        """Active days of a calendar year with their message intensity."""
        start_ms = localtime.date_start_ms(date(year, 1, 1))
        end_ms = localtime.date_start_ms(date(year + 1, 1, 1))

        def query(conn):
            source = select_source(conn, (RollupTable.DAILY,), start_ms, end_ms)
            return [
                DayActivity(
                    day_start_ms=row.key(Dimension.DAY),
                    label=bucket_label(row.key(Dimension.DAY), Granularity.DAILY),
                    value=float(row.message_count),
                    intensity=activity_intensity(row.message_count),
                )
                for row in source.aggregate([Dimension.DAY])
            ]

        return self._degrade("get_active_streak_data", [], query)

    # Projects and models

    @staticmethod
    def _project_usage(source: MetricSource) -> List[ProjectUsage]:
        active_days = Counter(row.key(Dimension.PROJECT) for row in source.aggregate([Dimension.PROJECT, Dimension.DAY]))
        return [
            ProjectUsage(
                project=row.key(Dimension.PROJECT),
                label=project_label(row.key(Dimension.PROJECT)),
                session_count=row.session_count,
                message_count=row.message_count,
                input_tokens=row.input_tokens,
                output_tokens=row.output_tokens,
                reasoning_tokens=row.reasoning_tokens,
                total_tokens=row.total_tokens,
                cache_read=row.cache_read,
                cache_write=row.cache_write,
                net_code_lines=row.net_code_lines,
                file_count=row.file_count,
                cost=row.cost,
                active_days=active_days[row.key(Dimension.PROJECT)],
            )
            for row in source.aggregate([Dimension.PROJECT])
        ]

    @staticmethod
    def _model_usage(source: MetricSource) -> List[ModelUsage]:
        usages = []
        for row in source.aggregate([Dimension.PROVIDER, Dimension.MODEL]):
            messages = row.message_count
            usages.append(ModelUsage(
                provider_id=row.key(Dimension.PROVIDER),
                model_id=row.key(Dimension.MODEL),
                session_count=row.session_count,
                message_count=messages,
                total_tokens=row.total_tokens,
                input_tokens=row.input_tokens,
                output_tokens=row.output_tokens,
                reasoning_tokens=row.reasoning_tokens,
                cost=row.cost,
                avg_tokens_per_message=row.total_tokens / messages if messages > 0 else 0.0,
                avg_cost_per_message=row.cost / messages if messages > 0 else 0.0,
            ))
        return usages

    def get_top_projects(self, time_range: TimeRange, limit: int = 5) -> List[ProjectUsage]:
        """Projects ranked by input tokens, computed from the message log."""
        def query(conn):
            resolved = self._resolve(conn, time_range)
            usages = self._project_usage(RawEventSource(conn, resolved.start_ms, resolved.end_ms))
            return sorted(usages, key=lambda u: (-u.input_tokens, u.project))[:limit]
        return self._degrade("get_top_projects", [], query)

    def get_top_projects_optimized(self, time_range: TimeRange, limit: int = 5) -> List[ProjectUsage]:
        """Projects ranked by input tokens, read from rollups when they cover the range.

        Session counts are the sum of the rollup session counters.
        """
        def query(conn):
            resolved = self._resolve(conn, time_range)
            source = select_source(conn, self._overview_tables(resolved), resolved.start_ms, resolved.end_ms)
            usages = self._project_usage(source)
            return sorted(usages, key=lambda u: (-u.input_tokens, u.project))[:limit]
        return self._degrade("get_top_projects_optimized", [], query)

    def get_top_models(self, time_range: TimeRange, limit: int = 5) -> List[ModelUsage]:
        """Models ranked by input tokens, computed from the message log."""
        def query(conn):
            resolved = self._resolve(conn, time_range)
            usages = self._model_usage(RawEventSource(conn, resolved.start_ms, resolved.end_ms))
            return sorted(usages, key=lambda u: (-u.input_tokens, u.model_id))[:limit]
        return self._degrade("get_top_models", [], query)

    def get_top_models_optimized(self, time_range: TimeRange, limit: int = 5) -> List[ModelUsage]:
        """Models ranked by input tokens, read from rollups when they cover the range."""
        def query(conn):
            resolved = self._resolve(conn, time_range)
            source = select_source(conn, self._overview_tables(resolved), resolved.start_ms, resolved.end_ms)
            usages = self._model_usage(source)
            return sorted(usages, key=lambda u: (-u.input_tokens, u.model_id))[:limit]
        return self._degrade("get_top_models_optimized", [], query)

    def _input_tokens_by(self, name: str, time_range: TimeRange, dimension: Dimension, top_n: Optional[int]) -> List[RankedEntry]:
        limit = self.settings.queries.top_n if top_n is None else top_n
        label_of = project_label if dimension == Dimension.PROJECT else None

        def query(conn):
            resolved = self._resolve(conn, time_range)
            source = select_source(conn, self._overview_tables(resolved), resolved.start_ms, resolved.end_ms)
            return rank_with_overflow(
                source.aggregate([dimension]),
                limit,
                value_of=lambda row: row.input_tokens,
                key_of=lambda row: row.key(dimension),
                label_of=(lambda row: label_of(row.key(dimension))) if label_of else None,
            )

        return self._degrade(name, [], query)

    def get_input_tokens_by_project(self, time_range: TimeRange, top_n: Optional[int] = None) -> List[RankedEntry]:
        """Top-N projects by input tokens plus an "Other" entry for the rest."""
        return self._input_tokens_by("get_input_tokens_by_project", time_range, Dimension.PROJECT, top_n)

    def get_input_tokens_by_model(self, time_range: TimeRange, top_n: Optional[int] = None) -> List[RankedEntry]:
        """Top-N models by input tokens plus an "Other" entry for the rest."""
        return self._input_tokens_by("get_input_tokens_by_model", time_range, Dimension.MODEL, top_n)

    def get_project_stats(self, time_range: TimeRange) -> List[ProjectUsage]:
        """Every project active in range, most expensive first."""
        def query(conn):
            resolved = self._resolve(conn, time_range)
            usages = self._project_usage(RawEventSource(conn, resolved.start_ms, resolved.end_ms))
            return sorted(usages, key=lambda u: (-u.cost, u.project))
        return self._degrade("get_project_stats", [], query)

    def get_project_stats_from_monthly(self) -> List[ProjectUsage]:
        """All-time per-project totals, read from monthly rollups when available."""
        def query(conn):
            resolved = self._all_time(conn)
            source = select_source(conn, (RollupTable.MONTHLY,), resolved.start_ms, resolved.end_ms)
            return sorted(self._project_usage(source), key=lambda u: (-u.cost, u.project))
        return self._degrade("get_project_stats_from_monthly", [], query)

    def _project_days(self, conn: sqlite3.Connection, project: str) -> List[CounterRow]:
        resolved = self._all_time(conn)
        source = select_source(conn, (RollupTable.DAILY,), resolved.start_ms, resolved.end_ms)
        return source.aggregate([Dimension.DAY], {Dimension.PROJECT: project})

    def get_project_activity_stats(self, project: str) -> Optional[ProjectActivityStats]:
        """First and last activity, active days, net code lines and duration for a project."""
        def query(conn):
            days = self._project_days(conn, project)
            if not days:
                return None
            return ProjectActivityStats(
                project=project,
                first_active_ms=days[0].key(Dimension.DAY),
                last_active_ms=max(day.last_created_at for day in days),
                active_days=len(days),
                net_code_lines=sum(day.net_code_lines for day in days),
                total_duration_ms=sum(day.duration_ms for day in days),
            )
        return self._degrade("get_project_activity_stats", None, query)

    def get_daily_top3_stats(self, project: str, order_by: Union[DailyTopOrder, str]) -> List[DailyTopStat]:
        """A project's three busiest days by the chosen column.

        Raises:
            ValueError: If order_by is not one of the DailyTopOrder columns
        """
        order = order_by if isinstance(order_by, DailyTopOrder) else DailyTopOrder(order_by)

        def query(conn):
            days = sorted(
                self._project_days(conn, project),
                key=lambda day: getattr(day, order.value),
                reverse=True,
            )
            return [
                DailyTopStat(
                    day_start_ms=day.key(Dimension.DAY),
                    label=bucket_label(day.key(Dimension.DAY), Granularity.DAILY),
                    net_code_lines=day.net_code_lines,
                    input_tokens=day.input_tokens,
                    message_count=day.message_count,
                    total_duration_ms=day.duration_ms,
                    cost=day.cost,
                )
                for day in days[:TOP_DAYS]
            ]

        return self._degrade("get_daily_top3_stats", [], query)

    def _project_source(self, conn: sqlite3.Connection) -> MetricSource:
        resolved = self._all_time(conn)
        return select_source(conn, (RollupTable.MONTHLY,), resolved.start_ms, resolved.end_ms)

    def get_project_consumption_stats(self, project: str) -> Optional[ProjectConsumptionStats]:
        """All-time cost and token consumption of a project; None when it has none."""
        def query(conn):
            totals = self._project_source(conn).totals({Dimension.PROJECT: project})
            if not (totals.cost > 0 or totals.input_tokens > 0 or totals.output_tokens > 0 or totals.reasoning_tokens > 0):
                return None
            return ProjectConsumptionStats(
                cost=totals.cost,
                input_tokens=totals.input_tokens,
                output_tokens=totals.output_tokens,
                reasoning_tokens=totals.reasoning_tokens,
                net_code_lines=totals.net_code_lines,
            )
        return self._degrade("get_project_consumption_stats", None, query)

    def get_project_model_agent_stats(self, project: str) -> ProjectModelAgentStats:
        """Model share of input tokens, agent share of messages and automation level for a project."""
        def query(conn):
            source = self._project_source(conn)
            filters = {Dimension.PROJECT: project}

            models = sorted(
                source.aggregate([Dimension.MODEL, Dimension.PROVIDER], filters),
                key=lambda row: (-row.input_tokens, row.key(Dimension.MODEL)),
            )
            total_input = sum(row.input_tokens for row in models)
            contributions = []
            if total_input > 0:
                for row in models[:PROJECT_MODEL_LIMIT]:
                    contributions.append(ModelContribution(
                        model_id=row.key(Dimension.MODEL),
                        provider_id=row.key(Dimension.PROVIDER),
                        input_tokens=row.input_tokens,
                        percentage=percentage(row.input_tokens, total_input),
                    ))
                other = sum(row.input_tokens for row in models[PROJECT_MODEL_LIMIT:])
                if other > 0:
                    contributions.append(ModelContribution(OTHER_MODEL_ID, "", other, percentage(other, total_input)))

            agents = [
                row for row in source.aggregate([Dimension.AGENT], filters)
                if row.key(Dimension.AGENT) not in ("", "unknown")
            ]
            agents.sort(key=lambda row: (-row.message_count, row.key(Dimension.AGENT)))
            total_agent_messages = sum(row.message_count for row in agents)
            usages = [
                AgentUsage(row.key(Dimension.AGENT), row.message_count, percentage(row.message_count, total_agent_messages))
                for row in agents
            ] if total_agent_messages > 0 else []

            roles = {row.key(Dimension.ROLE): row.message_count for row in source.aggregate([Dimension.ROLE], filters)}
            return ProjectModelAgentStats(
                model_contributions=contributions,
                agent_usages=usages,
                automation_level=automation_level(roles.get("assistant", 0), roles.get("user", 0)),
            )

        return self._degrade("get_project_model_agent_stats", ProjectModelAgentStats([], [], 0.0), query)

    def _daily_usage(self, name: str, days: int, filters: Dict[Dimension, str]) -> List[DailyUsage]:
        window = self._last_days_window(max(1, days))

        def build(rows):
            by_day = {row.key(Dimension.DAY): row for row in rows}
            usages = []
            for start in window.starts:
                row = by_day.get(start, CounterRow())
                usages.append(DailyUsage(
                    day_start_ms=start,
                    label=bucket_label(start, Granularity.DAILY),
                    session_count=row.session_count,
                    message_count=row.message_count,
                    input_tokens=row.input_tokens,
                    output_tokens=row.output_tokens,
                    reasoning_tokens=row.reasoning_tokens,
                    cost=row.cost,
                    duration_ms=row.duration_ms,
                    net_code_lines=row.net_code_lines,
                    file_count=row.file_count,
                ))
            return usages

        def query(conn):
            source = select_source(conn, (RollupTable.DAILY,), window.start_ms, window.end_ms)
            return build(source.aggregate([Dimension.DAY], {**filters, Dimension.ROLE: "assistant"}))

        return self._degrade(name, build([]), query)

    def get_project_daily_stats(self, project: str, days: int) -> List[DailyUsage]:
        """Assistant activity of one project for each of the last N days."""
        return self._daily_usage("get_project_daily_stats", days, {Dimension.PROJECT: project})

    def get_model_daily_stats(self, model_id: str, days: int, provider_id: Optional[str] = None) -> List[DailyUsage]:
        """Assistant activity of one model for each of the last N days."""
        filters = {Dimension.MODEL: model_id}
        if provider_id is not None:
            filters[Dimension.PROVIDER] = provider_id
        return self._daily_usage("get_model_daily_stats", days, filters)

    def get_model_processing_stats(self, time_range: TimeRange) -> List[ModelProcessingStat]:
        """Per-model token processing and billed cost, most expensive first."""
        def query(conn):
            resolved = self._resolve(conn, time_range)
            provider = "COALESCE(m.provider_id, 'unknown')"
            model = "COALESCE(m.model_id, 'unknown')"
            rows = UsageEventStore(conn).scan_messages(
                [
                    provider,
                    model,
                    "COUNT(DISTINCT m.session_id)",
                    "COALESCE(SUM(CAST(COALESCE(m.token_input, '0') AS INTEGER)), 0)",
                    "COALESCE(SUM(CAST(COALESCE(m.token_output, '0') AS INTEGER)), 0)",
                    "COALESCE(SUM(CAST(COALESCE(m.token_reasoning, '0') AS INTEGER)), 0)",
                    "COALESCE(SUM(CASE WHEN m.cost > 0 THEN m.cost ELSE 0 END), 0)",
                ],
                _RAW_RANGE + ["m.model_id IS NOT NULL"],
                [resolved.start_ms, resolved.end_ms],
                group_by=[provider, model],
            )
            stats = [
                ModelProcessingStat(
                    provider_id=row[0],
                    model_id=row[1],
                    session_count=coerce_int(row[2]),
                    input_tokens=coerce_int(row[3]),
                    output_tokens=coerce_int(row[4]),
                    reasoning_tokens=coerce_int(row[5]),
                    billed_cost=coerce_float(row[6]),
                )
                for row in rows
            ]
            return sorted(stats, key=lambda s: (-s.billed_cost, s.model_id))
        return self._degrade("get_model_processing_stats", [], query)

    # Users, agents, sessions and code

    def get_user_agent_message_counts(self, time_range: TimeRange) -> UserAgentCounts:
        """Messages sent by the user and messages produced by an assistant or agent."""
        def query(conn):
            resolved = self._resolve(conn, time_range)
            source = select_source(conn, self._overview_tables(resolved), resolved.start_ms, resolved.end_ms)
            rows = source.aggregate([Dimension.ROLE, Dimension.AGENT])
            return UserAgentCounts(
                user_count=sum(row.message_count for row in rows if _is_user(row)),
                agent_count=sum(row.message_count for row in rows if _is_agent(row)),
            )
        return self._degrade("get_user_agent_message_counts", UserAgentCounts(), query)

    def get_user_agent_session_counts(self, time_range: TimeRange) -> UserAgentSessionCounts:
        """Distinct sessions with user messages, with agent messages, and overall."""
        def query(conn):
            resolved = self._resolve(conn, time_range)
            rows = UsageEventStore(conn).scan_messages(
                [
                    "COUNT(DISTINCT CASE WHEN m.role = 'user' THEN m.session_id END)",
                    f"COUNT(DISTINCT CASE WHEN {_AGENT_MESSAGE} THEN m.session_id END)",
                    "COUNT(DISTINCT m.session_id)",
                ],
                _RAW_RANGE,
                [resolved.start_ms, resolved.end_ms],
            )
            row = rows[0]
            return UserAgentSessionCounts(coerce_int(row[0]), coerce_int(row[1]), coerce_int(row[2]))
        return self._degrade("get_user_agent_session_counts", UserAgentSessionCounts(), query)

    def get_agent_session_distribution(self, time_range: TimeRange) -> List[AgentSessionCount]:
        """Distinct sessions per agent (unnamed assistants grouped as "Assistant") plus "User"."""
        def query(conn):
            resolved = self._resolve(conn, time_range)
            store = UsageEventStore(conn)
            agent_name = "COALESCE(NULLIF(m.agent, ''), 'Assistant')"
            rows = store.scan_messages(
                [agent_name, "COUNT(DISTINCT m.session_id)"],
                _RAW_RANGE + [_AGENT_MESSAGE],
                [resolved.start_ms, resolved.end_ms],
                group_by=[agent_name],
            )
            counts = [AgentSessionCount(row[0], coerce_int(row[1])) for row in rows]
            user_row = store.scan_messages(
                ["COUNT(DISTINCT m.session_id)"],
                _RAW_RANGE + ["m.role = 'user'"],
                [resolved.start_ms, resolved.end_ms],
            )[0]
            if coerce_int(user_row[0]) > 0:
                counts.append(AgentSessionCount("User", coerce_int(user_row[0])))
            return sorted(counts, key=lambda c: (-c.session_count, c.name))
        return self._degrade("get_agent_session_distribution", [], query)

    def get_session_depth_distribution(self, time_range: TimeRange) -> SessionDepthDistribution:
        """Sessions ending in range bucketed by how many user messages they hold."""
        def query(conn):
            resolved = self._resolve(conn, time_range)
            depth = "COALESCE(s.user_msg_count, 0)"
            rows = UsageEventStore(conn).scan_sessions(
                [depth, "COUNT(*)"],
                ["s.last_message_at >= ?", "s.last_message_at < ?"],
                [resolved.start_ms, resolved.end_ms],
                group_by=[depth],
            )
            totals = Counter()
            for row in rows:
                totals[session_depth(coerce_int(row[0]))] += coerce_int(row[1])
            return SessionDepthDistribution(
                shallow=totals[SessionDepth.SHALLOW],
                medium=totals[SessionDepth.MEDIUM],
                deep=totals[SessionDepth.DEEP],
            )
        return self._degrade("get_session_depth_distribution", SessionDepthDistribution(), query)

    def get_code_output_stats(self, time_range: TimeRange) -> CodeOutputStats:
        """Code additions, deletions and touched files of sessions ending in range."""
        def query(conn):
            resolved = self._resolve(conn, time_range)
            row = UsageEventStore(conn).scan_sessions(
                [
                    "COALESCE(SUM(s.total_additions), 0)",
                    "COALESCE(SUM(s.total_deletions), 0)",
                    "COALESCE(SUM(s.total_file_count), 0)",
                ],
                ["s.last_message_at >= ?", "s.last_message_at < ?"],
                [resolved.start_ms, resolved.end_ms],
            )[0]
            return CodeOutputStats(coerce_int(row[0]), coerce_int(row[1]), coerce_int(row[2]))
        return self._degrade("get_code_output_stats", CodeOutputStats(), query)

    def get_net_code_output_stats(self, time_range: TimeRange) -> CodeOutputStats:
        """Code additions and deletions summed over the messages in range."""
        def query(conn):
            resolved = self._resolve(conn, time_range)
            row = UsageEventStore(conn).scan_messages(
                [
                    "COALESCE(SUM(m.summary_total_additions), 0)",
                    "COALESCE(SUM(m.summary_total_deletions), 0)",
                    "COALESCE(SUM(m.summary_file_count), 0)",
                ],
                _RAW_RANGE,
                [resolved.start_ms, resolved.end_ms],
            )[0]
            return CodeOutputStats(coerce_int(row[0]), coerce_int(row[1]), coerce_int(row[2]))
        return self._degrade("get_net_code_output_stats", CodeOutputStats(), query)

    def get_billing_cost_stats(self, time_range: TimeRange) -> BillingCostStats:
        """Billed cost and the share of messages that carry a cost."""
        def query(conn):
            resolved = self._resolve(conn, time_range)
            row = UsageEventStore(conn).scan_messages(
                [
                    "COALESCE(SUM(CASE WHEN m.cost > 0 THEN m.cost ELSE 0 END), 0)",
                    "COALESCE(SUM(CASE WHEN m.cost > 0 THEN 1 ELSE 0 END), 0)",
                    "COUNT(*)",
                ],
                _RAW_RANGE,
                [resolved.start_ms, resolved.end_ms],
            )[0]
            return billing_coverage(coerce_float(row[0]), coerce_int(row[1]), coerce_int(row[2]))
        return self._degrade("get_billing_cost_stats", billing_coverage(0.0, 0, 0), query)

    # Derived insights

    def get_anomaly_stats(self, time_range: TimeRange) -> AnomalyStats:
        """Whether the latest active day stands out from the preceding days.

        The per-day series always comes from the message log so daily
        session counts are distinct sessions whether or not rollups exist.
        """
        def query(conn):
            resolved = self._resolve(conn, time_range)
            source = RawEventSource(conn, resolved.start_ms, resolved.end_ms)
            return compute_anomaly_stats(source.aggregate([Dimension.DAY]), self.settings.queries.anomaly_sigma)
        return self._degrade("get_anomaly_stats", EMPTY_ANOMALY_STATS, query)

    def get_rhythm_insights(self, time_range: TimeRange) -> RhythmInsights:
        """Peak hour plus night-owl and weekend ratios for messages and sessions."""
        def query(conn):
            resolved = self._resolve(conn, time_range)
            store = UsageEventStore(conn)
            hour = time_expression(Dimension.HOUR_OF_DAY, SourceKind.RAW)
            weekday = time_expression(Dimension.WEEKDAY, SourceKind.RAW)
            night = f"({hour} >= 22 OR {hour} < 6)"
            weekend = f"{weekday} IN (0, 6)"
            params = [resolved.start_ms, resolved.end_ms]

            hour_rows = store.scan_messages(
                [hour, "COUNT(*)", "COUNT(DISTINCT m.session_id)"], _RAW_RANGE, params, group_by=[hour]
            )
            totals = store.scan_messages(
                [
                    "COUNT(DISTINCT m.session_id)",
                    f"COALESCE(SUM(CASE WHEN {weekend} THEN 1 ELSE 0 END), 0)",
                    f"COUNT(DISTINCT CASE WHEN {night} THEN m.session_id END)",
                    f"COUNT(DISTINCT CASE WHEN {weekend} THEN m.session_id END)",
                ],
                _RAW_RANGE,
                params,
            )[0]
            return build_rhythm_insights(
                hourly_messages=hourly_counts([(row[0], row[1]) for row in hour_rows]),
                hourly_sessions=hourly_counts([(row[0], row[2]) for row in hour_rows]),
                weekend_messages=coerce_int(totals[1]),
                total_sessions=coerce_int(totals[0]),
                night_sessions=coerce_int(totals[2]),
                weekend_sessions=coerce_int(totals[3]),
            )
        return self._degrade("get_rhythm_insights", build_rhythm_insights({}, {}, 0, 0, 0, 0), query)

    def _heatmap(self, name: str, metrics: Sequence[InsightMetric], last_n_days: Optional[int]) -> HeatmapBundle:
        days = max(1, last_n_days or self.settings.queries.heatmap_days)
        window = self._last_days_window(days)

        def build(rows):
            by_day = {row.key(Dimension.DAY): row for row in rows}
            return {
                metric: [
                    DailyHeatPoint(
                        label=bucket_label(start, Granularity.DAILY),
                        day_start_ms=start,
                        value=float(INSIGHT_METRIC_VALUES[metric](by_day[start])) if start in by_day else 0.0,
                    )
                    for start in window.starts
                ]
                for metric in metrics
            }

        def query(conn):
            source = select_source(conn, (RollupTable.DAILY,), window.start_ms, window.end_ms)
            return build(source.aggregate([Dimension.DAY]))

        return self._degrade(name, build([]), query)

    def get_daily_heatmap(self, metric: InsightMetric, last_n_days: Optional[int] = None) -> List[DailyHeatPoint]:
        """One point per day for the last N days, today included."""
        return self._heatmap("get_daily_heatmap", [metric], last_n_days)[metric]

    def get_daily_heatmap_bundle(self, last_n_days: Optional[int] = None) -> HeatmapBundle:
        """Daily heatmaps for every insight metric from a single scan."""
        return self._heatmap("get_daily_heatmap_bundle", list(InsightMetric), last_n_days)

    def get_weekday_weekend_intensity(
        self, metric: InsightMetric, day_filter: DayTypeFilter = DayTypeFilter.ALL
    ) -> WeekdayWeekendIntensity:
        """All-time weekday and weekend totals and per-active-day averages."""
        value_of = INSIGHT_METRIC_VALUES[metric]

        def query(conn):
            resolved = self._all_time(conn)
            source = select_source(conn, (RollupTable.DAILY,), resolved.start_ms, resolved.end_ms)
            rows = source.aggregate([Dimension.DAY], day_filter=day_filter)
            split = split_weekday_weekend({row.key(Dimension.DAY): value_of(row) for row in rows})
            return WeekdayWeekendIntensity(
                weekday_total=split.weekday_total,
                weekend_total=split.weekend_total,
                weekday_average=split.weekday_avg,
                weekend_average=split.weekend_avg,
            )

        return self._degrade("get_weekday_weekend_intensity", WeekdayWeekendIntensity(), query)

    def get_hourly_intensity(
        self, metric: InsightMetric, day_filter: DayTypeFilter = DayTypeFilter.ALL
    ) -> List[HourValue]:
        """All-time metric per local hour of day, always 24 entries."""
        value_of = INSIGHT_METRIC_VALUES[metric]

        def query(conn):
            resolved = self._all_time(conn)
            source = select_source(conn, (RollupTable.HOURLY,), resolved.start_ms, resolved.end_ms)
            rows = source.aggregate([Dimension.HOUR_OF_DAY], day_filter=day_filter)
            return _dense_hours({row.key(Dimension.HOUR_OF_DAY): value_of(row) for row in rows})

        return self._degrade("get_hourly_intensity", _dense_hours({}), query)

    def get_model_lens_rows(self, group_by: ModelLensGroupBy = ModelLensGroupBy.MODEL) -> List[ModelLensRow]:
        """All-time throughput per model or provider, largest input first."""
        def query(conn):
            resolved = self._all_time(conn)
            source = select_source(conn, MODEL_LENS_TABLES, resolved.start_ms, resolved.end_ms)
            if group_by == ModelLensGroupBy.MODEL:
                dimensions = [Dimension.MODEL, Dimension.PROVIDER]
                name_of, provider_of = (lambda r: r.key(Dimension.MODEL)), (lambda r: r.key(Dimension.PROVIDER))
            else:
                dimensions = [Dimension.PROVIDER]
                name_of, provider_of = (lambda r: r.key(Dimension.PROVIDER)), (lambda r: "")
            rows = source.aggregate(dimensions)

            # A rollup row only knows whether any of its messages was timed
            timed_rows = rows
            if source.kind == SourceKind.ROLLUP:
                timed_rows = RawEventSource(conn, resolved.start_ms, resolved.end_ms).aggregate(dimensions)
            timed_ratio = {
                tuple(row.key(d) for d in dimensions): (
                    row.timed_message_count / row.message_count if row.message_count > 0 else 0.0
                )
                for row in timed_rows
            }

            lens = [
                ModelLensRow(
                    dimension_name=name_of(row),
                    provider_id=provider_of(row),
                    input_tokens=float(row.input_tokens),
                    output_tps=tokens_per_second(row.output_tokens, row.duration_ms),
                    output_tokens=float(row.output_tokens),
                    duration_seconds=row.duration_ms / 1000,
                    valid_duration_message_ratio=timed_ratio.get(tuple(row.key(d) for d in dimensions), 0.0),
                )
                for row in rows
            ]
            return sorted(lens, key=lambda r: -r.input_tokens)

        return self._degrade("get_model_lens_rows", [], query)

    def get_model_lens_stats(
        self,
        metric: ModelLensMetric,
        group_by: ModelLensGroupBy = ModelLensGroupBy.MODEL,
    ) -> List[ModelLensRow]:
        """Model lens rows ordered by the chosen metric, highest first."""
        return sorted(self.get_model_lens_rows(group_by), key=lambda r: -r.value(metric))

    # Rollup inspection

    def has_aggregation_data(self, table: RollupTable) -> bool:
        """True when the rollup table exists and holds rows."""
        return self._degrade("has_aggregation_data", False, lambda conn: has_usable_rollup(conn, table))

    def get_min_time_bucket_ms(self, table: RollupTable) -> Optional[int]:
        """Earliest bucket of a usable rollup table, or None."""
        def query(conn):
            if not has_usable_rollup(conn, table):
                return None
            return RollupStore(conn).min_time_bucket(table)
        return self._degrade("get_min_time_bucket_ms", None, query)


# Global service instance
_default_service: Optional[StatisticsService] = None


def get_statistics_service(db_path: Optional[str] = None, settings: Optional[Settings] = None) -> StatisticsService:
    """Get a shared StatisticsService, rebuilt when the database path changes.

    Args:
        db_path: Path to SQLite database file
        settings: Engine settings

    Returns:
        An instance of StatisticsService
    """
    global _default_service
    wanted = db_path or (settings or default_settings()).database.path
    if _default_service is None or _default_service.db_path != wanted:
        _default_service = StatisticsService(db_path=wanted, settings=settings)
    return _default_service

"""
Integration tests for the statistics query façade.

Every test runs against a real temporary SQLite store through
StatisticsService with a fixed clock.
"""

import logging
import os

import pytest

from usage_lens.core.metrics import (
    DayTypeFilter,
    Granularity,
    HistoryMetric,
    InsightMetric,
    TrendMetric,
)
from usage_lens.core.results import (
    DailyTopOrder,
    ModelLensGroupBy,
    ModelLensMetric,
    OverviewStats,
)
from usage_lens.core.statistics import StatisticsService
from usage_lens.core.time_range import TimeRange
from usage_lens.storage.db import QueryError, get_connection
from usage_lens.storage.models import RollupTable

from conftest import NOW_MS, TODAY_MS, local_ms, make_event, make_session


def _insert_daily_rollup(store, day_ms, project, model, session_count, input_tokens):
    store.execute(
        "INSERT INTO daily_stats (time_bucket_ms, project_id, provider_id, model_id, role, agent, "
        "tool_id, session_count, message_count, input_tokens, last_created_at_ms) "
        "VALUES (?, ?, 'anthropic', ?, 'assistant', 'build', 'opencode', ?, ?, ?, ?)",
        (day_ms, project, model, session_count, session_count * 2, input_tokens, day_ms + 3_600_000),
    )


def _today_pair(store):
    """Two messages today: cost 1.0 + 0.5 and input tokens "100" + "50"."""
    first, second = local_ms(2024, 6, 12, 9), local_ms(2024, 6, 12, 11)
    return store.add(
        [
            make_event(first, "s1", cost=1.0, token_input="100"),
            make_event(second, "s1", cost=0.5, token_input="50"),
        ],
        [make_session("s1", first, second)],
    )


def _mixed_role_session(store):
    """One session today with a user prompt and an assistant reply."""
    start = local_ms(2024, 6, 12, 9)
    return store.add(
        [make_event(start, "s1", role="user"), make_event(start + 60_000, "s1")],
        [make_session("s1", start, start + 60_000)],
    )


class TestOverview:
    """Test overview totals."""

    def test_overview_from_raw_messages(self, make_store):
        """Totals come from the message log when there are no rollups."""
        store = _today_pair(make_store(include_rollups=False))
        stats = store.service().get_overview_stats(TimeRange.today())
        assert stats.total_messages == 2
        assert stats.total_cost == 1.5
        assert stats.input_tokens == 150
        assert stats.output_tokens == 40
        assert stats.total_tokens == 190
        assert stats.total_sessions == 1

    def test_overview_from_hourly_rollup(self, store):
        """Rebuilt hourly rollups give the same totals for today."""
        _today_pair(store).rebuild()
        stats = store.service().get_overview_stats(TimeRange.today())
        assert stats.total_messages == 2
        assert stats.total_cost == 1.5
        assert stats.input_tokens == 150
        assert stats.total_sessions == 1

    def test_rollup_overview_counts_distinct_sessions(self, make_store):
        """A session spanning several rollup rows is still one session."""
        raw = _mixed_role_session(make_store(include_rollups=False)).service()
        rollup = _mixed_role_session(make_store()).rebuild().service()

        raw_stats = raw.get_overview_stats(TimeRange.today())
        rollup_stats = rollup.get_overview_stats(TimeRange.today())
        assert rollup_stats == raw_stats
        assert rollup_stats.total_sessions == 1
        assert rollup_stats.total_messages == 2

    def test_overview_ignores_other_days(self, store):
        """Messages outside the range are not counted."""
        _today_pair(store)
        store.add([make_event(local_ms(2024, 6, 10, 9), "s2")])
        stats = store.service().get_overview_stats(TimeRange.today())
        assert stats.total_messages == 2

    def test_empty_store_all_time(self, store):
        """All time on an empty store returns zeroed results."""
        service = store.service()
        assert service.get_overview_stats(TimeRange.all_time()) == OverviewStats()
        points = service.get_trend_data(TimeRange.all_time(), TrendMetric.MESSAGES)
        assert len(points) == 1
        assert points[0].bucket_start == TODAY_MS
        assert not points[0].has_data

    def test_malformed_token_counts(self, store):
        """Token text is parsed like SQLite CAST: leading digits or zero."""
        ts = local_ms(2024, 6, 12, 9)
        store.add([
            make_event(ts, "s1", token_input="12abc"),
            make_event(ts + 1_000, "s1", token_input=None),
            make_event(ts + 2_000, "s1", token_input="n/a"),
        ])
        assert store.service().get_overview_stats(TimeRange.today()).input_tokens == 12


class TestDegradation:
    """Store failures degrade to empty results and are logged."""

    def test_missing_database_degrades(self, temp_dir, caplog):
        """A missing database yields zeroed stats and a warning."""
        path = os.path.join(temp_dir, "missing.db")
        service = StatisticsService(db_path=path, clock=lambda: NOW_MS)
        with caplog.at_level(logging.WARNING, logger="usage_lens.core.statistics"):
            stats = service.get_overview_stats(TimeRange.last_7_days())
        assert stats == OverviewStats()
        assert "get_overview_stats failed" in caplog.text
        assert not os.path.exists(path)

    def test_run_reports_query_error(self, temp_dir):
        """run() surfaces the failure instead of hiding it."""
        service = StatisticsService(db_path=os.path.join(temp_dir, "missing.db"))
        result = service.run(lambda conn: 1)
        assert not result.ok
        assert result.value is None
        assert isinstance(result.error, QueryError)

    def test_missing_tables_degrade(self, temp_dir):
        """A database without the usage tables yields empty lists."""
        path = os.path.join(temp_dir, "blank.db")
        conn = get_connection(path)
        conn.execute("CREATE TABLE unrelated (id INTEGER)")
        conn.commit()
        conn.close()
        service = StatisticsService(db_path=path, clock=lambda: NOW_MS)
        assert service.get_top_projects(TimeRange.last_7_days()) == []

    def test_degraded_trend_keeps_its_shape(self, temp_dir):
        """A failed trend query still returns the full placeholder series."""
        service = StatisticsService(db_path=os.path.join(temp_dir, "missing.db"), clock=lambda: NOW_MS)
        points = service.get_trend_data(TimeRange.last_30_days(), TrendMetric.COST)
        assert len(points) == 30
        assert all(p.value == 0.0 for p in points)

    def test_successful_run(self, store):
        """run() wraps a successful operation."""
        result = store.service().run(lambda conn: conn.execute("SELECT COUNT(*) FROM messages").fetchone()[0])
        assert result.ok
        assert result.value == 0


class TestTrends:
    """Test trend series."""

    def _week(self, store):
        events, sessions = [], []
        for day, count in ((6, 2), (8, 3), (11, 1)):
            start = local_ms(2024, 6, day, 10)
            session_id = f"s{day}"
            events += [make_event(start + i * 60_000, session_id) for i in range(count)]
            sessions.append(make_session(session_id, start, start + count * 60_000))
        return store.add(events, sessions)

    def test_daily_trend_is_gap_filled(self, store):
        """Last 7 days daily has 7 points with zeros between active days."""
        points = self._week(store).service().get_trend_data(
            TimeRange.last_7_days(), TrendMetric.MESSAGES, Granularity.DAILY
        )
        assert [p.label for p in points][0] == "2024-06-05"
        assert [p.value for p in points] == [0.0, 2.0, 0.0, 3.0, 0.0, 0.0, 1.0]
        assert [p.bucket_index for p in points] == list(range(7))

    def test_rollup_and_raw_trends_agree(self, make_store):
        """The same data gives the same trend with or without rollups."""
        raw_store = self._week(make_store(include_rollups=False))
        rollup_store = self._week(make_store()).rebuild()
        for metric in (TrendMetric.MESSAGES, TrendMetric.TOKENS, TrendMetric.COST):
            raw = raw_store.service().get_trend_data(TimeRange.last_30_days(), metric)
            rolled = rollup_store.service().get_trend_data(TimeRange.last_30_days(), metric)
            assert raw == rolled

    def test_hourly_today(self, store):
        """Hourly today has 24 points labelled from midnight."""
        _today_pair(store).rebuild()
        points = store.service().get_trend_data(TimeRange.today(), TrendMetric.MESSAGES, Granularity.HOURLY)
        assert len(points) == 24
        assert points[0].label == "0:00"
        assert points[9].value == 1.0
        assert points[11].value == 1.0
        assert sum(p.value for p in points) == 2.0

    def test_rolling_24_hours(self, store):
        """The rolling hourly view ends with the current hour."""
        store.add([make_event(local_ms(2024, 6, 12, 15, 10), "s1")])
        points = store.service().get_trend_data(
            TimeRange.last_24_hours(), TrendMetric.MESSAGES, Granularity.HOURLY
        )
        assert len(points) == 24
        assert points[-1].label == "15:00"
        assert points[-1].value == 1.0

    def test_all_time_monthly_has_12_points(self, store):
        """All-time monthly trends always hold 12 months."""
        points = self._week(store).service().get_monthly_stats(TimeRange.all_time())
        assert len(points) == 12
        assert points[-1].label == "2024-06"
        assert points[-1].value == 6.0

    def test_kpi_trends(self, store):
        """KPI series cover the last N days including today."""
        _today_pair(store)
        kpis = store.service().get_kpi_trends(7)
        assert len(kpis.messages) == 7
        assert kpis.messages[-1].value == 2.0
        assert kpis.cost[-1].value == 1.5
        assert kpis.avg_tokens_per_session[-1].value == 190.0
        assert kpis.sessions[0].value == 0.0

    def test_token_diverging_fields(self, store):
        """Input and output are both carried per bucket."""
        _today_pair(store)
        points = store.service().get_token_diverging_data(TimeRange.today(), Granularity.DAILY)
        assert len(points) == 1
        assert points[0].field_value("input") == 150.0
        assert points[0].field_value("output") == 40.0
        assert points[0].value == 150.0

    def test_dual_axis_fields(self, store):
        """Messages and sessions are both carried per bucket."""
        _today_pair(store)
        point = store.service().get_dual_axis_data(TimeRange.today())[0]
        assert point.field_value("messages") == 2.0
        assert point.field_value("sessions") == 1.0

    def test_history_series_lengths(self, store):
        """History windows have fixed lengths regardless of data."""
        service = _today_pair(store).service()
        assert len(service.get_history_series(HistoryMetric.COST, Granularity.HOURLY)) == 24
        daily = service.get_history_series(HistoryMetric.INPUT_TOKENS, Granularity.DAILY)
        assert len(daily) == 30
        assert daily[-1].value == 150.0
        assert len(service.get_history_series(HistoryMetric.MESSAGES, Granularity.MONTHLY)) == 12

    def test_user_agent_trend(self, store):
        """User and agent messages are split per bucket."""
        ts = local_ms(2024, 6, 12, 9)
        store.add([make_event(ts, "s1", role="user"), make_event(ts + 1_000, "s1")])
        point = store.service().get_user_agent_message_trend(TimeRange.today())[0]
        assert point.field_value("user") == 1.0
        assert point.field_value("agent") == 1.0

    def test_code_output_cost_trend(self, store):
        """Additions, deletions and billed cost are bucketed together."""
        ts = local_ms(2024, 6, 12, 9)
        store.add([
            make_event(ts, "s1", summary_total_additions=30, summary_total_deletions=10, cost=0.5),
            make_event(ts + 1_000, "s1", cost=0.0),
        ])
        point = store.service().get_code_output_cost_trend(TimeRange.today())[0]
        assert point.field_value("additions") == 30.0
        assert point.field_value("deletions") == 10.0
        assert point.value == 0.5


class TestTopProjects:
    """Test project rankings."""

    def test_optimized_sums_rollup_session_counts(self, store):
        """Session counts from rollups are summed across rows."""
        _insert_daily_rollup(store, local_ms(2024, 6, 10), "/work/alpha", "model-a", 2, 100)
        _insert_daily_rollup(store, local_ms(2024, 6, 10), "/work/alpha", "model-b", 3, 200)
        _insert_daily_rollup(store, local_ms(2024, 6, 11), "/work/beta", "model-a", 1, 500)

        projects = store.service().get_top_projects_optimized(TimeRange.last_7_days())
        assert [p.project for p in projects] == ["/work/beta", "/work/alpha"]
        alpha = projects[1]
        assert alpha.session_count == 5
        assert alpha.input_tokens == 300
        assert alpha.label == "alpha"
        assert alpha.active_days == 1

    def test_input_tokens_by_project_with_other(self, store):
        """The long tail is folded into an Other entry."""
        _insert_daily_rollup(store, local_ms(2024, 6, 10), "/work/alpha", "model-a", 2, 100)
        _insert_daily_rollup(store, local_ms(2024, 6, 10), "/work/gamma", "model-b", 3, 200)
        _insert_daily_rollup(store, local_ms(2024, 6, 11), "/work/beta", "model-a", 1, 500)

        entries = store.service().get_input_tokens_by_project(TimeRange.last_7_days(), top_n=1)
        assert [(e.label, e.value, e.is_other) for e in entries] == [
            ("beta", 500, False),
            ("Other", 300, True),
        ]
        everything = store.service().get_input_tokens_by_project(TimeRange.last_7_days())
        assert not any(e.is_other for e in everything)
        assert sum(e.value for e in everything) == 800

    def test_raw_top_projects(self, store):
        """Raw rankings sort by input tokens and honour the limit."""
        ts = local_ms(2024, 6, 10, 9)
        store.add(
            [
                make_event(ts, "a", token_input="10"),
                make_event(ts, "b", token_input="30"),
                make_event(ts, "c", token_input="20"),
            ],
            [
                make_session("a", ts, ts, "/p/a"),
                make_session("b", ts, ts, "/p/b"),
                make_session("c", ts, ts, "/p/c"),
            ],
        )
        projects = store.service().get_top_projects(TimeRange.last_7_days(), limit=2)
        assert [p.project for p in projects] == ["/p/b", "/p/c"]

    def test_top_models(self, store):
        """Models are ranked by input tokens with per-message averages."""
        ts = local_ms(2024, 6, 10, 9)
        store.add([
            make_event(ts, "a", model_id="small", token_input="10", cost=0.5),
            make_event(ts, "a", model_id="big", token_input="90", cost=1.0),
            make_event(ts, "a", model_id="big", token_input="90", cost=1.0),
        ])
        models = store.service().get_top_models(TimeRange.last_7_days())
        assert [m.model_id for m in models] == ["big", "small"]
        assert models[0].message_count == 2
        assert models[0].avg_cost_per_message == 1.0


class TestProjectBreakdowns:
    """Test per-project and per-model statistics."""

    def _project(self, store):
        ts = local_ms(2024, 6, 10, 9)
        events = [make_event(ts, "s1", role="user")]
        events += [
            make_event(ts + i * 60_000, "s1", summary_total_additions=10, summary_total_deletions=4)
            for i in range(1, 4)
        ]
        return store.add(events, [make_session("s1", ts, ts + 180_000, "/work/alpha")])

    def test_automation_level(self, store):
        """Three assistant messages and one user message give 75%."""
        stats = self._project(store).service().get_project_model_agent_stats("/work/alpha")
        assert stats.automation_level == 75.0
        assert [(a.agent, a.percentage) for a in stats.agent_usages] == [("build", 100.0)]
        assert stats.model_contributions[0].percentage == 100.0

    def test_consumption_none_for_unknown_project(self, store):
        """A project without usage has no consumption stats."""
        service = self._project(store).service()
        assert service.get_project_consumption_stats("/work/nowhere") is None
        stats = service.get_project_consumption_stats("/work/alpha")
        assert stats.cost == 1.5
        assert stats.net_code_lines == 18

    def test_activity_stats(self, store):
        """Activity covers first day, active days and net code lines."""
        stats = self._project(store).service().get_project_activity_stats("/work/alpha")
        assert stats.first_active_ms == local_ms(2024, 6, 10)
        assert stats.active_days == 1
        assert stats.net_code_lines == 18
        assert stats.total_duration_ms == 6_000

    def test_daily_top3_rejects_unknown_order(self, store):
        """Only whitelisted columns may be used for ordering."""
        with pytest.raises(ValueError):
            store.service().get_daily_top3_stats("/work/alpha", "created_at; DROP TABLE messages")

    def test_daily_top3_orders_days(self, store):
        """Days are ranked by the requested column."""
        self._project(store)
        ts = local_ms(2024, 6, 11, 9)
        store.add([make_event(ts, "s2")], [make_session("s2", ts, ts, "/work/alpha")])
        days = store.service().get_daily_top3_stats("/work/alpha", DailyTopOrder.MESSAGE_COUNT)
        assert [d.label for d in days] == ["2024-06-10", "2024-06-11"]
        assert days[0].message_count == 4

    def test_project_daily_stats_window(self, store):
        """Daily stats cover exactly the requested number of days."""
        days = self._project(store).service().get_project_daily_stats("/work/alpha", 7)
        assert len(days) == 7
        assert days[-1].day_start_ms == TODAY_MS
        active = [d for d in days if d.message_count]
        assert [(d.label, d.message_count) for d in active] == [("2024-06-10", 3)]

    def test_model_daily_stats(self, store):
        """Model daily stats count only assistant replies of that model."""
        days = self._project(store).service().get_model_daily_stats("claude-sonnet", 3, "anthropic")
        assert len(days) == 3
        assert days[0].message_count == 3

    def test_project_stats_sorted_by_cost(self, store):
        """Project stats list the most expensive project first."""
        self._project(store)
        ts = local_ms(2024, 6, 10, 12)
        store.add([make_event(ts, "s9", cost=5.0)], [make_session("s9", ts, ts, "/work/beta")])
        projects = store.service().get_project_stats(TimeRange.last_7_days())
        assert [p.project for p in projects] == ["/work/beta", "/work/alpha"]


class TestUsersAgentsAndBilling:
    """Test user/agent splits, session depth, code output and billing."""

    def test_billing_coverage(self, store):
        """Costs [2.0, 0, 0] bill one message in three."""
        ts = local_ms(2024, 6, 12, 9)
        store.add([
            make_event(ts, "s1", cost=2.0),
            make_event(ts + 1_000, "s1", cost=0.0),
            make_event(ts + 2_000, "s1", cost=0.0),
        ])
        stats = store.service().get_billing_cost_stats(TimeRange.today())
        assert stats.total_cost == 2.0
        assert stats.billed_message_count == 1
        assert stats.total_message_count == 3
        assert stats.coverage_ratio == pytest.approx(1 / 3)

    def test_user_agent_counts(self, store):
        """User messages and assistant replies are counted separately."""
        ts = local_ms(2024, 6, 12, 9)
        store.add([
            make_event(ts, "s1", role="user"),
            make_event(ts + 1_000, "s1"),
            make_event(ts + 2_000, "s2"),
        ])
        service = store.service()
        counts = service.get_user_agent_message_counts(TimeRange.today())
        assert (counts.user_count, counts.agent_count) == (1, 2)
        sessions = service.get_user_agent_session_counts(TimeRange.today())
        assert (sessions.user_sessions, sessions.agent_sessions, sessions.total_sessions) == (1, 2, 2)
        distribution = service.get_agent_session_distribution(TimeRange.today())
        assert [(d.name, d.session_count) for d in distribution] == [("build", 2), ("User", 1)]

    def test_session_depth(self, store):
        """Sessions are bucketed by user message count."""
        ts = local_ms(2024, 6, 10, 9)
        store.add([], [
            make_session("a", ts, ts, user_msg_count=2),
            make_session("b", ts, ts, user_msg_count=5),
            make_session("c", ts, ts, user_msg_count=12),
            make_session("d", ts, ts, user_msg_count=3),
        ])
        depth = store.service().get_session_depth_distribution(TimeRange.last_7_days())
        assert (depth.shallow, depth.medium, depth.deep) == (2, 1, 1)

    def test_code_output_from_sessions(self, store):
        """Code output sums the sessions that ended in range."""
        ts = local_ms(2024, 6, 10, 9)
        store.add([], [
            make_session("a", ts, ts, total_additions=50, total_deletions=20, total_file_count=3),
            make_session("b", ts, ts, total_additions=5, total_deletions=1, total_file_count=1),
        ])
        stats = store.service().get_code_output_stats(TimeRange.last_7_days())
        assert (stats.total_additions, stats.total_deletions, stats.file_count) == (55, 21, 4)
        assert stats.net == 34

    def test_net_code_output_from_messages(self, store):
        """Net code output sums the per-message summaries."""
        ts = local_ms(2024, 6, 12, 9)
        store.add([make_event(ts, "s1", summary_total_additions=8, summary_total_deletions=3)])
        assert store.service().get_net_code_output_stats(TimeRange.today()).net == 5

    def test_model_processing_stats(self, store):
        """Processing stats report billed cost and per-session input."""
        ts = local_ms(2024, 6, 12, 9)
        store.add([
            make_event(ts, "s1", token_input="400", token_output="10", token_reasoning="5"),
            make_event(ts + 1_000, "s2", token_input="200", token_output="10", token_reasoning="5"),
        ])
        stat = store.service().get_model_processing_stats(TimeRange.today())[0]
        assert stat.billed_cost == 1.0
        assert stat.input_per_session == 300.0
        assert stat.reasoning_output_ratio == 0.5


class TestInsights:
    """Test derived insights."""

    def test_weekday_vs_weekend(self, store):
        """Saturday 10 messages and Monday 6 messages split by day type."""
        saturday, monday = local_ms(2024, 6, 8, 10), local_ms(2024, 6, 10, 10)
        events = [make_event(saturday + i * 1_000, "sat") for i in range(10)]
        events += [make_event(monday + i * 1_000, "mon") for i in range(6)]
        store.add(events)
        stats = store.service().get_weekday_vs_weekend_stats(TimeRange.last_7_days())
        assert (stats.weekday_total, stats.weekend_total) == (6, 10)
        assert (stats.weekday_days, stats.weekend_days) == (1, 1)
        assert (stats.weekday_avg, stats.weekend_avg) == (6, 10)

    def test_single_day_is_never_anomalous(self, store):
        """One active day has nothing to compare against."""
        _today_pair(store)
        stats = store.service().get_anomaly_stats(TimeRange.all_time())
        assert not stats.messages.is_anomaly
        assert stats.messages.mean == 0.0

    def test_spike_is_anomalous(self, store):
        """A day far above its baseline is flagged."""
        events = []
        for day, count in ((5, 2), (6, 3), (7, 2), (8, 3), (9, 2), (10, 3), (11, 20)):
            start = local_ms(2024, 6, day, 10)
            events += [make_event(start + i * 1_000, f"s{day}") for i in range(count)]
        store.add(events)
        stats = store.service().get_anomaly_stats(TimeRange.last_7_days())
        assert stats.messages.is_anomaly
        assert stats.messages.current == 20
        assert stats.messages.mean == 2.5
        assert not stats.sessions.is_anomaly

    def test_anomaly_sessions_are_distinct_with_rollups(self, make_store):
        """Daily session counts do not depend on whether rollups exist."""
        def fill_week(store):
            events, sessions = [], []
            for day in range(6, 12):
                start = local_ms(2024, 6, day, 10)
                events += [make_event(start, f"s{day}", role="user"), make_event(start + 60_000, f"s{day}")]
                sessions.append(make_session(f"s{day}", start, start + 60_000))
            return store.add(events, sessions)

        raw = fill_week(make_store(include_rollups=False)).service()
        rollup = fill_week(make_store()).rebuild().service()

        raw_stats = raw.get_anomaly_stats(TimeRange.last_7_days())
        rollup_stats = rollup.get_anomaly_stats(TimeRange.last_7_days())
        assert rollup_stats == raw_stats
        assert (rollup_stats.sessions.current, rollup_stats.sessions.mean) == (1.0, 1.0)

    def test_rhythm_insights(self, store):
        """Peak hour, night-owl and weekend ratios at both levels."""
        monday, saturday_night = local_ms(2024, 6, 10, 10), local_ms(2024, 6, 8, 23)
        store.add([make_event(monday + i * 60_000, "a") for i in range(3)] + [make_event(saturday_night, "b")])
        insights = store.service().get_rhythm_insights(TimeRange.last_7_days())
        assert (insights.peak_hour, insights.peak_hour_count) == (10, 3)
        assert insights.night_owl_ratio == 0.25
        assert insights.weekend_ratio == 0.25
        assert insights.session_peak_hour == 10
        assert insights.session_night_owl_ratio == 0.5
        assert insights.session_weekend_ratio == 0.5
        assert (insights.total_messages, insights.total_sessions) == (4, 2)

    def test_hourly_breakdown_is_dense(self, store):
        """Hourly breakdowns always hold 24 hours."""
        _today_pair(store)
        hours = store.service().get_hourly_breakdown(TimeRange.today())
        assert [h.hour for h in hours] == list(range(24))
        assert hours[9].value == 1.0

    def test_time_clusters(self, store):
        """Morning activity lands in the morning cluster."""
        _today_pair(store)
        shares = store.service().get_time_cluster_distribution(TimeRange.today())
        assert shares[0].cluster.value == "morning"
        assert shares[0].count == 2
        assert shares[0].percentage == 100.0

    def test_daily_heatmap(self, store):
        """Heatmaps hold one point per day ending today."""
        _today_pair(store)
        service = store.service()
        points = service.get_daily_heatmap(InsightMetric.COST, last_n_days=7)
        assert len(points) == 7
        assert points[-1].label == "2024-06-12"
        assert points[-1].value == 1.5
        bundle = service.get_daily_heatmap_bundle(last_n_days=7)
        assert set(bundle) == set(InsightMetric)
        assert bundle[InsightMetric.INPUT_TOKENS][-1].value == 150.0

    def test_hourly_intensity_with_day_filter(self, store):
        """Day-type filters restrict hourly intensity."""
        saturday, monday = local_ms(2024, 6, 8, 10), local_ms(2024, 6, 10, 14)
        store.add([make_event(saturday, "a"), make_event(monday, "b")])
        service = store.service()
        weekend = service.get_hourly_intensity(InsightMetric.MESSAGES, DayTypeFilter.WEEKENDS)
        assert (weekend[10].value, weekend[14].value) == (1.0, 0.0)
        intensity = service.get_weekday_weekend_intensity(InsightMetric.MESSAGES)
        assert (intensity.weekday_total, intensity.weekend_total) == (1, 1)

    def test_active_streak(self, store):
        """Streak data lists active days of the year with an intensity."""
        _today_pair(store)
        days = store.service().get_active_streak_data(2024)
        assert [(d.label, d.intensity.value) for d in days] == [("2024-06-12", "low")]


class TestModelLens:
    """Test model lens rows."""

    def _models(self, store):
        ts = local_ms(2024, 6, 10, 9)
        return store.add([
            make_event(ts, "s1", token_input="100", token_output="20"),
            make_event(ts + 5_000, "s1", token_input="100", token_output="20"),
            make_event(ts + 10_000, "s2", provider_id="openai", model_id="gpt-4.1",
                       token_input="500", token_output="30"),
        ])

    def test_rows_by_model(self, store):
        """Rows are sorted by input tokens with output throughput."""
        rows = self._models(store).service().get_model_lens_rows(ModelLensGroupBy.MODEL)
        assert [r.dimension_name for r in rows] == ["gpt-4.1", "claude-sonnet"]
        assert rows[1].output_tps == 10.0
        assert rows[1].duration_seconds == 4.0
        assert rows[1].valid_duration_message_ratio == 1.0

    def test_timed_ratio_counts_messages_with_rollups(self, make_store):
        """The valid-duration ratio counts timed messages, not timed rollup rows."""
        def add_pair(store):
            ts = local_ms(2024, 6, 10, 9)
            return store.add([make_event(ts, "s1"), make_event(ts + 5_000, "s1", completed_at=None)])

        raw = add_pair(make_store(include_rollups=False)).service()
        rollup = add_pair(make_store()).rebuild().service()

        raw_rows = raw.get_model_lens_rows(ModelLensGroupBy.MODEL)
        rollup_rows = rollup.get_model_lens_rows(ModelLensGroupBy.MODEL)
        assert rollup_rows == raw_rows
        assert rollup_rows[0].valid_duration_message_ratio == 0.5
        assert rollup_rows[0].duration_seconds == 2.0

    def test_rows_by_provider(self, store):
        """Provider grouping leaves the provider column empty."""
        rows = self._models(store).service().get_model_lens_rows(ModelLensGroupBy.PROVIDER)
        assert [(r.dimension_name, r.provider_id) for r in rows] == [("openai", ""), ("anthropic", "")]

    def test_stats_sorted_by_metric(self, store):
        """Stats are ordered by the chosen metric."""
        rows = self._models(store).service().get_model_lens_stats(ModelLensMetric.OUTPUT_TPS)
        assert [r.dimension_name for r in rows] == ["gpt-4.1", "claude-sonnet"]
        assert rows[0].value(ModelLensMetric.OUTPUT_TPS) == 15.0


class TestRollupHelpers:
    """Test rollup inspection."""

    def test_has_aggregation_data(self, store):
        """Only populated rollup tables report data."""
        service = store.service()
        assert not service.has_aggregation_data(RollupTable.DAILY)
        _today_pair(store).rebuild()
        assert service.has_aggregation_data(RollupTable.DAILY)
        assert service.get_min_time_bucket_ms(RollupTable.DAILY) == TODAY_MS

    def test_missing_rollup_tables(self, make_store):
        """A store without rollup tables has no aggregation data."""
        service = make_store(include_rollups=False).service()
        assert not service.has_aggregation_data(RollupTable.HOURLY)
        assert service.get_min_time_bucket_ms(RollupTable.HOURLY) is None

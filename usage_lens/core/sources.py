"""
Metric sources and the aggregation selector.

A MetricSource answers grouped counter aggregations over a fixed time range.
RollupSource reads one of the pre-aggregated tables; RawEventSource scans the
message log with equivalent expressions. select_source picks one per call.
"""

import logging
import sqlite3
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence, Tuple

from . import localtime
from .metrics import (
    COUNTER_EXPRESSIONS,
    COUNTERS,
    CounterRow,
    DayTypeFilter,
    Dimension,
    SourceKind,
    day_type_condition,
    dimension_expression,
)
from usage_lens.storage.models import RollupTable
from usage_lens.storage.repository import RollupStore, UsageEventStore

logger = logging.getLogger(__name__)


class MetricSource(ABC):
    """Grouped additive counters over [start_ms, end_ms)."""

    kind: SourceKind

    def __init__(self, conn: sqlite3.Connection, start_ms: int, end_ms: int):
        self.conn = conn
        self.start_ms = start_ms
        self.end_ms = end_ms

    @abstractmethod
    def _scan(
        self,
        columns: Sequence[str],
        conditions: Sequence[str],
        params: Sequence,
        group_by: Sequence[str],
    ) -> List[sqlite3.Row]:
        """Run one aggregation query against the backing table."""

    def aggregate(
        self,
        group_by: Sequence[Dimension] = (),
        filters: Optional[Dict[Dimension, str]] = None,
        day_filter: DayTypeFilter = DayTypeFilter.ALL,
    ) -> List[CounterRow]:
        """Aggregate every counter, grouped by the given dimensions.

        Args:
            group_by: Dimensions to group by, in key order
            filters: Equality filters on dimension values
            day_filter: Restrict to weekdays or weekends

        Returns:
            One CounterRow per group, ordered by the group keys
        """
        dimensions = list(group_by)
        key_columns = [dimension_expression(d, self.kind) for d in dimensions]
        columns = key_columns + [COUNTER_EXPRESSIONS[self.kind][name] for name in COUNTERS]

        conditions = []
        params = []
        for dimension, value in (filters or {}).items():
            conditions.append(f"{dimension_expression(dimension, self.kind)} = ?")
            params.append(value)
        day_condition = day_type_condition(day_filter, self.kind)
        if day_condition:
            conditions.append(day_condition)

        rows = self._scan(columns, conditions, params, key_columns)
        return [CounterRow.from_row(row, dimensions) for row in rows]

    def totals(
        self,
        filters: Optional[Dict[Dimension, str]] = None,
        day_filter: DayTypeFilter = DayTypeFilter.ALL,
    ) -> CounterRow:
        rows = self.aggregate((), filters, day_filter)
        return rows[0] if rows else CounterRow()


class RawEventSource(MetricSource):
    """Scans the message log, joined to sessions for the project dimension."""

    kind = SourceKind.RAW

    def _scan(self, columns, conditions, params, group_by):
        store = UsageEventStore(self.conn)
        return store.scan_messages(
            columns,
            ["m.created_at >= ?", "m.created_at < ?"] + list(conditions),
            [self.start_ms, self.end_ms] + list(params),
            group_by=group_by,
            order_by=group_by,
            join_sessions=True,
        )


class RollupSource(MetricSource):
    """Reads one rollup table over bucket-aligned bounds."""

    kind = SourceKind.ROLLUP

    def __init__(self, conn: sqlite3.Connection, table: RollupTable, start_ms: int, end_ms: int):
        super().__init__(conn, start_ms, end_ms)
        self.table = table

    def _scan(self, columns, conditions, params, group_by):
        store = RollupStore(self.conn)
        return store.scan_rollup(
            self.table,
            columns,
            self.start_ms,
            self.end_ms,
            conditions=conditions,
            params=params,
            group_by=group_by,
            order_by=group_by,
        )


def align_down(ts_ms: int, table: RollupTable) -> int:
    if table == RollupTable.HOURLY:
        return localtime.hour_start(ts_ms)
    if table == RollupTable.DAILY:
        return localtime.day_start(ts_ms)
    return localtime.month_start(ts_ms)


def align_up(ts_ms: int, table: RollupTable) -> int:
    """Smallest bucket boundary >= ts_ms."""
    floor = align_down(ts_ms, table)
    if floor == ts_ms:
        return ts_ms
    if table == RollupTable.HOURLY:
        return floor + localtime.MS_PER_HOUR
    if table == RollupTable.DAILY:
        return localtime.shift_days(floor, 1)
    return localtime.shift_months(floor, 1)


def has_usable_rollup(conn: sqlite3.Connection, table: RollupTable) -> bool:
    """A rollup table is usable only when it exists and holds at least one row."""
    rollups = RollupStore(conn)
    return rollups.table_exists(table) and rollups.probe(table)


def rollup_coverage(
    conn: sqlite3.Connection,
    table: RollupTable,
    start_ms: int,
    end_ms: int,
) -> Optional[Tuple[int, int]]:
    """Bucket-aligned bounds under which the rollup answers [start_ms, end_ms) exactly.

    Returns None when the table is unusable, when raw events fall in the
    partial buckets at either edge, or when the rollup lags the raw log
    (its high-watermark or earliest bucket does not reach the raw data).
    """
    if not has_usable_rollup(conn, table):
        return None

    aligned_start = align_down(start_ms, table)
    aligned_end = align_up(end_ms, table)
    events = UsageEventStore(conn)

    if aligned_start < start_ms and events.created_at_bounds(aligned_start, start_ms)[0] is not None:
        return None
    if aligned_end > end_ms and events.created_at_bounds(end_ms, aligned_end)[0] is not None:
        return None

    raw_min, raw_max = events.created_at_bounds(start_ms, end_ms)
    if raw_max is None:
        return aligned_start, aligned_end

    min_bucket, watermark = RollupStore(conn).watermark(table, aligned_start, aligned_end)
    if watermark is None or watermark < raw_max:
        return None
    if min_bucket is None or min_bucket > align_down(raw_min, table):
        return None
    return aligned_start, aligned_end


def select_source(
    conn: sqlite3.Connection,
    preferred: Sequence[RollupTable],
    start_ms: int,
    end_ms: int,
) -> MetricSource:
    """Pick the first covering rollup table, falling back to the raw log.

    Args:
        conn: Connection inside the caller's read transaction
        preferred: Rollup tables to try, in order
        start_ms: Inclusive range start
        end_ms: Exclusive range end

    Returns:
        A MetricSource bound to the range
    """
    for table in preferred:
        bounds = rollup_coverage(conn, table, start_ms, end_ms)
        if bounds is not None:
            logger.debug("Reading %s for [%d, %d)", table.value, start_ms, end_ms)
            return RollupSource(conn, table, bounds[0], bounds[1])

    logger.debug("No covering rollup for [%d, %d); scanning messages", start_ms, end_ms)
    return RawEventSource(conn, start_ms, end_ms)

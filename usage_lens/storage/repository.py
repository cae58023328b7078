"""
Repository pattern for data access.

Read interfaces over the usage event log and the rollup tables, plus the
schema and insert helpers used to build a store.
"""

import sqlite3
from typing import Iterable, List, Optional, Sequence, Tuple

from .db import DEFAULT_DB_PATH, get_connection
from .models import RollupTable, SessionSummary, UsageEvent

MESSAGES_DDL = """
    CREATE TABLE IF NOT EXISTS messages (
        id TEXT PRIMARY KEY,
        session_id TEXT NOT NULL,
        role TEXT NOT NULL,
        created_at INTEGER NOT NULL,
        completed_at INTEGER,
        provider_id TEXT,
        model_id TEXT,
        agent TEXT,
        mode TEXT,
        variant TEXT,
        project_root TEXT,
        project_cwd TEXT,
        token_input TEXT,
        token_output TEXT,
        token_reasoning TEXT,
        cache_read INTEGER DEFAULT 0,
        cache_write INTEGER DEFAULT 0,
        cost REAL DEFAULT 0,
        summary_title TEXT,
        summary_total_additions INTEGER DEFAULT 0,
        summary_total_deletions INTEGER DEFAULT 0,
        summary_file_count INTEGER DEFAULT 0,
        finish TEXT,
        diff_files TEXT,
        tool_id TEXT DEFAULT 'opencode'
    )
"""

SESSIONS_DDL = """
    CREATE TABLE IF NOT EXISTS sessions (
        session_id TEXT PRIMARY KEY,
        first_message_at INTEGER NOT NULL,
        last_message_at INTEGER NOT NULL,
        user_msg_count INTEGER DEFAULT 0,
        agent_msg_count INTEGER DEFAULT 0,
        total_input_tokens INTEGER DEFAULT 0,
        total_output_tokens INTEGER DEFAULT 0,
        total_reasoning_tokens INTEGER DEFAULT 0,
        total_cache_read INTEGER DEFAULT 0,
        total_cache_write INTEGER DEFAULT 0,
        total_cost REAL DEFAULT 0,
        is_orphan INTEGER DEFAULT 0,
        total_additions INTEGER DEFAULT 0,
        total_deletions INTEGER DEFAULT 0,
        total_file_count INTEGER DEFAULT 0,
        total_edits INTEGER DEFAULT 0,
        project_name TEXT,
        finish_reason TEXT,
        tool_id TEXT DEFAULT 'opencode'
    )
"""

ROLLUP_DDL = """
    CREATE TABLE IF NOT EXISTS {table} (
        time_bucket_ms INTEGER NOT NULL,
        project_id TEXT NOT NULL,
        provider_id TEXT NOT NULL,
        model_id TEXT NOT NULL,
        role TEXT NOT NULL,
        agent TEXT NOT NULL,
        tool_id TEXT NOT NULL,
        session_count INTEGER DEFAULT 0,
        message_count INTEGER DEFAULT 0,
        input_tokens INTEGER DEFAULT 0,
        output_tokens INTEGER DEFAULT 0,
        reasoning_tokens INTEGER DEFAULT 0,
        cache_read INTEGER DEFAULT 0,
        cache_write INTEGER DEFAULT 0,
        duration_ms INTEGER DEFAULT 0,
        cost REAL DEFAULT 0,
        net_code_lines INTEGER DEFAULT 0,
        file_count INTEGER DEFAULT 0,
        last_created_at_ms INTEGER DEFAULT 0,
        PRIMARY KEY (time_bucket_ms, project_id, provider_id, model_id, role, agent, tool_id)
    )
"""

SYNC_METADATA_DDL = """
    CREATE TABLE IF NOT EXISTS sync_metadata (
        file_path TEXT PRIMARY KEY,
        file_hash TEXT NOT NULL,
        last_synced_at INTEGER,
        hourly_aggregated INTEGER DEFAULT 0,
        daily_aggregated INTEGER DEFAULT 0,
        monthly_aggregated INTEGER DEFAULT 0
    )
"""


def _compose(
    select: str,
    conditions: Sequence[str],
    group_by: Sequence[str],
    order_by: Sequence[str],
) -> str:
    query = select
    if conditions:
        query += " WHERE " + " AND ".join(conditions)
    if group_by:
        query += " GROUP BY " + ", ".join(group_by)
    if order_by:
        query += " ORDER BY " + ", ".join(order_by)
    return query


class UsageEventStore:
    """Read interface over the messages and sessions tables.

    Column, condition and grouping fragments are supplied by the query
    builders in usage_lens.core.metrics; values always travel as parameters.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def scan_messages(
        self,
        columns: Sequence[str],
        conditions: Sequence[str] = (),
        params: Sequence = (),
        group_by: Sequence[str] = (),
        order_by: Sequence[str] = (),
        join_sessions: bool = False,
    ) -> List[sqlite3.Row]:
        """Scan messages (aliased m), optionally joined to sessions (aliased s).

        Args:
            columns: Select-list expressions
            conditions: WHERE clauses joined with AND
            params: Positional parameters for the conditions
            group_by: GROUP BY expressions
            order_by: ORDER BY expressions
            join_sessions: LEFT JOIN sessions on session_id

        Returns:
            Result rows
        """
        select = "SELECT " + ", ".join(columns) + " FROM messages m"
        if join_sessions:
            select += " LEFT JOIN sessions s ON s.session_id = m.session_id"
        query = _compose(select, conditions, group_by, order_by)
        return self.conn.execute(query, list(params)).fetchall()

    def scan_sessions(
        self,
        columns: Sequence[str],
        conditions: Sequence[str] = (),
        params: Sequence = (),
        group_by: Sequence[str] = (),
        order_by: Sequence[str] = (),
    ) -> List[sqlite3.Row]:
        """Scan session summaries (aliased s)."""
        select = "SELECT " + ", ".join(columns) + " FROM sessions s"
        query = _compose(select, conditions, group_by, order_by)
        return self.conn.execute(query, list(params)).fetchall()

    def min_created_at(self) -> Optional[int]:
        """Earliest message timestamp, or None for an empty store."""
        row = self.conn.execute("SELECT MIN(created_at) FROM messages").fetchone()
        return row[0] if row and row[0] is not None else None

    def created_at_bounds(self, start_ms: int, end_ms: int) -> Tuple[Optional[int], Optional[int]]:
        """Earliest and latest message timestamps inside [start_ms, end_ms)."""
        row = self.conn.execute(
            "SELECT MIN(created_at), MAX(created_at) FROM messages "
            "WHERE created_at >= ? AND created_at < ?",
            (start_ms, end_ms),
        ).fetchone()
        return (row[0], row[1]) if row else (None, None)


class RollupStore:
    """Read interface over the hourly, daily and monthly rollup tables."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def table_exists(self, table: RollupTable) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?",
            (table.value,),
        ).fetchone()
        return row is not None

    def probe(self, table: RollupTable) -> bool:
        """Check that the table holds at least one row."""
        row = self.conn.execute(f"SELECT 1 FROM {table.value} LIMIT 1").fetchone()
        return row is not None

    def scan_rollup(
        self,
        table: RollupTable,
        columns: Sequence[str],
        start_ms: Optional[int] = None,
        end_ms: Optional[int] = None,
        conditions: Sequence[str] = (),
        params: Sequence = (),
        group_by: Sequence[str] = (),
        order_by: Sequence[str] = (),
    ) -> List[sqlite3.Row]:
        """Scan a rollup table over [start_ms, end_ms) of time_bucket_ms.

        Args:
            table: Rollup table to read
            columns: Select-list expressions
            start_ms: Inclusive lower bound, or None for unbounded
            end_ms: Exclusive upper bound, or None for unbounded
            conditions: Extra WHERE clauses joined with AND
            params: Positional parameters for the extra conditions
            group_by: GROUP BY expressions
            order_by: ORDER BY expressions

        Returns:
            Result rows
        """
        where = []
        values = []
        if start_ms is not None:
            where.append("time_bucket_ms >= ?")
            values.append(start_ms)
        if end_ms is not None:
            where.append("time_bucket_ms < ?")
            values.append(end_ms)
        where.extend(conditions)
        values.extend(params)

        select = "SELECT " + ", ".join(columns) + f" FROM {table.value}"
        query = _compose(select, where, group_by, order_by)
        return self.conn.execute(query, values).fetchall()

    def min_time_bucket(self, table: RollupTable) -> Optional[int]:
        row = self.conn.execute(f"SELECT MIN(time_bucket_ms) FROM {table.value}").fetchone()
        return row[0] if row and row[0] is not None else None

    def watermark(
        self, table: RollupTable, start_ms: int, end_ms: int
    ) -> Tuple[Optional[int], Optional[int]]:
        """Earliest bucket and latest high-watermark inside [start_ms, end_ms)."""
        row = self.conn.execute(
            f"SELECT MIN(time_bucket_ms), MAX(last_created_at_ms) FROM {table.value} "
            "WHERE time_bucket_ms >= ? AND time_bucket_ms < ?",
            (start_ms, end_ms),
        ).fetchone()
        return (row[0], row[1]) if row else (None, None)


def initialize_schema(db_path: str = DEFAULT_DB_PATH, include_rollups: bool = True) -> None:
    """Create the message, session and (optionally) rollup tables.

    The rollup tables are normally created and filled by the aggregation
    job; include_rollups=False reproduces a store where that job never ran.

    Args:
        db_path: Path to SQLite database file
        include_rollups: Also create the three rollup tables
    """
    conn = get_connection(db_path)
    try:
        conn.execute(MESSAGES_DDL)
        conn.execute(SESSIONS_DDL)
        conn.execute(SYNC_METADATA_DDL)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_messages_created_at ON messages(created_at)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_messages_session ON messages(session_id)")
        if include_rollups:
            for table in RollupTable:
                conn.execute(ROLLUP_DDL.format(table=table.value))
        conn.commit()
    finally:
        conn.close()


def insert_usage_events(events: Iterable[UsageEvent], db_path: str = DEFAULT_DB_PATH) -> None:
    """Insert multiple usage events atomically.

    Args:
        events: Usage events to record
        db_path: Path to SQLite database file
    """
    events = list(events)
    if not events:
        return

    conn = get_connection(db_path)
    try:
        conn.execute("BEGIN TRANSACTION")
        for event in events:
            conn.execute("""
                INSERT INTO messages
                (id, session_id, role, created_at, completed_at, provider_id, model_id,
                 agent, project_root, token_input, token_output, token_reasoning,
                 cache_read, cache_write, cost, summary_total_additions,
                 summary_total_deletions, summary_file_count, tool_id)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                event.id,
                event.session_id,
                event.role,
                event.created_at,
                event.completed_at,
                event.provider_id,
                event.model_id,
                event.agent,
                event.project_root,
                event.token_input,
                event.token_output,
                event.token_reasoning,
                event.cache_read,
                event.cache_write,
                event.cost,
                event.summary_total_additions,
                event.summary_total_deletions,
                event.summary_file_count,
                event.tool_id,
            ))
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def insert_session_summaries(sessions: Iterable[SessionSummary], db_path: str = DEFAULT_DB_PATH) -> None:
    """Insert multiple session summaries atomically.

    Args:
        sessions: Session summaries to record
        db_path: Path to SQLite database file
    """
    sessions = list(sessions)
    if not sessions:
        return

    conn = get_connection(db_path)
    try:
        conn.execute("BEGIN TRANSACTION")
        for session in sessions:
            conn.execute("""
                INSERT INTO sessions
                (session_id, first_message_at, last_message_at, user_msg_count,
                 agent_msg_count, total_input_tokens, total_output_tokens,
                 total_reasoning_tokens, total_cache_read, total_cache_write,
                 total_cost, is_orphan, total_additions, total_deletions,
                 total_file_count, total_edits, project_name, finish_reason, tool_id)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                session.session_id,
                session.first_message_at,
                session.last_message_at,
                session.user_msg_count,
                session.agent_msg_count,
                session.total_input_tokens,
                session.total_output_tokens,
                session.total_reasoning_tokens,
                session.total_cache_read,
                session.total_cache_write,
                session.total_cost,
                int(session.is_orphan),
                session.total_additions,
                session.total_deletions,
                session.total_file_count,
                session.total_edits,
                session.project_name,
                session.finish_reason,
                session.tool_id,
            ))
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()

"""
Rollup maintenance.

Rebuilds the hourly, daily and monthly rollup tables from the message log.
Buckets are aligned to local time with the same expressions the query path
uses, so a freshly rebuilt rollup answers exactly like a raw scan.
"""

import logging
from typing import Iterable, Optional

from usage_lens.core.metrics import (
    COUNTER_EXPRESSIONS,
    Dimension,
    SourceKind,
    dimension_expression,
    time_expression,
)
from usage_lens.core.sources import align_down, align_up

from .db import DEFAULT_DB_PATH, get_connection
from .models import RollupTable
from .repository import ROLLUP_DDL

logger = logging.getLogger(__name__)

BUCKET_DIMENSION = {
    RollupTable.HOURLY: Dimension.HOUR,
    RollupTable.DAILY: Dimension.DAY,
    RollupTable.MONTHLY: Dimension.MONTH,
}

KEY_DIMENSIONS = (
    Dimension.PROJECT,
    Dimension.PROVIDER,
    Dimension.MODEL,
    Dimension.ROLE,
    Dimension.AGENT,
    Dimension.TOOL,
)

# Rollup column -> counter it is computed from
ROLLUP_COUNTERS = (
    ("session_count", "session_count"),
    ("message_count", "message_count"),
    ("input_tokens", "input_tokens"),
    ("output_tokens", "output_tokens"),
    ("reasoning_tokens", "reasoning_tokens"),
    ("cache_read", "cache_read"),
    ("cache_write", "cache_write"),
    ("duration_ms", "duration_ms"),
    ("cost", "cost"),
    ("net_code_lines", "net_code_lines"),
    ("file_count", "file_count"),
    ("last_created_at_ms", "last_created_at"),
)

_KEY_COLUMNS = ("project_id", "provider_id", "model_id", "role", "agent", "tool_id")


def rollup_insert_sql(table: RollupTable) -> str:
    """INSERT ... SELECT statement filling one table from messages in [?, ?)."""
    bucket = time_expression(BUCKET_DIMENSION[table], SourceKind.RAW)
    keys = [dimension_expression(d, SourceKind.RAW) for d in KEY_DIMENSIONS]
    counters = [COUNTER_EXPRESSIONS[SourceKind.RAW][name] for _, name in ROLLUP_COUNTERS]
    columns = ["time_bucket_ms", *_KEY_COLUMNS, *(column for column, _ in ROLLUP_COUNTERS)]
    return (
        f"INSERT INTO {table.value} ({', '.join(columns)}) "
        f"SELECT {', '.join([bucket, *keys, *counters])} "
        "FROM messages m LEFT JOIN sessions s ON s.session_id = m.session_id "
        "WHERE m.created_at >= ? AND m.created_at < ? "
        f"GROUP BY {', '.join([bucket, *keys])}"
    )


def _refresh(conn, tables: Iterable[RollupTable], start_ms: int, end_ms: int, clear: bool) -> None:
    conn.execute("BEGIN TRANSACTION")
    for table in tables:
        conn.execute(ROLLUP_DDL.format(table=table.value))
        bucket_start = align_down(start_ms, table)
        bucket_end = align_up(end_ms, table)
        if clear:
            conn.execute(f"DELETE FROM {table.value}")
        else:
            conn.execute(
                f"DELETE FROM {table.value} WHERE time_bucket_ms >= ? AND time_bucket_ms < ?",
                (bucket_start, bucket_end),
            )
        conn.execute(rollup_insert_sql(table), (bucket_start, bucket_end))
        logger.debug("Refreshed %s for [%d, %d)", table.value, bucket_start, bucket_end)
    conn.commit()


def refresh_rollups(
    start_ms: int,
    end_ms: int,
    db_path: str = DEFAULT_DB_PATH,
    tables: Optional[Iterable[RollupTable]] = None,
) -> None:
    """Recompute the rollup buckets overlapping [start_ms, end_ms).

    The range is widened to whole buckets per table so no bucket is ever
    left half-counted.

    Args:
        start_ms: Inclusive start of the affected messages
        end_ms: Exclusive end of the affected messages
        db_path: Path to SQLite database file
        tables: Tables to refresh; all of them by default
    """
    conn = get_connection(db_path)
    try:
        _refresh(conn, list(tables or RollupTable), start_ms, end_ms, clear=False)
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def rebuild_rollups(
    db_path: str = DEFAULT_DB_PATH,
    tables: Optional[Iterable[RollupTable]] = None,
) -> int:
    """Recompute the rollup tables from scratch over the whole message log.

    Args:
        db_path: Path to SQLite database file
        tables: Tables to rebuild; all of them by default

    Returns:
        Number of messages aggregated
    """
    conn = get_connection(db_path)
    try:
        row = conn.execute("SELECT MIN(created_at), MAX(created_at), COUNT(*) FROM messages").fetchone()
        if row[0] is None:
            logger.info("No messages to aggregate")
            return 0
        _refresh(conn, list(tables or RollupTable), row[0], row[1] + 1, clear=True)
        return row[2]
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()

"""
Database connection management.

Provides SQLite connections and per-call read transactions.
"""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

DEFAULT_DB_PATH = "usage.db"


class QueryError(Exception):
    """Raised when the underlying store cannot be opened or queried."""


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Create and return a writable SQLite connection with foreign keys enabled.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection with foreign key constraints enabled
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path))
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def read_transaction(db_path: str = DEFAULT_DB_PATH) -> Iterator[sqlite3.Connection]:
    """Open a read-only connection and hold one read transaction for its lifetime.

    Every SELECT issued inside the block sees the same snapshot. The database
    file is never created; a missing file is reported as a QueryError.

    Args:
        db_path: Path to SQLite database file

    Yields:
        Read-only connection with rows returned as sqlite3.Row

    Raises:
        QueryError: If the store cannot be opened or a query fails
    """
    uri = Path(db_path).resolve().as_uri() + "?mode=ro"
    try:
        conn = sqlite3.connect(uri, uri=True, isolation_level=None)
    except sqlite3.Error as exc:
        raise QueryError(f"Cannot open usage store {db_path}: {exc}") from exc

    conn.row_factory = sqlite3.Row
    try:
        conn.execute("BEGIN")
        yield conn
    except sqlite3.Error as exc:
        raise QueryError(f"Query against {db_path} failed: {exc}") from exc
    finally:
        if conn.in_transaction:
            conn.rollback()
        conn.close()

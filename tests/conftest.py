"""
Shared fixtures for usage-lens tests.

Times are anchored to a fixed local "now" (Wednesday 2024-06-12 15:30) so
range resolution and bucketing are reproducible on any host timezone.
"""

import os
import tempfile
from datetime import datetime
from itertools import count

import pytest

from usage_lens.core import localtime
from usage_lens.core.statistics import StatisticsService
from usage_lens.storage.aggregation import rebuild_rollups
from usage_lens.storage.db import get_connection
from usage_lens.storage.models import SessionSummary, UsageEvent
from usage_lens.storage.repository import (
    initialize_schema,
    insert_session_summaries,
    insert_usage_events,
)


def local_ms(year, month, day, hour=0, minute=0):
    """Millisecond timestamp of a naive local datetime."""
    return localtime.from_local(datetime(year, month, day, hour, minute))


NOW_MS = local_ms(2024, 6, 12, 15, 30)
TODAY_MS = local_ms(2024, 6, 12)

_ids = count()


def make_event(created_at, session_id="s1", role="assistant", **overrides):
    """UsageEvent with sensible defaults for an assistant reply."""
    values = dict(
        id=f"m{next(_ids)}",
        session_id=session_id,
        role=role,
        created_at=created_at,
        completed_at=created_at + 2_000 if role == "assistant" else created_at,
        provider_id="anthropic",
        model_id="claude-sonnet",
        agent="build" if role == "assistant" else None,
        token_input="100",
        token_output="20",
        token_reasoning="0",
        cost=0.5 if role == "assistant" else 0.0,
    )
    values.update(overrides)
    return UsageEvent(**values)


def make_session(session_id, first, last, project="/work/alpha", **overrides):
    """SessionSummary with sensible defaults."""
    values = dict(
        session_id=session_id,
        first_message_at=first,
        last_message_at=last,
        project_name=project,
    )
    values.update(overrides)
    return SessionSummary(**values)


class UsageStore:
    """A temporary usage database with helpers to fill it."""

    def __init__(self, path):
        self.path = path

    def add(self, events, sessions=()):
        insert_session_summaries(list(sessions), self.path)
        insert_usage_events(list(events), self.path)
        return self

    def rebuild(self):
        rebuild_rollups(self.path)
        return self

    def execute(self, sql, params=()):
        conn = get_connection(self.path)
        try:
            conn.execute(sql, params)
            conn.commit()
        finally:
            conn.close()

    def service(self, **kwargs):
        return StatisticsService(db_path=self.path, clock=lambda: NOW_MS, **kwargs)


@pytest.fixture
def temp_dir():
    """Temporary directory removed after the test."""
    with tempfile.TemporaryDirectory() as path:
        yield path


@pytest.fixture
def make_store(temp_dir):
    """Factory for fresh stores, with or without rollup tables."""
    names = count()

    def factory(include_rollups=True):
        path = os.path.join(temp_dir, f"usage-{next(names)}.db")
        initialize_schema(path, include_rollups=include_rollups)
        return UsageStore(path)

    return factory


@pytest.fixture
def store(make_store):
    """An empty store with rollup tables."""
    return make_store()

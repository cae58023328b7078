"""
Demo usage data.

Generates a reproducible month of coding-assistant sessions ending today so
every command has something to show.
"""

import logging
import random
from typing import List, Optional, Tuple

from usage_lens.core import localtime
from usage_lens.storage.aggregation import rebuild_rollups
from usage_lens.storage.db import DEFAULT_DB_PATH
from usage_lens.storage.models import SessionSummary, UsageEvent
from usage_lens.storage.repository import (
    initialize_schema,
    insert_session_summaries,
    insert_usage_events,
)

logger = logging.getLogger(__name__)

DEMO_SEED = 20240611

PROJECTS = [
    "/home/dev/projects/usage-lens",
    "/home/dev/projects/webshop",
    "/home/dev/projects/infra",
    "/home/dev/sandbox/notebooks",
]

MODELS = [
    ("anthropic", "claude-sonnet-4", 3.0e-6, 15.0e-6),
    ("anthropic", "claude-haiku-3.5", 0.8e-6, 4.0e-6),
    ("openai", "gpt-4.1", 2.0e-6, 8.0e-6),
    ("openai", "gpt-4.1-mini", 0.4e-6, 1.6e-6),
    ("local", "qwen2.5-coder", 0.0, 0.0),
]

AGENTS = ["build", "plan", "general", ""]


def _session(
    rng: random.Random, session_id: str, day_start_ms: int
) -> Tuple[List[UsageEvent], SessionSummary]:
    project = rng.choice(PROJECTS)
    provider_id, model_id, input_price, output_price = rng.choice(MODELS)
    agent = rng.choice(AGENTS)
    hour = rng.choice([1, 9, 10, 11, 14, 15, 16, 20, 21, 23])
    created = day_start_ms + hour * localtime.MS_PER_HOUR + rng.randrange(0, 30) * 60_000

    events = []
    for turn in range(rng.randint(1, 8)):
        events.append(UsageEvent(
            id=f"{session_id}-u{turn}",
            session_id=session_id,
            role="user",
            created_at=created,
            completed_at=created,
            provider_id=provider_id,
            model_id=model_id,
            project_root=project,
            token_input=str(rng.randint(50, 400)),
            token_output="0",
        ))
        created += rng.randint(5, 40) * 1000

        input_tokens = rng.randint(2_000, 40_000)
        output_tokens = rng.randint(100, 3_000)
        reasoning_tokens = rng.choice([0, 0, rng.randint(100, 1_500)])
        additions = rng.choice([0, rng.randint(1, 120)])
        deletions = rng.randint(0, additions)
        duration = rng.randint(2_000, 60_000)
        events.append(UsageEvent(
            id=f"{session_id}-a{turn}",
            session_id=session_id,
            role="assistant",
            created_at=created,
            completed_at=created + duration,
            provider_id=provider_id,
            model_id=model_id,
            agent=agent or None,
            project_root=project,
            token_input=str(input_tokens),
            token_output=str(output_tokens),
            token_reasoning=str(reasoning_tokens),
            cache_read=rng.randint(0, input_tokens // 2),
            cache_write=rng.randint(0, 2_000),
            cost=round(input_tokens * input_price + (output_tokens + reasoning_tokens) * output_price, 6),
            summary_total_additions=additions,
            summary_total_deletions=deletions,
            summary_file_count=1 if additions else 0,
        ))
        created += duration + rng.randint(30, 600) * 1000

    assistant = [e for e in events if e.role == "assistant"]
    summary = SessionSummary(
        session_id=session_id,
        first_message_at=events[0].created_at,
        last_message_at=events[-1].created_at,
        user_msg_count=len(events) - len(assistant),
        agent_msg_count=len(assistant),
        total_input_tokens=sum(int(e.token_input) for e in assistant),
        total_output_tokens=sum(int(e.token_output) for e in assistant),
        total_reasoning_tokens=sum(int(e.token_reasoning) for e in assistant),
        total_cache_read=sum(e.cache_read for e in assistant),
        total_cache_write=sum(e.cache_write for e in assistant),
        total_cost=sum(e.cost for e in assistant),
        total_additions=sum(e.summary_total_additions for e in assistant),
        total_deletions=sum(e.summary_total_deletions for e in assistant),
        total_file_count=sum(e.summary_file_count for e in assistant),
        project_name=project,
        finish_reason="stop",
    )
    return events, summary


def build_demo_data(days: int = 30, now_ms: Optional[int] = None) -> Tuple[List[UsageEvent], List[SessionSummary]]:
    """Generate demo events and sessions for the `days` local days before today.

    The same seed and day anchor always produce the same data.
    """
    rng = random.Random(DEMO_SEED)
    today = localtime.day_start(localtime.now_ms() if now_ms is None else now_ms)

    events: List[UsageEvent] = []
    sessions: List[SessionSummary] = []
    for offset in range(days, 0, -1):
        day_start_ms = localtime.shift_days(today, -offset)
        for index in range(rng.randint(0, 4)):
            session_id = f"demo-{offset:03d}-{index}"
            session_events, summary = _session(rng, session_id, day_start_ms)
            events.extend(session_events)
            sessions.append(summary)
    return events, sessions


def seed_demo_data(
    db_path: str = DEFAULT_DB_PATH,
    days: int = 30,
    with_rollups: bool = True,
    now_ms: Optional[int] = None,
) -> int:
    """Write demo data into a store, creating the schema if needed.

    Args:
        db_path: Path to SQLite database file
        days: Number of past days to fill
        with_rollups: Also rebuild the rollup tables
        now_ms: Anchor time; defaults to now

    Returns:
        Number of messages inserted
    """
    events, sessions = build_demo_data(days, now_ms)
    initialize_schema(db_path, include_rollups=with_rollups)
    insert_session_summaries(sessions, db_path)
    insert_usage_events(events, db_path)
    if with_rollups:
        rebuild_rollups(db_path)
    logger.info("Inserted %d demo messages across %d sessions", len(events), len(sessions))
    return len(events)

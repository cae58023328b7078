"""
Data models for storage layer.

Defines the usage event, session summary and rollup table entities.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class RollupTable(Enum):
    """Pre-aggregated tables, one per bucket resolution."""
    HOURLY = "hourly_stats"
    DAILY = "daily_stats"
    MONTHLY = "monthly_stats"


@dataclass(frozen=True)
class UsageEvent:
    """One exchanged message as recorded by the ingestion pipeline.

    Token counts are kept as text because that is how the pipeline stores
    them; readers must go through parse_token_count.
    """
    id: str
    session_id: str
    role: str
    created_at: int
    completed_at: Optional[int] = None
    provider_id: Optional[str] = None
    model_id: Optional[str] = None
    agent: Optional[str] = None
    project_root: Optional[str] = None
    token_input: Optional[str] = None
    token_output: Optional[str] = None
    token_reasoning: Optional[str] = None
    cache_read: int = 0
    cache_write: int = 0
    cost: float = 0.0
    summary_total_additions: int = 0
    summary_total_deletions: int = 0
    summary_file_count: int = 0
    tool_id: str = "opencode"

    @property
    def total_tokens(self) -> int:
        return (
            parse_token_count(self.token_input)
            + parse_token_count(self.token_output)
            + parse_token_count(self.token_reasoning)
        )


@dataclass(frozen=True)
class SessionSummary:
    """Per-session totals maintained alongside the message log."""
    session_id: str
    first_message_at: int
    last_message_at: int
    user_msg_count: int = 0
    agent_msg_count: int = 0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_reasoning_tokens: int = 0
    total_cache_read: int = 0
    total_cache_write: int = 0
    total_cost: float = 0.0
    is_orphan: bool = False
    total_additions: int = 0
    total_deletions: int = 0
    total_file_count: int = 0
    total_edits: int = 0
    project_name: Optional[str] = None
    finish_reason: Optional[str] = None
    tool_id: str = "opencode"

    def __post_init__(self):
        """Validate the session window."""
        if self.last_message_at < self.first_message_at:
            raise ValueError("last_message_at must not precede first_message_at")


def parse_token_count(value: Any) -> int:
    """Parse a text-encoded token count, mirroring SQLite's CAST semantics.

    Leading digits are kept ("12abc" -> 12); anything unparseable is 0.
    """
    if value is None:
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)

    text = str(value).strip()
    sign = 1
    if text[:1] in ("-", "+"):
        sign = -1 if text[0] == "-" else 1
        text = text[1:]
    digits = ""
    for ch in text:
        if ch not in "0123456789":
            break
        digits += ch
    return sign * int(digits) if digits else 0


def coerce_int(value: Any) -> int:
    """Coerce a column value to int, falling back to 0."""
    if value is None:
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        return parse_token_count(value)


def coerce_float(value: Any) -> float:
    """Coerce a column value to float, falling back to 0.0."""
    if value is None:
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0

"""
Ranked breakdowns and ratio metrics.

Top-N rankings with an overflow bucket, automation level, billing coverage,
throughput and session depth classification.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, TypeVar

OTHER_LABEL = "Other"

T = TypeVar("T")


@dataclass(frozen=True)
class RankedEntry:
    """One row of a top-N breakdown; is_other marks the overflow bucket."""
    key: str
    label: str
    value: float
    is_other: bool = False
    extra: Dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class BillingCostStats:
    total_cost: float
    billed_message_count: int
    total_message_count: int
    coverage_ratio: float


class SessionDepth(Enum):
    SHALLOW = "shallow"  # <= 3 user messages
    MEDIUM = "medium"    # 4-10
    DEEP = "deep"        # > 10


def rank_with_overflow(
    items: Sequence[T],
    top_n: int,
    value_of: Callable[[T], float],
    key_of: Callable[[T], str],
    label_of: Optional[Callable[[T], str]] = None,
) -> List[RankedEntry]:
    """Rank items descending by value, keep the top N and fold the rest into "Other".

    The "Other" entry is only emitted when the remainder sums to more than 0,
    so sum(top values) + other value always equals the sum of all values.

    Args:
        items: Candidates in any order
        top_n: Number of entries to keep
        value_of: Primary ranking value
        key_of: Stable identifier
        label_of: Display label; defaults to the key

    Returns:
        Ranked entries, optionally followed by the overflow entry
    """
    if top_n < 0:
        raise ValueError("top_n cannot be negative")
    label_of = label_of or key_of

    ranked = sorted(items, key=lambda item: (-value_of(item), key_of(item)))
    entries = [
        RankedEntry(key=key_of(item), label=label_of(item), value=value_of(item))
        for item in ranked[:top_n]
    ]
    remainder = sum(value_of(item) for item in ranked[top_n:])
    if remainder > 0:
        entries.append(RankedEntry(key=OTHER_LABEL, label=OTHER_LABEL, value=remainder, is_other=True))
    return entries


def automation_level(assistant_messages: int, user_messages: int) -> float:
    """Percentage of messages produced by the assistant; 0 when there are none."""
    total = assistant_messages + user_messages
    if total <= 0:
        return 0.0
    return assistant_messages / total * 100


def billing_coverage(billed_cost: float, billed_count: int, total_count: int) -> BillingCostStats:
    """Coverage of messages carrying a nonzero cost.

    Unbilled messages count towards the denominator only; cost is summed over
    billed messages.
    """
    return BillingCostStats(
        total_cost=billed_cost,
        billed_message_count=billed_count,
        total_message_count=total_count,
        coverage_ratio=billed_count / total_count if total_count > 0 else 0.0,
    )


def tokens_per_second(output_tokens: float, duration_ms: float) -> float:
    """Output throughput; messages without a valid duration add no time."""
    if duration_ms <= 0:
        return 0.0
    return output_tokens / (duration_ms / 1000)


def percentage(part: float, total: float) -> float:
    return part / total * 100 if total > 0 else 0.0


def session_depth(user_message_count: int) -> SessionDepth:
    if user_message_count <= 3:
        return SessionDepth.SHALLOW
    if user_message_count <= 10:
        return SessionDepth.MEDIUM
    return SessionDepth.DEEP


def project_label(project: str) -> str:
    """Last path component of a project identifier."""
    trimmed = (project or "").rstrip("/")
    return trimmed.rsplit("/", 1)[-1] or project

"""
Baseline statistics over trailing daily series.

Establishes normal usage levels for anomaly detection.
"""

import statistics
from dataclasses import dataclass
from enum import Enum
from typing import Sequence


class BaselineState(Enum):
    """State of baseline computation based on data availability."""
    COLD = "cold"  # No history to compare against
    WARM = "warm"


@dataclass(frozen=True)
class BaselineMetrics:
    """Mean and population standard deviation of a baseline series."""
    mean: float
    std_dev: float
    sample_count: int

    def __post_init__(self):
        """Validate metrics are reasonable."""
        if self.std_dev < 0:
            raise ValueError("std_dev cannot be negative")
        if self.sample_count < 0:
            raise ValueError("sample_count cannot be negative")


@dataclass(frozen=True)
class BaselineResult:
    """Complete baseline computation result."""
    metrics: BaselineMetrics
    state: BaselineState


COLD_BASELINE = BaselineResult(BaselineMetrics(0.0, 0.0, 0), BaselineState.COLD)


def compute_baseline(values: Sequence[float]) -> BaselineResult:
    """Compute mean and population standard deviation of a series.

    An empty series yields a COLD baseline with zero mean and deviation.

    Args:
        values: Baseline samples, oldest first

    Returns:
        BaselineResult with computed metrics and state
    """
    if not values:
        return COLD_BASELINE

    samples = [float(v) for v in values]
    return BaselineResult(
        metrics=BaselineMetrics(
            mean=statistics.fmean(samples),
            std_dev=statistics.pstdev(samples),
            sample_count=len(samples),
        ),
        state=BaselineState.WARM,
    )

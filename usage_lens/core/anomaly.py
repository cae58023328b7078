"""
Anomaly detection for daily usage series.

Flags days whose activity rises above mean + k standard deviations of the
trailing baseline.
"""

from dataclasses import dataclass
from typing import Sequence

from .baseline import BaselineState, compute_baseline
from .metrics import CounterRow

DEFAULT_SIGMA = 2.0


@dataclass(frozen=True)
class AnomalyMetric:
    """Current value compared against its trailing baseline."""
    current: float
    mean: float
    std_dev: float
    threshold: float
    is_anomaly: bool


@dataclass(frozen=True)
class AnomalyStats:
    """Anomaly metrics for the daily message, session, cost and code series."""
    messages: AnomalyMetric
    sessions: AnomalyMetric
    cost: AnomalyMetric
    net_code_output: AnomalyMetric


def detect_anomaly(
    series: Sequence[float],
    exclude_current: bool = True,
    sigma: float = DEFAULT_SIGMA,
) -> AnomalyMetric:
    """Compare the last point of a series against its baseline.

    Series of length 0 or 1 have no usable variance: mean and deviation are
    reported as 0 and the point is never flagged.

    Args:
        series: Daily values, oldest first
        exclude_current: Leave the last point out of the baseline
        sigma: Number of standard deviations above the mean that counts as anomalous

    Returns:
        AnomalyMetric for the last point
    """
    current = float(series[-1]) if series else 0.0
    if len(series) <= 1:
        return AnomalyMetric(current, 0.0, 0.0, 0.0, False)

    history = series[:-1] if exclude_current else series
    baseline = compute_baseline(history)
    if baseline.state == BaselineState.COLD:
        return AnomalyMetric(current, 0.0, 0.0, 0.0, False)

    mean = baseline.metrics.mean
    std_dev = baseline.metrics.std_dev
    threshold = mean + sigma * std_dev
    return AnomalyMetric(
        current=current,
        mean=mean,
        std_dev=std_dev,
        threshold=threshold,
        is_anomaly=current > threshold,
    )


def compute_anomaly_stats(days: Sequence[CounterRow], sigma: float = DEFAULT_SIGMA) -> AnomalyStats:
    """Build anomaly metrics from per-day counters ordered oldest first."""
    return AnomalyStats(
        messages=detect_anomaly([d.message_count for d in days], sigma=sigma),
        sessions=detect_anomaly([d.session_count for d in days], sigma=sigma),
        cost=detect_anomaly([d.cost for d in days], sigma=sigma),
        net_code_output=detect_anomaly([d.net_code_lines for d in days], sigma=sigma),
    )


EMPTY_ANOMALY_STATS = compute_anomaly_stats([])

"""Trend classification over chronological series.

Two threshold policies are in use: a relative one for channel engagement scores
(10% of the earlier window's mean) and an absolute one for activation rates,
which are already percentages.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence, Union


class Trend(str, Enum):
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


@dataclass(frozen=True)
class RelativeThreshold:
    """Threshold is a fraction of the previous window's mean."""

    ratio: float = 0.1

    def threshold(self, previous_mean: float) -> Optional[float]:
        if not previous_mean:
            return None
        return abs(previous_mean) * self.ratio


@dataclass(frozen=True)
class AbsoluteThreshold:
    """Fixed threshold in the series' own unit."""

    points: float = 2.0

    def threshold(self, previous_mean: float) -> Optional[float]:
        return self.points


ThresholdPolicy = Union[RelativeThreshold, AbsoluteThreshold]


def _mean(values: Sequence[float]) -> Optional[float]:
    values = [v for v in values if v is not None]
    if not values:
        return None
    return sum(values) / len(values)


def compare_windows(
    previous: Sequence[float],
    recent: Sequence[float],
    policy: ThresholdPolicy,
) -> Trend:
    """Classify the change from ``previous`` to ``recent``."""
    previous_mean = _mean(previous)
    recent_mean = _mean(recent)
    if previous_mean is None or recent_mean is None:
        return Trend.STABLE

    threshold = policy.threshold(previous_mean)
    if threshold is None:
        return Trend.STABLE

    difference = recent_mean - previous_mean
    if difference > threshold:
        return Trend.UP
    if difference < -threshold:
        return Trend.DOWN
    return Trend.STABLE


def classify_trend(series: Sequence[float], policy: ThresholdPolicy) -> Trend:
    """Compare the first half of ``series`` with the second half.

    For odd lengths the second half gets the extra element.
    """
    midpoint = len(series) // 2
    return compare_windows(series[:midpoint], series[midpoint:], policy)

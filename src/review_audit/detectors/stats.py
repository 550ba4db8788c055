from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True, slots=True)
class DistributionStats:
    mean: float = 0.0
    median: float = 0.0
    stddev: float = 0.0
    p95: float = 0.0
    n: float = 0.0

    def to_dict(self) -> dict[str, float]:
        return {
            "mean": self.mean,
            "median": self.median,
            "stddev": self.stddev,
            "p95": self.p95,
            "n": self.n,
        }


def _value_at_rank(sorted_values: np.ndarray, cumulative: np.ndarray, rank: float) -> float:
    idx = int(np.searchsorted(cumulative, rank, side="right"))
    idx = min(idx, sorted_values.size - 1)
    return float(sorted_values[idx])


def weighted_stats(values: np.ndarray, weights: np.ndarray) -> DistributionStats:
    """Stats of the multiset where each value repeats ``weight`` times.

    Median and p95 are order statistics at ``floor(n / 2)`` and
    ``floor(0.95 * n)``; stddev is the population stddev.
    """
    values = np.asarray(values, dtype=float)
    weights = np.floor(np.asarray(weights, dtype=float))
    keep = weights > 0.0
    values = values[keep]
    weights = weights[keep]
    n = float(weights.sum())
    if n <= 0.0:
        return DistributionStats()

    order = np.argsort(values, kind="stable")
    sorted_values = values[order]
    cumulative = np.cumsum(weights[order])

    mean = float(np.sum(values * weights) / n)
    variance = float(np.sum(weights * (values - mean) ** 2) / n)
    return DistributionStats(
        mean=mean,
        median=_value_at_rank(sorted_values, cumulative, float(np.floor(n / 2.0))),
        stddev=float(np.sqrt(max(variance, 0.0))),
        p95=_value_at_rank(sorted_values, cumulative, float(np.floor(n * 0.95))),
        n=n,
    )


def population_stats(values: np.ndarray) -> DistributionStats:
    """Unweighted stats over a plain 1D sample."""
    values = np.asarray(values, dtype=float)
    if values.size == 0:
        return DistributionStats()
    ordered = np.sort(values)
    n = values.size
    return DistributionStats(
        mean=float(values.mean()),
        median=float(ordered[n // 2]),
        stddev=float(values.std()),
        p95=float(ordered[int(np.floor(n * 0.95))]),
        n=float(n),
    )


def window_mean(values: np.ndarray, start: int, end: int) -> float:
    """Mean of ``values[start:end]``; 0.0 for an empty slice."""
    window = values[max(start, 0) : end]
    return float(window.mean()) if window.size else 0.0

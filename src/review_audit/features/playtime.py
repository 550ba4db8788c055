"""Playtime distributions derived from histogram buckets.

Every bucket contributes its midpoint once per review, so statistics are
computed over the weighted midpoint multiset rather than raw playtimes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Sequence

import numpy as np

from review_audit.detectors.stats import DistributionStats, weighted_stats
from review_audit.features.filtering import filter_bucket
from review_audit.snapshot import Bucket, MonthFilter

REFUND_WINDOW_MINUTES = 120.0
BIMODAL_EARLY_MINUTES = 20.0 * 60.0
BIMODAL_LATE_MINUTES = 100.0 * 60.0
BIMODAL_MIN_CLUSTER_SHARE = 0.15
BIMODAL_MIN_NEGATIVES = 50

CONFIDENCE_STEPS = (
    (100, 0.1),
    (500, 0.3),
    (1000, 0.5),
    (5000, 0.7),
    (10000, 0.85),
)

Polarity = Literal["positive", "negative", "all"]


@dataclass(frozen=True)
class RefundHonesty:
    positive_rate: float
    negative_rate: float


@dataclass(frozen=True)
class Bimodality:
    is_bimodal: bool = False
    early_ratio: float = 0.0
    late_ratio: float = 0.0
    early_count: float = 0.0
    late_count: float = 0.0
    total_negative: float = 0.0


def bucket_weights(
    buckets: Sequence[Bucket],
    months: Sequence[str],
    month_filter: MonthFilter | None,
    polarity: Polarity,
    include_certain: bool = True,
    include_uncertain: bool = True,
) -> tuple[np.ndarray, np.ndarray]:
    """Bucket midpoints and the review count each one stands for."""
    midpoints = np.array([bucket.midpoint for bucket in buckets], dtype=float)
    weights = np.zeros(len(buckets), dtype=float)
    for idx, bucket in enumerate(buckets):
        counts = filter_bucket(bucket, months, month_filter)
        if polarity in ("positive", "all"):
            weights[idx] += counts.positive * include_certain
            weights[idx] += counts.uncertain_positive * include_uncertain
        if polarity in ("negative", "all"):
            weights[idx] += counts.negative * include_certain
            weights[idx] += counts.uncertain_negative * include_uncertain
    return midpoints, weights


def playtime_stats(
    buckets: Sequence[Bucket],
    months: Sequence[str],
    month_filter: MonthFilter | None,
    polarity: Polarity,
    certain_only: bool = False,
) -> DistributionStats:
    midpoints, weights = bucket_weights(
        buckets, months, month_filter, polarity, include_uncertain=not certain_only
    )
    return weighted_stats(midpoints, weights)


def refund_honesty(
    buckets: Sequence[Bucket],
    months: Sequence[str],
    month_filter: MonthFilter | None = None,
) -> RefundHonesty:
    """Share of each polarity written inside the refund window.

    A bucket straddling the window boundary is split linearly.
    """
    positive_before = negative_before = 0.0
    positive_total = negative_total = 0.0
    for bucket in buckets:
        counts = filter_bucket(bucket, months, month_filter)
        positive_total += counts.all_positive
        negative_total += counts.all_negative
        if bucket.max_value <= REFUND_WINDOW_MINUTES:
            share = 1.0
        elif bucket.min_value < REFUND_WINDOW_MINUTES:
            share = (REFUND_WINDOW_MINUTES - bucket.min_value) / (
                bucket.max_value - bucket.min_value
            )
        else:
            continue
        positive_before += counts.all_positive * share
        negative_before += counts.all_negative * share
    return RefundHonesty(
        positive_rate=positive_before / positive_total if positive_total > 0 else 0.0,
        negative_rate=negative_before / negative_total if negative_total > 0 else 0.0,
    )


def negative_bimodality(
    buckets: Sequence[Bucket],
    months: Sequence[str],
    month_filter: MonthFilter | None = None,
) -> Bimodality:
    early = late = total = 0.0
    for bucket in buckets:
        negatives = filter_bucket(bucket, months, month_filter).all_negative
        total += negatives
        if bucket.midpoint < BIMODAL_EARLY_MINUTES:
            early += negatives
        elif bucket.midpoint > BIMODAL_LATE_MINUTES:
            late += negatives
    if total < BIMODAL_MIN_NEGATIVES:
        return Bimodality(total_negative=total)
    early_ratio = early / total
    late_ratio = late / total
    return Bimodality(
        is_bimodal=early_ratio >= BIMODAL_MIN_CLUSTER_SHARE
        and late_ratio >= BIMODAL_MIN_CLUSTER_SHARE,
        early_ratio=early_ratio,
        late_ratio=late_ratio,
        early_count=early,
        late_count=late,
        total_negative=total,
    )


def tail_ratio(midpoints: np.ndarray, weights: np.ndarray, stats: DistributionStats) -> float:
    """Share of reviews whose playtime lies beyond ``mean + 2 * stddev``."""
    weights = np.floor(np.asarray(weights, dtype=float))
    total = float(weights.sum())
    if total <= 0.0:
        return 0.0
    threshold = stats.mean + 2.0 * stats.stddev
    return float(weights[np.asarray(midpoints, dtype=float) > threshold].sum() / total)


def sample_size_confidence(sampled_total: float) -> float:
    for limit, value in CONFIDENCE_STEPS:
        if sampled_total < limit:
            return value
    return 1.0


def confidence(sampled_total: float, positive_rate: float, negative_rate: float) -> float:
    coverage = max(0.1, min(positive_rate, negative_rate))
    return sample_size_confidence(sampled_total) * float(np.sqrt(coverage))

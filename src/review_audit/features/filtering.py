from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from review_audit.snapshot import Bucket, MonthFilter, Snapshot


@dataclass(frozen=True, slots=True)
class BucketCounts:
    positive: float
    negative: float
    uncertain_positive: float
    uncertain_negative: float

    @property
    def all_positive(self) -> float:
        return self.positive + self.uncertain_positive

    @property
    def all_negative(self) -> float:
        return self.negative + self.uncertain_negative

    @property
    def certain(self) -> float:
        return self.positive + self.negative

    @property
    def uncertain(self) -> float:
        return self.uncertain_positive + self.uncertain_negative

    @property
    def total(self) -> float:
        return self.certain + self.uncertain


@dataclass(frozen=True, slots=True)
class ProjectedCounts:
    positive: float
    negative: float
    uncertain_positive: float
    uncertain_negative: float
    certain: float
    uncertain: float
    total: float
    sampled: BucketCounts


def month_mask(months: Sequence[str], month_filter: MonthFilter | None) -> np.ndarray:
    """Boolean mask over month positions selected by ``month_filter``."""
    if month_filter is None:
        return np.ones(len(months), dtype=bool)
    labels = np.asarray(months, dtype=object)
    mask = np.ones(labels.size, dtype=bool)
    if month_filter.from_month:
        mask &= labels >= month_filter.from_month
    if month_filter.to_month:
        mask &= labels <= month_filter.to_month
    if month_filter.exclude_months:
        mask &= ~np.isin(labels, list(month_filter.exclude_months))
    return mask


def filter_bucket(
    bucket: Bucket,
    months: Sequence[str],
    month_filter: MonthFilter | None = None,
) -> BucketCounts:
    if month_filter is None:
        return BucketCounts(
            positive=float(bucket.positive_count),
            negative=float(bucket.negative_count),
            uncertain_positive=float(bucket.uncertain_positive_count),
            uncertain_negative=float(bucket.uncertain_negative_count),
        )
    mask = month_mask(months, month_filter)
    return BucketCounts(
        positive=float(bucket.positive[mask].sum()),
        negative=float(bucket.negative[mask].sum()),
        uncertain_positive=float(bucket.uncertain_positive[mask].sum()),
        uncertain_negative=float(bucket.uncertain_negative[mask].sum()),
    )


def sampled_counts(
    buckets: Sequence[Bucket],
    months: Sequence[str],
    month_filter: MonthFilter | None = None,
) -> BucketCounts:
    pos = neg = unc_pos = unc_neg = 0.0
    for bucket in buckets:
        counts = filter_bucket(bucket, months, month_filter)
        pos += counts.positive
        neg += counts.negative
        unc_pos += counts.uncertain_positive
        unc_neg += counts.uncertain_negative
    return BucketCounts(
        positive=pos, negative=neg, uncertain_positive=unc_pos, uncertain_negative=unc_neg
    )


def projected_counts(
    buckets: Sequence[Bucket],
    snapshot: Snapshot,
    month_filter: MonthFilter | None = None,
) -> ProjectedCounts:
    """Scale sampled counts to population size with one multiplier per polarity."""
    sampled = sampled_counts(buckets, snapshot.months, month_filter)
    pos_multiplier = (snapshot.game_total_positive or 1) / (snapshot.total_positive or 1)
    neg_multiplier = (snapshot.game_total_negative or 1) / (snapshot.total_negative or 1)
    mean_multiplier = (pos_multiplier + neg_multiplier) / 2.0
    positive = sampled.positive * pos_multiplier
    negative = sampled.negative * neg_multiplier
    uncertain_positive = sampled.uncertain_positive * pos_multiplier
    uncertain_negative = sampled.uncertain_negative * neg_multiplier
    return ProjectedCounts(
        positive=positive,
        negative=negative,
        uncertain_positive=uncertain_positive,
        uncertain_negative=uncertain_negative,
        certain=sampled.certain * mean_multiplier,
        uncertain=sampled.uncertain * mean_multiplier,
        total=positive + negative + uncertain_positive + uncertain_negative,
        sampled=sampled,
    )

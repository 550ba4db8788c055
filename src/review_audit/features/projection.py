"""Position-weighted projection of a frontloaded review sample.

The upstream cursor returns recent reviews first, so older months are
under-represented in any partial sample while the population totals per
polarity are known exactly. Each month is scaled by
``(1 / sample_rate) ** (1 - position_ratio)`` (oldest month the most, newest
month ~1x), the estimates are normalized to the population total, and each
month's projected total is split by polarity so that a month that deviates
from the population ratio keeps its deviation instead of being smoothed
toward the mean.
"""

from __future__ import annotations

import numpy as np
import pandas as pd

from review_audit.config import ProjectionConfig
from review_audit.features.filtering import month_mask
from review_audit.snapshot import MonthFilter, Snapshot

PROJECTED_COLUMNS = [
    "month",
    "positive",
    "negative",
    "uncertain_positive",
    "uncertain_negative",
    "sampled_positive",
    "sampled_negative",
    "sampled_total",
    "estimated_true",
    "projected_total",
    "projected_positive",
    "projected_negative",
    "extra_positive",
    "extra_negative",
]


def _empty_projection() -> pd.DataFrame:
    return pd.DataFrame(columns=PROJECTED_COLUMNS)


def _sampled_frame(snapshot: Snapshot) -> pd.DataFrame:
    totals = snapshot.monthly_totals()
    frame = pd.DataFrame(
        {
            "month": list(snapshot.months),
            "positive": totals["positive"].astype(float),
            "negative": totals["negative"].astype(float),
            "uncertain_positive": totals["uncertain_positive"].astype(float),
            "uncertain_negative": totals["uncertain_negative"].astype(float),
        }
    )
    frame["sampled_positive"] = frame["positive"] + frame["uncertain_positive"]
    frame["sampled_negative"] = frame["negative"] + frame["uncertain_negative"]
    frame["sampled_total"] = frame["sampled_positive"] + frame["sampled_negative"]
    return frame


def _as_sampled(frame: pd.DataFrame) -> pd.DataFrame:
    frame["estimated_true"] = frame["sampled_total"]
    frame["projected_total"] = frame["sampled_total"]
    frame["projected_positive"] = frame["sampled_positive"]
    frame["projected_negative"] = frame["sampled_negative"]
    frame["extra_positive"] = 0.0
    frame["extra_negative"] = 0.0
    return frame[PROJECTED_COLUMNS]


def _spread_evenly(frame: pd.DataFrame, snapshot: Snapshot) -> pd.DataFrame:
    """Nothing sampled yet: every month gets an equal share of the population."""
    population_total = float(snapshot.population_total)
    share = population_total / len(frame)
    true_ratio = float(snapshot.game_total_positive) / population_total
    frame["estimated_true"] = 0.0
    frame["projected_total"] = share
    frame["projected_positive"] = share * true_ratio
    frame["projected_negative"] = share * (1.0 - true_ratio)
    frame["extra_positive"] = 0.0 if snapshot.positive_exhausted else frame["projected_positive"]
    frame["extra_negative"] = 0.0 if snapshot.negative_exhausted else frame["projected_negative"]
    return frame[PROJECTED_COLUMNS]


def project_monthly(
    snapshot: Snapshot,
    config: ProjectionConfig | None = None,
) -> pd.DataFrame:
    config = config or ProjectionConfig()
    if snapshot.month_count == 0:
        return _empty_projection()

    frame = _sampled_frame(snapshot)
    population_total = float(snapshot.population_total)
    total_sampled = float(frame["sampled_total"].sum())
    if population_total <= 0.0:
        return _as_sampled(frame)
    if total_sampled <= 0.0:
        return _spread_evenly(frame, snapshot)

    sample_rate = total_sampled / population_total
    if sample_rate >= config.high_coverage_threshold:
        return _as_sampled(frame)

    n_months = len(frame)
    positions = np.arange(n_months, dtype=float)
    position_ratio = positions / (n_months - 1) if n_months > 1 else np.ones(n_months)
    max_multiplier = 1.0 / sample_rate
    multipliers = np.power(max_multiplier, 1.0 - position_ratio)

    sampled_total = frame["sampled_total"].to_numpy(dtype=float)
    sampled_pos = frame["sampled_positive"].to_numpy(dtype=float)
    sampled_neg = frame["sampled_negative"].to_numpy(dtype=float)

    estimated_true = sampled_total * multipliers
    estimate_sum = float(estimated_true.sum())
    normalize_factor = population_total / estimate_sum if estimate_sum > 0.0 else 1.0
    projected_total = estimated_true * normalize_factor

    true_ratio = float(snapshot.game_total_positive) / population_total
    local_ratio = np.divide(
        sampled_pos,
        sampled_total,
        out=np.full(n_months, true_ratio, dtype=float),
        where=sampled_total > 0.0,
    )
    leans_positive = local_ratio >= true_ratio
    projected_neg = np.where(
        leans_positive,
        sampled_neg,
        np.maximum(sampled_neg, projected_total - sampled_pos),
    )
    projected_pos = np.where(
        leans_positive,
        np.maximum(sampled_pos, projected_total - sampled_neg),
        sampled_pos,
    )

    extra_pos = np.maximum(0.0, projected_pos - sampled_pos)
    extra_neg = np.maximum(0.0, projected_neg - sampled_neg)
    if snapshot.positive_exhausted:
        extra_pos = np.zeros(n_months, dtype=float)
    if snapshot.negative_exhausted:
        extra_neg = np.zeros(n_months, dtype=float)

    frame["estimated_true"] = estimated_true
    frame["projected_total"] = projected_total
    frame["projected_positive"] = projected_pos
    frame["projected_negative"] = projected_neg
    frame["extra_positive"] = extra_pos
    frame["extra_negative"] = extra_neg
    return frame[PROJECTED_COLUMNS]


def get_projected_monthly(
    snapshot: Snapshot,
    month_filter: MonthFilter | None = None,
    use_prediction: bool = True,
) -> pd.DataFrame:
    """Projected rows inside ``month_filter``; sampled-only when ``use_prediction`` is off."""
    projected = snapshot.projected_monthly
    if projected is None or projected.empty:
        return _empty_projection()

    data = projected.loc[month_mask(projected["month"].tolist(), month_filter)].reset_index(
        drop=True
    )
    if use_prediction:
        return data.copy()
    return _as_sampled(data.copy())

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd

from review_audit.config import TemporalConfig
from review_audit.detectors.stats import population_stats, window_mean

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class TemporalDrift:
    earlier_negative_ratio: float = 0.0
    recent_negative_ratio: float = 0.0
    ratio_stddev: float = 0.0
    drift_z: float = 0.0


@dataclass(frozen=True)
class EndActivity:
    start_activity: float = 1.0
    end_activity: float = 1.0
    is_end_dead: bool = False


@dataclass(frozen=True)
class Revival:
    has_revival: bool = False
    death_index: int | None = None
    revival_index: int | None = None
    first_wave_negative_ratio: float | None = None
    last_wave_negative_ratio: float | None = None
    sentiment_change: float | None = None
    is_still_alive: bool | None = None


def _activity(monthly: pd.DataFrame) -> np.ndarray:
    return monthly["projected_total"].to_numpy(dtype=float)


def _polarity(monthly: pd.DataFrame) -> tuple[np.ndarray, np.ndarray]:
    return (
        monthly["projected_positive"].to_numpy(dtype=float),
        monthly["projected_negative"].to_numpy(dtype=float),
    )


def _negative_ratio(positive: float, negative: float) -> float:
    total = positive + negative
    return negative / total if total > 0.0 else 0.0


def temporal_drift(monthly: pd.DataFrame, config: TemporalConfig | None = None) -> TemporalDrift:
    """Negative-ratio shift of the most recent months against everything before.

    ``drift_z > 1`` means sentiment has soured; ``< -1`` means it improved.
    """
    config = config or TemporalConfig()
    if len(monthly) < config.min_months:
        return TemporalDrift()

    positive, negative = _polarity(monthly)
    totals = positive + negative
    has_reviews = totals > 0.0
    ratio_stddev = population_stats(negative[has_reviews] / totals[has_reviews]).stddev
    ratio_stddev = ratio_stddev or config.fallback_ratio_stddev

    cutoff = max(0, len(monthly) - config.recent_months)
    earlier_ratio = _negative_ratio(float(positive[:cutoff].sum()), float(negative[:cutoff].sum()))
    recent_ratio = _negative_ratio(float(positive[cutoff:].sum()), float(negative[cutoff:].sum()))
    if cutoff == 0 or float(totals[:cutoff].sum()) <= 0.0:
        # Nothing to compare the recent period against.
        return TemporalDrift(
            earlier_negative_ratio=earlier_ratio,
            recent_negative_ratio=recent_ratio,
            ratio_stddev=ratio_stddev,
        )
    return TemporalDrift(
        earlier_negative_ratio=earlier_ratio,
        recent_negative_ratio=recent_ratio,
        ratio_stddev=ratio_stddev,
        drift_z=(recent_ratio - earlier_ratio) / ratio_stddev,
    )


def window_end_activity(monthly: pd.DataFrame, config: TemporalConfig | None = None) -> EndActivity:
    config = config or TemporalConfig()
    activity = _activity(monthly)
    if activity.size < config.min_months:
        return EndActivity()

    start_activity = window_mean(activity, 0, activity.size // 2)
    end_activity = window_mean(activity, activity.size - config.tail_months, activity.size)
    return EndActivity(
        start_activity=start_activity,
        end_activity=end_activity,
        is_end_dead=bool(end_activity < start_activity * config.dead_ratio),
    )


def _find_cycle(activity: np.ndarray, config: TemporalConfig) -> tuple[int, int] | None:
    n_months = activity.size
    scan = config.scan_months
    for death in range(config.prior_months, n_months - scan):
        prior = window_mean(activity, death - config.prior_months, death)
        current = window_mean(activity, death, death + scan)
        if prior <= 0.0 or current >= prior * config.death_ratio:
            continue
        for revival in range(death + scan, n_months - scan + 1):
            if window_mean(activity, revival, revival + scan) >= prior * config.revival_ratio:
                return death, revival
    return None


def detect_revival(monthly: pd.DataFrame, config: TemporalConfig | None = None) -> Revival:
    """First death-then-resurrection cycle found scanning forward, if any."""
    config = config or TemporalConfig()
    activity = _activity(monthly)
    if activity.size < config.min_months:
        return Revival()

    cycle = _find_cycle(activity, config)
    if cycle is None:
        return Revival()
    death, revival = cycle

    positive, negative = _polarity(monthly)
    first_wave = _negative_ratio(float(positive[:death].sum()), float(negative[:death].sum()))
    last_wave = _negative_ratio(float(positive[revival:].sum()), float(negative[revival:].sum()))

    post_revival = activity[death + config.prior_months :]
    if post_revival.size < config.min_months:
        is_still_alive = True
    else:
        start_activity = window_mean(post_revival, 0, post_revival.size // 2)
        end_activity = window_mean(activity, activity.size - config.tail_months, activity.size)
        is_still_alive = (
            start_activity == 0.0 or end_activity >= start_activity * config.alive_ratio
        )

    months = monthly["month"].astype(str).tolist()
    LOGGER.debug("Revival: death at %s, resurrection at %s", months[death], months[revival])
    return Revival(
        has_revival=True,
        death_index=death,
        revival_index=revival,
        first_wave_negative_ratio=first_wave,
        last_wave_negative_ratio=last_wave,
        sentiment_change=last_wave - first_wave,
        is_still_alive=bool(is_still_alive),
    )

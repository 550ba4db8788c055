from __future__ import annotations

import logging
from dataclasses import asdict, dataclass

import numpy as np
import pandas as pd

from review_audit.config import SpikeConfig
from review_audit.detectors.stats import population_stats
from review_audit.features.projection import get_projected_monthly
from review_audit.snapshot import MonthFilter, Snapshot

LOGGER = logging.getLogger(__name__)

SPIKE_COLUMNS = [
    "month",
    "polarity",
    "z_score",
    "raw_z_score",
    "sentiment_z",
    "raw_sentiment_z",
    "is_volume_spike",
    "is_sentiment_spike",
    "multiple",
    "count",
    "positive_count",
    "negative_count",
    "negative_ratio",
    "baseline_negative_ratio",
    "launch_weight",
]


@dataclass(frozen=True, slots=True)
class Spike:
    month: str
    polarity: str
    z_score: float
    raw_z_score: float
    sentiment_z: float
    raw_sentiment_z: float
    is_volume_spike: bool
    is_sentiment_spike: bool
    multiple: float
    count: float
    positive_count: float
    negative_count: float
    negative_ratio: float
    baseline_negative_ratio: float
    launch_weight: float

    @property
    def magnitude(self) -> float:
        return max(self.z_score, abs(self.sentiment_z))


@dataclass(frozen=True)
class SpikeReport:
    negative_spikes: tuple[Spike, ...] = ()
    positive_spikes: tuple[Spike, ...] = ()
    all_spikes: tuple[Spike, ...] = ()

    def within(self, month_filter: MonthFilter | None) -> SpikeReport:
        """Spikes whose month falls inside the window bounds (exclusions ignored)."""
        if month_filter is None or not month_filter.is_windowed:
            return self
        bounds = MonthFilter(from_month=month_filter.from_month, to_month=month_filter.to_month)
        return SpikeReport(
            negative_spikes=tuple(s for s in self.negative_spikes if bounds.contains(s.month)),
            positive_spikes=tuple(s for s in self.positive_spikes if bounds.contains(s.month)),
            all_spikes=tuple(s for s in self.all_spikes if bounds.contains(s.month)),
        )

    def to_frame(self) -> pd.DataFrame:
        if not self.all_spikes:
            return pd.DataFrame(columns=SPIKE_COLUMNS)
        return pd.DataFrame([asdict(spike) for spike in self.all_spikes], columns=SPIKE_COLUMNS)


def launch_weight(position: int, decay_months: float) -> float:
    return float(1.0 - np.exp(-position / decay_months))


def _classify(
    negative_ratio: float,
    effective_sentiment_z: float,
    is_sentiment_spike: bool,
    config: SpikeConfig,
) -> str:
    if is_sentiment_spike:
        return "negative" if effective_sentiment_z > 0 else "positive"
    if negative_ratio > config.negative_share_threshold:
        return "negative"
    if negative_ratio < config.positive_share_threshold:
        return "positive"
    return "mixed"


def find_spikes(monthly: pd.DataFrame, config: SpikeConfig | None = None) -> SpikeReport:
    """Scan a projected monthly frame for volume and sentiment anomalies.

    Volume z compares each month against up to ``neighbor_months`` months on
    either side (the month itself excluded). Sentiment z compares the month's
    negative share against the series baseline. Both are damped by the
    launch weight ``1 - exp(-i / launch_decay_months)``.
    """
    config = config or SpikeConfig()
    if monthly.empty:
        return SpikeReport()

    months = monthly["month"].astype(str).tolist()
    totals = monthly["projected_total"].to_numpy(dtype=float)
    positives = monthly["projected_positive"].to_numpy(dtype=float)
    negatives = monthly["projected_negative"].to_numpy(dtype=float)
    n_months = totals.size

    polarity_total = float(positives.sum() + negatives.sum())
    baseline_ratio = float(negatives.sum()) / polarity_total if polarity_total > 0.0 else 0.5

    dense = (totals >= config.min_month_total) & (totals > 0.0)
    ratio_stats = population_stats(negatives[dense] / totals[dense])

    spikes: list[Spike] = []
    for idx in range(n_months):
        total = float(totals[idx])
        if total < config.min_month_total or total <= 0.0:
            continue

        lo = max(0, idx - config.neighbor_months)
        hi = min(n_months, idx + config.neighbor_months + 1)
        neighbors = np.concatenate([totals[lo:idx], totals[idx + 1 : hi]])

        raw_z = 0.0
        multiple = 1.0
        if neighbors.size >= config.min_neighbors:
            local = population_stats(neighbors)
            if local.stddev > 0.0:
                raw_z = (total - local.mean) / local.stddev
                multiple = total / local.mean if local.mean > 0.0 else total

        negative_ratio = float(negatives[idx]) / total
        raw_sentiment_z = 0.0
        if config.sentiment_spikes and ratio_stats.stddev > 0.0:
            raw_sentiment_z = (negative_ratio - baseline_ratio) / ratio_stats.stddev

        weight = launch_weight(idx, config.launch_decay_months)
        z_score = raw_z * weight
        sentiment_z = raw_sentiment_z * weight
        is_volume = z_score >= config.volume_z_threshold
        is_sentiment = abs(sentiment_z) >= config.sentiment_z_threshold
        if not (is_volume or is_sentiment):
            continue

        spikes.append(
            Spike(
                month=months[idx],
                polarity=_classify(negative_ratio, sentiment_z, is_sentiment, config),
                z_score=float(z_score),
                raw_z_score=float(raw_z),
                sentiment_z=float(sentiment_z),
                raw_sentiment_z=float(raw_sentiment_z),
                is_volume_spike=bool(is_volume),
                is_sentiment_spike=bool(is_sentiment),
                multiple=float(multiple),
                count=total,
                positive_count=float(positives[idx]),
                negative_count=float(negatives[idx]),
                negative_ratio=negative_ratio,
                baseline_negative_ratio=baseline_ratio,
                launch_weight=weight,
            )
        )

    spikes.sort(key=lambda spike: spike.magnitude, reverse=True)
    report = SpikeReport(
        negative_spikes=tuple(s for s in spikes if s.polarity == "negative"),
        positive_spikes=tuple(s for s in spikes if s.polarity == "positive"),
        all_spikes=tuple(spikes),
    )
    LOGGER.debug(
        "Spike scan over %d months: %d negative, %d positive, %d mixed",
        n_months,
        len(report.negative_spikes),
        len(report.positive_spikes),
        len(spikes) - len(report.negative_spikes) - len(report.positive_spikes),
    )
    return report


def detect_spikes(
    snapshot: Snapshot,
    month_filter: MonthFilter | None = None,
    use_prediction: bool = True,
    config: SpikeConfig | None = None,
) -> SpikeReport:
    monthly = get_projected_monthly(snapshot, month_filter, use_prediction=use_prediction)
    return find_spikes(monthly, config)


def is_significant_negative(spike: Spike, config: SpikeConfig | None = None) -> bool:
    config = config or SpikeConfig()
    by_volume = spike.is_volume_spike and spike.count >= config.negative_min_count
    by_sentiment = spike.is_sentiment_spike and spike.sentiment_z >= config.sentiment_z_threshold
    return bool(by_volume or by_sentiment)


def is_significant_positive(spike: Spike, config: SpikeConfig | None = None) -> bool:
    config = config or SpikeConfig()
    by_volume = (
        spike.is_volume_spike
        and spike.count >= config.positive_min_count
        and spike.multiple >= config.positive_min_multiple
    )
    by_sentiment = spike.is_sentiment_spike and spike.sentiment_z <= -config.sentiment_z_threshold
    return bool(by_volume or by_sentiment)

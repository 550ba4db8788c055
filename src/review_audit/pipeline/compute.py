from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any

import pandas as pd

from review_audit.config import AppConfig
from review_audit.detectors.spikes import (
    SpikeReport,
    detect_spikes,
    is_significant_negative,
    is_significant_positive,
)
from review_audit.detectors.temporal import detect_revival, temporal_drift, window_end_activity
from review_audit.features.edits import analyze_edit_heatmap
from review_audit.features.filtering import projected_counts
from review_audit.features.playtime import (
    bucket_weights,
    confidence,
    negative_bimodality,
    playtime_stats,
    refund_honesty,
    tail_ratio,
)
from review_audit.features.projection import get_projected_monthly
from review_audit.pipeline.bundle import MetricsBundle
from review_audit.snapshot import MonthFilter, Snapshot
from review_audit.verdict.engine import RuleSet, derive_verdict
from review_audit.verdict.rules import DEFAULT_RULE_SET

LOGGER = logging.getLogger(__name__)

TIMELINE_COLUMNS = [
    "month",
    "window_start",
    "window_end",
    "tags",
    "negative_ratio",
    "volume",
    "median_ratio",
]


@dataclass(frozen=True)
class AnalysisOptions:
    timeline_filter: MonthFilter | None = None
    is_free: bool = False
    is_sexual: bool = False
    hide_prediction: bool = False

    @property
    def use_prediction(self) -> bool:
        return not self.hide_prediction


@dataclass(frozen=True)
class TimelinePoint:
    month: str
    window_start: str
    window_end: str
    tags: tuple[str, ...]
    negative_ratio: float
    volume: float
    median_ratio: float


def _excluded_months(report: SpikeReport, config: AppConfig) -> tuple[str, ...]:
    months: list[str] = []
    for spike in report.negative_spikes:
        if is_significant_negative(spike, config.spikes):
            months.append(spike.month)
    for spike in report.positive_spikes:
        if is_significant_positive(spike, config.spikes):
            months.append(spike.month)
    return tuple(dict.fromkeys(months))


def _ratio_pair(positive: float, negative: float) -> tuple[float, float]:
    total = positive + negative
    if total <= 0.0:
        return 0.5, 0.5
    return positive / total, negative / total


def _median_ratio(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator > 0.0 else 1.0


def compute(
    snapshot: Snapshot,
    options: AnalysisOptions | None = None,
    config: AppConfig | None = None,
    rule_set: RuleSet | None = None,
) -> MetricsBundle:
    """Derive the full metrics bundle and verdict for one snapshot and window.

    Spikes are located on the whole series, then only those inside the
    window are kept; the significant ones are excluded from every
    distribution statistic (the "organic" view). Activity decay and revival
    look at the plain window so that excluded spikes still count as activity.
    """
    options = options or AnalysisOptions()
    config = config or AppConfig()
    rule_set = rule_set or DEFAULT_RULE_SET
    window = options.timeline_filter
    use_prediction = options.use_prediction
    months = snapshot.months
    review_buckets = snapshot.review_buckets
    total_buckets = snapshot.total_buckets

    spikes = detect_spikes(snapshot, None, use_prediction, config.spikes).within(window)
    excluded = _excluded_months(spikes, config)
    organic = (window or MonthFilter()).with_exclusions(excluded) if excluded else window

    counts = projected_counts(review_buckets, snapshot, organic)
    organic_monthly = get_projected_monthly(snapshot, organic, use_prediction)
    if window is not None and window.is_windowed:
        positive_ratio, negative_ratio = _ratio_pair(
            float(organic_monthly["projected_positive"].sum()),
            float(organic_monthly["projected_negative"].sum()),
        )
    else:
        positive_ratio, negative_ratio = _ratio_pair(
            float(snapshot.game_total_positive), float(snapshot.game_total_negative)
        )

    pos_stats = playtime_stats(review_buckets, months, organic, "positive")
    neg_stats = playtime_stats(review_buckets, months, organic, "negative")
    total_pos_stats = playtime_stats(total_buckets, months, organic, "positive")
    total_neg_stats = playtime_stats(total_buckets, months, organic, "negative")
    pos_certain = playtime_stats(review_buckets, months, organic, "positive", True)
    neg_certain = playtime_stats(review_buckets, months, organic, "negative", True)
    total_pos_certain = playtime_stats(total_buckets, months, organic, "positive", True)
    total_neg_certain = playtime_stats(total_buckets, months, organic, "negative", True)
    midpoints, weights = bucket_weights(review_buckets, months, organic, "all")
    all_stats = playtime_stats(review_buckets, months, organic, "all")

    pos_median_delta = total_pos_stats.median - pos_stats.median
    neg_median_delta = total_neg_stats.median - neg_stats.median
    refund = None if options.is_free else refund_honesty(review_buckets, months, organic)

    drift = temporal_drift(organic_monthly, config.temporal)
    window_monthly = get_projected_monthly(snapshot, window, use_prediction)
    end_activity = window_end_activity(window_monthly, config.temporal)
    revival = detect_revival(window_monthly, config.temporal)
    edits = analyze_edit_heatmap(snapshot.edit_heatmap)

    positive_rate = snapshot.positive_sample_rate
    negative_rate = snapshot.negative_sample_rate

    bundle = MetricsBundle(
        counts=counts,
        total=max(1.0, counts.total),
        sampled_total=float(snapshot.sampled_total),
        positive_ratio=positive_ratio,
        negative_ratio=negative_ratio,
        pos_median_review=pos_stats.median,
        neg_median_review=neg_stats.median,
        pos_median_total=total_pos_stats.median,
        neg_median_total=total_neg_stats.median,
        pos_median_delta=pos_median_delta,
        neg_median_delta=neg_median_delta,
        pos_median_certain=pos_certain.median,
        neg_median_certain=neg_certain.median,
        pos_median_total_certain=total_pos_certain.median,
        neg_median_total_certain=total_neg_certain.median,
        median_ratio=_median_ratio(neg_stats.median, pos_stats.median),
        median_ratio_certain=_median_ratio(neg_certain.median, pos_certain.median),
        median_delta_ratio=_median_ratio(neg_median_delta, pos_median_delta),
        stockholm_index=_median_ratio(total_neg_stats.median, neg_stats.median),
        stockholm_index_certain=_median_ratio(total_neg_certain.median, neg_certain.median),
        refund_positive_rate=refund.positive_rate if refund else None,
        refund_negative_rate=refund.negative_rate if refund else None,
        negative_bimodality=negative_bimodality(review_buckets, months, organic),
        positive_stats=pos_stats,
        negative_stats=neg_stats,
        all_stats=all_stats,
        p95_playtime=pos_stats.p95,
        tail_ratio=tail_ratio(midpoints, weights, all_stats),
        confidence=confidence(snapshot.sampled_total, positive_rate, negative_rate),
        convergence_score=min(positive_rate, negative_rate),
        positive_sample_rate=positive_rate,
        negative_sample_rate=negative_rate,
        positive_exhausted=snapshot.positive_exhausted,
        negative_exhausted=snapshot.negative_exhausted,
        is_streaming=snapshot.is_streaming,
        is_free=options.is_free,
        is_sexual=options.is_sexual,
        earlier_negative_ratio=drift.earlier_negative_ratio,
        recent_negative_ratio=drift.recent_negative_ratio,
        temporal_drift_z=drift.drift_z,
        is_end_dead=end_activity.is_end_dead,
        has_revival=revival.has_revival,
        first_wave_negative_ratio=revival.first_wave_negative_ratio,
        last_wave_negative_ratio=revival.last_wave_negative_ratio,
        revival_sentiment_change=revival.sentiment_change,
        is_still_alive=revival.is_still_alive,
        negative_spikes=spikes.negative_spikes,
        positive_spikes=spikes.positive_spikes,
        excluded_months=excluded,
        recent_negative_edit_ratio=edits.recent_negative_edit_ratio,
        old_reviews_edited_ratio=edits.old_reviews_edited_ratio,
        total_edits=edits.total_edits,
    )
    verdict = derive_verdict(bundle, rule_set)
    LOGGER.debug(
        "Computed metrics over %d months (window=%s, excluded=%s): %s",
        snapshot.month_count,
        window,
        list(excluded),
        verdict.primary_tag,
    )
    return replace(bundle, verdict=verdict)


def compute_timeline(
    snapshot: Snapshot,
    window_months: int = 3,
    options: AnalysisOptions | None = None,
    config: AppConfig | None = None,
    rule_set: RuleSet | None = None,
) -> list[TimelinePoint]:
    """Re-run ``compute`` over every sliding ``window_months`` window."""
    if window_months < 1:
        raise ValueError("window_months must be >= 1")
    options = options or AnalysisOptions()
    months = snapshot.months
    points: list[TimelinePoint] = []
    for start in range(len(months) - window_months + 1):
        window_start = months[start]
        window_end = months[start + window_months - 1]
        window = MonthFilter(from_month=window_start, to_month=window_end)
        metrics = compute(snapshot, replace(options, timeline_filter=window), config, rule_set)
        points.append(
            TimelinePoint(
                month=window_end,
                window_start=window_start,
                window_end=window_end,
                tags=metrics.verdict.tag_ids if metrics.verdict else (),
                negative_ratio=metrics.negative_ratio,
                volume=metrics.counts.total if metrics.counts else 0.0,
                median_ratio=metrics.median_ratio,
            )
        )
    return points


def timeline_frame(points: list[TimelinePoint]) -> pd.DataFrame:
    if not points:
        return pd.DataFrame(columns=TIMELINE_COLUMNS)
    rows: list[dict[str, Any]] = []
    for point in points:
        rows.append(
            {
                "month": point.month,
                "window_start": point.window_start,
                "window_end": point.window_end,
                "tags": ",".join(point.tags),
                "negative_ratio": point.negative_ratio,
                "volume": point.volume,
                "median_ratio": point.median_ratio,
            }
        )
    return pd.DataFrame(rows, columns=TIMELINE_COLUMNS)


@dataclass(frozen=True)
class ComputeRequest:
    snapshot: Snapshot
    options: AnalysisOptions = field(default_factory=AnalysisOptions)
    config: AppConfig | None = None
    generation: int = 0
    timeline_months: int | None = None


@dataclass(frozen=True)
class ComputeResponse:
    ok: bool
    generation: int = 0
    result: MetricsBundle | None = None
    timeline: tuple[TimelinePoint, ...] | None = None
    error: str | None = None


def compute_request(request: ComputeRequest) -> ComputeResponse:
    """Executor entry point: one immutable request in, one immutable response out."""
    try:
        result = compute(request.snapshot, request.options, request.config)
        timeline = None
        if request.timeline_months is not None:
            timeline = tuple(
                compute_timeline(
                    request.snapshot, request.timeline_months, request.options, request.config
                )
            )
    except Exception as exc:
        LOGGER.exception("Metrics computation failed for generation %d", request.generation)
        return ComputeResponse(
            ok=False, generation=request.generation, error=f"{type(exc).__name__}: {exc}"
        )
    return ComputeResponse(
        ok=True, generation=request.generation, result=result, timeline=timeline
    )

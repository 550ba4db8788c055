from __future__ import annotations

from typing import Callable, Sequence

import pandas as pd
import pytest

from review_audit.io.codec import attach_projection
from review_audit.snapshot import Bucket, EditHeatmap, LanguageStats, Snapshot


def month_labels(start: str, count: int) -> tuple[str, ...]:
    year, month = (int(part) for part in start.split("-"))
    labels: list[str] = []
    for _ in range(count):
        labels.append(f"{year:04d}-{month:02d}")
        month += 1
        if month > 12:
            year += 1
            month = 1
    return tuple(labels)


def build_snapshot(
    positive: Sequence[int],
    negative: Sequence[int],
    start: str = "2020-01",
    game_total_positive: int | None = None,
    game_total_negative: int | None = None,
    playtime_range: tuple[float, float] = (0.0, 60.0),
    review_buckets: Sequence[Bucket] | None = None,
    edit_heatmap: EditHeatmap | None = None,
    positive_exhausted: bool = False,
    negative_exhausted: bool = False,
    is_streaming: bool = False,
    is_final: bool = False,
) -> Snapshot:
    """Snapshot whose reviews all sit in one playtime bucket unless buckets are given."""
    months = month_labels(start, len(positive))
    zeros = [0] * len(months)
    if review_buckets is None:
        review_buckets = (Bucket.from_counts(*playtime_range, positive, negative, zeros, zeros),)
    review_buckets = tuple(review_buckets)
    sampled_positive = sum(b.positive_count + b.uncertain_positive_count for b in review_buckets)
    sampled_negative = sum(b.negative_count + b.uncertain_negative_count for b in review_buckets)
    game_positive = sampled_positive if game_total_positive is None else game_total_positive
    game_negative = sampled_negative if game_total_negative is None else game_total_negative
    snapshot = Snapshot(
        months=months,
        review_buckets=review_buckets,
        total_buckets=review_buckets,
        velocity_buckets=(),
        total_positive=sampled_positive,
        total_negative=sampled_negative,
        game_total_positive=game_positive,
        game_total_negative=game_negative,
        target_sample_count=sampled_positive + sampled_negative,
        positive_sample_rate=sampled_positive / game_positive if game_positive else 1.0,
        negative_sample_rate=sampled_negative / game_negative if game_negative else 1.0,
        positive_exhausted=positive_exhausted,
        negative_exhausted=negative_exhausted,
        is_streaming=is_streaming,
        is_final=is_final,
        language=LanguageStats.empty(len(months)),
        edit_heatmap=edit_heatmap or EditHeatmap(),
    )
    return attach_projection(snapshot)


def monthly_frame(
    totals: Sequence[float],
    negatives: Sequence[float],
    start: str = "2020-01",
) -> pd.DataFrame:
    """Minimal projected monthly frame for detectors that only read projected columns."""
    months = month_labels(start, len(totals))
    frame = pd.DataFrame(
        {
            "month": list(months),
            "projected_total": [float(value) for value in totals],
            "projected_negative": [float(value) for value in negatives],
        }
    )
    frame["projected_positive"] = frame["projected_total"] - frame["projected_negative"]
    return frame


@pytest.fixture
def make_snapshot() -> Callable[..., Snapshot]:
    return build_snapshot


@pytest.fixture
def make_monthly() -> Callable[..., pd.DataFrame]:
    return monthly_frame


@pytest.fixture
def healthy_snapshot() -> Snapshot:
    return build_snapshot([90] * 24, [10] * 24)

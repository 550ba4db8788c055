from __future__ import annotations

import math

import pytest

from review_audit.config import SpikeConfig
from review_audit.detectors.spikes import (
    SPIKE_COLUMNS,
    detect_spikes,
    find_spikes,
    is_significant_negative,
    is_significant_positive,
    launch_weight,
)
from review_audit.snapshot import MonthFilter


def _noisy_totals(n_months: int) -> list[float]:
    return [100.0 + (idx % 3) * 5.0 for idx in range(n_months)]


def test_volume_and_sentiment_spike_is_classified_negative(make_monthly) -> None:
    totals = _noisy_totals(36)
    negatives = [10.0] * 36
    totals[30], negatives[30] = 1000.0, 900.0

    report = find_spikes(make_monthly(totals, negatives))

    assert [spike.month for spike in report.all_spikes] == ["2022-07"]
    spike = report.negative_spikes[0]
    assert spike.is_volume_spike
    assert spike.is_sentiment_spike
    assert spike.sentiment_z > 0
    assert spike.count == 1000.0
    assert spike.multiple == pytest.approx(1000.0 / 105.0)
    assert is_significant_negative(spike)
    assert not report.positive_spikes


def test_viral_surge_is_classified_positive(make_monthly) -> None:
    totals = _noisy_totals(36)
    negatives = [10.0] * 36
    totals[30], negatives[30] = 1000.0, 10.0

    report = find_spikes(make_monthly(totals, negatives))

    assert [spike.month for spike in report.positive_spikes] == ["2022-07"]
    assert is_significant_positive(report.positive_spikes[0])

    stricter = SpikeConfig(positive_min_multiple=20.0, sentiment_spikes=False)
    volume_only = find_spikes(make_monthly(totals, negatives), stricter).positive_spikes[0]
    assert not is_significant_positive(volume_only, stricter)


def test_launch_month_is_dampened(make_monthly) -> None:
    totals = [1000.0] + [100.0] * 11
    negatives = [250.0] + [25.0] * 11

    report = find_spikes(make_monthly(totals, negatives))

    assert report.all_spikes == ()


def test_launch_weight_decays_from_zero() -> None:
    assert launch_weight(0, 6.0) == 0.0
    assert launch_weight(6, 6.0) == pytest.approx(1.0 - math.exp(-1.0))
    assert launch_weight(60, 6.0) == pytest.approx(1.0, abs=1e-4)


def test_sparse_months_are_never_spikes(make_monthly) -> None:
    totals = [5.0, 6.0, 5.0, 9.0, 5.0, 6.0]
    negatives = [0.0, 0.0, 0.0, 9.0, 0.0, 0.0]

    assert find_spikes(make_monthly(totals, negatives)).all_spikes == ()


def test_mixed_volume_spike_lands_in_neither_polarity(make_monthly) -> None:
    totals = _noisy_totals(36)
    negatives = [50.0] * 36
    totals[30], negatives[30] = 1000.0, 500.0

    report = find_spikes(make_monthly(totals, negatives), SpikeConfig(sentiment_spikes=False))

    assert [spike.polarity for spike in report.all_spikes] == ["mixed"]
    assert report.negative_spikes == ()
    assert report.positive_spikes == ()


def test_report_within_window_and_frame(make_monthly) -> None:
    totals = _noisy_totals(36)
    negatives = [10.0] * 36
    totals[30], negatives[30] = 1000.0, 900.0
    report = find_spikes(make_monthly(totals, negatives))

    assert report.within(MonthFilter(from_month="2021-01", to_month="2021-12")).all_spikes == ()
    assert len(report.within(MonthFilter(from_month="2022-01")).negative_spikes) == 1
    assert report.within(MonthFilter(to_month="2021-12")).all_spikes == ()
    assert len(report.within(MonthFilter(to_month="2022-07")).negative_spikes) == 1
    assert report.within(MonthFilter()) is report

    frame = report.to_frame()
    assert list(frame.columns) == SPIKE_COLUMNS
    assert frame["month"].tolist() == ["2022-07"]


def test_detect_spikes_reads_snapshot_projection(make_snapshot) -> None:
    positive = [90] * 24
    negative = [10] * 24
    positive[18], negative[18] = 10, 900

    report = detect_spikes(make_snapshot(positive, negative))

    assert [spike.month for spike in report.negative_spikes] == ["2021-07"]
    assert report.negative_spikes[0].is_sentiment_spike
    assert not report.negative_spikes[0].is_volume_spike

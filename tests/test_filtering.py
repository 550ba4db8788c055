from __future__ import annotations

import pytest

from review_audit.features.filtering import month_mask, projected_counts, sampled_counts
from review_audit.snapshot import Bucket, MonthFilter

MONTHS = ("2020-11", "2020-12", "2021-01", "2021-02")


def test_month_mask_applies_bounds_and_exclusions() -> None:
    window = MonthFilter(
        from_month="2020-12", to_month="2021-02", exclude_months=frozenset({"2021-01"})
    )

    assert month_mask(MONTHS, window).tolist() == [False, True, False, True]
    assert month_mask(MONTHS, None).tolist() == [True, True, True, True]


def test_month_filter_compares_labels_lexicographically() -> None:
    window = MonthFilter(from_month="2020-12")

    assert window.contains("2021-01")
    assert not window.contains("2020-11")
    assert window.is_windowed
    assert not MonthFilter().is_windowed
    assert window.with_exclusions(["2021-02"]).exclude_months == frozenset({"2021-02"})


def test_sampled_counts_sum_across_buckets() -> None:
    buckets = (
        Bucket.from_counts(0, 60, [1, 2, 3, 4], [0, 1, 0, 1], [1, 0, 0, 0], [0, 0, 0, 2]),
        Bucket.from_counts(60, 120, [10, 0, 0, 0], [0, 0, 5, 0], [0, 0, 0, 0], [0, 0, 0, 0]),
    )
    counts = sampled_counts(buckets, MONTHS, MonthFilter(from_month="2021-01"))

    assert counts.positive == 7.0
    assert counts.negative == 6.0
    assert counts.uncertain_negative == 2.0
    assert counts.total == 15.0


def test_projected_counts_scale_each_polarity_separately(make_snapshot) -> None:
    snapshot = make_snapshot([5, 5], [5, 5], game_total_positive=100, game_total_negative=50)
    counts = projected_counts(snapshot.review_buckets, snapshot)

    assert counts.positive == pytest.approx(100.0)
    assert counts.negative == pytest.approx(50.0)
    assert counts.total == pytest.approx(150.0)
    assert counts.sampled.total == 20.0
    # Certain counts use the mean of both multipliers.
    assert counts.certain == pytest.approx(20.0 * 7.5)


def test_bucket_rejects_mismatched_channels() -> None:
    with pytest.raises(ValueError, match="share one length"):
        Bucket.from_counts(0, 60, [1, 2], [1], [0, 0], [0, 0])

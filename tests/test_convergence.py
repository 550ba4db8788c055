from __future__ import annotations

import pytest

from review_audit.config import ConvergenceConfig
from review_audit.pipeline.bundle import MetricsBundle
from review_audit.streaming.coordinator import (
    sample_progress,
    should_finalize,
    target_sample_size,
    update_convergence,
)


def _partial(make_snapshot):
    # 2500 sampled out of 50000: target is 5000, so progress is 0.5.
    return make_snapshot(
        [1000, 1000], [250, 250], game_total_positive=40000, game_total_negative=10000
    )


def test_target_sample_size_is_clamped() -> None:
    config = ConvergenceConfig()

    assert target_sample_size(1000, config) == 5000
    assert target_sample_size(100000, config) == pytest.approx(10000)
    assert target_sample_size(1_000_000, config) == 20000


def test_first_result_starts_at_half_progress(make_snapshot) -> None:
    snapshot = _partial(make_snapshot)

    assert sample_progress(snapshot, ConvergenceConfig()) == pytest.approx(0.5)
    assert update_convergence(MetricsBundle(), None, snapshot, 0.0) == pytest.approx(0.25)


def test_moving_ratios_cap_the_score(make_snapshot) -> None:
    snapshot = _partial(make_snapshot)
    previous = MetricsBundle(median_ratio=1.0, positive_ratio=0.8)
    current = MetricsBundle(median_ratio=1.2, positive_ratio=0.8)

    assert update_convergence(current, previous, snapshot, 0.4) == pytest.approx(0.25)


def test_settled_ratios_ease_toward_progress(make_snapshot) -> None:
    snapshot = _partial(make_snapshot)
    previous = MetricsBundle(median_ratio=1.0, positive_ratio=0.8)
    current = MetricsBundle(median_ratio=1.01, positive_ratio=0.81)

    assert update_convergence(current, previous, snapshot, 0.25) == pytest.approx(0.275)


def test_should_finalize_on_coverage_or_settled_score(make_snapshot, healthy_snapshot) -> None:
    config = ConvergenceConfig()
    partial = _partial(make_snapshot)

    assert should_finalize(healthy_snapshot, 0.0, config)
    assert should_finalize(partial, 0.95, config)
    assert not should_finalize(partial, 0.5, config)


def test_convergence_config_rejects_inverted_targets() -> None:
    with pytest.raises(ValueError):
        ConvergenceConfig(min_target=30000, max_target=20000)


def test_stable_updates_never_decrease_or_overshoot(make_snapshot) -> None:
    snapshot = _partial(make_snapshot)
    bundle = MetricsBundle(median_ratio=1.0, positive_ratio=0.8)
    score = update_convergence(bundle, None, snapshot, 0.0)
    history = [score]
    for _ in range(50):
        score = update_convergence(bundle, bundle, snapshot, score)
        history.append(score)

    assert history == sorted(history)
    assert history[-1] <= 0.5
    assert history[-1] == pytest.approx(0.5, abs=0.01)

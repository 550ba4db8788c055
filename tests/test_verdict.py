from __future__ import annotations

import logging

import pytest

from review_audit.detectors.spikes import Spike
from review_audit.errors import RuleEvaluationError
from review_audit.pipeline.bundle import MetricsBundle
from review_audit.verdict.engine import NEUTRAL_TAG, RuleSet, TagRule, derive_verdict, tag_color
from review_audit.verdict.rules import DEFAULT_RULE_SET, half_up, hours, pct


def _spike(month: str, polarity: str = "negative", volume: bool = True) -> Spike:
    return Spike(
        month=month,
        polarity=polarity,
        z_score=5.0 if volume else 0.0,
        raw_z_score=5.0 if volume else 0.0,
        sentiment_z=3.0 if polarity == "negative" else -3.0,
        raw_sentiment_z=3.0,
        is_volume_spike=volume,
        is_sentiment_spike=True,
        multiple=8.0,
        count=1000.0,
        positive_count=100.0,
        negative_count=900.0,
        negative_ratio=0.9,
        baseline_negative_ratio=0.2,
        launch_weight=0.99,
    )


def test_healthy_product() -> None:
    verdict = derive_verdict(
        MetricsBundle(positive_ratio=0.85, negative_ratio=0.15, median_ratio=1.1),
        DEFAULT_RULE_SET,
    )

    assert verdict.primary_tag == "HEALTHY"
    assert verdict.tags[0].reason == "85% positive reviews"
    assert verdict.tags[0].severity == pytest.approx(-0.2)
    assert verdict.tags[0].color == "var(--color-tag-healthy)"
    assert verdict.severity == pytest.approx(1.0 / 6.0)


def test_unremarkable_product_is_neutral() -> None:
    verdict = derive_verdict(
        MetricsBundle(positive_ratio=0.75, negative_ratio=0.25), DEFAULT_RULE_SET
    )

    assert verdict.tags == ()
    assert verdict.primary_tag == NEUTRAL_TAG
    assert verdict.severity == pytest.approx(0.5)


def test_predatory_suppresses_extractive_but_keeps_raw_severity() -> None:
    verdict = derive_verdict(
        MetricsBundle(
            positive_ratio=0.65,
            negative_ratio=0.35,
            median_ratio=1.6,
            neg_median_review=600.0,
        ),
        DEFAULT_RULE_SET,
    )

    assert verdict.tag_ids == ("PREDATORY",)
    assert verdict.raw_severity == pytest.approx(0.25 + 0.18)
    assert verdict.severity == 1.0
    assert verdict.reasons == ("35% negative after 10h median (60% longer than positive)",)


def test_troubled_is_suppressed_by_flop() -> None:
    verdict = derive_verdict(
        MetricsBundle(positive_ratio=0.4, negative_ratio=0.6, median_ratio=0.5),
        DEFAULT_RULE_SET,
    )

    assert verdict.has("FLOP")
    assert not verdict.has("TROUBLED")
    assert not verdict.has("HONEST")


def test_revival_family_uses_wave_sentiment() -> None:
    metrics = MetricsBundle(
        positive_ratio=0.75,
        negative_ratio=0.25,
        has_revival=True,
        first_wave_negative_ratio=0.1,
        last_wave_negative_ratio=0.7,
        is_still_alive=True,
    )
    verdict = derive_verdict(metrics, DEFAULT_RULE_SET)

    assert verdict.tag_ids == ("ZOMBIE",)
    assert verdict.reasons == ("Came back wrong: 90% → 30% positive, still shambling",)


def test_excluded_spikes_drive_bomb_and_surge_tags() -> None:
    metrics = MetricsBundle(
        positive_ratio=0.75,
        negative_ratio=0.25,
        negative_spikes=(_spike("2022-07"), _spike("2022-09")),
        positive_spikes=(_spike("2023-01", polarity="positive"),),
        excluded_months=("2022-07", "2023-01"),
    )
    verdict = derive_verdict(metrics, DEFAULT_RULE_SET)

    tags = {tag.id: tag for tag in verdict.tags}
    assert tags["REVIEW_BOMBED"].reason == "1 negative surge (2022-07): 1000 reviews excluded"
    assert tags["SURGE"].reason == "Viral moment in 2023-01 (excluded from stats)"
    assert metrics.negative_bomb is not None
    assert metrics.to_dict()["negative_bomb_month"] == "2022-07"


def test_failing_rule_is_skipped_and_logged(caplog: pytest.LogCaptureFixture) -> None:
    # ADDICTIVE's reason divides by a zero positive median here.
    metrics = MetricsBundle(
        positive_ratio=0.75, negative_ratio=0.25, p95_playtime=40000.0, pos_median_review=0.0
    )
    with caplog.at_level(logging.WARNING, logger="review_audit.verdict.engine"):
        verdict = derive_verdict(metrics, DEFAULT_RULE_SET)

    assert not verdict.has("ADDICTIVE")
    assert "ADDICTIVE" in caplog.text


def test_rule_evaluation_errors_wrap_the_cause() -> None:
    rule = TagRule("BROKEN", lambda m: m.missing_field > 0, 0.1, "never")

    with pytest.raises(RuleEvaluationError) as excinfo:
        rule.evaluate(MetricsBundle())
    assert excinfo.value.rule_id == "BROKEN"
    assert isinstance(excinfo.value.cause, AttributeError)

    nan_rule = TagRule("NAN", lambda m: True, float("nan"), "nan")
    with pytest.raises(RuleEvaluationError):
        nan_rule.evaluate(MetricsBundle())


def test_rule_set_rejects_duplicate_ids_and_replaces_rules() -> None:
    rule = TagRule("ALWAYS", lambda m: True, 0.1, "always")
    with pytest.raises(ValueError, match="ALWAYS"):
        RuleSet(rules=(rule, rule))

    custom = RuleSet(rules=(rule,)).replace_rule(TagRule("ALWAYS", lambda m: True, 0.3, "x"))
    verdict = derive_verdict(MetricsBundle(), custom)
    assert verdict.tags[0].severity == pytest.approx(0.3)
    assert verdict.severity == pytest.approx(1.0)


def test_formatting_helpers_round_half_up() -> None:
    assert half_up(2.5) == 3
    assert half_up(2.4) == 2
    assert pct(0.125) == 13
    assert hours(90.0) == 2
    assert tag_color("REVIEW_BOMBED") == "var(--color-tag-review-bombed)"

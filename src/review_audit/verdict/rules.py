"""Default tag rule table.

Rules are evaluated in order. Severities are negative for reassuring
patterns and positive for concerning ones; playtimes are stored in minutes
and reported in hours.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Callable

from review_audit.verdict.engine import RuleSet, TagRule

if TYPE_CHECKING:
    from review_audit.pipeline.bundle import MetricsBundle

STOCKHOLM_MIN_NEG_MEDIAN_MINUTES = 200 * 60
DIVISIVE_MIN_POS_MEDIAN_MINUTES = 20 * 60
ADDICTIVE_MIN_P95_MINUTES = 500 * 60
CULT_MAX_TOTAL = 2000
RETCONNED_MIN_EDITS = 1000
WAVE_SPLIT = 0.5


def half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def pct(ratio: float) -> int:
    return half_up(ratio * 100.0)


def hours(minutes: float) -> int:
    return half_up(minutes / 60.0)


def _extraction_severity(m: MetricsBundle) -> float:
    return min(0.3, (m.median_ratio - 1.0) * 0.3)


def _mass_revisions(m: MetricsBundle) -> bool:
    return m.recent_negative_edit_ratio >= 0.6 and m.old_reviews_edited_ratio >= 0.3


def _enshittified(m: MetricsBundle) -> bool:
    has_extraction = m.median_ratio > 1.3 and m.negative_ratio > 0.20
    return has_extraction and (m.temporal_drift_z > 1.0 or _mass_revisions(m))


def _enshittified_reason(m: MetricsBundle) -> str:
    if _mass_revisions(m):
        return (
            f"Veterans flipping negative: {pct(m.recent_negative_edit_ratio)}% "
            "of recent edits are thumbs down"
        )
    return (
        f"Was good, got ruined: sentiment {pct(m.earlier_negative_ratio)}% → "
        f"{pct(m.recent_negative_ratio)}% negative"
    )


def _wave(first_bad: bool, last_bad: bool, alive: bool) -> Callable[[MetricsBundle], bool]:
    def condition(m: MetricsBundle) -> bool:
        if not m.has_revival:
            return False
        first = m.first_wave_negative_ratio >= WAVE_SPLIT
        last = m.last_wave_negative_ratio >= WAVE_SPLIT
        return first == first_bad and last == last_bad and bool(m.is_still_alive) == alive

    return condition


def _wave_positive(m: MetricsBundle) -> str:
    return (
        f"{pct(1.0 - m.first_wave_negative_ratio)}% → "
        f"{pct(1.0 - m.last_wave_negative_ratio)}% positive"
    )


def _wave_negative(m: MetricsBundle) -> str:
    return f"{pct(m.first_wave_negative_ratio)}% → {pct(m.last_wave_negative_ratio)}% negative"


def _review_bombed_reason(m: MetricsBundle) -> str:
    significant = m.excluded_negative_spikes
    total = half_up(sum(spike.count for spike in significant))
    months = ", ".join(spike.month for spike in significant)
    plural = "s" if len(significant) > 1 else ""
    sentiment_only = any(not spike.is_volume_spike for spike in significant)
    suffix = " (sentiment spike)" if sentiment_only else ""
    return f"{len(significant)} negative surge{plural} ({months}){suffix}: {total} reviews excluded"


def _surge_reason(m: MetricsBundle) -> str:
    months = ", ".join(spike.month for spike in m.excluded_positive_spikes)
    return f"Viral moment in {months} (excluded from stats)"


def _retconned(m: MetricsBundle) -> bool:
    if m.total_edits < RETCONNED_MIN_EDITS:
        return False
    recent, old = m.recent_negative_edit_ratio, m.old_reviews_edited_ratio
    return (recent >= 0.25 and old >= 0.50) or (recent >= 0.50 and old >= 0.25)


DEFAULT_RULES: tuple[TagRule, ...] = (
    # Ratio-based: positive vs negative groups.
    TagRule(
        "HEALTHY",
        lambda m: m.positive_ratio > 0.80 and m.median_ratio < 1.3,
        -0.2,
        lambda m: f"{pct(m.positive_ratio)}% positive reviews",
    ),
    TagRule(
        "HONEST",
        lambda m: m.median_ratio < 0.7 and m.negative_ratio > 0.05,
        -0.15,
        lambda m: (
            f"Negatives out at {hours(m.neg_median_review)}h vs positives at "
            f"{hours(m.pos_median_review)}h ({pct(1.0 - m.median_ratio)}% earlier)"
        ),
    ),
    TagRule(
        "EXTRACTIVE",
        lambda m: m.median_ratio > 1.3,
        _extraction_severity,
        lambda m: (
            f"{pct(m.negative_ratio)}% negative at {hours(m.neg_median_review)}h "
            f"({pct(m.median_ratio - 1.0)}% longer than positives)"
        ),
    ),
    TagRule(
        "SIREN",
        lambda m: m.pos_median_review > m.neg_median_review
        and m.pos_median_total < m.neg_median_total,
        _extraction_severity,
        lambda m: (
            f"Pretty until the {hours((m.pos_median_review + m.neg_median_review) / 2)}h mark; "
            f"turns ugly around {hours((m.pos_median_total + m.neg_median_total) / 2)}h."
        ),
    ),
    TagRule(
        "ENSHITTIFIED",
        _enshittified,
        lambda m: min(0.35, (m.median_ratio - 1.0) * 0.3 + m.temporal_drift_z * 0.05),
        _enshittified_reason,
    ),
    TagRule(
        "PREDATORY",
        lambda m: m.median_ratio > 1.5 and m.negative_ratio > 0.30,
        0.25,
        lambda m: (
            f"{pct(m.negative_ratio)}% negative after {hours(m.neg_median_review)}h median "
            f"({pct(m.median_ratio - 1.0)}% longer than positive)"
        ),
    ),
    TagRule(
        "STOCKHOLM",
        lambda m: m.stockholm_index > 1.5
        and m.neg_median_review > STOCKHOLM_MIN_NEG_MEDIAN_MINUTES
        and m.certain_negative_ratio > 0.5,
        lambda m: min(0.25, (m.stockholm_index - 1.0) * 0.2),
        lambda m: (
            f"Haters: {hours(m.neg_median_review)}h at review → {hours(m.neg_median_total)}h "
            f"total ({pct(m.stockholm_index - 1.0)}% more after hating it)"
        ),
    ),
    TagRule(
        "DIVISIVE",
        lambda m: 0.35 < m.negative_ratio < 0.50
        and m.pos_median_review > DIVISIVE_MIN_POS_MEDIAN_MINUTES,
        0.05,
        lambda m: f"{pct(m.positive_ratio)}/{pct(m.negative_ratio)} split",
    ),
    TagRule(
        "FLOP",
        lambda m: m.negative_ratio > 0.50 and m.median_ratio < 0.7,
        0.2,
        lambda m: f"{pct(m.negative_ratio)}% negative at only {hours(m.neg_median_review)}h median",
    ),
    TagRule(
        "TROUBLED",
        lambda m: m.negative_ratio > 0.35 and m.median_ratio <= 1.0 and m.positive_ratio < 0.80,
        0.1,
        lambda m: f"{pct(m.negative_ratio)}% negative at {hours(m.neg_median_review)}h",
    ),
    TagRule(
        "REFUND_TRAP",
        lambda m: m.refund_positive_rate is not None
        and m.refund_positive_rate >= 0.20
        and m.refund_negative_rate < 0.10
        and m.negative_ratio > 0.15,
        0.15,
        lambda m: (
            f"{pct(m.refund_positive_rate)}% of positives before 2h, but only "
            f"{pct(m.refund_negative_rate)}% of negatives"
        ),
    ),
    # Distribution-shape and timeline tags.
    TagRule("DEAD", lambda m: m.is_end_dead, 0.01, "Activity declined - tail end is dead"),
    TagRule(
        "CULT",
        lambda m: m.tail_ratio > 0.05 and (m.is_end_dead or m.total < CULT_MAX_TOTAL),
        0.0,
        lambda m: f"{pct(m.tail_ratio)}% at extreme playtimes (expected ~2.5%)",
    ),
    TagRule(
        "HONEYMOON",
        lambda m: m.temporal_drift_z > 1.0 and m.median_ratio <= 1.3,
        0.1,
        lambda m: (
            f"Sentiment declined: {pct(m.earlier_negative_ratio)}% → "
            f"{pct(m.recent_negative_ratio)}% negative"
        ),
    ),
    TagRule(
        "REDEMPTION",
        lambda m: m.temporal_drift_z < -1.0 and not m.has_revival,
        -0.1,
        lambda m: (
            f"Sentiment improved: {pct(m.earlier_negative_ratio)}% → "
            f"{pct(m.recent_negative_ratio)}% negative"
        ),
    ),
    # Death and resurrection, keyed by each wave's sentiment.
    TagRule(
        "PHOENIX",
        _wave(first_bad=False, last_bad=False, alive=True),
        -0.15,
        lambda m: f"Rose from ashes: {_wave_positive(m)}, still flying",
    ),
    TagRule(
        "PRESS_F",
        _wave(first_bad=False, last_bad=False, alive=False),
        0.0,
        lambda m: f"Had a good run: {_wave_positive(m)}, died with honor",
    ),
    TagRule(
        "ZOMBIE",
        _wave(first_bad=False, last_bad=True, alive=True),
        0.2,
        lambda m: f"Came back wrong: {_wave_positive(m)}, still shambling",
    ),
    TagRule(
        "RUGPULL",
        _wave(first_bad=False, last_bad=True, alive=False),
        0.2,
        lambda m: f"Came back wrong: {_wave_positive(m)}, died again",
    ),
    TagRule(
        "180",
        _wave(first_bad=True, last_bad=False, alive=True),
        -0.15,
        lambda m: (
            f"Started bad ({pct(m.first_wave_negative_ratio)}% negative), "
            f"now good ({pct(m.last_wave_negative_ratio)}% negative)"
        ),
    ),
    TagRule(
        "HOPELESS",
        _wave(first_bad=True, last_bad=False, alive=False),
        0.05,
        lambda m: f"Fixed it too late: {_wave_negative(m)}, nobody came back",
    ),
    TagRule(
        "PLAGUE",
        _wave(first_bad=True, last_bad=True, alive=True),
        0.15,
        lambda m: f"Won't die, won't improve: {_wave_negative(m)}",
    ),
    TagRule(
        "CURSED",
        _wave(first_bad=True, last_bad=True, alive=False),
        0.1,
        lambda m: f"Born bad, died bad, twice: {_wave_negative(m)}",
    ),
    TagRule(
        "ADDICTIVE",
        lambda m: m.p95_playtime > m.pos_median_review * 5
        and m.p95_playtime > ADDICTIVE_MIN_P95_MINUTES
        and m.positive_ratio > 0.5,
        0.0,
        lambda m: (
            f"Top players at {hours(m.p95_playtime)}h vs {hours(m.pos_median_review)}h median "
            f"({half_up(m.p95_playtime / m.pos_median_review)}x)"
        ),
    ),
    # Content and data-quality markers.
    TagRule("HORNY", lambda m: m.is_sexual, 0.0, "Contains sexual content"),
    TagRule(
        "LOW_DATA",
        lambda m: m.confidence < 0.3,
        0.0,
        lambda m: f"Only {half_up(m.sampled_total)} reviews - interpret with caution",
    ),
    TagRule(
        "REVIEW_BOMBED",
        lambda m: bool(m.excluded_negative_spikes),
        0.0,
        _review_bombed_reason,
    ),
    TagRule("SURGE", lambda m: bool(m.excluded_positive_spikes), 0.0, _surge_reason),
    TagRule(
        "RETCONNED",
        _retconned,
        0.1,
        lambda m: (
            f"{pct(m.recent_negative_edit_ratio)}% of recent edits negative, "
            f"{pct(m.old_reviews_edited_ratio)}% of old reviews revised"
        ),
    ),
)

DEFAULT_HIERARCHY: dict[str, tuple[str, ...]] = {
    "PREDATORY": ("EXTRACTIVE",),
    "EXTRACTIVE": ("TROUBLED",),
    "FLOP": ("TROUBLED",),
    "TROUBLED": ("HONEST", "HEALTHY"),
    "DEAD": ("HEALTHY",),
    "ENSHITTIFIED": ("RETCONNED", "HONEYMOON"),
}

DEFAULT_RULE_SET = RuleSet(rules=DEFAULT_RULES, hierarchy=DEFAULT_HIERARCHY)

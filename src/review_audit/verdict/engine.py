from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Mapping

from review_audit.errors import RuleEvaluationError

if TYPE_CHECKING:
    from review_audit.pipeline.bundle import MetricsBundle

LOGGER = logging.getLogger(__name__)

NEUTRAL_TAG = "NEUTRAL"
SEVERITY_OFFSET = 0.3
SEVERITY_SPAN = 0.6

Condition = Callable[["MetricsBundle"], bool]
Severity = float | Callable[["MetricsBundle"], float]
Reason = str | Callable[["MetricsBundle"], str]


def tag_color(tag_id: str) -> str:
    return f"var(--color-tag-{tag_id.lower().replace('_', '-')})"


@dataclass(frozen=True)
class TagRule:
    id: str
    condition: Condition
    severity: Severity
    reason: Reason
    color: str = ""

    def display_color(self) -> str:
        return self.color or tag_color(self.id)

    def evaluate(self, metrics: MetricsBundle) -> Tag | None:
        """Matched tag, ``None`` on no match; any failure becomes ``RuleEvaluationError``."""
        try:
            if not self.condition(metrics):
                return None
            severity = self.severity(metrics) if callable(self.severity) else self.severity
            reason = self.reason(metrics) if callable(self.reason) else self.reason
            severity = float(severity)
        except Exception as exc:
            raise RuleEvaluationError(self.id, exc) from exc
        if not math.isfinite(severity):
            raise RuleEvaluationError(self.id, ValueError(f"non-finite severity {severity}"))
        return Tag(id=self.id, severity=severity, reason=str(reason), color=self.display_color())


@dataclass(frozen=True)
class Tag:
    id: str
    severity: float
    reason: str
    color: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "severity": self.severity,
            "reason": self.reason,
            "color": self.color,
        }


@dataclass(frozen=True)
class Verdict:
    tags: tuple[Tag, ...] = ()
    primary_tag: str = NEUTRAL_TAG
    severity: float = SEVERITY_OFFSET / SEVERITY_SPAN
    raw_severity: float = 0.0
    reasons: tuple[str, ...] = ()

    @property
    def tag_ids(self) -> tuple[str, ...]:
        return tuple(tag.id for tag in self.tags)

    def has(self, tag_id: str) -> bool:
        return tag_id in self.tag_ids

    def to_dict(self) -> dict[str, Any]:
        return {
            "tags": [tag.to_dict() for tag in self.tags],
            "primary_tag": self.primary_tag,
            "severity": self.severity,
            "raw_severity": self.raw_severity,
            "reasons": list(self.reasons),
        }


@dataclass(frozen=True)
class RuleSet:
    """Ordered tag rules plus the superior -> inferiors suppression table."""

    rules: tuple[TagRule, ...]
    hierarchy: Mapping[str, tuple[str, ...]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        ids = [rule.id for rule in self.rules]
        duplicates = sorted({rule_id for rule_id in ids if ids.count(rule_id) > 1})
        if duplicates:
            raise ValueError(f"Duplicate tag rule ids: {duplicates}")

    def suppressed(self, matched_ids: set[str]) -> set[str]:
        out: set[str] = set()
        for superior, inferiors in self.hierarchy.items():
            if superior in matched_ids:
                out.update(inferiors)
        return out

    def replace_rule(self, rule: TagRule) -> RuleSet:
        return RuleSet(
            rules=tuple(rule if existing.id == rule.id else existing for existing in self.rules),
            hierarchy=self.hierarchy,
        )


def clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def derive_verdict(metrics: MetricsBundle, rule_set: RuleSet) -> Verdict:
    """Evaluate every rule, suppress subsumed tags, and rank by |severity|.

    ``raw_severity`` sums every matched rule, including ones later
    suppressed by the hierarchy.
    """
    matched: list[Tag] = []
    for rule in rule_set.rules:
        try:
            tag = rule.evaluate(metrics)
        except RuleEvaluationError as exc:
            LOGGER.warning("%s; skipping", exc)
            continue
        if tag is not None:
            matched.append(tag)

    raw_severity = float(sum(tag.severity for tag in matched))
    suppressed = rule_set.suppressed({tag.id for tag in matched})
    tags = sorted(
        (tag for tag in matched if tag.id not in suppressed),
        key=lambda tag: abs(tag.severity),
        reverse=True,
    )
    return Verdict(
        tags=tuple(tags),
        primary_tag=tags[0].id if tags else NEUTRAL_TAG,
        severity=clamp01((raw_severity + SEVERITY_OFFSET) / SEVERITY_SPAN),
        raw_severity=raw_severity,
        reasons=tuple(tag.reason for tag in tags),
    )

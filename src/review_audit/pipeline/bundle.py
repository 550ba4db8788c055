from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from typing import TYPE_CHECKING, Any

from review_audit.detectors.spikes import Spike
from review_audit.detectors.stats import DistributionStats
from review_audit.features.filtering import ProjectedCounts
from review_audit.features.playtime import Bimodality

if TYPE_CHECKING:
    from review_audit.verdict.engine import Verdict


@dataclass(frozen=True)
class MetricsBundle:
    """Every statistic derived from one snapshot and one month filter.

    Defaults describe a neutral product so partial bundles can be built
    directly for replays and rule checks.
    """

    counts: ProjectedCounts | None = None
    total: float = 0.0
    sampled_total: float = 0.0
    positive_ratio: float = 0.5
    negative_ratio: float = 0.5

    pos_median_review: float = 0.0
    neg_median_review: float = 0.0
    pos_median_total: float = 0.0
    neg_median_total: float = 0.0
    pos_median_delta: float = 0.0
    neg_median_delta: float = 0.0
    pos_median_certain: float = 0.0
    neg_median_certain: float = 0.0
    pos_median_total_certain: float = 0.0
    neg_median_total_certain: float = 0.0
    median_ratio: float = 1.0
    median_ratio_certain: float = 1.0
    median_delta_ratio: float = 1.0
    stockholm_index: float = 1.0
    stockholm_index_certain: float = 1.0

    refund_positive_rate: float | None = None
    refund_negative_rate: float | None = None
    negative_bimodality: Bimodality = field(default_factory=Bimodality)
    positive_stats: DistributionStats = field(default_factory=DistributionStats)
    negative_stats: DistributionStats = field(default_factory=DistributionStats)
    all_stats: DistributionStats = field(default_factory=DistributionStats)
    p95_playtime: float = 0.0
    tail_ratio: float = 0.0

    confidence: float = 1.0
    convergence_score: float = 1.0
    positive_sample_rate: float = 1.0
    negative_sample_rate: float = 1.0
    positive_exhausted: bool = False
    negative_exhausted: bool = False
    is_streaming: bool = False
    is_free: bool = False
    is_sexual: bool = False

    earlier_negative_ratio: float = 0.0
    recent_negative_ratio: float = 0.0
    temporal_drift_z: float = 0.0
    is_end_dead: bool = False
    has_revival: bool = False
    first_wave_negative_ratio: float | None = None
    last_wave_negative_ratio: float | None = None
    revival_sentiment_change: float | None = None
    is_still_alive: bool | None = None

    negative_spikes: tuple[Spike, ...] = ()
    positive_spikes: tuple[Spike, ...] = ()
    excluded_months: tuple[str, ...] = ()

    recent_negative_edit_ratio: float = 0.0
    old_reviews_edited_ratio: float = 0.0
    total_edits: int = 0

    verdict: Verdict | None = None

    @property
    def negative_bomb(self) -> Spike | None:
        return self.negative_spikes[0] if self.negative_spikes else None

    @property
    def positive_bomb(self) -> Spike | None:
        return self.positive_spikes[0] if self.positive_spikes else None

    @property
    def excluded_negative_spikes(self) -> tuple[Spike, ...]:
        excluded = set(self.excluded_months)
        return tuple(spike for spike in self.negative_spikes if spike.month in excluded)

    @property
    def excluded_positive_spikes(self) -> tuple[Spike, ...]:
        excluded = set(self.excluded_months)
        return tuple(spike for spike in self.positive_spikes if spike.month in excluded)

    @property
    def certain_negative_ratio(self) -> float:
        if self.counts is None:
            return 0.0
        negative = self.counts.negative
        return negative / max(1.0, negative + self.counts.uncertain_negative)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        for item in fields(self):
            value = getattr(self, item.name)
            if item.name == "verdict":
                data[item.name] = value.to_dict() if value is not None else None
            elif item.name in ("negative_spikes", "positive_spikes"):
                data[item.name] = [asdict(spike) for spike in value]
            elif item.name == "excluded_months":
                data[item.name] = list(value)
            elif value is not None and hasattr(value, "__dataclass_fields__"):
                data[item.name] = asdict(value)
            else:
                data[item.name] = value
        bombs = (("negative_bomb", self.negative_bomb), ("positive_bomb", self.positive_bomb))
        for prefix, spike in bombs:
            data[f"{prefix}_month"] = spike.month if spike else None
            data[f"{prefix}_count"] = spike.count if spike else 0.0
            data[f"{prefix}_multiple"] = spike.multiple if spike else 0.0
            data[f"{prefix}_volume_z"] = spike.z_score if spike else 0.0
            data[f"{prefix}_sentiment_z"] = spike.sentiment_z if spike else 0.0
        return data

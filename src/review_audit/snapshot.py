from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

import numpy as np
import pandas as pd

MONTH_LABEL_LENGTH = 7

LANGUAGE_CHANNELS = ("profanity", "insults", "slurs", "banter", "complaints")


def _frozen_counts(values: Iterable[int] | np.ndarray) -> np.ndarray:
    array = np.array(values, dtype=np.int64)
    array.setflags(write=False)
    return array


@dataclass(frozen=True, eq=False)
class Bucket:
    """Half-open ``[min_value, max_value)`` range with per-month review counts.

    Playtime buckets carry minutes; velocity buckets carry minutes per day.
    The four arrays are indexed by the owning snapshot's month positions.
    """

    min_value: float
    max_value: float
    positive: np.ndarray
    negative: np.ndarray
    uncertain_positive: np.ndarray
    uncertain_negative: np.ndarray
    positive_count: int
    negative_count: int
    uncertain_positive_count: int
    uncertain_negative_count: int

    @classmethod
    def from_counts(
        cls,
        min_value: float,
        max_value: float,
        positive: Iterable[int] | np.ndarray,
        negative: Iterable[int] | np.ndarray,
        uncertain_positive: Iterable[int] | np.ndarray,
        uncertain_negative: Iterable[int] | np.ndarray,
    ) -> Bucket:
        pos = _frozen_counts(positive)
        neg = _frozen_counts(negative)
        unc_pos = _frozen_counts(uncertain_positive)
        unc_neg = _frozen_counts(uncertain_negative)
        lengths = {pos.size, neg.size, unc_pos.size, unc_neg.size}
        if len(lengths) != 1:
            raise ValueError(f"Bucket channels must share one length, got {sorted(lengths)}")
        if any(np.any(channel < 0) for channel in (pos, neg, unc_pos, unc_neg)):
            raise ValueError("Bucket counts must be non-negative")
        return cls(
            min_value=float(min_value),
            max_value=float(max_value),
            positive=pos,
            negative=neg,
            uncertain_positive=unc_pos,
            uncertain_negative=unc_neg,
            positive_count=int(pos.sum()),
            negative_count=int(neg.sum()),
            uncertain_positive_count=int(unc_pos.sum()),
            uncertain_negative_count=int(unc_neg.sum()),
        )

    @property
    def month_count(self) -> int:
        return int(self.positive.size)

    @property
    def midpoint(self) -> float:
        return (self.min_value + self.max_value) / 2.0


@dataclass(frozen=True, eq=False)
class LanguageStats:
    profanity: np.ndarray
    insults: np.ndarray
    slurs: np.ndarray
    banter: np.ndarray
    complaints: np.ndarray

    @classmethod
    def from_channels(cls, channels: dict[str, Iterable[int]], month_count: int) -> LanguageStats:
        values = {
            name: _frozen_counts(channels.get(name, [0] * month_count))
            for name in LANGUAGE_CHANNELS
        }
        return cls(**values)

    @classmethod
    def empty(cls, month_count: int) -> LanguageStats:
        return cls.from_channels({}, month_count)

    def channels(self) -> tuple[np.ndarray, ...]:
        return tuple(getattr(self, name) for name in LANGUAGE_CHANNELS)


@dataclass(frozen=True, slots=True)
class EditCell:
    posted_index: int
    edited_index: int
    positive: int
    negative: int


@dataclass(frozen=True)
class EditHeatmap:
    """Sparse posted-month x edited-month counts of reviews edited after posting."""

    months: tuple[str, ...] = ()
    cells: tuple[EditCell, ...] = ()

    def cell_map(self) -> dict[tuple[str, str], tuple[int, int]]:
        mapped: dict[tuple[str, str], tuple[int, int]] = {}
        for cell in self.cells:
            key = (self.months[cell.posted_index], self.months[cell.edited_index])
            mapped[key] = (cell.positive, cell.negative)
        return mapped


@dataclass(frozen=True)
class MonthFilter:
    """Inclusive ``[from_month, to_month]`` window with optional month exclusions."""

    from_month: str | None = None
    to_month: str | None = None
    exclude_months: frozenset[str] = field(default_factory=frozenset)

    @property
    def is_windowed(self) -> bool:
        return bool(self.from_month or self.to_month)

    def with_exclusions(self, months: Iterable[str]) -> MonthFilter:
        return MonthFilter(
            from_month=self.from_month,
            to_month=self.to_month,
            exclude_months=self.exclude_months | frozenset(months),
        )

    def contains(self, month: str) -> bool:
        if self.from_month and month < self.from_month:
            return False
        if self.to_month and month > self.to_month:
            return False
        return month not in self.exclude_months


@dataclass(frozen=True, eq=False)
class Snapshot:
    months: tuple[str, ...]
    review_buckets: tuple[Bucket, ...]
    total_buckets: tuple[Bucket, ...]
    velocity_buckets: tuple[Bucket, ...]
    total_positive: int
    total_negative: int
    game_total_positive: int
    game_total_negative: int
    target_sample_count: int
    positive_sample_rate: float
    negative_sample_rate: float
    positive_exhausted: bool = False
    negative_exhausted: bool = False
    is_streaming: bool = False
    is_final: bool = False
    language: LanguageStats | None = None
    edit_heatmap: EditHeatmap = field(default_factory=EditHeatmap)
    projected_monthly: pd.DataFrame | None = None

    @property
    def month_count(self) -> int:
        return len(self.months)

    @property
    def month_index(self) -> dict[str, int]:
        return {month: idx for idx, month in enumerate(self.months)}

    @property
    def sampled_total(self) -> int:
        return self.total_positive + self.total_negative

    @property
    def population_total(self) -> int:
        return self.game_total_positive + self.game_total_negative

    @property
    def sample_rate(self) -> float:
        population = self.population_total
        return float(self.sampled_total / population) if population > 0 else 1.0

    def monthly_totals(self) -> dict[str, np.ndarray]:
        """Per-month sums over the by-review-time buckets."""
        totals = {
            "positive": np.zeros(self.month_count, dtype=np.int64),
            "negative": np.zeros(self.month_count, dtype=np.int64),
            "uncertain_positive": np.zeros(self.month_count, dtype=np.int64),
            "uncertain_negative": np.zeros(self.month_count, dtype=np.int64),
        }
        for bucket in self.review_buckets:
            totals["positive"] += bucket.positive
            totals["negative"] += bucket.negative
            totals["uncertain_positive"] += bucket.uncertain_positive
            totals["uncertain_negative"] += bucket.uncertain_negative
        return totals

    def summary(self) -> dict[str, Any]:
        return {
            "n_months": self.month_count,
            "first_month": self.months[0] if self.months else None,
            "last_month": self.months[-1] if self.months else None,
            "n_review_buckets": len(self.review_buckets),
            "n_total_buckets": len(self.total_buckets),
            "n_velocity_buckets": len(self.velocity_buckets),
            "total_positive": self.total_positive,
            "total_negative": self.total_negative,
            "game_total_positive": self.game_total_positive,
            "game_total_negative": self.game_total_negative,
            "target_sample_count": self.target_sample_count,
            "sample_rate": self.sample_rate,
            "positive_exhausted": self.positive_exhausted,
            "negative_exhausted": self.negative_exhausted,
            "is_streaming": self.is_streaming,
            "is_final": self.is_final,
            "n_edit_cells": len(self.edit_heatmap.cells),
        }

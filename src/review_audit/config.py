from __future__ import annotations

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator


class ProjectionConfig(BaseModel):
    high_coverage_threshold: float = Field(default=0.95, gt=0.0, le=1.0)


class SpikeConfig(BaseModel):
    neighbor_months: int = Field(default=3, ge=1)
    min_neighbors: int = Field(default=2, ge=1)
    min_month_total: float = Field(default=10.0, ge=0.0)
    volume_z_threshold: float = Field(default=2.5, gt=0.0)
    sentiment_z_threshold: float = Field(default=2.0, gt=0.0)
    sentiment_spikes: bool = True
    launch_decay_months: float = Field(default=6.0, gt=0.0)
    negative_share_threshold: float = Field(default=2.0 / 3.0, gt=0.0, lt=1.0)
    positive_share_threshold: float = Field(default=1.0 / 3.0, gt=0.0, lt=1.0)
    negative_min_count: float = Field(default=50.0, ge=0.0)
    positive_min_count: float = Field(default=100.0, ge=0.0)
    positive_min_multiple: float = Field(default=3.0, ge=0.0)

    @model_validator(mode="after")
    def _check_share_band(self) -> SpikeConfig:
        if self.positive_share_threshold > self.negative_share_threshold:
            raise ValueError("positive_share_threshold must not exceed negative_share_threshold")
        return self


class TemporalConfig(BaseModel):
    min_months: int = Field(default=6, ge=2)
    recent_months: int = Field(default=12, ge=1)
    fallback_ratio_stddev: float = Field(default=0.1, gt=0.0)
    tail_months: int = Field(default=3, ge=1)
    dead_ratio: float = Field(default=0.2, gt=0.0, lt=1.0)
    prior_months: int = Field(default=6, ge=1)
    scan_months: int = Field(default=3, ge=1)
    death_ratio: float = Field(default=0.2, gt=0.0, lt=1.0)
    revival_ratio: float = Field(default=0.5, gt=0.0, le=1.0)
    alive_ratio: float = Field(default=0.2, gt=0.0, lt=1.0)


class ConvergenceConfig(BaseModel):
    target_fraction: float = Field(default=0.10, gt=0.0, le=1.0)
    min_target: float = Field(default=5000.0, gt=0.0)
    max_target: float = Field(default=20000.0, gt=0.0)
    drift_threshold: float = Field(default=0.05, gt=0.0)
    smoothing: float = Field(default=0.1, gt=0.0, le=1.0)
    moving_cap: float = Field(default=0.5, gt=0.0, le=1.0)
    finalize_coverage: float = Field(default=0.95, gt=0.0, le=1.0)
    finalize_convergence: float = Field(default=0.9, gt=0.0, le=1.0)

    @model_validator(mode="after")
    def _check_target_range(self) -> ConvergenceConfig:
        if self.min_target > self.max_target:
            raise ValueError("min_target must not exceed max_target")
        return self


class StreamingConfig(BaseModel):
    debounce_seconds: float = Field(default=0.2, ge=0.0)
    executor: Literal["process", "thread"] = "process"
    max_workers: int = Field(default=1, ge=1)
    decode_in_executor: bool = False
    timeline_window_months: int = Field(default=3, ge=1)


class OutputsConfig(BaseModel):
    tables_format: Literal["parquet", "csv"] = "parquet"


class LoggingConfig(BaseModel):
    level: str = "INFO"


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    projection: ProjectionConfig = Field(default_factory=ProjectionConfig)
    spikes: SpikeConfig = Field(default_factory=SpikeConfig)
    temporal: TemporalConfig = Field(default_factory=TemporalConfig)
    convergence: ConvergenceConfig = Field(default_factory=ConvergenceConfig)
    streaming: StreamingConfig = Field(default_factory=StreamingConfig)
    outputs: OutputsConfig = Field(default_factory=OutputsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


DEFAULT_CONFIG_PATH = Path("configs/default.yaml")


def load_config(path: Path | None) -> AppConfig:
    if path is None:
        return AppConfig()
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    return AppConfig.model_validate(data)

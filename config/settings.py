"""
Settings Configuration
Every resilience threshold, tier list and ranking knob lives here, validated by Pydantic.
"""
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings

from core import FallbackTier
from utils.exceptions import ConfigurationError


class CircuitBreakerSettings(BaseSettings):
    """Per-dependency circuit breaker thresholds."""
    failure_threshold: int = Field(default=3, ge=1, description="Consecutive failures that open the circuit")
    retry_threshold: int = Field(default=5, ge=1, description="Failures within the window that open the circuit when exceeded")
    window_seconds: float = Field(default=300.0, gt=0, description="Rolling failure window (seconds)")
    cooldown_seconds: float = Field(default=300.0, ge=0, description="Open -> half-open cooldown (seconds)")

    class Config:
        env_prefix = "CIRCUIT_"


class RetrySettings(BaseSettings):
    """Backoff and attempt budget."""
    max_attempts: int = Field(default=3, ge=1, description="Default attempts per tier when a stage sets none")
    base_delay_s: float = Field(default=1.0, ge=0, description="Backoff base delay (seconds)")
    max_delay_s: float = Field(default=30.0, ge=0, description="Backoff ceiling before jitter (seconds)")
    jitter_low: float = Field(default=0.5, ge=0)
    jitter_high: float = Field(default=1.5, ge=0)

    class Config:
        env_prefix = "RETRY_"

    @model_validator(mode="after")
    def _check_jitter(self) -> "RetrySettings":
        if self.jitter_low > self.jitter_high:
            raise ValueError("jitter_low must not exceed jitter_high")
        return self


class RankerSettings(BaseSettings):
    """Candidate filter thresholds and score weights."""
    max_age_hours: float = Field(default=48.0, gt=0)
    min_views: int = Field(default=1000, ge=0)
    min_engagement_score: float = Field(default=0.02, ge=0)
    weight_engagement: float = Field(default=0.5, ge=0)
    weight_recency: float = Field(default=0.3, ge=0)
    weight_popularity: float = Field(default=0.2, ge=0)
    engagement_saturation: float = Field(default=0.1, gt=0, description="Engagement rate mapped to a score of 1.0")
    future_skew_minutes: float = Field(default=5.0, ge=0, description="Tolerated clock skew for published_at")
    selection_limit: int = Field(default=3, ge=1, description="Ranked candidates handed to the next stage")

    class Config:
        env_prefix = "RANKER_"


class PipelineSettings(BaseSettings):
    """Request-level deadlines and concurrency."""
    request_timeout_s: Optional[float] = Field(default=7200.0, gt=0, description="Whole-request deadline (seconds)")
    default_call_timeout_s: float = Field(default=900.0, gt=0, description="Producer call timeout (seconds)")
    concurrency: int = Field(default=4, ge=1, description="Concurrent requests per worker")

    class Config:
        env_prefix = "PIPELINE_"


class DeadLetterSettings(BaseSettings):
    """Dead letter sink location; in-memory when no path is set."""
    path: Optional[str] = Field(default=None, description="JSON lines file for dead letter entries")

    class Config:
        env_prefix = "DLQ_"


class StageConfig(BaseModel):
    """Static definition of one pipeline stage."""

    name: str
    tiers: List[FallbackTier]
    max_attempts: Optional[int] = Field(default=None, ge=1)
    call_timeout_s: Optional[float] = Field(default=None, gt=0)
    stage_timeout_s: Optional[float] = Field(default=None, gt=0)
    candidate_bearing: bool = False
    selection_limit: Optional[int] = Field(default=None, ge=1)

    @field_validator("tiers")
    @classmethod
    def _non_empty_tiers(cls, value: List[FallbackTier]) -> List[FallbackTier]:
        if not value:
            raise ValueError("stage needs at least one tier")
        ids = [tier.producer_id for tier in value]
        if len(set(ids)) != len(ids):
            raise ValueError(f"duplicate producer ids in tiers: {ids}")
        return value


def _tiers(*producer_ids: str, unfiltered_from: Optional[int] = None) -> List[FallbackTier]:
    tiers = []
    for rank, producer_id in enumerate(producer_ids):
        filtered = unfiltered_from is None or rank < unfiltered_from
        tiers.append(FallbackTier(producer_id=producer_id, fidelity_rank=rank, filter_candidates=filtered))
    return tiers


def default_stages() -> List[StageConfig]:
    """Discover -> analyze -> synthesize -> process -> publish."""
    return [
        StageConfig(
            name="trend_discovery",
            tiers=_tiers("trend_detector", "cached_trends", "popular_keywords", "trend_template", unfiltered_from=2),
            max_attempts=3,
            call_timeout_s=300.0,
            candidate_bearing=True,
        ),
        StageConfig(
            name="content_analysis",
            tiers=_tiers("content_analyzer", "template_script", "keyword_script", "generic_script", unfiltered_from=1),
            max_attempts=2,
            call_timeout_s=600.0,
            candidate_bearing=True,
        ),
        StageConfig(
            name="video_synthesis",
            tiers=_tiers("nova_reel", "luma_ray"),
            max_attempts=2,
            call_timeout_s=900.0,
        ),
        StageConfig(
            name="video_processing",
            tiers=_tiers("media_convert"),
            max_attempts=3,
            call_timeout_s=900.0,
        ),
        StageConfig(
            name="publish",
            tiers=_tiers("youtube_uploader"),
            max_attempts=3,
            call_timeout_s=900.0,
        ),
    ]


class Settings(BaseSettings):
    """Single configuration struct aggregating every sub-config."""

    circuit: CircuitBreakerSettings = Field(default_factory=CircuitBreakerSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    ranker: RankerSettings = Field(default_factory=RankerSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    dead_letter: DeadLetterSettings = Field(default_factory=DeadLetterSettings)
    stages: List[StageConfig] = Field(default_factory=default_stages)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @model_validator(mode="after")
    def _unique_stage_names(self) -> "Settings":
        names = [stage.name for stage in self.stages]
        if len(set(names)) != len(names):
            raise ValueError(f"duplicate stage names: {names}")
        return self

    def stage(self, name: str) -> StageConfig:
        for stage in self.stages:
            if stage.name == name:
                return stage
        raise ConfigurationError(f"unknown stage: {name}", {"stages": [s.name for s in self.stages]})

    def max_attempts_by_stage(self) -> Dict[str, int]:
        return {stage.name: stage.max_attempts or self.retry.max_attempts for stage in self.stages}

    @classmethod
    def load_from_env_file(cls, env_path: Optional[Path] = None) -> "Settings":
        """Load settings, reading ``config/.env`` first when present."""
        if env_path is None:
            env_path = Path(__file__).parent / ".env"

        if env_path.exists():
            from dotenv import load_dotenv
            load_dotenv(env_path)

        try:
            return cls(
                circuit=CircuitBreakerSettings(),
                retry=RetrySettings(),
                ranker=RankerSettings(),
                pipeline=PipelineSettings(),
                dead_letter=DeadLetterSettings(),
            )
        except ValidationError as exc:
            raise ConfigurationError("invalid pipeline settings", {"errors": exc.errors()}) from exc


@lru_cache()
def get_settings() -> Settings:
    """Global settings singleton."""
    return Settings.load_from_env_file()


def get_circuit_settings() -> CircuitBreakerSettings:
    return get_settings().circuit


def get_retry_settings() -> RetrySettings:
    return get_settings().retry


def get_ranker_settings() -> RankerSettings:
    return get_settings().ranker


def get_pipeline_settings() -> PipelineSettings:
    return get_settings().pipeline

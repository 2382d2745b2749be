"""Stage execution, candidate ranking and request coordination."""

from .coordinator import PipelineCoordinator
from .executor import StageExecutor, idempotency_key
from .observability import InMemoryMetricsEmitter, LoggingMetricsEmitter, MetricsEmitter
from .ranking import (
    FilterConfig,
    RankingWeights,
    engagement_rate,
    engagement_score,
    passes_filter,
    popularity_score,
    rank,
    recency_score,
    score_candidate,
)

__all__ = [
    "FilterConfig",
    "InMemoryMetricsEmitter",
    "LoggingMetricsEmitter",
    "MetricsEmitter",
    "PipelineCoordinator",
    "RankingWeights",
    "StageExecutor",
    "engagement_rate",
    "engagement_score",
    "idempotency_key",
    "passes_filter",
    "popularity_score",
    "rank",
    "recency_score",
    "score_candidate",
]

"""Deterministic filtering, scoring and ranking of candidate signal lists."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import math
from typing import FrozenSet, Iterable, List, Optional, Sequence

from config import RankerSettings
from core import Candidate


_RECENCY_STEPS = (
    (6.0, 1.0),
    (12.0, 0.8),
    (24.0, 0.6),
    (48.0, 0.4),
)
_RECENCY_FLOOR = 0.2


@dataclass(frozen=True)
class FilterConfig:
    """Minimum thresholds a candidate must meet to be ranked at all."""

    max_age_hours: float = 48.0
    min_views: int = 1000
    min_engagement_score: float = 0.02
    categories: Optional[FrozenSet[str]] = None
    future_skew_minutes: Optional[float] = 5.0
    require_published_at: bool = True

    @classmethod
    def permissive(cls) -> "FilterConfig":
        """Only structural sanity checks; used for tiers that synthesize candidates."""
        return cls(
            max_age_hours=math.inf,
            min_views=0,
            min_engagement_score=0.0,
            future_skew_minutes=None,
            require_published_at=False,
        )

    @classmethod
    def from_settings(cls, settings: RankerSettings, categories: Optional[Iterable[str]] = None) -> "FilterConfig":
        return cls(
            max_age_hours=settings.max_age_hours,
            min_views=settings.min_views,
            min_engagement_score=settings.min_engagement_score,
            categories=frozenset(c.lower() for c in categories) if categories else None,
            future_skew_minutes=settings.future_skew_minutes,
        )


@dataclass(frozen=True)
class RankingWeights:
    engagement: float = 0.5
    recency: float = 0.3
    popularity: float = 0.2

    @classmethod
    def from_settings(cls, settings: RankerSettings) -> "RankingWeights":
        return cls(
            engagement=settings.weight_engagement,
            recency=settings.weight_recency,
            popularity=settings.weight_popularity,
        )


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def age_hours(candidate: Candidate, now: datetime) -> Optional[float]:
    published = candidate.signals.published_at
    if published is None:
        return None
    return (_as_utc(now) - _as_utc(published)).total_seconds() / 3600.0


def engagement_rate(candidate: Candidate) -> float:
    """(likes + comments) / views; 0 when there are no views."""
    signals = candidate.signals
    if signals.view_count <= 0:
        return 0.0
    return (max(0, signals.like_count) + max(0, signals.comment_count)) / float(signals.view_count)


def engagement_score(candidate: Candidate, saturation: float = 0.1) -> float:
    return _clamp01(engagement_rate(candidate) / max(saturation, 1e-9))


def recency_score(hours: Optional[float]) -> float:
    if hours is None:
        return _RECENCY_FLOOR
    for limit, score in _RECENCY_STEPS:
        if hours <= limit:
            return score
    return _RECENCY_FLOOR


def popularity_score(candidate: Candidate) -> float:
    return math.log10(max(0, candidate.signals.view_count) + 1) / 10.0


def _signals_trustworthy(
    candidate: Candidate,
    now: datetime,
    skew_minutes: Optional[float],
    require_published_at: bool = True,
) -> bool:
    signals = candidate.signals
    if min(signals.view_count, signals.like_count, signals.comment_count) < 0:
        return False
    if signals.published_at is None:
        return not require_published_at
    if skew_minutes is None:
        return True
    return _as_utc(signals.published_at) <= _as_utc(now) + timedelta(minutes=skew_minutes)


def passes_filter(candidate: Candidate, config: FilterConfig, now: datetime) -> bool:
    if not str(candidate.id or "").strip():
        return False
    if not _signals_trustworthy(candidate, now, config.future_skew_minutes, config.require_published_at):
        return False
    hours = age_hours(candidate, now)
    if hours is not None and hours > config.max_age_hours:
        return False
    if candidate.signals.view_count < config.min_views:
        return False
    if engagement_rate(candidate) < config.min_engagement_score:
        return False
    if config.categories is not None:
        category = str(candidate.signals.category or "").lower()
        if category not in config.categories:
            return False
    return True


def score_candidate(
    candidate: Candidate,
    weights: RankingWeights,
    now: datetime,
    *,
    engagement_saturation: float = 0.1,
) -> float:
    return (
        weights.engagement * engagement_score(candidate, engagement_saturation)
        + weights.recency * recency_score(age_hours(candidate, now))
        + weights.popularity * popularity_score(candidate)
    )


def rank(
    candidates: Sequence[Candidate],
    filter_config: Optional[FilterConfig] = None,
    weights: Optional[RankingWeights] = None,
    *,
    now: datetime,
    engagement_saturation: float = 0.1,
    limit: Optional[int] = None,
) -> List[Candidate]:
    """
    Filter, score and sort candidates.

    Pure: the inputs are not mutated and identical inputs (including ``now``) produce
    identical output. ``now`` is required so every age is measured from the caller's
    clock. Ties on score break by higher view count, then by id.
    """
    config = filter_config or FilterConfig()
    weights = weights or RankingWeights()
    reference = _as_utc(now)

    seen = set()
    scored: List[Candidate] = []
    for candidate in candidates:
        if candidate.id in seen:
            continue
        seen.add(candidate.id)
        if not passes_filter(candidate, config, reference):
            continue
        score = score_candidate(candidate, weights, reference, engagement_saturation=engagement_saturation)
        scored.append(candidate.model_copy(update={"computed_score": score}, deep=True))

    scored.sort(key=lambda row: (-float(row.computed_score or 0.0), -row.signals.view_count, row.id))
    if limit is not None:
        return scored[: max(0, int(limit))]
    return scored

from __future__ import annotations

from datetime import datetime, timedelta, timezone
import math

import pytest

from core import Candidate, CandidateSignals
from pipeline import FilterConfig, RankingWeights, engagement_score, passes_filter, popularity_score, rank, recency_score


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _candidate(
    cid: str,
    *,
    views: int,
    age_hours: float | None,
    engagement: float = 0.05,
    category: str | None = None,
) -> Candidate:
    interactions = int(round(views * engagement))
    return Candidate(
        id=cid,
        title=f"Video {cid}",
        signals=CandidateSignals(
            view_count=views,
            like_count=interactions,
            comment_count=0,
            published_at=NOW - timedelta(hours=age_hours) if age_hours is not None else None,
            category=category,
        ),
    )


def test_stale_candidate_is_filtered_and_fresh_one_ranked() -> None:
    a = _candidate("A", views=100_000, age_hours=2, engagement=0.08)
    b = _candidate("B", views=5_000, age_hours=50, engagement=0.02)

    ranked = rank([a, b], FilterConfig(max_age_hours=48, min_views=1000), now=NOW)

    assert [c.id for c in ranked] == ["A"]
    expected = 0.5 * min(1.0, 0.08 / 0.1) + 0.3 * 1.0 + 0.2 * (math.log10(100_001) / 10)
    assert ranked[0].computed_score == pytest.approx(expected)


def test_rank_is_idempotent_and_does_not_mutate_input() -> None:
    pool = [
        _candidate("c1", views=20_000, age_hours=5, engagement=0.04),
        _candidate("c2", views=300_000, age_hours=30, engagement=0.03),
        _candidate("c3", views=8_000, age_hours=11, engagement=0.12),
        _candidate("c4", views=500, age_hours=1, engagement=0.5),
    ]
    first = rank(pool, now=NOW)
    second = rank(pool, now=NOW)

    assert [(c.id, c.computed_score) for c in first] == [(c.id, c.computed_score) for c in second]
    assert all(c.computed_score is None for c in pool)
    assert "c4" not in {c.id for c in first}
    assert all(passes_filter(c, FilterConfig(), NOW) for c in first)


def test_ties_break_by_views_then_id() -> None:
    base = dict(age_hours=3, engagement=0.2)
    low = _candidate("b", views=10_000, **base)
    high = _candidate("z", views=10_000, **base)
    twin = _candidate("a", views=10_000, **base)

    weights = RankingWeights(engagement=1.0, recency=0.0, popularity=0.0)
    ranked = rank([high, low, twin], weights=weights, now=NOW)
    assert [c.id for c in ranked] == ["a", "b", "z"]

    popular = _candidate("y", views=50_000, **base)
    ranked = rank([high, popular], weights=weights, now=NOW)
    assert [c.id for c in ranked] == ["y", "z"]


def test_untrustworthy_signals_fail_the_filter() -> None:
    negative = _candidate("neg", views=5_000, age_hours=1)
    negative = negative.model_copy(update={"signals": negative.signals.model_copy(update={"like_count": -5})})
    future = _candidate("future", views=5_000, age_hours=-2)
    undated = _candidate("undated", views=5_000, age_hours=None)

    assert rank([negative, future, undated], now=NOW) == []
    assert [c.id for c in rank([undated], FilterConfig.permissive(), now=NOW)] == ["undated"]


def test_category_filter_and_limit() -> None:
    pool = [
        _candidate("t1", views=90_000, age_hours=1, category="Travel"),
        _candidate("f1", views=90_000, age_hours=1, category="food"),
        _candidate("t2", views=40_000, age_hours=3, category="travel"),
        _candidate("t3", views=20_000, age_hours=7, category="travel"),
    ]
    config = FilterConfig(categories=frozenset({"travel"}))

    ranked = rank(pool, config, now=NOW, limit=2)
    assert [c.id for c in ranked] == ["t1", "t2"]


def test_duplicate_ids_keep_first_occurrence() -> None:
    first = _candidate("dup", views=10_000, age_hours=2, engagement=0.03)
    second = _candidate("dup", views=900_000, age_hours=2, engagement=0.09)

    ranked = rank([first, second], now=NOW)
    assert len(ranked) == 1
    assert ranked[0].signals.view_count == 10_000


def test_component_scores() -> None:
    assert [recency_score(h) for h in (0, 6, 6.5, 12, 20, 48, 49)] == [1.0, 1.0, 0.8, 0.8, 0.6, 0.4, 0.2]
    assert recency_score(None) == 0.2
    assert popularity_score(_candidate("p", views=999_999, age_hours=1)) == pytest.approx(0.6)
    assert engagement_score(_candidate("e", views=1000, age_hours=1, engagement=0.5)) == 1.0
    assert engagement_score(_candidate("z", views=0, age_hours=1)) == 0.0


def test_rank_requires_a_reference_time() -> None:
    with pytest.raises(TypeError):
        rank([_candidate("a", views=5_000, age_hours=1)])


def test_score_at_recency_boundary_depends_only_on_given_time() -> None:
    edge = _candidate("edge", views=50_000, age_hours=6)

    first = rank([edge], now=NOW)
    second = rank([edge], now=NOW)
    later = rank([edge], now=NOW + timedelta(seconds=1))

    assert first[0].computed_score == second[0].computed_score
    assert later[0].computed_score < first[0].computed_score


def test_unfiltered_tier_ignores_clock_skew() -> None:
    ahead = _candidate("ahead", views=0, age_hours=-72)

    assert rank([ahead], now=NOW) == []
    assert [c.id for c in rank([ahead], FilterConfig.permissive(), now=NOW)] == ["ahead"]

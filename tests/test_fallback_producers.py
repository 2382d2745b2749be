from __future__ import annotations

from datetime import datetime, timezone

import pytest

from core import Candidate, ErrorKind, ProducerResponse
from producers import (
    BaseProducer,
    CachedCandidatesProducer,
    CachingProducer,
    KeywordCandidatesProducer,
    ProducerRegistry,
    script_template_producer,
    trend_template_producer,
)
from storage import MemoryCache
from utils.exceptions import UnknownProducerError


class LiveTrends(BaseProducer):
    producer_id = "trend_detector"

    async def call(self, payload, *, idempotency_key, timeout=None) -> ProducerResponse:
        return ProducerResponse(success=True, payload={"candidates": [{"id": "live_1", "title": "Live"}]})


@pytest.mark.asyncio
async def test_cached_tier_serves_what_the_live_tier_produced() -> None:
    cache = MemoryCache(ttl=3600)
    live = CachingProducer(LiveTrends(), cache)
    cached = CachedCandidatesProducer(cache)

    miss = await cached.call({"topic": "Travel"}, idempotency_key="k1")
    assert miss.error_kind == ErrorKind.NO_CANDIDATES

    await live.call({"topic": "Travel"}, idempotency_key="k2")
    hit = await cached.call({"topic": "travel"}, idempotency_key="k3")
    assert hit.success
    assert hit.payload["candidates"] == [{"id": "live_1", "title": "Live"}]
    assert live.producer_id == "trend_detector"


@pytest.mark.asyncio
async def test_keyword_candidates_are_stable_per_topic() -> None:
    fixed = datetime(2026, 3, 1, tzinfo=timezone.utc)
    producer = KeywordCandidatesProducer(now_fn=lambda: fixed)

    first = await producer.call({"topic": "food"}, idempotency_key="a")
    second = await producer.call({"topic": "food"}, idempotency_key="b")

    ids = [row["id"] for row in first.payload["candidates"]]
    assert ids == [row["id"] for row in second.payload["candidates"]]
    assert len(ids) == 7
    parsed = Candidate.model_validate(first.payload["candidates"][0])
    assert parsed.signals.published_at == fixed

    unknown = await producer.call({"topic": "knitting"}, idempotency_key="c")
    assert [row["metadata"]["keyword"] for row in unknown.payload["candidates"]] == ["knitting"]

    empty = await producer.call({}, idempotency_key="d")
    assert empty.error_kind == ErrorKind.INVALID_INPUT


@pytest.mark.asyncio
async def test_template_producers_fill_placeholders() -> None:
    trend = await trend_template_producer().call({"topic": "fitness"}, idempotency_key="k")
    assert trend.payload["candidates"][0]["id"] == "template_fitness"
    assert trend.payload["source"] == "TEMPLATE"

    script = await script_template_producer("keyword_script", "KEYWORD_BASED").call({"topic": "fitness"}, idempotency_key="k")
    candidate = script.payload["candidates"][0]
    assert candidate["id"] == "keyword_based_fitness"
    assert "workout" in candidate["metadata"]["prompt"]


@pytest.mark.asyncio
async def test_registry_lookup() -> None:
    registry = ProducerRegistry([trend_template_producer(), CachedCandidatesProducer()])
    assert registry.ids() == ["cached_trends", "trend_template"]
    assert "trend_template" in registry
    with pytest.raises(UnknownProducerError):
        registry.get("nova_reel")
    await registry.aclose()

"""Lower-fidelity producers used as fallback tiers: cached, keyword-synthesized and templated."""

from __future__ import annotations

from datetime import datetime, timezone
import hashlib
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional

from core import Candidate, CandidateSignals, ErrorKind, ProducerResponse
from storage import BaseCache, MemoryCache

from .base import BaseProducer


logger = logging.getLogger(__name__)


TOPIC_KEYWORDS: Dict[str, List[str]] = {
    "tourism": ["travel", "vacation", "holiday", "destination", "tourist", "sightseeing", "trip"],
    "travel": ["journey", "adventure", "explore", "wanderlust", "backpack", "road trip"],
    "food": ["recipe", "cooking", "cuisine", "restaurant", "chef", "delicious", "taste"],
    "technology": ["tech", "gadget", "innovation", "digital", "software", "app", "device"],
    "fitness": ["workout", "exercise", "health", "gym", "training", "nutrition", "wellness"],
    "investing": ["etf", "stocks", "bonds", "portfolio", "diversification", "dividends"],
    "education": ["study tips", "learning", "productivity", "exam prep", "skills"],
    "health": ["wellness", "nutrition", "sleep", "mental health", "habits"],
}


def _topic_of(payload: Mapping[str, Any]) -> str:
    return str(payload.get("topic") or "").strip()


def _cache_key(topic: str) -> str:
    return BaseCache.make_key("candidates", topic.lower())


def topic_keywords(topic: str, keyword_map: Optional[Mapping[str, List[str]]] = None) -> List[str]:
    mapping = keyword_map or TOPIC_KEYWORDS
    return list(mapping.get(topic.lower()) or [topic])


class CachingProducer(BaseProducer):
    """Wraps a live candidate producer and remembers its successful candidates per topic."""

    def __init__(self, inner: BaseProducer, cache: BaseCache, *, ttl: Optional[float] = 24 * 3600.0) -> None:
        self.inner = inner
        self.cache = cache
        self.ttl = ttl
        self.producer_id = inner.producer_id
        self.supports_reduced = inner.supports_reduced

    async def call(self, payload, *, idempotency_key, timeout=None) -> ProducerResponse:
        response = await self.inner.call(payload, idempotency_key=idempotency_key, timeout=timeout)
        topic = _topic_of(payload)
        if response.success and topic and isinstance(response.payload, dict):
            candidates = response.payload.get("candidates")
            if candidates:
                self.cache.set(_cache_key(topic), list(candidates), self.ttl)
        return response

    async def aclose(self) -> None:
        await self.inner.aclose()


class CachedCandidatesProducer(BaseProducer):
    """Serves the most recent cached candidates for the request topic."""

    def __init__(self, cache: Optional[BaseCache] = None, *, producer_id: str = "cached_trends") -> None:
        self.cache = cache or MemoryCache(ttl=24 * 3600.0)
        self.producer_id = producer_id

    async def call(self, payload, *, idempotency_key, timeout=None) -> ProducerResponse:
        topic = _topic_of(payload)
        cached = self.cache.get(_cache_key(topic)) if topic else None
        if not cached:
            return ProducerResponse(
                success=False,
                error_kind=ErrorKind.NO_CANDIDATES,
                error_message=f"no cached candidates for topic={topic!r}",
            )
        logger.info("cached_candidates_hit topic=%s count=%s", topic, len(cached))
        return ProducerResponse(success=True, payload={"candidates": list(cached), "source": "CACHED"})


class KeywordCandidatesProducer(BaseProducer):
    """Synthesizes one candidate per popular keyword of the topic."""

    def __init__(
        self,
        *,
        producer_id: str = "popular_keywords",
        keyword_map: Optional[Mapping[str, List[str]]] = None,
        now_fn: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.producer_id = producer_id
        self.keyword_map = dict(keyword_map or TOPIC_KEYWORDS)
        self._now = now_fn

    async def call(self, payload, *, idempotency_key, timeout=None) -> ProducerResponse:
        topic = _topic_of(payload)
        if not topic:
            return ProducerResponse(success=False, error_kind=ErrorKind.INVALID_INPUT, error_message="topic is required")

        published = self._now()
        candidates: List[Dict[str, Any]] = []
        for keyword in topic_keywords(topic, self.keyword_map):
            digest = hashlib.sha1(f"{topic}:{keyword}".encode("utf-8")).hexdigest()[:10]
            candidate = Candidate(
                id=f"kw_{digest}",
                title=f"{keyword.title()} {topic.title()}",
                signals=CandidateSignals(published_at=published, category=topic.lower()),
                metadata={"keyword": keyword, "source": "FALLBACK_KEYWORDS"},
            )
            candidates.append(candidate.model_dump(mode="json"))
        return ProducerResponse(success=True, payload={"candidates": candidates, "source": "FALLBACK_KEYWORDS"})


def _render(value: Any, variables: Mapping[str, str]) -> Any:
    if isinstance(value, str):
        text = value
        for key, replacement in variables.items():
            text = text.replace("{" + key + "}", replacement)
        return text
    if isinstance(value, list):
        return [_render(item, variables) for item in value]
    if isinstance(value, dict):
        return {key: _render(item, variables) for key, item in value.items()}
    return value


class TemplateProducer(BaseProducer):
    """Static last-resort payload with ``{topic}`` placeholders filled in."""

    def __init__(self, producer_id: str, template: Mapping[str, Any]) -> None:
        self.producer_id = producer_id
        self.template = dict(template)

    async def call(self, payload, *, idempotency_key, timeout=None) -> ProducerResponse:
        topic = _topic_of(payload) or "general"
        rendered = _render(self.template, {"topic": topic, "keywords": ", ".join(topic_keywords(topic)[:5])})
        if isinstance(rendered, dict):
            rendered.setdefault("source", "TEMPLATE")
        return ProducerResponse(success=True, payload=rendered)


def trend_template_producer(producer_id: str = "trend_template") -> TemplateProducer:
    return TemplateProducer(
        producer_id,
        {
            "candidates": [
                {
                    "id": "template_{topic}",
                    "title": "Essential {topic} guide",
                    "signals": {"category": "{topic}"},
                    "metadata": {"source": "TEMPLATE"},
                }
            ],
        },
    )


def script_template_producer(producer_id: str, strategy: str) -> TemplateProducer:
    """Script fallbacks: TEMPLATE_BASED, KEYWORD_BASED and GENERIC."""
    prompts = {
        "TEMPLATE_BASED": "Create an engaging video about {topic}. Cover the essentials with practical tips and examples.",
        "KEYWORD_BASED": "Create a video about {topic} focusing on {keywords}. Keep it practical and beginner friendly.",
        "GENERIC": "Create a short informative video about {topic}.",
    }
    return TemplateProducer(
        producer_id,
        {
            "candidates": [
                {
                    "id": f"{strategy.lower()}_{{topic}}",
                    "title": "{topic} explained",
                    "signals": {"category": "{topic}"},
                    "metadata": {"prompt": prompts.get(strategy, prompts["GENERIC"]), "fallback_source": strategy},
                }
            ],
        },
    )

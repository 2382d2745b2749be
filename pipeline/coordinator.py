"""Pipeline coordinator: sequences stages for one request and applies retry/fallback/DLQ rules."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
import random
from typing import Any, List, Optional, Sequence

from pydantic import ValidationError

from config import Settings, StageConfig
from core import (
    Candidate,
    ErrorClass,
    ErrorKind,
    FailureReason,
    FallbackTier,
    PipelineOutcome,
    PipelineRequest,
    StageManifestEntry,
    StageResult,
    StageStatus,
)
from producers import ProducerRegistry
from resilience import (
    CircuitBreaker,
    Clock,
    DeadLetterEscalation,
    FallbackChain,
    JsonlDeadLetterQueue,
    RetryPolicy,
    Sleeper,
    classify_error,
    real_sleep,
    run_with_retry,
)
from storage import InMemoryRequestStore
from utils.exceptions import ConfigurationError

from .executor import StageExecutor
from .observability import MetricsEmitter
from .ranking import FilterConfig, RankingWeights, rank


logger = logging.getLogger(__name__)


@dataclass
class _RunContext:
    request_id: str
    topic: str
    stage: Optional[str] = None
    manifest: List[StageManifestEntry] = field(default_factory=list)


@dataclass
class _StageResolution:
    result: StageResult
    entry: StageManifestEntry
    tiers_available: int
    error_class: Optional[ErrorClass] = None


class PipelineCoordinator:
    """
    Drives ``Init -> stage_1 -> ... -> stage_N -> Complete`` for each request.

    Every stage resolves through the same loop: execute the current tier under the
    retry policy; on escalation advance the fallback chain by one tier; when no tier
    is left, escalate to the dead letter queue and finish as ``failed``.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        producers: Optional[ProducerRegistry] = None,
        *,
        breaker: Optional[CircuitBreaker] = None,
        policy: Optional[RetryPolicy] = None,
        dead_letters: Optional[DeadLetterEscalation] = None,
        emitter: Optional[MetricsEmitter] = None,
        request_store: Optional[InMemoryRequestStore] = None,
        clock: Optional[Clock] = None,
        sleep: Sleeper = real_sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._settings = settings or Settings()
        self._producers = producers or ProducerRegistry()
        self._clock = clock or Clock()
        self._breaker = breaker or CircuitBreaker(settings=self._settings.circuit, clock=self._clock)
        self._policy = policy or RetryPolicy(
            self._settings.retry,
            max_attempts_by_stage=self._settings.max_attempts_by_stage(),
            rng=rng,
        )
        self._executor = StageExecutor(self._breaker, emitter=emitter, clock=self._clock)
        if dead_letters is None:
            dlq_path = self._settings.dead_letter.path
            sink = JsonlDeadLetterQueue(dlq_path) if dlq_path else None
            dead_letters = DeadLetterEscalation(sink, clock=self._clock)
        self._dead_letters = dead_letters
        self._requests = request_store or InMemoryRequestStore()
        self._sleep = sleep

        ranker = self._settings.ranker
        self._filter = FilterConfig.from_settings(ranker)
        self._weights = RankingWeights.from_settings(ranker)

    @property
    def requests(self) -> InMemoryRequestStore:
        return self._requests

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    @property
    def dead_letters(self) -> DeadLetterEscalation:
        return self._dead_letters

    async def run(self, request: PipelineRequest) -> PipelineOutcome:
        """Run one request to a terminal outcome. Re-running a terminal request returns its outcome."""
        self._requests.create_or_get(request)
        existing = self._requests.get_outcome(request.id)
        if existing is not None:
            return existing

        dlq_entry = self._dead_letters.get_for_request(request.id)
        if dlq_entry is not None:
            outcome = PipelineOutcome(
                request_id=request.id,
                state="failed",
                dlq_entry_id=dlq_entry.entry_id,
                failure_reason=dlq_entry.reason,
            )
            self._requests.set_outcome(request.id, outcome)
            return outcome

        self._requests.update(request.id, _set_state("running"))
        ctx = _RunContext(request_id=request.id, topic=request.topic)
        logger.info("pipeline_start request_id=%s topic=%s", request.id, request.topic)

        try:
            outcome = await asyncio.wait_for(self._run_stages(ctx), timeout=self._settings.pipeline.request_timeout_s)
        except asyncio.TimeoutError:
            outcome = self._fail(
                ctx,
                FailureReason.REQUEST_TIMEOUT,
                message=f"request exceeded {self._settings.pipeline.request_timeout_s}s",
            )
        except ConfigurationError as exc:
            logger.error("pipeline_misconfigured request_id=%s stage=%s error=%s", request.id, ctx.stage, exc)
            outcome = self._fail(ctx, FailureReason.ALL_TIERS_EXHAUSTED, message=exc.message)

        self._requests.set_outcome(request.id, outcome)
        logger.info(
            "pipeline_done request_id=%s state=%s degraded=%s dlq=%s tiers=%s",
            request.id,
            outcome.state,
            outcome.degraded,
            outcome.dlq_entry_id,
            outcome.tiers_used,
        )
        return outcome

    async def run_many(self, requests: Sequence[PipelineRequest], *, concurrency: Optional[int] = None) -> List[PipelineOutcome]:
        """Run independent requests concurrently; stages inside each request stay sequential."""
        limit = max(1, int(concurrency or self._settings.pipeline.concurrency))
        semaphore = asyncio.Semaphore(limit)

        async def _bounded(item: PipelineRequest) -> PipelineOutcome:
            async with semaphore:
                return await self.run(item)

        return list(await asyncio.gather(*(_bounded(item) for item in requests)))

    async def _run_stages(self, ctx: _RunContext) -> PipelineOutcome:
        previous: Any = None
        degraded = False

        for stage_cfg in self._settings.stages:
            ctx.stage = stage_cfg.name
            current = self._requests.get(ctx.request_id)
            if current is not None and current.cancellation_requested:
                return self._fail(ctx, FailureReason.CANCELLED, message="cancellation requested")

            try:
                resolution = await asyncio.wait_for(
                    self._resolve_stage(ctx, stage_cfg, previous),
                    timeout=stage_cfg.stage_timeout_s,
                )
            except asyncio.TimeoutError:
                return self._fail(
                    ctx,
                    FailureReason.STAGE_TIMEOUT,
                    message=f"stage {stage_cfg.name} exceeded {stage_cfg.stage_timeout_s}s",
                )

            ctx.manifest.append(resolution.entry)
            result = resolution.result
            if not result.ok:
                if resolution.tiers_available == 1 and resolution.error_class == ErrorClass.PERMANENT:
                    reason = FailureReason.PERMANENT_NO_TIER
                else:
                    reason = FailureReason.ALL_TIERS_EXHAUSTED
                return self._fail(ctx, reason, message=result.error_message or "")

            previous = result.payload
            degraded = degraded or result.status == StageStatus.DEGRADED
            self._requests.update(ctx.request_id, _store_context(stage_cfg.name, previous))

        ctx.stage = None
        self._requests.update(ctx.request_id, _set_state("complete"))
        return PipelineOutcome(
            request_id=ctx.request_id,
            state="complete",
            degraded=degraded,
            stages=list(ctx.manifest),
            payload=previous,
        )

    async def _resolve_stage(self, ctx: _RunContext, stage_cfg: StageConfig, previous: Any) -> _StageResolution:
        chain = FallbackChain(stage_cfg.name, stage_cfg.tiers)
        timeout = stage_cfg.call_timeout_s or self._settings.pipeline.default_call_timeout_s
        payload = {"request_id": ctx.request_id, "topic": ctx.topic, "stage": stage_cfg.name, "input": previous}

        stage_attempts = 0
        stage_retries = 0
        total_latency = 0.0

        while True:
            tier = chain.current
            tier_index = chain.index
            producer = self._producers.get(tier.producer_id)

            async def _attempt(tier_attempt: int, reduced: bool) -> StageResult:
                nonlocal stage_attempts, total_latency
                stage_attempts += 1
                result = await self._executor.execute(
                    stage_cfg.name,
                    payload,
                    producer,
                    timeout,
                    request_id=ctx.request_id,
                    attempt=stage_attempts,
                    tier_index=tier_index,
                    tier=tier,
                    reduced=reduced,
                )
                total_latency += result.latency_ms
                if result.ok and stage_cfg.candidate_bearing:
                    result = self._select_candidates(stage_cfg, tier, result)
                if not result.ok:
                    self._requests.add_failure(ctx.request_id)
                return result

            outcome = await run_with_retry(
                _attempt,
                policy=self._policy,
                stage=stage_cfg.name,
                stage_retries=stage_retries,
                reduced_available=bool(producer.supports_reduced),
                sleep=self._sleep,
            )
            stage_retries += outcome.retries
            if outcome.retries:
                self._requests.add_retries(ctx.request_id, outcome.retries)

            result = outcome.result
            entry = StageManifestEntry(
                stage=stage_cfg.name,
                status=result.status,
                producer_id=result.producer_id,
                producer_tier=result.producer_tier,
                attempts=stage_attempts,
                retries=stage_retries,
                latency_ms=total_latency,
                tiers_tried=chain.history,
                error_kind=result.error_kind,
            )
            if result.ok:
                return _StageResolution(result=result, entry=entry, tiers_available=len(chain.tiers))

            error_class = classify_error(result.error_kind)
            if outcome.last_decision is not None:
                error_class = outcome.last_decision.error_class
            reason = f"{result.error_kind.value if result.error_kind else 'unknown'}: {result.error_message or ''}".strip()
            if chain.advance(reason=reason) is None:
                return _StageResolution(
                    result=result,
                    entry=entry,
                    tiers_available=len(chain.tiers),
                    error_class=error_class,
                )

    def _select_candidates(self, stage_cfg: StageConfig, tier: FallbackTier, result: StageResult) -> StageResult:
        body = result.payload if isinstance(result.payload, dict) else {}
        candidates: List[Candidate] = []
        for raw in body.get("candidates") or []:
            try:
                candidates.append(Candidate.model_validate(raw))
            except ValidationError as exc:
                logger.debug("candidate_dropped stage=%s error=%s", stage_cfg.name, exc.errors()[:1])

        ranker = self._settings.ranker
        ranked = rank(
            candidates,
            self._filter if tier.filter_candidates else FilterConfig.permissive(),
            self._weights,
            now=datetime.fromtimestamp(self._clock.now(), tz=timezone.utc),
            engagement_saturation=ranker.engagement_saturation,
            limit=stage_cfg.selection_limit or ranker.selection_limit,
        )
        if not ranked:
            return StageResult(
                stage=result.stage,
                status=StageStatus.FAILURE,
                producer_id=result.producer_id,
                producer_tier=result.producer_tier,
                latency_ms=result.latency_ms,
                error_kind=ErrorKind.NO_CANDIDATES,
                error_message=f"{len(candidates)} candidates, none passed the filter",
                attempt=result.attempt,
                idempotency_key=result.idempotency_key,
            )

        selected = [item.model_dump(mode="json") for item in ranked]
        logger.info(
            "candidates_ranked stage=%s producer=%s received=%s selected=%s top=%s score=%.4f",
            stage_cfg.name,
            result.producer_id,
            len(candidates),
            len(ranked),
            ranked[0].id,
            ranked[0].computed_score or 0.0,
        )
        return result.model_copy(update={"payload": {**body, "candidates": selected, "selected": selected[0]}})

    def _fail(self, ctx: _RunContext, reason: FailureReason, *, message: str = "") -> PipelineOutcome:
        request = self._requests.update(ctx.request_id, _set_state("failed"))
        if request is None:
            raise RuntimeError(f"request vanished from store: {ctx.request_id}")
        entry = self._dead_letters.escalate(request, reason, stage=ctx.stage, message=message)
        return PipelineOutcome(
            request_id=ctx.request_id,
            state="failed",
            dlq_entry_id=entry.entry_id,
            failure_reason=entry.reason,
            stages=list(ctx.manifest),
        )


def _set_state(state: str):
    def _mutate(request: PipelineRequest) -> None:
        request.state = state

    return _mutate


def _store_context(stage: str, payload: Any):
    def _mutate(request: PipelineRequest) -> None:
        request.context[stage] = payload

    return _mutate

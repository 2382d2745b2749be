from __future__ import annotations

import asyncio

import pytest

from core import ErrorKind, FallbackTier, ProducerResponse, StageStatus
from pipeline import InMemoryMetricsEmitter, StageExecutor, idempotency_key
from producers import BaseProducer
from resilience import CircuitBreaker, ManualClock
from utils.exceptions import ConfigurationError, ProducerError


class RecordingProducer(BaseProducer):
    producer_id = "recorder"

    def __init__(self, behaviour: str = "ok", delay: float = 0.0) -> None:
        self.behaviour = behaviour
        self.delay = delay
        self.payloads: list[dict] = []
        self.keys: list[str] = []

    async def call(self, payload, *, idempotency_key, timeout=None) -> ProducerResponse:
        self.payloads.append(payload)
        self.keys.append(idempotency_key)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.behaviour == "raise_producer_error":
            raise ProducerError("quota gone", kind="quota_exhausted", producer=self.producer_id)
        if self.behaviour == "raise_runtime":
            raise RuntimeError("socket exploded")
        if self.behaviour == "raise_config":
            raise ConfigurationError("missing base url")
        if self.behaviour == "fail":
            return ProducerResponse(success=False, error_kind="throttled", error_message="slow down")
        return ProducerResponse(success=True, payload={"echo": payload.get("topic")})


def _executor(emitter: InMemoryMetricsEmitter | None = None) -> tuple[StageExecutor, CircuitBreaker]:
    clock = ManualClock()
    breaker = CircuitBreaker(clock=clock)
    return StageExecutor(breaker, emitter=emitter, clock=clock), breaker


def test_idempotency_key_is_deterministic() -> None:
    assert idempotency_key("req_1", "publish", 1) == idempotency_key("req_1", "publish", 1)
    assert idempotency_key("req_1", "publish", 1) != idempotency_key("req_1", "publish", 2)
    assert idempotency_key("req_1", "publish", 1).startswith("idem_")


@pytest.mark.asyncio
async def test_primary_success_and_fallback_degraded() -> None:
    emitter = InMemoryMetricsEmitter()
    executor, _ = _executor(emitter)
    producer = RecordingProducer()

    primary = await executor.execute("s", {"topic": "food"}, producer, 1.0, request_id="r", attempt=1, tier_index=0)
    fallback = await executor.execute("s", {"topic": "food"}, producer, 1.0, request_id="r", attempt=2, tier_index=1)

    assert primary.status == StageStatus.SUCCESS
    assert primary.payload == {"echo": "food"}
    assert fallback.status == StageStatus.DEGRADED
    assert producer.keys == [idempotency_key("r", "s", 1), idempotency_key("r", "s", 2)]
    assert [event.outcome for event in emitter.events("r")] == [StageStatus.SUCCESS, StageStatus.DEGRADED]


@pytest.mark.asyncio
async def test_timeout_becomes_timeout_failure() -> None:
    executor, breaker = _executor()
    producer = RecordingProducer(delay=1.0)

    result = await executor.execute("s", {}, producer, 0.01, request_id="r", attempt=1, tier_index=0)

    assert result.status == StageStatus.FAILURE
    assert result.error_kind == ErrorKind.TIMEOUT
    assert breaker.state("recorder").consecutive_failures == 1


@pytest.mark.asyncio
async def test_failures_and_exceptions_are_classified() -> None:
    executor, _ = _executor()

    returned = await executor.execute("s", {}, RecordingProducer("fail"), 1.0, request_id="r", attempt=1, tier_index=0)
    raised = await executor.execute(
        "s", {}, RecordingProducer("raise_producer_error"), 1.0, request_id="r", attempt=1, tier_index=0
    )
    unexpected = await executor.execute("s", {}, RecordingProducer("raise_runtime"), 1.0, request_id="r", attempt=1, tier_index=0)

    assert returned.error_kind == ErrorKind.THROTTLED
    assert raised.error_kind == ErrorKind.QUOTA_EXHAUSTED
    assert unexpected.error_kind == ErrorKind.UNKNOWN
    assert "socket exploded" in (unexpected.error_message or "")


@pytest.mark.asyncio
async def test_producer_configuration_error_is_a_permanent_failure() -> None:
    emitter = InMemoryMetricsEmitter()
    executor, breaker = _executor(emitter)

    result = await executor.execute("s", {}, RecordingProducer("raise_config"), 1.0, request_id="r", attempt=1, tier_index=0)

    assert result.status == StageStatus.FAILURE
    assert result.error_kind == ErrorKind.INVALID_INPUT
    assert result.error_message == "missing base url"
    assert breaker.state("recorder").consecutive_failures == 0
    assert [event.error_kind for event in emitter.events("r")] == [ErrorKind.INVALID_INPUT]


@pytest.mark.asyncio
async def test_reduced_flag_and_tier_producer_id() -> None:
    executor, breaker = _executor()
    producer = RecordingProducer("fail")
    tier = FallbackTier(producer_id="nova_reel")

    result = await executor.execute(
        "video_synthesis", {"topic": "x"}, producer, 1.0, request_id="r", attempt=1, tier_index=0, tier=tier, reduced=True
    )

    assert producer.payloads[0]["reduced"] is True
    assert result.producer_id == "nova_reel"
    assert breaker.state("nova_reel").consecutive_failures == 1

"""Stage executor: one producer call under a hard timeout, guarded by the circuit breaker."""

from __future__ import annotations

import asyncio
import hashlib
import logging
from typing import Any, Dict, Optional

from core import ErrorKind, FallbackTier, ProducerResponse, StageEvent, StageResult, StageStatus
from producers import BaseProducer
from resilience import CircuitBreaker, Clock
from utils.exceptions import ConfigurationError, ProducerError

from .observability import LoggingMetricsEmitter, MetricsEmitter


logger = logging.getLogger(__name__)


def idempotency_key(request_id: str, stage: str, attempt: int) -> str:
    """Deterministic key for ``(request_id, stage, attempt)``."""
    seed = f"{request_id}:{stage}:{int(attempt)}"
    return f"idem_{hashlib.sha1(seed.encode('utf-8')).hexdigest()[:24]}"


class StageExecutor:
    """Invokes one producer and turns whatever happens into an immutable StageResult."""

    def __init__(
        self,
        breaker: CircuitBreaker,
        *,
        emitter: Optional[MetricsEmitter] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._breaker = breaker
        self._emitter = emitter or LoggingMetricsEmitter()
        self._clock = clock or Clock()

    async def execute(
        self,
        stage: str,
        payload: Dict[str, Any],
        producer: BaseProducer,
        timeout: Optional[float],
        *,
        request_id: str,
        attempt: int,
        tier_index: int,
        tier: Optional[FallbackTier] = None,
        reduced: bool = False,
    ) -> StageResult:
        producer_id = tier.producer_id if tier is not None else producer.producer_id
        key = idempotency_key(request_id, stage, attempt)

        permit = self._breaker.admit(producer_id)
        if permit is None:
            result = StageResult(
                stage=stage,
                status=StageStatus.FAILURE,
                producer_id=producer_id,
                producer_tier=tier_index,
                error_kind=ErrorKind.CIRCUIT_OPEN,
                error_message=f"circuit open for {producer_id}",
                attempt=attempt,
                idempotency_key=key,
            )
            self._emit(request_id, result)
            return result

        call_payload = dict(payload)
        if reduced:
            call_payload["reduced"] = True

        started = self._clock.monotonic()
        try:
            response = await asyncio.wait_for(
                producer.call(call_payload, idempotency_key=key, timeout=timeout),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            response = ProducerResponse(
                success=False,
                error_kind=ErrorKind.TIMEOUT,
                error_message=f"{producer_id} exceeded {timeout}s",
            )
        except ProducerError as exc:
            response = ProducerResponse(success=False, error_kind=exc.kind, error_message=exc.message)
        except ConfigurationError as exc:
            # the call never reached the dependency, so its health is unchanged
            self._breaker.release_probe(producer_id, permit)
            logger.error("producer_misconfigured stage=%s producer=%s error=%s", stage, producer_id, exc)
            result = StageResult(
                stage=stage,
                status=StageStatus.FAILURE,
                producer_id=producer_id,
                producer_tier=tier_index,
                error_kind=ErrorKind.INVALID_INPUT,
                error_message=exc.message,
                attempt=attempt,
                idempotency_key=key,
            )
            self._emit(request_id, result)
            return result
        except asyncio.CancelledError:
            self._breaker.release_probe(producer_id, permit)
            raise
        except Exception as exc:
            logger.warning("producer_unexpected_error stage=%s producer=%s error=%r", stage, producer_id, exc)
            response = ProducerResponse(success=False, error_kind=ErrorKind.UNKNOWN, error_message=str(exc))
        latency_ms = max(0.0, (self._clock.monotonic() - started) * 1000.0)

        if response.success:
            self._breaker.record_success(producer_id, permit)
            status = StageStatus.SUCCESS if tier_index == 0 else StageStatus.DEGRADED
            result = StageResult(
                stage=stage,
                status=status,
                producer_id=producer_id,
                producer_tier=tier_index,
                payload=response.payload,
                latency_ms=latency_ms,
                attempt=attempt,
                idempotency_key=key,
            )
        else:
            self._breaker.record_failure(producer_id, permit)
            result = StageResult(
                stage=stage,
                status=StageStatus.FAILURE,
                producer_id=producer_id,
                producer_tier=tier_index,
                latency_ms=latency_ms,
                error_kind=response.error_kind or ErrorKind.UNKNOWN,
                error_message=response.error_message,
                attempt=attempt,
                idempotency_key=key,
            )

        self._emit(request_id, result)
        return result

    def _emit(self, request_id: str, result: StageResult) -> None:
        self._emitter.emit(
            StageEvent(
                request_id=request_id,
                stage=result.stage,
                producer_id=result.producer_id,
                producer_tier=result.producer_tier,
                attempt=result.attempt,
                latency_ms=result.latency_ms,
                outcome=result.status,
                error_kind=result.error_kind,
            )
        )

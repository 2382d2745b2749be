"""Retry policy: error classification, jittered exponential backoff, retry-vs-escalate decisions."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
import random
from typing import Awaitable, Callable, Dict, Mapping, Optional

from tenacity import AsyncRetrying, RetryCallState, stop_after_attempt
from tenacity.retry import retry_base
from tenacity.wait import wait_base

from config import RetrySettings
from core import ErrorClass, ErrorKind, StageResult

from .clock import Sleeper, real_sleep


logger = logging.getLogger(__name__)


_ERROR_CLASSES: Dict[ErrorKind, ErrorClass] = {
    ErrorKind.TIMEOUT: ErrorClass.TRANSIENT,
    ErrorKind.THROTTLED: ErrorClass.TRANSIENT,
    ErrorKind.SERVER_ERROR: ErrorClass.TRANSIENT,
    ErrorKind.UNKNOWN: ErrorClass.TRANSIENT,
    ErrorKind.CIRCUIT_OPEN: ErrorClass.TRANSIENT,
    ErrorKind.AUTH: ErrorClass.PERMANENT,
    ErrorKind.INVALID_INPUT: ErrorClass.PERMANENT,
    ErrorKind.QUOTA_EXHAUSTED: ErrorClass.PERMANENT,
    ErrorKind.CANCELLED: ErrorClass.PERMANENT,
    ErrorKind.NO_CANDIDATES: ErrorClass.PERMANENT,
    ErrorKind.PAYLOAD_TOO_LARGE: ErrorClass.RESOURCE,
    ErrorKind.BUDGET_EXCEEDED: ErrorClass.RESOURCE,
}


def classify_error(kind: Optional[ErrorKind | str]) -> ErrorClass:
    """Map a concrete failure kind onto the transient/permanent/resource taxonomy."""
    return _ERROR_CLASSES.get(ErrorKind.parse(kind), ErrorClass.TRANSIENT)


class RetryAction(str, Enum):
    RETRY = "retry"
    ESCALATE = "escalate"


@dataclass(frozen=True)
class RetryDecision:
    action: RetryAction
    error_class: ErrorClass
    delay: float = 0.0
    reduced: bool = False
    reason: str = ""

    @property
    def should_retry(self) -> bool:
        return self.action == RetryAction.RETRY


class RetryPolicy:
    """Stateless retry calculator; the only state it touches is its RNG."""

    def __init__(
        self,
        settings: Optional[RetrySettings] = None,
        *,
        max_attempts_by_stage: Optional[Mapping[str, int]] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._settings = settings or RetrySettings()
        self._max_attempts = dict(max_attempts_by_stage or {})
        self._rng = rng or random.Random()

    @property
    def settings(self) -> RetrySettings:
        return self._settings

    def max_attempts(self, stage: str) -> int:
        return max(1, int(self._max_attempts.get(stage, self._settings.max_attempts)))

    def backoff_delay(self, retry_index: int) -> float:
        """``min(max_delay, base * 2**retry_index) * uniform(jitter_low, jitter_high)``."""
        exponent = max(0, int(retry_index))
        ceiling = min(self._settings.max_delay_s, self._settings.base_delay_s * (2 ** exponent))
        return ceiling * self._rng.uniform(self._settings.jitter_low, self._settings.jitter_high)

    def decide(
        self,
        stage: str,
        kind: Optional[ErrorKind | str],
        *,
        attempt: int,
        stage_retries: int = 0,
        resource_failures: int = 0,
        reduced_available: bool = False,
    ) -> RetryDecision:
        """Decide whether the failed ``attempt`` (1-based, per tier) is retried."""
        error_kind = ErrorKind.parse(kind)
        error_class = classify_error(error_kind)
        limit = self.max_attempts(stage)
        budget_left = attempt < limit and stage_retries < limit

        if error_kind == ErrorKind.CIRCUIT_OPEN:
            return RetryDecision(RetryAction.ESCALATE, error_class, reason="circuit open")

        if error_class == ErrorClass.PERMANENT:
            return RetryDecision(RetryAction.ESCALATE, error_class, reason="permanent error")

        if error_class == ErrorClass.RESOURCE:
            if resource_failures == 0 and reduced_available and budget_left:
                return RetryDecision(
                    RetryAction.RETRY,
                    error_class,
                    delay=self.backoff_delay(attempt - 1),
                    reduced=True,
                    reason="resource error, retrying reduced variant",
                )
            return RetryDecision(RetryAction.ESCALATE, ErrorClass.PERMANENT, reason="resource error treated as permanent")

        if not budget_left:
            return RetryDecision(RetryAction.ESCALATE, error_class, reason="attempt budget exhausted")
        return RetryDecision(RetryAction.RETRY, error_class, delay=self.backoff_delay(attempt - 1), reason="transient error")


class wait_jittered_exponential(wait_base):
    """Tenacity wait strategy delegating to ``RetryPolicy.backoff_delay``.

    When ``planned`` returns a delay (the one already drawn by ``RetryPolicy.decide``),
    that value is used so each retry consumes exactly one jitter sample.
    """

    def __init__(self, policy: RetryPolicy, planned: Optional[Callable[[], Optional[float]]] = None) -> None:
        self.policy = policy
        self.planned = planned

    def __call__(self, retry_state: RetryCallState) -> float:
        if self.planned is not None:
            delay = self.planned()
            if delay is not None:
                return delay
        return self.policy.backoff_delay(retry_state.attempt_number - 1)


class retry_if_policy_allows(retry_base):
    """Tenacity retry predicate consulting ``RetryPolicy.decide`` on failed StageResults."""

    def __init__(self, decide: Callable[[StageResult, int], bool]) -> None:
        self.decide = decide

    def __call__(self, retry_state: RetryCallState) -> bool:
        outcome = retry_state.outcome
        if outcome is None or outcome.failed:
            return False
        result = outcome.result()
        if not isinstance(result, StageResult) or result.ok:
            return False
        return self.decide(result, retry_state.attempt_number)


@dataclass
class RetryOutcome:
    result: StageResult
    attempts: int = 0
    retries: int = 0
    last_decision: Optional[RetryDecision] = None


AttemptCall = Callable[[int, bool], Awaitable[StageResult]]


async def run_with_retry(
    call: AttemptCall,
    *,
    policy: RetryPolicy,
    stage: str,
    stage_retries: int = 0,
    reduced_available: bool = False,
    sleep: Sleeper = real_sleep,
) -> RetryOutcome:
    """
    Run ``call(attempt, reduced)`` against one tier until it succeeds or the policy escalates.

    ``stage_retries`` is the number of retries already spent on earlier tiers of the same
    stage; the stage-wide retry count never exceeds ``policy.max_attempts(stage)``.
    """
    state = RetryOutcome(result=None)  # type: ignore[arg-type]
    resource_failures = 0
    reduced = False

    def _decide(result: StageResult, attempt: int) -> bool:
        nonlocal resource_failures, reduced
        decision = policy.decide(
            stage,
            result.error_kind,
            attempt=attempt,
            stage_retries=stage_retries + state.retries,
            resource_failures=resource_failures,
            reduced_available=reduced_available,
        )
        if classify_error(result.error_kind) == ErrorClass.RESOURCE:
            resource_failures += 1
        state.last_decision = decision
        if decision.should_retry:
            state.retries += 1
            reduced = reduced or decision.reduced
            logger.info(
                "stage_retry stage=%s producer=%s attempt=%s kind=%s reduced=%s",
                stage,
                result.producer_id,
                attempt,
                getattr(result.error_kind, "value", result.error_kind),
                reduced,
            )
        return decision.should_retry

    async def _attempt() -> StageResult:
        state.attempts += 1
        return await call(state.attempts, reduced)

    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts(stage)),
        wait=wait_jittered_exponential(
            policy,
            planned=lambda: state.last_decision.delay if state.last_decision is not None else None,
        ),
        retry=retry_if_policy_allows(_decide),
        sleep=sleep,
        retry_error_callback=lambda retry_state: retry_state.outcome.result(),
        reraise=True,
    )
    state.result = await retrying(_attempt)
    return state

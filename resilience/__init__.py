"""Circuit breaker, retry policy, fallback chain and dead letter primitives."""

from .circuit_breaker import CircuitBreaker, CircuitPermit, CircuitStateStore, InMemoryCircuitStateStore
from .clock import Clock, ManualClock, RecordingSleeper, Sleeper, real_sleep
from .dead_letter import DeadLetterEscalation, DeadLetterSink, InMemoryDeadLetterQueue, JsonlDeadLetterQueue
from .fallback import FallbackChain
from .retry import (
    RetryAction,
    RetryDecision,
    RetryOutcome,
    RetryPolicy,
    classify_error,
    run_with_retry,
)

__all__ = [
    "CircuitBreaker",
    "CircuitPermit",
    "CircuitStateStore",
    "Clock",
    "DeadLetterEscalation",
    "DeadLetterSink",
    "FallbackChain",
    "InMemoryCircuitStateStore",
    "InMemoryDeadLetterQueue",
    "JsonlDeadLetterQueue",
    "ManualClock",
    "RecordingSleeper",
    "RetryAction",
    "RetryDecision",
    "RetryOutcome",
    "RetryPolicy",
    "Sleeper",
    "classify_error",
    "real_sleep",
    "run_with_retry",
]

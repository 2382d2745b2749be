"""Canonical data contracts for the resilient content pipeline."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StageStatus(str, Enum):
    """Outcome of one stage attempt."""

    SUCCESS = "success"
    DEGRADED = "degraded"
    FAILURE = "failure"


class ErrorKind(str, Enum):
    """Concrete failure kinds reported by producers or the stage executor."""

    TIMEOUT = "timeout"
    THROTTLED = "throttled"
    SERVER_ERROR = "server_error"
    UNKNOWN = "unknown"
    AUTH = "auth"
    INVALID_INPUT = "invalid_input"
    QUOTA_EXHAUSTED = "quota_exhausted"
    CANCELLED = "cancelled"
    NO_CANDIDATES = "no_candidates"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    BUDGET_EXCEEDED = "budget_exceeded"
    CIRCUIT_OPEN = "circuit_open"

    @classmethod
    def parse(cls, value: Any) -> "ErrorKind":
        """Lenient parse; unrecognized producer codes map to UNKNOWN."""
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        try:
            return cls(text)
        except ValueError:
            return cls.UNKNOWN


class ErrorClass(str, Enum):
    """Error taxonomy that drives retry/fallback decisions."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    RESOURCE = "resource"


class CircuitPhase(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class FailureReason(str, Enum):
    """Structured reason codes attached to dead letter entries."""

    ALL_TIERS_EXHAUSTED = "ALL_TIERS_EXHAUSTED"
    PERMANENT_NO_TIER = "PERMANENT_NO_TIER"
    STAGE_TIMEOUT = "STAGE_TIMEOUT"
    REQUEST_TIMEOUT = "REQUEST_TIMEOUT"
    CANCELLED = "CANCELLED"


class PipelineRequest(BaseModel):
    """One content request travelling through every stage."""

    id: str
    topic: str
    context: Dict[str, Any] = Field(default_factory=dict)
    retry_count: int = 0
    failure_count: int = 0
    created_at: datetime = Field(default_factory=_utcnow)
    state: Literal["pending", "running", "complete", "failed"] = "pending"
    cancellation_requested: bool = False

    @field_validator("id", "topic", mode="before")
    @classmethod
    def _non_empty_text(cls, value: Any) -> str:
        text = str(value or "").strip()
        if not text:
            raise ValueError("value is required")
        return text

    @property
    def terminal(self) -> bool:
        return self.state in {"complete", "failed"}


class StageResult(BaseModel):
    """Immutable record of a single stage attempt."""

    model_config = ConfigDict(frozen=True)

    stage: str
    status: StageStatus
    producer_id: str
    producer_tier: int
    payload: Any = None
    latency_ms: float = 0.0
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None
    attempt: int = 1
    idempotency_key: str = ""

    @property
    def ok(self) -> bool:
        return self.status in {StageStatus.SUCCESS, StageStatus.DEGRADED}


class CircuitState(BaseModel):
    """Health of one external dependency, shared by all requests."""

    dependency_id: str
    phase: CircuitPhase = CircuitPhase.CLOSED
    consecutive_failures: int = 0
    recent_failures: List[float] = Field(default_factory=list)
    last_failure_at: Optional[float] = None
    cooldown_until: Optional[float] = None
    probe_in_flight: bool = False
    probe_token: Optional[str] = None


class CandidateSignals(BaseModel):
    """Raw, possibly untrustworthy popularity signals for one candidate."""

    view_count: int = 0
    like_count: int = 0
    comment_count: int = 0
    published_at: Optional[datetime] = None
    category: Optional[str] = None


class Candidate(BaseModel):
    """An item competing for selection at a candidate-bearing stage."""

    id: str
    title: str = ""
    signals: CandidateSignals = Field(default_factory=CandidateSignals)
    computed_score: Optional[float] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class FallbackTier(BaseModel):
    """One producer in a stage's ordered fallback chain."""

    model_config = ConfigDict(frozen=True)

    producer_id: str
    fidelity_rank: int = 0
    cost_hint: float = 0.0
    filter_candidates: bool = True


class DLQEntry(BaseModel):
    """Append-only record of a request that exhausted every recovery option."""

    model_config = ConfigDict(frozen=True)

    entry_id: str
    request_id: str
    request_snapshot: Dict[str, Any] = Field(default_factory=dict)
    reason: FailureReason
    stage: Optional[str] = None
    message: str = ""
    retry_count: int = 0
    failure_count: int = 0
    created_at: datetime = Field(default_factory=_utcnow)


class ProducerResponse(BaseModel):
    """Result envelope returned by producer implementations."""

    success: bool
    payload: Any = None
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None
    cost: float = 0.0

    @field_validator("error_kind", mode="before")
    @classmethod
    def _parse_kind(cls, value: Any) -> Optional[ErrorKind]:
        if value in (None, ""):
            return None
        return ErrorKind.parse(value)


class StageEvent(BaseModel):
    """Observability record emitted for every stage attempt."""

    request_id: str
    stage: str
    producer_id: str
    producer_tier: int
    attempt: int
    latency_ms: float
    outcome: StageStatus
    error_kind: Optional[ErrorKind] = None


class StageManifestEntry(BaseModel):
    """Per-stage summary in the final pipeline manifest."""

    stage: str
    status: StageStatus
    producer_id: str
    producer_tier: int
    attempts: int
    retries: int = 0
    latency_ms: float = 0.0
    tiers_tried: List[int] = Field(default_factory=list)
    error_kind: Optional[ErrorKind] = None


class PipelineOutcome(BaseModel):
    """Terminal result handed back to the caller."""

    request_id: str
    state: Literal["complete", "failed"]
    degraded: bool = False
    dlq_entry_id: Optional[str] = None
    failure_reason: Optional[FailureReason] = None
    stages: List[StageManifestEntry] = Field(default_factory=list)
    payload: Any = None

    @property
    def tiers_used(self) -> Dict[str, str]:
        return {entry.stage: entry.producer_id for entry in self.stages if entry.status != StageStatus.FAILURE}

"""Core contracts and shared types for the pipeline engine."""

from .contracts import (
    Candidate,
    CandidateSignals,
    CircuitPhase,
    CircuitState,
    DLQEntry,
    ErrorClass,
    ErrorKind,
    FailureReason,
    FallbackTier,
    PipelineOutcome,
    PipelineRequest,
    ProducerResponse,
    StageEvent,
    StageManifestEntry,
    StageResult,
    StageStatus,
)

__all__ = [
    "Candidate",
    "CandidateSignals",
    "CircuitPhase",
    "CircuitState",
    "DLQEntry",
    "ErrorClass",
    "ErrorKind",
    "FailureReason",
    "FallbackTier",
    "PipelineOutcome",
    "PipelineRequest",
    "ProducerResponse",
    "StageEvent",
    "StageManifestEntry",
    "StageResult",
    "StageStatus",
]

"""In-memory request store: PipelineRequest records and terminal outcomes keyed by request id."""

from __future__ import annotations

from datetime import datetime, timezone
from threading import Lock
from typing import Callable, Dict, List, Optional
from uuid import uuid4

from core import PipelineOutcome, PipelineRequest


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_request_id() -> str:
    return f"req_{_utcnow().strftime('%Y%m%d_%H%M%S')}_{uuid4().hex[:8]}"


class InMemoryRequestStore:
    """Thread-safe store; every mutation is an atomic read-modify-write under one lock."""

    def __init__(self) -> None:
        self._requests: Dict[str, PipelineRequest] = {}
        self._outcomes: Dict[str, PipelineOutcome] = {}
        self._idempotency_keys: Dict[str, str] = {}
        self._lock = Lock()

    def create_or_get(self, request: PipelineRequest, *, idempotency_key: Optional[str] = None) -> PipelineRequest:
        """Store ``request`` unless its id (or idempotency key) is already known."""
        with self._lock:
            if idempotency_key:
                existing_id = self._idempotency_keys.get(idempotency_key)
                if existing_id:
                    return self._requests[existing_id].model_copy(deep=True)

            existing = self._requests.get(request.id)
            if existing is None:
                existing = request.model_copy(deep=True)
                self._requests[request.id] = existing

            if idempotency_key:
                self._idempotency_keys[idempotency_key] = request.id
            return existing.model_copy(deep=True)

    def get(self, request_id: str) -> Optional[PipelineRequest]:
        with self._lock:
            request = self._requests.get(request_id)
            return request.model_copy(deep=True) if request else None

    def update(self, request_id: str, mutator: Callable[[PipelineRequest], None]) -> Optional[PipelineRequest]:
        with self._lock:
            request = self._requests.get(request_id)
            if request is None:
                return None
            working = request.model_copy(deep=True)
            mutator(working)
            self._requests[request_id] = working
            return working.model_copy(deep=True)

    def add_retries(self, request_id: str, count: int) -> Optional[PipelineRequest]:
        def _bump(request: PipelineRequest) -> None:
            request.retry_count += max(0, int(count))

        return self.update(request_id, _bump)

    def add_failure(self, request_id: str) -> Optional[PipelineRequest]:
        def _bump(request: PipelineRequest) -> None:
            request.failure_count += 1

        return self.update(request_id, _bump)

    def request_cancel(self, request_id: str) -> Optional[PipelineRequest]:
        def _flag(request: PipelineRequest) -> None:
            request.cancellation_requested = True

        return self.update(request_id, _flag)

    def set_outcome(self, request_id: str, outcome: PipelineOutcome) -> None:
        with self._lock:
            self._outcomes.setdefault(request_id, outcome)

    def get_outcome(self, request_id: str) -> Optional[PipelineOutcome]:
        with self._lock:
            outcome = self._outcomes.get(request_id)
            return outcome.model_copy(deep=True) if outcome else None

    def list_ids(self, state: Optional[str] = None) -> List[str]:
        with self._lock:
            return [rid for rid, req in self._requests.items() if state is None or req.state == state]

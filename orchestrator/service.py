"""Orchestrator service layer: request intake, cancellation and batch draining."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from core import PipelineOutcome, PipelineRequest
from pipeline import PipelineCoordinator
from storage import InMemoryRequestStore, new_request_id
from utils import setup_package_logging

from .queue import InMemoryRequestQueue


logger = logging.getLogger(__name__)


class PipelineOrchestrator:
    """Front door for pipeline requests; execution is delegated to a PipelineCoordinator."""

    def __init__(
        self,
        coordinator: Optional[PipelineCoordinator] = None,
        *,
        queue: Optional[InMemoryRequestQueue] = None,
        log_level: Optional[int] = logging.INFO,
    ) -> None:
        if log_level is not None:
            setup_package_logging(level=log_level)
        self._coordinator = coordinator or PipelineCoordinator()
        self._queue = queue or InMemoryRequestQueue()

    @property
    def coordinator(self) -> PipelineCoordinator:
        return self._coordinator

    @property
    def store(self) -> InMemoryRequestStore:
        return self._coordinator.requests

    def submit(
        self,
        topic: str,
        *,
        context: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> str:
        """Create and enqueue a request. Returns a stable request id for the same idempotency key."""
        request = PipelineRequest(id=new_request_id(), topic=topic, context=dict(context or {}))
        stored = self.store.create_or_get(request, idempotency_key=idempotency_key)
        if stored.state == "pending" and self._queue.enqueue(stored.id):
            logger.info("request_submitted request_id=%s topic=%s", stored.id, stored.topic)
        return stored.id

    def cancel(self, request_id: str) -> bool:
        """Best-effort cancel: a queued request fails as cancelled on its next run."""
        request = self.store.request_cancel(request_id)
        if request is None:
            return False
        logger.info("request_cancel request_id=%s state=%s", request_id, request.state)
        return True

    def get_request(self, request_id: str) -> Optional[PipelineRequest]:
        return self.store.get(request_id)

    def get_outcome(self, request_id: str) -> Optional[PipelineOutcome]:
        return self.store.get_outcome(request_id)

    def pending(self) -> int:
        return self._queue.size()

    async def run_pending(self, concurrency: Optional[int] = None, *, limit: Optional[int] = None) -> List[PipelineOutcome]:
        """Run queued requests concurrently and return their outcomes in queue order."""
        batch: List[PipelineRequest] = []
        for request_id in self._queue.drain(limit):
            request = self.store.get(request_id)
            if request is not None:
                batch.append(request)
        if not batch:
            return []
        logger.info("run_pending count=%s concurrency=%s", len(batch), concurrency)
        return await self._coordinator.run_many(batch, concurrency=concurrency)

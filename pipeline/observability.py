"""Stage attempt emission for an external metrics/alerting collaborator."""

from __future__ import annotations

import logging
from threading import Lock
from typing import Dict, List, Protocol

from core import StageEvent, StageStatus


logger = logging.getLogger(__name__)


class MetricsEmitter(Protocol):
    def emit(self, event: StageEvent) -> None:
        ...


class LoggingMetricsEmitter:
    """Default emitter: one structured log line per stage attempt."""

    def emit(self, event: StageEvent) -> None:
        level = logging.INFO if event.outcome != StageStatus.FAILURE else logging.WARNING
        logger.log(
            level,
            "stage_attempt request_id=%s stage=%s producer=%s tier=%s attempt=%s latency_ms=%.1f outcome=%s error=%s",
            event.request_id,
            event.stage,
            event.producer_id,
            event.producer_tier,
            event.attempt,
            event.latency_ms,
            event.outcome.value,
            event.error_kind.value if event.error_kind else "",
        )


class InMemoryMetricsEmitter:
    """Collects events; handy for tests and for in-process dashboards."""

    def __init__(self) -> None:
        self._events: List[StageEvent] = []
        self._lock = Lock()

    def emit(self, event: StageEvent) -> None:
        with self._lock:
            self._events.append(event)

    def events(self, request_id: str | None = None) -> List[StageEvent]:
        with self._lock:
            rows = list(self._events)
        if request_id is None:
            return rows
        return [row for row in rows if row.request_id == request_id]

    def outcome_counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for event in self.events():
            counts[event.outcome.value] = counts.get(event.outcome.value, 0) + 1
        return counts

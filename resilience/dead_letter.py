"""Dead letter escalation: terminal failures are written once and never retried here."""

from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
from pathlib import Path
from threading import Lock
from typing import Dict, List, Optional, Protocol
from uuid import uuid4

from core import DLQEntry, FailureReason, PipelineRequest
from utils.exceptions import DeadLetterError

from .clock import Clock


logger = logging.getLogger(__name__)


def _new_entry_id() -> str:
    return f"dlq_{uuid4().hex[:12]}"


class DeadLetterSink(Protocol):
    """Append-only store of DLQ entries."""

    def append(self, entry: DLQEntry) -> None:
        ...

    def get_for_request(self, request_id: str) -> Optional[DLQEntry]:
        ...

    def entries(self) -> List[DLQEntry]:
        ...


class InMemoryDeadLetterQueue:
    """Process-local sink; entries are never updated or removed."""

    def __init__(self) -> None:
        self._entries: List[DLQEntry] = []
        self._by_request: Dict[str, DLQEntry] = {}
        self._lock = Lock()

    def append(self, entry: DLQEntry) -> None:
        with self._lock:
            self._entries.append(entry)
            self._by_request.setdefault(entry.request_id, entry)

    def get_for_request(self, request_id: str) -> Optional[DLQEntry]:
        with self._lock:
            return self._by_request.get(request_id)

    def entries(self) -> List[DLQEntry]:
        with self._lock:
            return list(self._entries)


class JsonlDeadLetterQueue(InMemoryDeadLetterQueue):
    """JSON-lines file sink. Existing lines are re-indexed on open."""

    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if self.path.exists():
            self._load()

    def _load(self) -> None:
        with self.path.open("r", encoding="utf-8") as fh:
            for line_no, line in enumerate(fh, start=1):
                text = line.strip()
                if not text:
                    continue
                try:
                    entry = DLQEntry.model_validate_json(text)
                except ValueError as exc:
                    raise DeadLetterError(f"corrupt dead letter line {line_no}", {"path": str(self.path)}) from exc
                super().append(entry)

    def append(self, entry: DLQEntry) -> None:
        line = json.dumps(entry.model_dump(mode="json"), ensure_ascii=False)
        with self._lock:
            with self.path.open("a", encoding="utf-8") as fh:
                fh.write(line + "\n")
        super().append(entry)


class DeadLetterEscalation:
    """Writes exactly one DLQEntry per request that reaches terminal failure."""

    def __init__(self, sink: Optional[DeadLetterSink] = None, clock: Optional[Clock] = None) -> None:
        self._sink = sink or InMemoryDeadLetterQueue()
        self._clock = clock or Clock()
        self._lock = Lock()

    @property
    def sink(self) -> DeadLetterSink:
        return self._sink

    def escalate(
        self,
        request: PipelineRequest,
        reason: FailureReason,
        *,
        stage: Optional[str] = None,
        message: str = "",
    ) -> DLQEntry:
        """Persist the terminal failure, or return the entry already written for this request."""
        with self._lock:
            existing = self._sink.get_for_request(request.id)
            if existing is not None:
                logger.info("dlq_duplicate_suppressed request_id=%s entry_id=%s", request.id, existing.entry_id)
                return existing

            entry = DLQEntry(
                entry_id=_new_entry_id(),
                request_id=request.id,
                request_snapshot=request.model_dump(mode="json"),
                reason=reason,
                stage=stage,
                message=str(message or "").strip(),
                retry_count=request.retry_count,
                failure_count=request.failure_count,
                created_at=datetime.fromtimestamp(self._clock.now(), tz=timezone.utc),
            )
            self._sink.append(entry)

        logger.error(
            "dlq_escalated request_id=%s entry_id=%s reason=%s stage=%s retries=%s failures=%s",
            request.id,
            entry.entry_id,
            reason.value,
            stage,
            request.retry_count,
            request.failure_count,
        )
        return entry

    def get_for_request(self, request_id: str) -> Optional[DLQEntry]:
        return self._sink.get_for_request(request_id)

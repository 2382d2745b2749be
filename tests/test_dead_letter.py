from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path

import pytest

from core import FailureReason, PipelineRequest
from resilience import DeadLetterEscalation, InMemoryDeadLetterQueue, JsonlDeadLetterQueue, ManualClock
from utils.exceptions import DeadLetterError


def _request(request_id: str = "req_dlq") -> PipelineRequest:
    return PipelineRequest(id=request_id, topic="travel", retry_count=2, failure_count=5, state="failed")


def test_escalate_writes_exactly_one_entry_per_request() -> None:
    sink = InMemoryDeadLetterQueue()
    dlq = DeadLetterEscalation(sink, clock=ManualClock(start=1_700_000_000.0))

    first = dlq.escalate(_request(), FailureReason.ALL_TIERS_EXHAUSTED, stage="video_synthesis", message="all down")
    second = dlq.escalate(_request(), FailureReason.STAGE_TIMEOUT, stage="publish")

    assert second.entry_id == first.entry_id
    assert second.reason == FailureReason.ALL_TIERS_EXHAUSTED
    assert len(sink.entries()) == 1

    entry = sink.entries()[0]
    assert entry.retry_count == 2
    assert entry.failure_count == 5
    assert entry.request_snapshot["topic"] == "travel"
    assert entry.created_at == datetime.fromtimestamp(1_700_000_000.0, tz=timezone.utc)


def test_concurrent_escalations_do_not_duplicate() -> None:
    sink = InMemoryDeadLetterQueue()
    dlq = DeadLetterEscalation(sink)

    with ThreadPoolExecutor(max_workers=8) as pool:
        ids = set(pool.map(lambda _: dlq.escalate(_request(), FailureReason.CANCELLED).entry_id, range(50)))

    assert len(ids) == 1
    assert len(sink.entries()) == 1


def test_jsonl_sink_persists_and_reloads(tmp_path: Path) -> None:
    path = tmp_path / "dlq" / "entries.jsonl"
    dlq = DeadLetterEscalation(JsonlDeadLetterQueue(path))
    entry = dlq.escalate(_request("req_file"), FailureReason.PERMANENT_NO_TIER, stage="publish")

    reopened = DeadLetterEscalation(JsonlDeadLetterQueue(path))
    again = reopened.escalate(_request("req_file"), FailureReason.ALL_TIERS_EXHAUSTED)

    assert again.entry_id == entry.entry_id
    assert again.reason == FailureReason.PERMANENT_NO_TIER
    assert len(path.read_text(encoding="utf-8").strip().splitlines()) == 1


def test_jsonl_sink_rejects_corrupt_lines(tmp_path: Path) -> None:
    path = tmp_path / "entries.jsonl"
    path.write_text("{not json}\n", encoding="utf-8")
    with pytest.raises(DeadLetterError):
        JsonlDeadLetterQueue(path)

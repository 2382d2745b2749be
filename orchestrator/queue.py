"""In-memory FIFO queue of pending request ids with dedup."""

from __future__ import annotations

from collections import deque
from threading import Lock
from typing import Deque, List, Optional, Set


class InMemoryRequestQueue:
    """Each request id is queued at most once until it is dequeued."""

    def __init__(self) -> None:
        self._queue: Deque[str] = deque()
        self._queued: Set[str] = set()
        self._lock = Lock()

    def enqueue(self, request_id: str) -> bool:
        """Returns True when newly enqueued."""
        with self._lock:
            if request_id in self._queued:
                return False
            self._queue.append(request_id)
            self._queued.add(request_id)
            return True

    def dequeue(self) -> Optional[str]:
        with self._lock:
            if not self._queue:
                return None
            request_id = self._queue.popleft()
            self._queued.discard(request_id)
            return request_id

    def drain(self, limit: Optional[int] = None) -> List[str]:
        """Pop up to ``limit`` ids (all when None) in FIFO order."""
        with self._lock:
            count = len(self._queue) if limit is None else max(0, min(int(limit), len(self._queue)))
            batch = [self._queue.popleft() for _ in range(count)]
            self._queued.difference_update(batch)
            return batch

    def remove(self, request_id: str) -> bool:
        """Drop a request that has not started yet."""
        with self._lock:
            if request_id not in self._queued:
                return False
            self._queue = deque(item for item in self._queue if item != request_id)
            self._queued.discard(request_id)
            return True

    def size(self) -> int:
        with self._lock:
            return len(self._queue)

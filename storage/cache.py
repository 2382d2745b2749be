"""
Cache
TTL cache backing the cached-recent fallback tier.
"""
from abc import ABC, abstractmethod
from threading import Lock
from typing import Any, Callable, Dict, Optional
import hashlib
import logging
import time


logger = logging.getLogger(__name__)


class BaseCache(ABC):
    """
    Cache base class
    """

    def __init__(self, ttl: Optional[float] = None):
        """
        Args:
            ttl: default expiry in seconds, None = never expires
        """
        self.ttl = ttl

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        pass

    @abstractmethod
    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass

    @abstractmethod
    def clear(self) -> None:
        pass

    def exists(self, key: str) -> bool:
        return self.get(key) is not None

    def get_or_set(self, key: str, factory: Callable[[], Any], ttl: Optional[float] = None) -> Any:
        value = self.get(key)
        if value is not None:
            return value

        value = factory()
        self.set(key, value, ttl)
        return value

    @staticmethod
    def make_key(*args, **kwargs) -> str:
        """
        Build a cache key from arguments.

        Returns:
            md5 hex digest of the joined arguments
        """
        key_parts = [str(arg) for arg in args]
        key_parts.extend([f"{k}={v}" for k, v in sorted(kwargs.items())])
        key_string = ":".join(key_parts)
        return hashlib.md5(key_string.encode()).hexdigest()


class MemoryCache(BaseCache):
    """
    In-memory cache
    Dict-backed with TTL expiry and oldest-first eviction.
    """

    def __init__(
        self,
        ttl: Optional[float] = None,
        max_size: int = 1000,
        time_fn: Callable[[], float] = time.time,
    ):
        """
        Args:
            ttl: default expiry in seconds
            max_size: maximum number of entries
            time_fn: epoch-seconds source, injectable for tests
        """
        super().__init__(ttl)
        self.max_size = max_size
        self._time = time_fn
        self._cache: Dict[str, Dict[str, Any]] = {}
        self._lock = Lock()

    def _is_expired(self, entry: Dict[str, Any]) -> bool:
        expires_at = entry.get("expires_at")
        if expires_at is None:
            return False
        return self._time() > expires_at

    def _cleanup(self) -> None:
        expired_keys = [k for k, v in self._cache.items() if self._is_expired(v)]
        for key in expired_keys:
            del self._cache[key]

        # still over the limit: drop the oldest entries
        if len(self._cache) >= self.max_size:
            sorted_keys = sorted(self._cache.keys(), key=lambda k: self._cache[k]["created_at"])
            for key in sorted_keys[: len(self._cache) - self.max_size + 1]:
                del self._cache[key]

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None

            if self._is_expired(entry):
                del self._cache[key]
                return None

            return entry["value"]

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        with self._lock:
            self._cleanup()

            ttl = ttl or self.ttl
            now = self._time()
            self._cache[key] = {
                "value": value,
                "created_at": now,
                "expires_at": now + ttl if ttl else None,
            }

    def delete(self, key: str) -> None:
        with self._lock:
            self._cache.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def size(self) -> int:
        with self._lock:
            return len(self._cache)

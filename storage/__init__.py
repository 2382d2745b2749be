"""
Storage Module
Persisted state surface: request records and the candidate cache.
"""
from .cache import BaseCache, MemoryCache
from .request_store import InMemoryRequestStore, new_request_id

__all__ = [
    "BaseCache",
    "InMemoryRequestStore",
    "MemoryCache",
    "new_request_id",
]

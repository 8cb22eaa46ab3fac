"""In-process TTL cache for synthesized chat answers.

Shared by concurrent requests, so every access holds a single lock.
Expired entries are dropped lazily when they are read.
"""

import threading
import time
from typing import Generic, TypeVar

from config import settings

T = TypeVar("T")


def fingerprint(locale: str, message: str) -> str:
    """Cache key for a query: locale plus the lowercased, trimmed message."""
    return f"{locale}:{message.strip().lower()}"


class TTLCache(Generic[T]):
    def __init__(self, ttl_seconds: int | None = None, clock=time.monotonic):
        self._ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.CACHE_TTL_SECONDS
        self._clock = clock
        self._entries: dict[str, tuple[T, float]] = {}
        self._lock = threading.Lock()

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    def get(self, key: str) -> T | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() > expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: T) -> None:
        with self._lock:
            self._entries[key] = (value, self._clock() + self._ttl_seconds)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

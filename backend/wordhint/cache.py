"""In-memory key/value cache with time-to-live expiry."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable

from .models import CacheStats

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    value: Any
    stored_at: float  # epoch seconds
    ttl: float

    def is_valid(self, now: float) -> bool:
        return now - self.stored_at < self.ttl


class TTLCache:
    """String-keyed cache whose entries go stale *ttl_seconds* after being set.

    Staleness is checked lazily on read; stale entries stay in memory until
    sweep_expired() removes them. Every operation runs under one lock so the
    cache can be shared between the event loop and FastAPI's threadpool.
    """

    def __init__(
        self,
        ttl_seconds: float,
        clock: Callable[[], float] = time.time,
        name: str = "cache",
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        self.ttl_seconds = ttl_seconds
        self.name = name
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or not entry.is_valid(self._clock()):
                return None
            return entry.value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store *value*, replacing any previous entry. *ttl* overrides the default."""
        with self._lock:
            self._entries[key] = CacheEntry(
                value=value,
                stored_at=self._clock(),
                ttl=self.ttl_seconds if ttl is None else ttl,
            )

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.info("[cache] %s cleared.", self.name)

    def sweep_expired(self) -> int:
        """Drop every stale entry and return how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if not e.is_valid(now)]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.info("[cache] %s: swept %d expired entries.", self.name, len(expired))
        return len(expired)

    def stats(self) -> CacheStats:
        with self._lock:
            now = self._clock()
            valid = sum(1 for e in self._entries.values() if e.is_valid(now))
            total = len(self._entries)
        return CacheStats(total=total, expired=total - valid, valid=valid)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

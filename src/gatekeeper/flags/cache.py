"""Short-lived in-memory cache of feature flag definitions."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

    from .models import FeatureFlag


@dataclass(frozen=True)
class CacheStats:
    """Snapshot of cache usage counters."""

    size: int
    hits: int
    misses: int

    @property
    def hit_rate(self) -> float:
        """Percentage of lookups served from the cache."""
        lookups = self.hits + self.misses
        return 100.0 * self.hits / lookups if lookups else 0.0


class FlagCache:
    """TTL cache keyed by flag name.

    Entries are immutable flags stored together with their expiry time, and
    every access to the map happens under one lock, so a reader sees either a
    whole old entry or a whole new one.
    """

    DEFAULT_TTL_SECONDS = 30.0

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Create an empty cache.

        :param ttl_seconds: How long an entry stays fresh
        :param clock: Monotonic time source in seconds, injectable for tests
        """
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[FeatureFlag, float]] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, name: str) -> FeatureFlag | None:
        """Return a fresh cached flag, or None on a miss or expiry."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(name)
            if entry is not None:
                flag, expires_at = entry
                if now < expires_at:
                    self._hits += 1
                    return flag
                del self._entries[name]
            self._misses += 1
            return None

    def put(self, flag: FeatureFlag) -> None:
        """Cache a flag for one TTL."""
        expires_at = self._clock() + self.ttl_seconds
        with self._lock:
            self._entries[flag.name] = (flag, expires_at)

    def invalidate(self, name: str) -> None:
        """Drop one flag from the cache."""
        with self._lock:
            self._entries.pop(name, None)

    def clear(self) -> None:
        """Drop every cached flag."""
        with self._lock:
            self._entries.clear()

    def stats(self) -> CacheStats:
        """Current size and hit/miss counters."""
        with self._lock:
            return CacheStats(
                size=len(self._entries),
                hits=self._hits,
                misses=self._misses,
            )

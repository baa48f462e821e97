"""
TTL cache with an injectable clock.

Entries expire `ttl_seconds` after they were written. `get_or_load` fills
a miss from a durable fallback (database, remote API) and caches the result;
`None` results are not cached.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, Hashable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    value: T
    expires_at: float


class TTLCache(Generic[T]):
    """In-memory cache whose entries expire after a fixed TTL."""

    def __init__(
        self,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        name: str = "cache",
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        self.ttl_seconds = ttl_seconds
        self.name = name
        self._clock = clock
        self._entries: Dict[Hashable, CacheEntry[T]] = {}

    def get(self, key: Hashable) -> Optional[T]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            del self._entries[key]
            return None
        return entry.value

    def set(self, key: Hashable, value: T, ttl_seconds: Optional[float] = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + ttl)

    async def get_or_load(
        self,
        key: Hashable,
        loader: Callable[[], Awaitable[Optional[T]]],
    ) -> Optional[T]:
        """Return the cached value, or load, cache and return it on a miss."""
        cached = self.get(key)
        if cached is not None:
            return cached

        logger.debug(f"{self.name}: miss for {key!r}, loading")
        value = await loader()
        if value is not None:
            self.set(key, value)
        return value

    def invalidate(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def invalidate_prefix(self, prefix: str) -> int:
        """Drop every string key starting with `prefix`; returns the count."""
        keys = [key for key in self._entries if isinstance(key, str) and key.startswith(prefix)]
        for key in keys:
            del self._entries[key]
        return len(keys)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        now = self._clock()
        return sum(1 for entry in self._entries.values() if entry.expires_at > now)

    def stats(self) -> Dict[str, Any]:
        return {"name": self.name, "size": len(self), "ttl_seconds": self.ttl_seconds}

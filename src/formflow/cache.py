"""Result cache with TTL expiry and LRU eviction.

Stores API call results for later inspection under ``api_result:{action_id}``.
Nothing blocks on these entries; they simply disappear after their TTL.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


def api_result_key(action_id: str) -> str:
    """Cache key for the result of an api_call action."""
    return f"api_result:{action_id}"


class ResultCache:
    """In-memory cache with per-entry expiry and LRU eviction.

    Example:
        ```python
        cache = ResultCache(ttl_seconds=3600, max_size=1000)
        cache.set(api_result_key("act_123"), {"success": True})
        cache.get(api_result_key("act_123"))  # {"success": True}
        ```
    """

    def __init__(
        self,
        ttl_seconds: float = 3600,
        max_size: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the cache.

        Args:
            ttl_seconds: Default lifetime of an entry.
            max_size: Maximum number of entries. Set to 0 to disable caching.
            clock: Monotonic time source, injectable for tests.
        """
        self._ttl = ttl_seconds
        self._max_size = max_size
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, Any]] = OrderedDict()
        self._hits = 0
        self._misses = 0

    def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        if self._max_size == 0:
            return

        expires_at = self._clock() + (self._ttl if ttl_seconds is None else ttl_seconds)
        if key in self._entries:
            self._entries.move_to_end(key)
        elif len(self._entries) >= self._max_size:
            self._purge_expired()
            if len(self._entries) >= self._max_size:
                evicted_key, _ = self._entries.popitem(last=False)
                logger.debug("Evicted LRU result cache entry %s", evicted_key)
        self._entries[key] = (expires_at, value)

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return default

        expires_at, value = entry
        if expires_at <= self._clock():
            del self._entries[key]
            self._misses += 1
            return default

        self._hits += 1
        self._entries.move_to_end(key)
        return value

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()
        self._hits = 0
        self._misses = 0

    def _purge_expired(self) -> None:
        now = self._clock()
        for key in [k for k, (expires_at, _) in self._entries.items() if expires_at <= now]:
            del self._entries[key]

    def __len__(self) -> int:
        self._purge_expired()
        return len(self._entries)

    @property
    def hit_rate(self) -> float:
        """Cache hit rate (0.0 to 1.0)."""
        total = self._hits + self._misses
        return self._hits / total if total > 0 else 0.0

    def stats(self) -> dict[str, int | float]:
        return {
            "size": len(self),
            "max_size": self._max_size,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": self.hit_rate,
        }


__all__ = ["ResultCache", "api_result_key"]

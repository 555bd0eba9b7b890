"""
In-process caches shared by every repository.

Two instances live side by side:

- ``ObjectCache`` holds individual documents (5 minute TTL, 1000 entries).
- ``QueryCache`` holds derived or aggregate results such as leaderboards
  (2 minute TTL, 500 entries) and is cleared by collection prefix whenever a
  write could change those results.

Keys are namespaced as ``"<collection>:<...>"``. Both caches evict the single
oldest inserted entry when a new key arrives at capacity. No locking is done:
mutations never await, so the event loop cannot interleave them.
"""

from __future__ import annotations

import json
import time
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from rolereactor.util.logger import get_logger

logger = get_logger("database_cache")

Clock = Callable[[], float]

_MISSING = object()


class ObjectCache:
    """
    TTL cache with a hard entry cap.

    Entries are kept in insertion order. Setting an existing key replaces the
    value, refreshes its timestamp and moves it to the back of the queue.

    Args:
        ttl_seconds: Age after which an entry is treated as absent.
        max_size: Entry cap. Inserting a new key at the cap evicts exactly one entry.
        clock: Monotonic time source, injectable for tests.
    """

    log_prefix = "[CACHE]"

    def __init__(self, ttl_seconds: float = 300.0, max_size: int = 1000, clock: Clock = time.monotonic) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._entries: "OrderedDict[str, Tuple[float, Any]]" = OrderedDict()
        self._ttl_seconds = ttl_seconds
        self._max_size = max_size
        self._clock = clock
        self._hits = 0
        self._misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self._lookup(key) is not _MISSING

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds

    @property
    def max_size(self) -> int:
        return self._max_size

    def _is_expired(self, inserted_at: float) -> bool:
        return self._clock() - inserted_at > self._ttl_seconds

    def _lookup(self, key: str) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return _MISSING
        inserted_at, value = entry
        if self._is_expired(inserted_at):
            del self._entries[key]
            logger.debug("%s Expired key: %s", self.log_prefix, key)
            return _MISSING
        return value

    def get(self, key: str, default: Any = None) -> Any:
        """Return the cached value, or ``default`` when absent or stale."""
        value = self._lookup(key)
        if value is _MISSING:
            self._misses += 1
            logger.debug("%s Miss for key: %s", self.log_prefix, key)
            return default
        self._hits += 1
        logger.debug("%s Hit for key: %s", self.log_prefix, key)
        return value

    def set(self, key: str, value: Any) -> None:
        """Insert or replace ``key``, evicting the oldest entry if a new key would exceed the cap."""
        if key in self._entries:
            self._entries.move_to_end(key)
        elif len(self._entries) >= self._max_size:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("%s Evicted oldest key: %s", self.log_prefix, evicted)
        self._entries[key] = (self._clock(), value)
        logger.debug("%s Set key: %s", self.log_prefix, key)

    def delete(self, key: str) -> bool:
        """Drop ``key``. Returns True if something was removed."""
        return self._entries.pop(key, None) is not None

    def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        logger.debug("%s Cleared all %d entries", self.log_prefix, count)
        return count

    def invalidate_prefix(self, prefix: str) -> int:
        """Remove every key starting with ``prefix`` and return how many went."""
        doomed = [key for key in self._entries if key.startswith(prefix)]
        for key in doomed:
            del self._entries[key]
        if doomed:
            logger.debug("%s Cleared %d entries matching '%s*'", self.log_prefix, len(doomed), prefix)
        return len(doomed)

    def cleanup(self) -> int:
        """Sweep out every expired entry. Returns the number removed."""
        expired = [key for key, (inserted_at, _) in self._entries.items() if self._is_expired(inserted_at)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("%s Cleanup removed %d expired entries", self.log_prefix, len(expired))
        return len(expired)

    def stats(self) -> Dict[str, Any]:
        return {
            "size": len(self._entries),
            "max_size": self._max_size,
            "ttl_seconds": self._ttl_seconds,
            "hits": self._hits,
            "misses": self._misses,
        }


class QueryCache(ObjectCache):
    """
    Short-lived cache for aggregate reads.

    Separate from the object cache because it is cleared wholesale per
    collection instead of per document.
    """

    log_prefix = "[QUERY CACHE]"

    def __init__(self, ttl_seconds: float = 120.0, max_size: int = 500, clock: Clock = time.monotonic) -> None:
        super().__init__(ttl_seconds=ttl_seconds, max_size=max_size, clock=clock)

    def invalidate_collection(self, collection: str) -> int:
        """Remove every key of the form ``"<collection>:*"`` and nothing else."""
        return self.invalidate_prefix(f"{collection}:")

    async def get_or_load(self, key: str, loader: Callable[[], Awaitable[Any]]) -> Any:
        """Return the cached result for ``key`` or await ``loader`` and cache what it returns."""
        cached = self._lookup(key)
        if cached is not _MISSING:
            self._hits += 1
            logger.debug("%s Hit for key: %s", self.log_prefix, key)
            return cached
        self._misses += 1
        result = await loader()
        self.set(key, result)
        return result


def make_query_key(collection: str, operation: str, **params: Any) -> str:
    """Build a stable query-cache key, e.g. ``user_experience:leaderboard:{"guild_id": "1", "limit": 10}``."""
    if not params:
        return f"{collection}:{operation}"
    serialized = json.dumps(params, sort_keys=True, default=str)
    return f"{collection}:{operation}:{serialized}"


def make_key(collection: str, *parts: Optional[Any]) -> str:
    """Object-cache key for one document, e.g. ``welcome_settings:123``."""
    return ":".join([collection, *(str(part) for part in parts)])

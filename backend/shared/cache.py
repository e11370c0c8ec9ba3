"""In-process TTL cache for rarely-changing rows.

Uses cachetools.TTLCache; each repository module owns its cache instances.
Only lookups that tolerate a short delay after a write from another process
belong here. Due-birthday queries are never cached.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from cachetools import TTLCache  # type: ignore[import-untyped]

logger = logging.getLogger(__name__)

# Sentinel object to distinguish "not in cache" from cached None values
_MISSING = object()


class AsyncTTLCache:
    """TTL cache with per-key load locks.

    Concurrent misses on the same key share one load instead of each
    hitting the database.
    """

    def __init__(self, maxsize: int = 128, ttl: float = 60.0):
        self._maxsize = maxsize
        self._cache: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl)
        self._locks: dict[str, asyncio.Lock] = {}

    def _get_lock(self, key: str) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
            if len(self._locks) > self._maxsize * 2:
                for k in list(self._locks):
                    if k not in self._cache and not self._locks[k].locked():
                        del self._locks[k]
        return self._locks[key]

    def get(self, key: str) -> Any:
        """Return cached value or ``_MISSING``."""
        return self._cache.get(key, _MISSING)

    def set(self, key: str, value: Any) -> None:
        self._cache[key] = value

    def invalidate(self, key: str) -> None:
        self._cache.pop(key, None)

    def clear(self) -> None:
        self._cache.clear()
        self._locks.clear()

    async def get_or_load(
        self,
        key: str,
        loader: Callable[[], Awaitable[Any]],
        *,
        cache_none: bool = False,
    ) -> Any:
        """Return the cached value for *key*, loading it on a miss.

        ``None`` results are not cached unless *cache_none* is set, so a row
        created right after a miss is picked up on the next call.
        Loader errors propagate and leave the cache untouched.
        """
        result = self.get(key)
        if result is not _MISSING:
            return result

        async with self._get_lock(key):
            result = self.get(key)
            if result is not _MISSING:
                return result

            result = await loader()
            if result is not None or cache_none:
                self.set(key, result)
            else:
                logger.debug(f"Not caching empty result for {key}")
            return result

    @property
    def size(self) -> int:
        return len(self._cache)

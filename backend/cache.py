"""Geo cache: in-memory memoization of discovery and geocode lookups.

Keys are either a quantized coordinate or a normalized query string. Entries
live for the lifetime of the cache instance (no TTL, no eviction). Failed
lookups are never stored, and callers decide per value whether it is worth
keeping, so a transient provider hiccup does not poison a location.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable

import config
from geo import quantize

logger = logging.getLogger(__name__)


class GeoCache:
    def __init__(self, precision: int = config.CACHE_PRECISION):
        self.precision = precision
        self._entries: dict[str, Any] = {}
        # key -> lookup task shared by every caller waiting on the same miss
        self._inflight: dict[str, asyncio.Task] = {}
        self.hits = 0
        self.misses = 0

    # ---- keys ----

    def coordinate_key(self, kind: str, lat: float, lng: float) -> str:
        qlat, qlng = quantize(lat, lng, self.precision)
        return f"{kind}:{qlat:.{self.precision}f}:{qlng:.{self.precision}f}"

    @staticmethod
    def query_key(kind: str, text: str) -> str:
        return f"{kind}:{' '.join(text.split()).lower()}"

    # ---- storage ----

    def get(self, key: str) -> Any | None:
        return self._entries.get(key)

    def put(self, key: str, value: Any) -> None:
        self._entries[key] = value

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> dict:
        return {"entries": len(self._entries), "hits": self.hits, "misses": self.misses}

    async def get_or_fetch(
        self,
        key: str,
        fetch: Callable[[], Awaitable[Any]],
        cacheable: Callable[[Any], bool] = lambda value: value is not None,
    ) -> Any:
        """Return the cached value for key, calling fetch() at most once per miss.

        Concurrent callers missing on the same key share one external call,
        which runs as its own task: a cancelled caller stops waiting but the
        lookup carries on for everyone else. If fetch() raises, every waiter
        sees the exception and nothing is stored.
        """
        if key in self:
            self.hits += 1
            logger.debug("Cache hit %s", key)
            return self._entries[key]

        task = self._inflight.get(key)
        if task is not None:
            self.hits += 1
            logger.debug("Joining in-flight lookup %s", key)
            return await asyncio.shield(task)

        self.misses += 1
        task = asyncio.get_running_loop().create_task(self._fetch(key, fetch, cacheable))
        self._inflight[key] = task
        task.add_done_callback(_observe)
        return await asyncio.shield(task)

    async def _fetch(self, key: str, fetch: Callable[[], Awaitable[Any]], cacheable: Callable[[Any], bool]) -> Any:
        try:
            value = await fetch()
        finally:
            self._inflight.pop(key, None)
        if cacheable(value):
            self._entries[key] = value
        else:
            logger.info("Not caching empty result for %s", key)
        return value


def _observe(task: asyncio.Task) -> None:
    # Retrieve the outcome so a lookup nobody waits on any more does not warn.
    if not task.cancelled():
        task.exception()

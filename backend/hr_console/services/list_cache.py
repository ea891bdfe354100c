"""In-memory cache of authoritative entity lists (employees, companies, ...).

Adapters invalidate and refetch their entry after a committed import.
"""
import logging
from collections.abc import Awaitable, Callable
from threading import Lock
from typing import Any

from cachetools import TTLCache

from hr_console.core.config import settings

logger = logging.getLogger(__name__)

Loader = Callable[[], Awaitable[list[dict[str, Any]]]]


class ListCache:
    def __init__(self, ttl_seconds: int | None = None, max_items: int | None = None):
        self._cache: TTLCache = TTLCache(
            maxsize=max_items or settings.LIST_CACHE_MAX_ITEMS,
            ttl=ttl_seconds or settings.LIST_CACHE_TTL_SECONDS,
        )
        self._lock = Lock()

    def get(self, key: str) -> list[dict[str, Any]] | None:
        with self._lock:
            return self._cache.get(key)

    def put(self, key: str, records: list[dict[str, Any]]) -> None:
        with self._lock:
            self._cache[key] = records

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._cache.pop(key, None)

    async def get_or_load(self, key: str, loader: Loader) -> list[dict[str, Any]]:
        cached = self.get(key)
        if cached is not None:
            return cached
        records = await loader()
        self.put(key, records)
        return records

    async def refresh(self, key: str, loader: Loader) -> list[dict[str, Any]]:
        self.invalidate(key)
        records = await loader()
        self.put(key, records)
        logger.info("Refreshed list cache %s (%d records)", key, len(records))
        return records


_list_cache: ListCache | None = None


def get_list_cache() -> ListCache:
    global _list_cache
    if _list_cache is None:
        _list_cache = ListCache()
    return _list_cache

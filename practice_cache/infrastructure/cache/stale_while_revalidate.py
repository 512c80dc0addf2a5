"""
Stale-While-Revalidate Cache

Two entries per logical key:
    <key>:fresh   short TTL, the value callers normally see
    <key>:stale   long TTL (24h by default), served while a refresh runs

State machine:
    fresh hit  -> return it; refresh in the background if less than
                  CACHE_SWR_REFRESH_RATIO of the fresh TTL remains
    stale hit  -> return it; refresh in the background
    full miss  -> fetch, write both entries, return

Callers only wait on the fetcher when no copy exists at all.

Author: Platform Team
Date: 2025-11-18
"""

import asyncio
from typing import Any

from practice_cache.core.config.constants import SWR_FRESH_SUFFIX, SWR_STALE_SUFFIX, Stage
from practice_cache.core.config.settings import Settings, get_settings
from practice_cache.core.logging.logger import get_logger, log_stage, truncate_key
from practice_cache.infrastructure.cache.cache_manager import (
    CacheManager,
    Fetcher,
    call_fetcher,
    get_cache_manager,
)

logger = get_logger(__name__)


def fresh_key(key: str) -> str:
    return f"{key}:{SWR_FRESH_SUFFIX}"


def stale_key(key: str) -> str:
    return f"{key}:{SWR_STALE_SUFFIX}"


class StaleWhileRevalidateCache:
    """
    Serves possibly-stale data without blocking on the fetcher.

    Background refreshes are deduplicated per key: while one refresh for
    a key is running, further hits do not start another.

    Usage:
        swr = StaleWhileRevalidateCache(get_cache_manager())
        stats = await swr.get("dashboard:clinic-1", load_dashboard, ttl=60)
    """

    def __init__(self, cache: CacheManager | None = None, settings: Settings | None = None):
        settings = settings or get_settings()
        self._cache = cache or get_cache_manager()
        self._stale_ttl = settings.cache.CACHE_STALE_TTL
        self._refresh_ratio = settings.cache.CACHE_SWR_REFRESH_RATIO
        self._refreshing: dict[str, asyncio.Task] = {}

    async def get(
        self,
        key: str,
        fetcher: Fetcher,
        ttl: int,
        stale_ttl: int | None = None,
    ) -> Any:
        """
        Return the freshest available value for ``key``.

        STAGE-CACHE.SWR: Stale-while-revalidate lookup

        Args:
            key: Logical cache key (suffixes are added internally)
            fetcher: Zero-argument callable, sync or async
            ttl: Fresh TTL in seconds
            stale_ttl: Stale TTL in seconds (default CACHE_STALE_TTL)

        Raises:
            Whatever ``fetcher`` raises on a full miss
        """
        stale_ttl = stale_ttl or self._stale_ttl

        value = await self._cache.get(fresh_key(key))
        if value is not None:
            remaining = await self._cache.ttl(fresh_key(key))
            if remaining is not None and 0 <= remaining < ttl * self._refresh_ratio:
                log_stage(logger, Stage.CACHE_SWR, "Fresh entry near expiry, refreshing",
                          level="debug", cache_key=truncate_key(key), remaining=remaining)
                self._schedule_refresh(key, fetcher, ttl, stale_ttl)
            return value

        value = await self._cache.get(stale_key(key))
        if value is not None:
            log_stage(logger, Stage.CACHE_SWR, "Serving stale entry", level="debug", cache_key=truncate_key(key))
            self._schedule_refresh(key, fetcher, ttl, stale_ttl)
            return value

        value = await call_fetcher(fetcher)
        await self._write(key, value, ttl, stale_ttl)
        return value

    async def invalidate(self, key: str) -> int:
        """Drop both copies of ``key``."""
        return await self._cache.delete_many([fresh_key(key), stale_key(key)])

    def refreshing(self, key: str) -> bool:
        return key in self._refreshing

    async def drain(self) -> None:
        """Wait for every background refresh scheduled so far."""
        while self._refreshing:
            await asyncio.gather(*list(self._refreshing.values()), return_exceptions=True)

    def _schedule_refresh(self, key: str, fetcher: Fetcher, ttl: int, stale_ttl: int) -> None:
        if key in self._refreshing:
            return
        task = asyncio.create_task(self._refresh(key, fetcher, ttl, stale_ttl))
        self._refreshing[key] = task

    async def _refresh(self, key: str, fetcher: Fetcher, ttl: int, stale_ttl: int) -> None:
        try:
            value = await call_fetcher(fetcher)
            await self._write(key, value, ttl, stale_ttl)
        except Exception as e:
            # The caller already has a value; the stale copy stays in place
            logger.warning(
                "Background refresh failed",
                stage=Stage.CACHE_SWR.value,
                cache_key=truncate_key(key),
                error=str(e),
                error_type=type(e).__name__,
            )
        finally:
            self._refreshing.pop(key, None)

    async def _write(self, key: str, value: Any, ttl: int, stale_ttl: int) -> None:
        await asyncio.gather(
            self._cache.set(fresh_key(key), value, ttl),
            self._cache.set(stale_key(key), value, stale_ttl),
        )

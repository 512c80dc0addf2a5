#!/usr/bin/env python3
"""
Cache Façade

Architecture:
    CacheManager (Public API)
        ├── RedisClient (KV adapter, raw strings)
        ├── serialization (Date-aware JSON encoding)
        ├── StampedeGuard (single-flight fetches per key)
        ├── PatternInvalidator (SCAN + batched DEL)
        └── CacheObserver (stats, logging, prometheus)

Guarantees:
    - get/set/delete never raise; failures become miss / False / 0
    - get_or_set runs the fetcher at most once per key per process at a time
    - fetcher exceptions propagate to every waiting caller

The stampede guard is process-local: N processes missing the same key
concurrently run the fetcher N times, once each.

Author: Platform Team
Date: 2025-11-18
"""

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from typing import Any, Literal, TypeVar

from practice_cache.core.config.constants import REDIS_KEY_CACHE_VERSION, Stage
from practice_cache.core.config.settings import Settings, get_settings
from practice_cache.core.exceptions import CacheError, CacheSerializationError
from practice_cache.core.logging.logger import get_logger, log_stage, truncate_key
from practice_cache.infrastructure.cache import serialization
from practice_cache.infrastructure.cache.redis_client import RedisClient, get_redis_client
from practice_cache.infrastructure.monitoring.metrics_collector import get_metrics_collector

logger = get_logger(__name__)

T = TypeVar("T")

Fetcher = Callable[[], Awaitable[T] | T]

VERSION_TTL = 86400


async def call_fetcher(fetcher: Fetcher) -> Any:
    """Invoke a sync or async fetcher."""
    result = fetcher()
    if inspect.isawaitable(result):
        result = await result
    return result


# =============================================================================
# LAYER 1: STAMPEDE GUARD
# Process-local map of in-flight fetches
# =============================================================================


class StampedeGuard:
    """
    Deduplicates concurrent fetches for the same key.

    STAGE-CACHE.FETCH: Single-flight execution

    The first caller registers a task for the key before the fetch starts;
    later callers await that task. The entry is removed once the task
    settles, success or failure. Waiters are shielded, so cancelling one
    caller never cancels the shared fetch.
    """

    def __init__(self):
        self._pending: dict[str, asyncio.Task] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._pending

    def __len__(self) -> int:
        return len(self._pending)

    async def run(self, key: str, factory: Callable[[], Awaitable[T]]) -> tuple[T, bool]:
        """
        Run ``factory`` once for ``key``, or join the run already in flight.

        Returns:
            (result, joined) where joined is True for callers that did not
            start the fetch
        """
        task = self._pending.get(key)
        if task is not None:
            return await asyncio.shield(task), True

        task = asyncio.ensure_future(self._execute(key, factory))
        task.add_done_callback(_retrieve_exception)
        self._pending[key] = task
        return await asyncio.shield(task), False

    async def _execute(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        try:
            return await factory()
        finally:
            if self._pending.get(key) is asyncio.current_task():
                del self._pending[key]


def _retrieve_exception(task: asyncio.Task) -> None:
    # Mark the exception as retrieved when every waiter was cancelled
    if not task.cancelled():
        task.exception()


# =============================================================================
# LAYER 2: PATTERN INVALIDATION
# Cursor-based enumeration instead of a blocking KEYS call
# =============================================================================


class PatternInvalidator:
    """
    Deletes every key matching a glob pattern.

    STAGE-CACHE.INVALIDATE: Pattern delete

    Algorithm:
        cursor = 0
        loop:
            cursor, keys = SCAN cursor MATCH pattern COUNT batch
            DEL keys (one command per batch)
        until cursor == 0

    Not transactional: on the first failed step the keys deleted so far
    are reported and the rest are left in place.
    """

    def __init__(self, redis_client: RedisClient, batch_size: int):
        self._redis = redis_client
        self._batch_size = batch_size

    async def delete_by_pattern(self, pattern: str) -> int:
        executor = self._redis.get_executor()
        if executor is None:
            return 0

        deleted = 0
        cursor = 0
        try:
            while True:
                cursor, keys = await executor.scan(cursor, pattern, self._batch_size)
                if keys:
                    deleted += await executor.delete(*keys)
                if cursor == 0:
                    break
        except CacheError as e:
            logger.error(
                "Pattern delete interrupted",
                stage=Stage.CACHE_INVALIDATE.value,
                pattern=pattern,
                deleted=deleted,
                error=e.message,
            )
            return deleted

        log_stage(logger, Stage.CACHE_INVALIDATE, "Pattern deleted", level="debug", pattern=pattern, deleted=deleted)
        return deleted


# =============================================================================
# LAYER 3: OBSERVABILITY
# =============================================================================

CacheResult = Literal["hit", "miss", "error"]
WriteResult = Literal["stored", "skipped", "failed"]


class CacheObserver:
    """
    Tracks façade statistics and mirrors them to prometheus.

    Metrics Tracked:
    - hits, misses, read errors
    - stored, skipped (oversized or unserializable) and failed writes
    - stampede joins
    """

    def __init__(self):
        self._metrics = get_metrics_collector()
        self._hits = 0
        self._misses = 0
        self._read_errors = 0
        self._sets = 0
        self._skipped = 0
        self._failed_sets = 0
        self._joins = 0

    def record_get(self, key: str, result: CacheResult) -> None:
        if result == "hit":
            self._hits += 1
            log_stage(logger, Stage.CACHE_GET, "Cache hit", level="debug", cache_key=truncate_key(key))
        elif result == "miss":
            self._misses += 1
            log_stage(logger, Stage.CACHE_GET, "Cache miss", level="debug", cache_key=truncate_key(key))
        else:
            self._read_errors += 1
        self._metrics.record_cache_operation("get", result)

    def record_set(self, key: str, result: WriteResult) -> None:
        if result == "stored":
            self._sets += 1
            log_stage(logger, Stage.CACHE_SET, "Cache set", level="debug", cache_key=truncate_key(key))
        elif result == "skipped":
            self._skipped += 1
        else:
            self._failed_sets += 1
        self._metrics.record_cache_operation("set", result)

    def record_join(self, key: str) -> None:
        self._joins += 1
        log_stage(logger, Stage.CACHE_FETCH, "Joined in-flight fetch", level="debug", cache_key=truncate_key(key))
        self._metrics.record_stampede_join()

    def record_invalidation(self, pattern: str, deleted: int) -> None:
        self._metrics.record_invalidated_keys(deleted)

    def get_stats(self) -> dict[str, Any]:
        total = self._hits + self._misses
        return {
            "hits": self._hits,
            "misses": self._misses,
            "read_errors": self._read_errors,
            "sets": self._sets,
            "skipped_sets": self._skipped,
            "failed_sets": self._failed_sets,
            "stampede_joins": self._joins,
            "hit_rate": round(self._hits / total, 3) if total > 0 else 0.0,
        }


# =============================================================================
# LAYER 4: PUBLIC API
# =============================================================================


class CacheManager:
    """
    Read-through cache over the key-value store.

    Usage:
        cache = get_cache_manager()

        patient = await cache.get_or_set(
            "patient:clinic-1:patient-9",
            lambda: repository.load_patient("patient-9"),
            ttl=CacheTTL.MEDIUM,
        )
        await cache.delete_by_pattern("patient:clinic-1:*")

    Values go through the Date-aware serializer on both write and read,
    so datetimes come back as datetimes.
    """

    def __init__(self, redis_client: RedisClient | None = None, settings: Settings | None = None):
        """
        STAGE-CACHE.0: Cache manager initialization

        Args:
            redis_client: KV adapter (defaults to the global client)
            settings: Application settings (defaults to the global settings)
        """
        settings = settings or get_settings()
        self._redis = redis_client or get_redis_client()
        self._guard = StampedeGuard()
        self._invalidator = PatternInvalidator(self._redis, settings.cache.CACHE_SCAN_BATCH_SIZE)
        self._observer = CacheObserver()

        self._enabled = settings.cache.ENABLE_CACHING
        self._default_ttl = settings.cache.CACHE_DEFAULT_TTL
        self._max_value_bytes = settings.cache.CACHE_MAX_VALUE_BYTES
        self._version = 1

        logger.info(
            "Cache manager initialized",
            stage="CACHE.0",
            caching_enabled=self._enabled,
            kv_available=self._redis.is_available,
            max_value_bytes=self._max_value_bytes,
        )

    @property
    def redis(self) -> RedisClient:
        return self._redis

    @property
    def default_ttl(self) -> int:
        return self._default_ttl

    # -------------------------------------------------------------------------
    # Core Cache Operations
    # -------------------------------------------------------------------------

    async def get(self, key: str) -> Any | None:
        """
        Read and deserialize the value at ``key``.

        Returns:
            The cached value, or None on miss / unavailability / bad payload
        """
        if not self._enabled:
            return None

        raw = await self._redis.get(key)
        if raw is None:
            self._observer.record_get(key, "miss")
            return None

        try:
            value = serialization.decode(raw)
        except CacheSerializationError as e:
            logger.warning(
                "Discarding undecodable cache entry",
                stage=Stage.CACHE_GET.value,
                cache_key=truncate_key(key),
                error=e.message,
            )
            self._observer.record_get(key, "error")
            return None

        self._observer.record_get(key, "hit")
        return value

    async def set(self, key: str, value: Any, ttl: int | None = None) -> bool:
        """
        Serialize and store ``value`` with a TTL.

        Payloads larger than CACHE_MAX_VALUE_BYTES are not written.

        Returns:
            True only if the write took effect
        """
        if not self._enabled:
            return False

        try:
            payload = serialization.encode(value)
        except CacheSerializationError as e:
            logger.warning("Skipping unserializable value", stage=Stage.CACHE_SET.value,
                           cache_key=truncate_key(key), error=e.message)
            self._observer.record_set(key, "skipped")
            return False

        size = len(payload)
        if size > self._max_value_bytes:
            logger.warning(
                "Skipping oversized cache value",
                stage=Stage.CACHE_SET.value,
                cache_key=truncate_key(key),
                size_bytes=size,
                max_bytes=self._max_value_bytes,
            )
            self._observer.record_set(key, "skipped")
            return False

        stored = await self._redis.set(key, payload.decode("utf-8"), ttl=ttl or self._default_ttl)
        self._observer.record_set(key, "stored" if stored else "failed")
        return stored

    async def delete(self, key: str) -> bool:
        """Delete one key. Returns True if it existed."""
        return await self._redis.delete(key)

    async def delete_many(self, keys: list[str]) -> int:
        """Delete a batch of keys. An empty list issues no command."""
        if not keys:
            return 0
        return await self._redis.delete_many(keys)

    async def exists(self, key: str) -> bool:
        return await self._redis.exists(key)

    async def ttl(self, key: str) -> int | None:
        """Remaining lifetime of ``key`` in seconds (see RedisClient.ttl)."""
        return await self._redis.ttl(key)

    async def delete_by_pattern(self, pattern: str) -> int:
        """
        Delete every key matching a glob pattern.

        Returns:
            Number of keys deleted (partial count if interrupted)
        """
        deleted = await self._invalidator.delete_by_pattern(pattern)
        self._observer.record_invalidation(pattern, deleted)
        return deleted

    async def invalidate_pattern(self, pattern: str) -> None:
        """Mutation-path shorthand for ``delete_by_pattern``."""
        await self.delete_by_pattern(pattern)

    # -------------------------------------------------------------------------
    # Read-through
    # -------------------------------------------------------------------------

    async def get_or_set(self, key: str, fetcher: Fetcher, ttl: int | None = None) -> Any:
        """
        Return the cached value, or fetch, store and return it.

        STAGE-CACHE.FETCH: Cache-aside with single-flight

        Algorithm:
        1. get(key); a non-None value is returned as is
        2. If a fetch for key is already in flight, await it
        3. Otherwise run fetcher, store the result, return it

        Args:
            key: Cache key
            fetcher: Zero-argument callable, sync or async
            ttl: Time-to-live in seconds (default CACHE_DEFAULT_TTL)

        Raises:
            Whatever ``fetcher`` raises, re-raised to every waiter
        """
        cached = await self.get(key)
        if cached is not None:
            return cached

        async def fetch_and_store() -> Any:
            value = await call_fetcher(fetcher)
            await self.set(key, value, ttl)
            return value

        value, joined = await self._guard.run(key, fetch_and_store)
        if joined:
            self._observer.record_join(key)
        return value

    def pending_fetches(self) -> int:
        """Number of fetches currently in flight in this process."""
        return len(self._guard)

    # -------------------------------------------------------------------------
    # Versioned keys
    # -------------------------------------------------------------------------

    def versioned_key(self, base_key: str) -> str:
        """Append the current cache version: ``<base>:v<n>``."""
        return f"{base_key}:v{self._version}"

    async def bump_version(self) -> int:
        """
        Invalidate every versioned key at once by moving to a new version.

        The new version is published to the store so other processes can
        adopt it with ``sync_version``.
        """
        self._version += 1
        await self._redis.set(REDIS_KEY_CACHE_VERSION, str(self._version), ttl=VERSION_TTL)
        log_stage(logger, Stage.CACHE_VERSION, "Cache version bumped", version=self._version)
        return self._version

    async def sync_version(self) -> int:
        """Adopt the published version if it is newer than the local one."""
        raw = await self._redis.get(REDIS_KEY_CACHE_VERSION)
        if raw is not None:
            try:
                published = int(raw)
            except ValueError:
                logger.warning("Ignoring malformed cache version", stage=Stage.CACHE_VERSION.value, raw=raw)
                return self._version
            if published > self._version:
                self._version = published
        return self._version

    @property
    def version(self) -> int:
        return self._version

    # -------------------------------------------------------------------------
    # Monitoring
    # -------------------------------------------------------------------------

    def stats(self) -> dict[str, Any]:
        """
        Get cache statistics.

        Returns:
            Dict with hit rate, write outcomes and in-flight fetch count
        """
        return {
            **self._observer.get_stats(),
            "pending_fetches": len(self._guard),
            "enabled": self._enabled,
            "version": self._version,
        }

    async def health_check(self) -> dict[str, Any]:
        """Store health plus façade statistics; ``status`` mirrors the store."""
        kv = await self._redis.health_check()
        return {
            "status": kv["status"],
            "kv": kv,
            "cache": self.stats(),
        }


# =============================================================================
# GLOBAL INSTANCE (SINGLETON PATTERN)
# =============================================================================

_cache_manager: CacheManager | None = None


def get_cache_manager() -> CacheManager:
    """
    Get the global cache manager instance (singleton).

    Returns:
        CacheManager: Global cache manager instance
    """
    global _cache_manager

    if _cache_manager is None:
        _cache_manager = CacheManager()

    return _cache_manager


def init_cache(redis_client: RedisClient | None = None) -> CacheManager:
    """Build the global cache manager around a specific client."""
    global _cache_manager
    _cache_manager = CacheManager(redis_client=redis_client)
    return _cache_manager


def close_cache() -> None:
    """Drop the global cache manager."""
    global _cache_manager
    _cache_manager = None

"""
Key-Value Store Client Adapter

Architecture:
    RedisClient (Public API, never raises)
        ├── ConnectionManager (lazy connection from URL + token)
        ├── OperationExecutor (command execution, raises CacheKeyError)
        └── HealthMonitor (health checks)

Degradation:
    When KV_URL or KV_TOKEN is missing the client is "unavailable" and
    every public operation is a no-op returning None / False / 0. Transport
    errors are logged at the executor layer and converted to the same
    empty results at the public layer, so dependent components only ever
    see a cache miss.

Author: Platform Team
Date: 2025-11-18
"""

import time
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from practice_cache.core.config.constants import Stage
from practice_cache.core.config.settings import Settings, get_settings
from practice_cache.core.exceptions import CacheConnectionError, CacheError, CacheKeyError
from practice_cache.core.logging.logger import get_logger, truncate_key

logger = get_logger(__name__)

# Transport failures surface from redis-py either as RedisError or as raw socket errors
TRANSPORT_ERRORS = (RedisError, OSError)


# =============================================================================
# LAYER 1: CONNECTION MANAGEMENT
# Lazily builds the client from URL + token on first use
# =============================================================================


class ConnectionManager:
    """
    Manages the backing connection lifecycle.

    Responsibility: Build the client once per process, on first use.

    The connection is never eagerly verified: a store that is down at
    startup simply produces transport errors later, which the executor
    converts into cache misses.
    """

    def __init__(self, settings: Settings, client: redis.Redis | None = None):
        self._settings = settings
        self._client = client

    @property
    def is_configured(self) -> bool:
        return self._client is not None or self._settings.kv.configured

    def get_client(self) -> redis.Redis | None:
        """
        Return the client, constructing it on first call.

        STAGE-KV.1: Lazy connection

        Returns:
            Client instance, or None when credentials are missing
        """
        if self._client is not None:
            return self._client

        kv = self._settings.kv
        if not kv.configured:
            return None

        self._client = redis.from_url(
            kv.KV_URL,
            password=kv.KV_TOKEN,
            socket_timeout=kv.KV_SOCKET_TIMEOUT,
            socket_connect_timeout=kv.KV_SOCKET_CONNECT_TIMEOUT,
            health_check_interval=kv.KV_HEALTH_CHECK_INTERVAL,
            decode_responses=True,
        )

        logger.info("KV client created", stage=Stage.KV_INIT.value, url_scheme=kv.KV_URL.split(":", 1)[0])
        return self._client

    async def disconnect(self) -> None:
        """Close the client if one was created."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("KV client closed", stage=Stage.KV_INIT.value)


# =============================================================================
# LAYER 2: OPERATION EXECUTOR
# Executes commands with consistent error handling and logging
# =============================================================================


class OperationExecutor:
    """
    Executes store operations with consistent error handling.

    Error Handling Strategy:
    - Catch transport exceptions
    - Log error with context (stage, key)
    - Raise CacheKeyError with details

    Multi-step operations (pattern invalidation, sliding-window counters)
    use the executor directly so they can stop on the first failure.
    """

    def __init__(self, redis_client: redis.Redis):
        self._redis = redis_client

    async def get(self, key: str) -> str | None:
        """
        STAGE-KV.GET: GET operation
        """
        try:
            return await self._redis.get(key)
        except TRANSPORT_ERRORS as e:
            logger.warning("KV GET failed", stage=Stage.KV_GET.value, cache_key=truncate_key(key), error=str(e))
            raise CacheKeyError(message=f"KV GET failed: {e}", details={"key": key}) from e

    async def set(self, key: str, value: str | bytes, ttl: int | None = None, nx: bool = False) -> bool:
        """
        STAGE-KV.SET: SET operation

        Returns:
            True if the value was written (False when NX refused the write)
        """
        try:
            result = await self._redis.set(key, value, ex=ttl, nx=nx)
            return bool(result)
        except TRANSPORT_ERRORS as e:
            logger.error("KV SET failed", stage=Stage.KV_SET.value, cache_key=truncate_key(key), error=str(e))
            raise CacheKeyError(message=f"KV SET failed: {e}", details={"key": key}) from e

    async def delete(self, *keys: str) -> int:
        """
        STAGE-KV.DEL: DEL operation

        Returns:
            Number of keys deleted
        """
        try:
            return int(await self._redis.delete(*keys))
        except TRANSPORT_ERRORS as e:
            logger.error("KV DEL failed", stage=Stage.KV_DEL.value, key_count=len(keys), error=str(e))
            raise CacheKeyError(message=f"KV DEL failed: {e}", details={"key_count": len(keys)}) from e

    async def exists(self, key: str) -> bool:
        try:
            return int(await self._redis.exists(key)) > 0
        except TRANSPORT_ERRORS as e:
            logger.error("KV EXISTS failed", stage=Stage.KV_EXISTS.value, cache_key=truncate_key(key), error=str(e))
            raise CacheKeyError(message=f"KV EXISTS failed: {e}", details={"key": key}) from e

    async def ttl(self, key: str) -> int:
        """
        Returns:
            TTL in seconds, -1 if no TTL, -2 if key doesn't exist
        """
        try:
            return int(await self._redis.ttl(key))
        except TRANSPORT_ERRORS as e:
            logger.error("KV TTL failed", stage=Stage.KV_TTL.value, cache_key=truncate_key(key), error=str(e))
            raise CacheKeyError(message=f"KV TTL failed: {e}", details={"key": key}) from e

    async def expire(self, key: str, ttl: int) -> bool:
        try:
            return bool(await self._redis.expire(key, ttl))
        except TRANSPORT_ERRORS as e:
            logger.error("KV EXPIRE failed", stage=Stage.KV_TTL.value, cache_key=truncate_key(key), error=str(e))
            raise CacheKeyError(message=f"KV EXPIRE failed: {e}", details={"key": key}) from e

    async def scan(self, cursor: int, match: str, count: int) -> tuple[int, list[str]]:
        """
        STAGE-KV.SCAN: One step of cursor-based key enumeration.

        Returns:
            (next_cursor, keys) where next_cursor == 0 ends the iteration
        """
        try:
            next_cursor, keys = await self._redis.scan(cursor=cursor, match=match, count=count)
            return int(next_cursor), list(keys)
        except TRANSPORT_ERRORS as e:
            logger.error("KV SCAN failed", stage=Stage.KV_SCAN.value, pattern=match, cursor=cursor, error=str(e))
            raise CacheKeyError(message=f"KV SCAN failed: {e}", details={"pattern": match, "cursor": cursor}) from e

    async def execute_pipeline(
        self, commands: list[tuple[str, tuple, dict]], transaction: bool = True
    ) -> list[Any]:
        """
        Execute queued commands in a single round-trip.

        Args:
            commands: (command_name, args, kwargs) triples
            transaction: Wrap the batch in MULTI/EXEC

        Returns:
            One result per command, in order
        """
        try:
            async with self._redis.pipeline(transaction=transaction) as pipe:
                for command, args, kwargs in commands:
                    getattr(pipe, command)(*args, **kwargs)
                return await pipe.execute()
        except TRANSPORT_ERRORS as e:
            names = [command for command, _, _ in commands]
            logger.error("KV pipeline failed", stage=Stage.KV_SET.value, commands=names, error=str(e))
            raise CacheKeyError(message=f"KV pipeline failed: {e}", details={"commands": names}) from e

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except TRANSPORT_ERRORS as e:
            raise CacheConnectionError(message=f"KV PING failed: {e}") from e


# =============================================================================
# LAYER 3: HEALTH MONITORING
# =============================================================================


class HealthMonitor:
    """
    Reports availability and round-trip latency of the store.
    """

    def __init__(self, connection_manager: ConnectionManager):
        self._conn_mgr = connection_manager

    async def health_check(self) -> dict[str, Any]:
        """
        STAGE-KV.HEALTH: Health check

        Returns:
            Dict with status ("healthy" | "unhealthy" | "unavailable") and latency
        """
        health: dict[str, Any] = {
            "status": "healthy",
            "configured": self._conn_mgr.is_configured,
            "ping_latency_ms": None,
        }

        client = self._conn_mgr.get_client()
        if client is None:
            health["status"] = "unavailable"
            health["error"] = "KV_URL / KV_TOKEN not configured"
            return health

        try:
            start = time.perf_counter()
            await OperationExecutor(client).ping()
            health["ping_latency_ms"] = round((time.perf_counter() - start) * 1000, 2)
        except CacheConnectionError as e:
            health["status"] = "unhealthy"
            health["error"] = e.message

        return health


# =============================================================================
# LAYER 4: PUBLIC API
# Converts every failure into an empty result
# =============================================================================


class RedisClient:
    """
    Async key-value client with graceful degradation.

    Usage:
        client = RedisClient()
        await client.set("patient:c1:p1", payload, ttl=300)
        raw = await client.get("patient:c1:p1")

    Contract:
        get -> str | None          (retried with exponential backoff)
        set -> bool
        delete -> bool
        delete_many -> int
        exists -> bool
        ttl -> int | None
        scan -> (next_cursor, keys)
    """

    def __init__(self, settings: Settings | None = None, client: redis.Redis | None = None):
        """
        Initialize the client.

        Args:
            settings: Application settings (defaults to the global settings)
            client: Pre-built redis client (used by tests and embedding apps)
        """
        self._settings = settings or get_settings()
        self._conn_mgr = ConnectionManager(self._settings, client=client)
        self._health_monitor = HealthMonitor(self._conn_mgr)
        self._max_retries = self._settings.cache.CACHE_GET_MAX_RETRIES
        self._retry_base_delay = self._settings.cache.CACHE_RETRY_BASE_DELAY

        if not self._conn_mgr.is_configured:
            logger.warning(
                "KV store not configured, caching disabled",
                stage=Stage.KV_INIT.value,
            )

    @property
    def is_available(self) -> bool:
        """True when credentials (or an injected client) are present."""
        return self._conn_mgr.is_configured

    def get_executor(self) -> OperationExecutor | None:
        """
        Get the raising executor for multi-step operations.

        Returns:
            OperationExecutor or None if the store is unavailable
        """
        client = self._conn_mgr.get_client()
        if client is None:
            return None
        return OperationExecutor(client)

    async def get(self, key: str) -> str | None:
        """
        Read the raw value stored at ``key``.

        Retries transport errors ``CACHE_GET_MAX_RETRIES`` times, sleeping
        base * 2^attempt between attempts, then reports a miss.
        """
        executor = self.get_executor()
        if executor is None:
            return None

        @retry(
            stop=stop_after_attempt(self._max_retries),
            wait=wait_exponential(multiplier=self._retry_base_delay * 2),
            retry=retry_if_exception_type(CacheKeyError),
            before_sleep=lambda retry_state: logger.info(
                "Retrying KV GET",
                stage=Stage.KV_GET.value,
                cache_key=truncate_key(key),
                attempt=retry_state.attempt_number,
                delay=round(retry_state.next_action.sleep, 3),
            ),
            reraise=True,
        )
        async def _get_with_retry() -> str | None:
            return await executor.get(key)

        try:
            return await _get_with_retry()
        except CacheError as e:
            logger.error(
                "KV GET failed after retries, treating as miss",
                stage=Stage.KV_GET.value,
                cache_key=truncate_key(key),
                attempts=self._max_retries,
                error=e.message,
            )
            return None

    async def set(self, key: str, value: str | bytes, ttl: int | None = None, nx: bool = False) -> bool:
        """Write a raw value. Returns False when the write did not happen."""
        executor = self.get_executor()
        if executor is None:
            return False
        try:
            return await executor.set(key, value, ttl=ttl, nx=nx)
        except CacheError:
            return False

    async def delete(self, key: str) -> bool:
        executor = self.get_executor()
        if executor is None:
            return False
        try:
            return await executor.delete(key) > 0
        except CacheError:
            return False

    async def delete_many(self, keys: list[str]) -> int:
        """Delete a batch of keys in one command. An empty batch issues nothing."""
        if not keys:
            return 0
        executor = self.get_executor()
        if executor is None:
            return 0
        try:
            return await executor.delete(*keys)
        except CacheError:
            return 0

    async def exists(self, key: str) -> bool:
        executor = self.get_executor()
        if executor is None:
            return False
        try:
            return await executor.exists(key)
        except CacheError:
            return False

    async def ttl(self, key: str) -> int | None:
        """Remaining TTL in seconds (-1 no expiry, -2 missing), None on failure."""
        executor = self.get_executor()
        if executor is None:
            return None
        try:
            return await executor.ttl(key)
        except CacheError:
            return None

    async def scan(self, cursor: int, match: str, count: int) -> tuple[int, list[str]]:
        """One scan step. Returns (0, []) when unavailable or on failure."""
        executor = self.get_executor()
        if executor is None:
            return 0, []
        try:
            return await executor.scan(cursor, match, count)
        except CacheError:
            return 0, []

    async def ping(self) -> bool:
        executor = self.get_executor()
        if executor is None:
            return False
        try:
            return await executor.ping()
        except CacheError:
            return False

    async def health_check(self) -> dict[str, Any]:
        return await self._health_monitor.health_check()

    async def close(self) -> None:
        await self._conn_mgr.disconnect()


# =============================================================================
# GLOBAL INSTANCE (SINGLETON PATTERN)
# =============================================================================

_redis_client: RedisClient | None = None


def get_redis_client() -> RedisClient:
    """
    Get the global client instance (singleton).

    Returns:
        RedisClient: Global client instance
    """
    global _redis_client

    if _redis_client is None:
        _redis_client = RedisClient()

    return _redis_client


def set_redis_client(client: RedisClient | None) -> None:
    """Replace the global client (tests and embedding apps)."""
    global _redis_client
    _redis_client = client


async def close_redis() -> None:
    """Close the global client."""
    global _redis_client

    if _redis_client:
        await _redis_client.close()
        _redis_client = None

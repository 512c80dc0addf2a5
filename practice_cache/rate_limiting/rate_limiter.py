"""
Rate Limiter

Sliding-window rate limiting per client identifier and endpoint class.

Features:
- Six limiter classes with independent budgets (api, auth, upload,
  passwordReset, emailVerification, invitation)
- Distributed sliding window in the shared store (sorted set per window)
- In-memory moving window (limits) when the store is unavailable or errors
- Optional block period after a budget is exhausted
- Fail open: if both backends error, the request is allowed

The two backends never share state. A client's consumed points in one
backend are invisible to the other, so switching backend starts a fresh
window for that client.
"""

import math
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass

from fastapi import Request
from limits import RateLimitItemPerSecond
from limits.aio.storage import MemoryStorage
from limits.aio.strategies import MovingWindowRateLimiter
from slowapi.util import get_remote_address

from practice_cache.core.config.constants import (
    HEADER_FORWARDED_FOR,
    HEADER_REAL_IP,
    HEADER_USER_ID,
    LimiterClass,
    Stage,
)
from practice_cache.core.config.settings import Settings, get_settings
from practice_cache.core.exceptions import CacheConnectionError
from practice_cache.core.logging import get_logger
from practice_cache.infrastructure.cache.redis_client import RedisClient, get_redis_client
from practice_cache.infrastructure.monitoring.metrics_collector import get_metrics_collector

logger = get_logger(__name__)


@dataclass(frozen=True)
class RateLimitPolicy:
    """
    Budget for one limiter class.

    points: requests allowed per window
    duration: window length in seconds
    block_duration: seconds of denial after the budget is exhausted (0 = none)
    """

    points: int
    duration: int
    block_duration: int = 0


DEFAULT_POLICIES: dict[LimiterClass, RateLimitPolicy] = {
    LimiterClass.API: RateLimitPolicy(points=100, duration=60),
    LimiterClass.AUTH: RateLimitPolicy(points=10, duration=60),
    LimiterClass.UPLOAD: RateLimitPolicy(points=20, duration=60),
    LimiterClass.PASSWORD_RESET: RateLimitPolicy(points=3, duration=3600, block_duration=900),
    LimiterClass.EMAIL_VERIFICATION: RateLimitPolicy(points=5, duration=3600, block_duration=900),
    LimiterClass.INVITATION: RateLimitPolicy(points=25, duration=86400, block_duration=3600),
}


@dataclass(frozen=True)
class RateLimitResult:
    """
    Outcome of one rate-limit check.

    reset_time is a unix timestamp in seconds: when the window frees a
    slot (or the block ends, for a blocked client).
    """

    allowed: bool
    remaining: int
    limit: int
    reset_time: float
    backend: str = "redis"

    def retry_after(self, now: float | None = None) -> int:
        """Whole seconds until a retry can succeed, at least 1."""
        now = time.time() if now is None else now
        return max(1, math.ceil(self.reset_time - now))


# =============================================================================
# CLIENT IDENTIFICATION
# =============================================================================


def get_client_ip(request: Request) -> str:
    """First X-Forwarded-For hop > X-Real-IP > remote address."""
    forwarded = request.headers.get(HEADER_FORWARDED_FOR)
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop

    real_ip = request.headers.get(HEADER_REAL_IP)
    if real_ip and real_ip.strip():
        return real_ip.strip()

    return get_remote_address(request) or "unknown"


def get_client_identifier(request: Request) -> str:
    """
    Extract the rate-limit identifier from a request.

    Priority: X-User-ID header > client IP (see get_client_ip)
    """
    user_id = request.headers.get(HEADER_USER_ID)
    if user_id:
        return f"user:{user_id}"
    return f"ip:{get_client_ip(request)}"


# =============================================================================
# PRIMARY BACKEND: SHARED STORE
# =============================================================================


class RedisSlidingWindowBackend:
    """
    Sliding window over a sorted set of request timestamps.

    Algorithm (one MULTI/EXEC round-trip):
    1. ZREMRANGEBYSCORE drops timestamps older than the window
    2. ZADD records this request
    3. ZCARD counts requests in the window
    4. ZRANGE 0 0 reads the oldest timestamp (for the reset time)
    5. PEXPIRE lets idle windows disappear

    A denied request is removed again, so denials do not consume points.
    """

    name = "redis"

    def __init__(
        self,
        redis_client: RedisClient,
        key_prefix: str,
        clock: Callable[[], float] = time.time,
    ):
        self._redis = redis_client
        self._prefix = key_prefix
        self._clock = clock

    @property
    def available(self) -> bool:
        return self._redis.is_available

    def _window_key(self, limiter_class: str, identifier: str) -> str:
        return f"{self._prefix}:{limiter_class}:{identifier}"

    def _block_key(self, limiter_class: str, identifier: str) -> str:
        return f"{self._prefix}:block:{limiter_class}:{identifier}"

    def _executor(self):
        executor = self._redis.get_executor()
        if executor is None:
            raise CacheConnectionError("KV store not configured")
        return executor

    async def consume(self, identifier: str, limiter_class: str, policy: RateLimitPolicy) -> RateLimitResult:
        """
        Consume one point.

        Raises:
            CacheError: On any store failure (caller falls back)
        """
        executor = self._executor()
        now = self._clock()
        now_ms = int(now * 1000)
        window_ms = policy.duration * 1000
        key = self._window_key(limiter_class, identifier)

        if policy.block_duration:
            blocked_for = await executor.ttl(self._block_key(limiter_class, identifier))
            if blocked_for > 0:
                return RateLimitResult(False, 0, policy.points, now + blocked_for, self.name)

        member = f"{now_ms}-{uuid.uuid4().hex[:8]}"
        results = await executor.execute_pipeline([
            ("zremrangebyscore", (key, 0, now_ms - window_ms), {}),
            ("zadd", (key, {member: now_ms}), {}),
            ("zcard", (key,), {}),
            ("zrange", (key, 0, 0), {"withscores": True}),
            ("pexpire", (key, window_ms), {}),
        ])
        count = int(results[2])
        oldest = results[3]
        oldest_ms = float(oldest[0][1]) if oldest else float(now_ms)

        if count > policy.points:
            await executor.execute_pipeline([("zrem", (key, member), {})], transaction=False)
            if policy.block_duration:
                await executor.set(self._block_key(limiter_class, identifier), "1", ttl=policy.block_duration)
                return RateLimitResult(False, 0, policy.points, now + policy.block_duration, self.name)
            return RateLimitResult(False, 0, policy.points, (oldest_ms + window_ms) / 1000, self.name)

        return RateLimitResult(True, policy.points - count, policy.points, (oldest_ms + window_ms) / 1000, self.name)

    async def peek(self, identifier: str, limiter_class: str, policy: RateLimitPolicy) -> RateLimitResult:
        """Report the current window without consuming a point."""
        executor = self._executor()
        now = self._clock()
        now_ms = int(now * 1000)
        window_ms = policy.duration * 1000
        key = self._window_key(limiter_class, identifier)

        results = await executor.execute_pipeline([
            ("zremrangebyscore", (key, 0, now_ms - window_ms), {}),
            ("zcard", (key,), {}),
            ("zrange", (key, 0, 0), {"withscores": True}),
        ])
        count = int(results[1])
        reset = (float(results[2][0][1]) + window_ms) / 1000 if results[2] else now
        return RateLimitResult(count < policy.points, max(0, policy.points - count), policy.points, reset, self.name)


# =============================================================================
# FALLBACK BACKEND: IN-PROCESS
# =============================================================================


class MemoryFallbackBackend:
    """
    In-process moving window built on the ``limits`` library.

    Used whenever the shared store is unavailable or errors. State lives
    only in this process.
    """

    name = "memory"

    def __init__(self, clock: Callable[[], float] = time.time):
        self._storage = MemoryStorage()
        self._limiter = MovingWindowRateLimiter(self._storage)
        self._clock = clock
        self._blocked_until: dict[tuple[str, str], float] = {}

    async def consume(self, identifier: str, limiter_class: str, policy: RateLimitPolicy) -> RateLimitResult:
        now = self._clock()
        block_key = (limiter_class, identifier)

        blocked_until = self._blocked_until.get(block_key)
        if blocked_until is not None:
            if blocked_until > now:
                return RateLimitResult(False, 0, policy.points, blocked_until, self.name)
            del self._blocked_until[block_key]

        item = RateLimitItemPerSecond(policy.points, policy.duration)
        allowed = await self._limiter.hit(item, limiter_class, identifier)
        reset_time, remaining = await self._limiter.get_window_stats(item, limiter_class, identifier)

        if not allowed and policy.block_duration:
            self._blocked_until[block_key] = now + policy.block_duration
            return RateLimitResult(False, 0, policy.points, now + policy.block_duration, self.name)

        return RateLimitResult(allowed, max(0, remaining), policy.points, float(reset_time), self.name)

    async def peek(self, identifier: str, limiter_class: str, policy: RateLimitPolicy) -> RateLimitResult:
        item = RateLimitItemPerSecond(policy.points, policy.duration)
        reset_time, remaining = await self._limiter.get_window_stats(item, limiter_class, identifier)
        return RateLimitResult(remaining > 0, max(0, remaining), policy.points, float(reset_time), self.name)

    async def reset(self) -> None:
        await self._storage.reset()
        self._blocked_until.clear()


# =============================================================================
# PUBLIC API
# =============================================================================


class RateLimiter:
    """
    Per-class rate limiting with a distributed primary and in-memory fallback.

    Usage:
        limiter = get_rate_limiter()
        result = await limiter.check_rate_limit("ip:203.0.113.7", LimiterClass.AUTH)
        if not result.allowed:
            ...  # 429 with rate_limit_headers(result)

    Failure policy:
    - Store unavailable or erroring -> in-memory fallback
    - Fallback erroring -> allow
    """

    def __init__(
        self,
        redis_client: RedisClient | None = None,
        settings: Settings | None = None,
        policies: dict[LimiterClass, RateLimitPolicy] | None = None,
        primary: RedisSlidingWindowBackend | None = None,
        fallback: MemoryFallbackBackend | None = None,
    ):
        settings = settings or get_settings()
        self._enabled = settings.rate_limit.RATE_LIMIT_ENABLED
        self._policies = {**DEFAULT_POLICIES, **(policies or {})}
        self._primary = primary or RedisSlidingWindowBackend(
            redis_client or get_redis_client(),
            settings.rate_limit.RATE_LIMIT_KEY_PREFIX,
        )
        self._fallback = fallback or MemoryFallbackBackend()
        self._metrics = get_metrics_collector()

        logger.info(
            "Rate limiter initialized",
            stage=Stage.RATE_LIMIT.value,
            enabled=self._enabled,
            distributed=self._primary.available,
        )

    def policy(self, limiter_class: LimiterClass | str) -> RateLimitPolicy:
        return self._policies[LimiterClass(limiter_class)]

    async def check_rate_limit(
        self, identifier: str, limiter_class: LimiterClass | str = LimiterClass.API
    ) -> RateLimitResult:
        """
        Consume one point for ``identifier`` in ``limiter_class``.

        STAGE-RL.CHECK: Rate limit decision

        Never raises.
        """
        limiter_class = LimiterClass(limiter_class)
        policy = self._policies[limiter_class]

        if not self._enabled:
            return self._open_result(policy, "disabled")

        result = await self._consume(identifier, limiter_class, policy)
        self._metrics.record_rate_limit_decision(limiter_class.value, result.allowed, result.backend)

        if not result.allowed:
            logger.warning(
                "Rate limit exceeded",
                stage=Stage.RATE_LIMIT.value,
                identifier=identifier,
                limiter_class=limiter_class.value,
                backend=result.backend,
            )
        return result

    async def get_rate_limit_info(
        self, identifier: str, limiter_class: LimiterClass | str = LimiterClass.API
    ) -> RateLimitResult:
        """Current window state for ``identifier`` without consuming a point."""
        limiter_class = LimiterClass(limiter_class)
        policy = self._policies[limiter_class]

        if self._primary.available:
            try:
                return await self._primary.peek(identifier, limiter_class.value, policy)
            except Exception as e:
                logger.warning("Rate limit info unavailable from store", stage=Stage.RATE_LIMIT.value, error=str(e))
        try:
            return await self._fallback.peek(identifier, limiter_class.value, policy)
        except Exception as e:
            logger.warning("Rate limit info unavailable", stage=Stage.RATE_LIMIT_FALLBACK.value, error=str(e))
            return self._open_result(policy, "none")

    async def _consume(self, identifier: str, limiter_class: LimiterClass, policy: RateLimitPolicy) -> RateLimitResult:
        if self._primary.available:
            try:
                return await self._primary.consume(identifier, limiter_class.value, policy)
            except Exception as e:
                logger.warning(
                    "Distributed rate limiter failed, using in-memory fallback",
                    stage=Stage.RATE_LIMIT_FALLBACK.value,
                    limiter_class=limiter_class.value,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        self._metrics.record_rate_limit_fallback(limiter_class.value)
        try:
            return await self._fallback.consume(identifier, limiter_class.value, policy)
        except Exception as e:
            logger.error(
                "In-memory rate limiter failed, allowing request",
                stage=Stage.RATE_LIMIT_FALLBACK.value,
                limiter_class=limiter_class.value,
                error=str(e),
            )
            return self._open_result(policy, "none")

    @staticmethod
    def _open_result(policy: RateLimitPolicy, backend: str) -> RateLimitResult:
        return RateLimitResult(True, policy.points, policy.points, time.time() + policy.duration, backend)


# Global rate limiter
_rate_limiter: RateLimiter | None = None


def get_rate_limiter() -> RateLimiter:
    """Get global rate limiter instance."""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter()
    return _rate_limiter


def set_rate_limiter(limiter: RateLimiter | None) -> None:
    """Replace the global rate limiter (tests and embedding apps)."""
    global _rate_limiter
    _rate_limiter = limiter

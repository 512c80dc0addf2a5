"""
Unit Tests for the Rate Limiter

Tests the sliding-window primary, block periods, the in-memory fallback,
fail-open behavior and client identification.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from starlette.requests import Request

from tests.test_fixtures.settings_factory import make_settings

from practice_cache.core.config.constants import LimiterClass
from practice_cache.rate_limiting.rate_limiter import (
    DEFAULT_POLICIES,
    MemoryFallbackBackend,
    RateLimiter,
    RateLimitPolicy,
    RateLimitResult,
    RedisSlidingWindowBackend,
    get_client_identifier,
    get_client_ip,
)


def make_request(headers=None, client=("10.0.0.9", 52311)):
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


@pytest.fixture
def make_limiter(redis_client, test_settings, clock):
    def factory(policy: RateLimitPolicy, limiter_class=LimiterClass.API):
        return RateLimiter(
            settings=test_settings,
            policies={limiter_class: policy},
            primary=RedisSlidingWindowBackend(redis_client, "ratelimit", clock=clock),
        )

    return factory


@pytest.mark.unit
class TestSlidingWindow:
    """Test the distributed primary backend."""

    @pytest.mark.asyncio
    async def test_boundary_and_window_expiry(self, make_limiter, clock):
        limiter = make_limiter(RateLimitPolicy(points=5, duration=60))

        remaining = []
        for _ in range(5):
            result = await limiter.check_rate_limit("ip:1.2.3.4")
            assert result.allowed is True
            remaining.append(result.remaining)

        assert remaining == [4, 3, 2, 1, 0]

        denied = await limiter.check_rate_limit("ip:1.2.3.4")
        assert denied.allowed is False
        assert denied.backend == "redis"
        assert denied.reset_time == pytest.approx(clock() + 60)

        clock.advance(61)
        again = await limiter.check_rate_limit("ip:1.2.3.4")
        assert again.allowed is True
        assert again.remaining == 4

    @pytest.mark.asyncio
    async def test_denied_requests_do_not_consume(self, make_limiter, fake_redis):
        limiter = make_limiter(RateLimitPolicy(points=2, duration=60))

        for _ in range(5):
            await limiter.check_rate_limit("user:u1")

        assert len(fake_redis.data["ratelimit:api:user:u1"]) == 2

    @pytest.mark.asyncio
    async def test_identifiers_are_independent(self, make_limiter):
        limiter = make_limiter(RateLimitPolicy(points=1, duration=60))

        assert (await limiter.check_rate_limit("ip:1.1.1.1")).allowed is True
        assert (await limiter.check_rate_limit("ip:1.1.1.1")).allowed is False
        assert (await limiter.check_rate_limit("ip:2.2.2.2")).allowed is True

    @pytest.mark.asyncio
    async def test_classes_are_independent(self, redis_client, test_settings, clock):
        limiter = RateLimiter(
            settings=test_settings,
            policies={
                LimiterClass.API: RateLimitPolicy(points=1, duration=60),
                LimiterClass.AUTH: RateLimitPolicy(points=1, duration=60),
            },
            primary=RedisSlidingWindowBackend(redis_client, "ratelimit", clock=clock),
        )

        assert (await limiter.check_rate_limit("ip:1.1.1.1", LimiterClass.API)).allowed is True
        assert (await limiter.check_rate_limit("ip:1.1.1.1", "auth")).allowed is True

    @pytest.mark.asyncio
    async def test_block_duration_outlasts_window(self, make_limiter, clock):
        limiter = make_limiter(
            RateLimitPolicy(points=2, duration=60, block_duration=300), LimiterClass.PASSWORD_RESET
        )

        for _ in range(2):
            assert (await limiter.check_rate_limit("ip:9.9.9.9", LimiterClass.PASSWORD_RESET)).allowed

        blocked = await limiter.check_rate_limit("ip:9.9.9.9", LimiterClass.PASSWORD_RESET)
        assert blocked.allowed is False
        assert blocked.reset_time == pytest.approx(clock() + 300)

        clock.advance(61)
        assert (await limiter.check_rate_limit("ip:9.9.9.9", LimiterClass.PASSWORD_RESET)).allowed is False

        clock.advance(240)
        assert (await limiter.check_rate_limit("ip:9.9.9.9", LimiterClass.PASSWORD_RESET)).allowed is True

    @pytest.mark.asyncio
    async def test_info_does_not_consume(self, make_limiter):
        limiter = make_limiter(RateLimitPolicy(points=5, duration=60))
        await limiter.check_rate_limit("ip:1.2.3.4")
        await limiter.check_rate_limit("ip:1.2.3.4")

        first = await limiter.get_rate_limit_info("ip:1.2.3.4")
        second = await limiter.get_rate_limit_info("ip:1.2.3.4")

        assert first.remaining == second.remaining == 3
        assert first.allowed is True


@pytest.mark.unit
class TestFallback:
    """Test degradation to the in-process backend."""

    @pytest.mark.asyncio
    async def test_unavailable_store_uses_memory(self, unavailable_redis_client, unconfigured_settings):
        limiter = RateLimiter(
            unavailable_redis_client,
            unconfigured_settings,
            policies={LimiterClass.API: RateLimitPolicy(points=2, duration=1)},
        )

        first = await limiter.check_rate_limit("ip:1.2.3.4")
        second = await limiter.check_rate_limit("ip:1.2.3.4")
        third = await limiter.check_rate_limit("ip:1.2.3.4")

        assert first.backend == "memory"
        assert (first.allowed, second.allowed, third.allowed) == (True, True, False)

        await asyncio.sleep(1.1)
        assert (await limiter.check_rate_limit("ip:1.2.3.4")).allowed is True

    @pytest.mark.asyncio
    async def test_store_error_falls_back(self, make_limiter, fake_redis):
        limiter = make_limiter(RateLimitPolicy(points=5, duration=60))
        fake_redis.fail_with = RedisConnectionError("down")

        results = [await limiter.check_rate_limit("ip:1.2.3.4") for _ in range(6)]

        assert [r.allowed for r in results] == [True] * 5 + [False]
        assert all(r.backend == "memory" for r in results)
        assert results[-1].remaining == 0

    @pytest.mark.asyncio
    async def test_memory_block_duration(self):
        backend = MemoryFallbackBackend(clock=lambda: 1000.0)
        policy = RateLimitPolicy(points=1, duration=60, block_duration=120)

        assert (await backend.consume("ip:x", "auth", policy)).allowed is True
        blocked = await backend.consume("ip:x", "auth", policy)

        assert blocked.allowed is False
        assert blocked.reset_time == 1120.0

        await backend.reset()
        assert (await backend.consume("ip:x", "auth", policy)).allowed is True

    @pytest.mark.asyncio
    async def test_fail_open_when_both_backends_error(self, test_settings):
        primary = MagicMock()
        primary.available = True
        primary.consume = AsyncMock(side_effect=RuntimeError("store exploded"))
        fallback = MagicMock()
        fallback.consume = AsyncMock(side_effect=RuntimeError("memory exploded"))

        limiter = RateLimiter(settings=test_settings, primary=primary, fallback=fallback)
        result = await limiter.check_rate_limit("ip:1.2.3.4", LimiterClass.AUTH)

        assert result.allowed is True
        assert result.backend == "none"
        assert result.limit == DEFAULT_POLICIES[LimiterClass.AUTH].points
        fallback.consume.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_disabled(self, redis_client, fake_redis):
        limiter = RateLimiter(redis_client, make_settings(RATE_LIMIT_ENABLED=False))

        result = await limiter.check_rate_limit("ip:1.2.3.4")

        assert result.allowed is True
        assert result.backend == "disabled"
        assert fake_redis.calls == []


@pytest.mark.unit
class TestPolicies:
    def test_default_budgets(self):
        assert DEFAULT_POLICIES[LimiterClass.API] == RateLimitPolicy(100, 60)
        assert DEFAULT_POLICIES[LimiterClass.AUTH] == RateLimitPolicy(10, 60)
        assert DEFAULT_POLICIES[LimiterClass.PASSWORD_RESET].block_duration == 900
        assert DEFAULT_POLICIES[LimiterClass.INVITATION].duration == 86400

    def test_retry_after_is_at_least_one_second(self):
        assert RateLimitResult(False, 0, 5, reset_time=100.2).retry_after(now=100.0) == 1
        assert RateLimitResult(False, 0, 5, reset_time=90.0).retry_after(now=100.0) == 1
        assert RateLimitResult(False, 0, 5, reset_time=130.5).retry_after(now=100.0) == 31


@pytest.mark.unit
class TestClientIdentification:
    """Test identifier extraction priority."""

    def test_user_header_wins(self):
        request = make_request({"X-User-ID": "u1", "X-Forwarded-For": "203.0.113.7"})
        assert get_client_identifier(request) == "user:u1"

    def test_first_forwarded_hop(self):
        request = make_request({"X-Forwarded-For": "203.0.113.7, 10.0.0.1", "X-Real-IP": "198.51.100.2"})
        assert get_client_identifier(request) == "ip:203.0.113.7"

    def test_real_ip(self):
        request = make_request({"X-Real-IP": " 198.51.100.2 "})
        assert get_client_ip(request) == "198.51.100.2"

    def test_remote_address(self):
        assert get_client_identifier(make_request()) == "ip:10.0.0.9"

    def test_ip_ignores_user_header(self):
        request = make_request({"X-User-ID": "u1"})
        assert get_client_ip(request) == "10.0.0.9"

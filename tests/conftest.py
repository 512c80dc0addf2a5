"""
Pytest Configuration and Shared Test Fixtures

This module provides pytest configuration and reusable fixtures for all tests.
All fixtures defined here are automatically available to all test files.
"""

import os
import sys
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add project root to sys.path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from tests.test_fixtures.fake_redis import FakeClock, FakeRedis  # noqa: E402
from tests.test_fixtures.settings_factory import make_settings  # noqa: E402

# ============================================================================
# Pytest Configuration
# ============================================================================

# pytest-asyncio is automatically loaded via pyproject.toml configuration
# event_loop fixture removed to let pytest-asyncio handle it automatically


# ============================================================================
# Settings Fixtures
# ============================================================================


@pytest.fixture
def test_settings():
    """Settings with KV credentials and a near-zero retry delay."""
    return make_settings()


@pytest.fixture
def unconfigured_settings():
    """Settings with no KV credentials at all."""
    return make_settings(KV_URL=None, KV_TOKEN=None, UPSTASH_REDIS_URL=None, UPSTASH_REDIS_TOKEN=None)


@pytest.fixture(autouse=True)
def reset_singletons():
    """Drop process-wide singletons between tests."""
    yield

    from practice_cache.core.logging.logger import clear_request_id
    from practice_cache.infrastructure.cache.cache_manager import close_cache
    from practice_cache.infrastructure.cache.query_cache import reset_query_cache
    from practice_cache.infrastructure.cache.redis_client import set_redis_client
    from practice_cache.infrastructure.monitoring.apm_service import set_apm_service
    from practice_cache.rate_limiting.rate_limiter import set_rate_limiter

    close_cache()
    reset_query_cache()
    set_redis_client(None)
    set_apm_service(None)
    set_rate_limiter(None)
    clear_request_id()


# ============================================================================
# In-Memory Infrastructure Fixtures
# ============================================================================


@pytest.fixture
def clock():
    """Manually advanced wall clock shared by the fake store and limiters."""
    return FakeClock()


@pytest.fixture
def fake_redis(clock):
    """In-memory redis fake with clock-driven expiry."""
    return FakeRedis(clock)


@pytest.fixture
def redis_client(test_settings, fake_redis):
    """KV adapter wired to the in-memory fake."""
    from practice_cache.infrastructure.cache.redis_client import RedisClient

    return RedisClient(settings=test_settings, client=fake_redis)


@pytest.fixture
def unavailable_redis_client(unconfigured_settings):
    """KV adapter with no credentials."""
    from practice_cache.infrastructure.cache.redis_client import RedisClient

    return RedisClient(settings=unconfigured_settings)


@pytest.fixture
def cache_manager(redis_client, test_settings):
    """Cache façade over the in-memory fake."""
    from practice_cache.infrastructure.cache.cache_manager import CacheManager

    return CacheManager(redis_client=redis_client, settings=test_settings)


# ============================================================================
# Mock Infrastructure Fixtures
# ============================================================================


@pytest.fixture
def mock_cache_manager():
    """
    Mock CacheManager for isolated testing.

    Provides async mock methods for get/set operations.
    """
    from practice_cache.infrastructure.cache.cache_manager import CacheManager

    cache = AsyncMock(spec=CacheManager)
    cache.get = AsyncMock(return_value=None)
    cache.set = AsyncMock(return_value=True)
    cache.delete = AsyncMock(return_value=True)
    cache.delete_many = AsyncMock(return_value=0)
    cache.delete_by_pattern = AsyncMock(return_value=0)
    cache.stats = MagicMock(return_value={"hits": 0, "misses": 0})
    cache.health_check = AsyncMock(return_value={"status": "healthy"})

    return cache

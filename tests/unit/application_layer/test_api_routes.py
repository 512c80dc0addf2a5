"""
Unit Tests for the FastAPI Integration

Runs the real application (lifespan included) against the in-memory store
and checks health routes, rate-limit responses and APM headers.
"""

import pytest
from fastapi import Depends
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError

from tests.test_fixtures.settings_factory import make_settings

from practice_cache.application.api.dependencies import rate_limit, rate_limit_headers
from practice_cache.application.app import create_app
from practice_cache.core.config.constants import LimiterClass
from practice_cache.core.exceptions import CacheKeyError
from practice_cache.infrastructure.cache.redis_client import RedisClient, set_redis_client
from practice_cache.infrastructure.monitoring.apm_service import APMService
from practice_cache.rate_limiting.rate_limiter import RateLimiter, RateLimitPolicy, RateLimitResult


def build_app():
    app = create_app()

    @app.post("/auth/login", dependencies=[Depends(rate_limit(LimiterClass.AUTH))])
    async def login():
        return {"ok": True}

    @app.get("/broken")
    async def broken():
        raise CacheKeyError("KV GET failed", details={"key": "patient:c1:p1"})

    @app.get("/explodes")
    async def explodes():
        raise RuntimeError("unexpected")

    return app


@pytest.fixture
def kv_client(test_settings, fake_redis):
    client = RedisClient(settings=test_settings, client=fake_redis)
    set_redis_client(client)
    return client


@pytest.fixture
def client(kv_client, test_settings):
    app = build_app()
    with TestClient(app) as test_client:
        app.state.rate_limiter = RateLimiter(
            kv_client,
            test_settings,
            policies={LimiterClass.AUTH: RateLimitPolicy(points=2, duration=60)},
        )
        yield test_client


@pytest.mark.unit
class TestHealthRoutes:
    """Test /health endpoints."""

    def test_healthy(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["components"]["cache"]["kv"]["status"] == "healthy"

    def test_unhealthy_store_returns_503(self, client, fake_redis):
        fake_redis.fail_with = RedisConnectionError("down")

        response = client.get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"

    def test_unconfigured_store_is_still_ok(self, unconfigured_settings):
        set_redis_client(RedisClient(settings=unconfigured_settings))

        with TestClient(build_app()) as test_client:
            response = test_client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "unavailable"

    def test_realtime_metrics(self, client):
        response = client.get("/health/metrics", params={"range": "24h"})

        assert response.status_code == 200
        body = response.json()
        assert body["range"] == "24h"
        assert set(body) >= {"total_requests", "avg_response_time", "error_rate", "requests_per_minute"}

    def test_realtime_metrics_rejects_unknown_range(self, client):
        assert client.get("/health/metrics", params={"range": "30d"}).status_code == 422

    def test_prometheus(self, client):
        response = client.get("/health/prometheus")

        assert response.status_code == 200
        assert "practice_cache" in response.text


@pytest.mark.unit
class TestRateLimitDependency:
    """Test 429 responses and X-RateLimit-* headers."""

    def test_allowed_requests_carry_headers(self, client):
        response = client.post("/auth/login")

        assert response.status_code == 200
        assert response.headers["X-RateLimit-Limit"] == "2"
        assert response.headers["X-RateLimit-Remaining"] == "1"
        assert "X-RateLimit-Reset" in response.headers
        assert "Retry-After" not in response.headers

    def test_exhausted_budget_returns_429(self, client):
        client.post("/auth/login")
        client.post("/auth/login")

        response = client.post("/auth/login")

        assert response.status_code == 429
        assert int(response.headers["Retry-After"]) >= 1
        assert response.headers["X-RateLimit-Remaining"] == "0"
        body = response.json()
        assert body["error"] == "rate_limit_exceeded"
        assert body["limit"] == 2
        assert body["window"] == 60
        assert body["retry_after"] >= 1
        assert set(body) == {"error", "message", "retry_after", "limit", "window"}

    def test_users_have_separate_budgets(self, client):
        for _ in range(2):
            client.post("/auth/login", headers={"X-User-ID": "u1"})

        assert client.post("/auth/login", headers={"X-User-ID": "u1"}).status_code == 429
        assert client.post("/auth/login", headers={"X-User-ID": "u2"}).status_code == 200

    def test_headers_helper(self):
        allowed = RateLimitResult(True, 7, 10, 1_700_000_060.9)
        denied = RateLimitResult(False, -1, 10, 1_700_000_060.9)

        assert rate_limit_headers(allowed) == {
            "X-RateLimit-Limit": "10",
            "X-RateLimit-Remaining": "7",
            "X-RateLimit-Reset": "1700000060",
        }
        assert rate_limit_headers(denied)["X-RateLimit-Remaining"] == "0"
        assert "Retry-After" in rate_limit_headers(denied)


@pytest.mark.unit
class TestAPMMiddleware:
    """Test request timing headers and error reporting."""

    def test_response_time_and_request_id(self, client):
        response = client.get("/", headers={"X-Request-ID": "req-123"})

        assert response.status_code == 200
        assert response.headers["X-Request-ID"] == "req-123"
        assert response.headers["X-Response-Time"].endswith("ms")

    def test_request_id_generated(self, client):
        response = client.get("/")
        assert len(response.headers["X-Request-ID"]) == 36

    def test_caching_layer_error_becomes_500(self, client):
        response = client.get("/broken")

        assert response.status_code == 500
        body = response.json()
        assert body["error_type"] == "CacheKeyError"
        assert body["details"] == {"key": "patient:c1:p1"}

    def test_unhandled_error_is_tracked(self, client, fake_redis):
        with pytest.raises(RuntimeError):
            client.get("/explodes")

        assert any(key.startswith("apm:error:") for key in fake_redis.data)

    def test_disabled_apm_records_nothing_but_keeps_headers(self, client, fake_redis):
        client.app.state.apm = APMService(
            client.app.state.cache, settings=make_settings(APM_ENABLED=False)
        )

        response = client.get("/")
        with pytest.raises(RuntimeError):
            client.get("/explodes")

        assert response.headers["X-Response-Time"].endswith("ms")
        assert "X-Request-ID" in response.headers
        assert not any(key.startswith("apm:") for key in fake_redis.data)


@pytest.mark.unit
class TestLifespan:
    def test_state_published(self, kv_client):
        app = build_app()

        with TestClient(app):
            assert app.state.redis is kv_client
            assert app.state.cache.redis is kv_client
            assert app.state.apm is not None

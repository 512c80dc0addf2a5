"""
Unit Tests for Settings

Tests environment loading, the alternate KV credential names, validation
and the grouped views.
"""

import pytest
from pydantic import ValidationError

from practice_cache.core.config.constants import CacheTTL, LimiterClass
from practice_cache.core.config.settings import Settings, get_settings, reload_settings


@pytest.mark.unit
class TestKVCredentials:
    """Test KV_* / UPSTASH_* merging."""

    def test_primary_names(self):
        settings = Settings(_env_file=None, KV_URL="redis://a:6379", KV_TOKEN="tok")

        assert settings.kv.KV_URL == "redis://a:6379"
        assert settings.kv.KV_TOKEN == "tok"
        assert settings.kv.configured is True

    def test_alternate_names_fill_in(self):
        settings = Settings(
            _env_file=None,
            KV_URL=None,
            KV_TOKEN=None,
            UPSTASH_REDIS_URL="redis://b:6379",
            UPSTASH_REDIS_TOKEN="alt",
        )

        assert settings.KV_URL == "redis://b:6379"
        assert settings.KV_TOKEN == "alt"

    def test_primary_names_win(self):
        settings = Settings(
            _env_file=None,
            KV_URL="redis://primary:6379",
            KV_TOKEN="primary",
            UPSTASH_REDIS_URL="redis://alt:6379",
            UPSTASH_REDIS_TOKEN="alt",
        )

        assert settings.KV_URL == "redis://primary:6379"
        assert settings.KV_TOKEN == "primary"

    def test_missing_credentials_is_not_an_error(self):
        settings = Settings(_env_file=None, KV_URL=None, KV_TOKEN=None,
                            UPSTASH_REDIS_URL=None, UPSTASH_REDIS_TOKEN=None)

        assert settings.kv.configured is False

    def test_url_without_token_is_unconfigured(self):
        settings = Settings(_env_file=None, KV_URL="redis://a:6379", KV_TOKEN=None, UPSTASH_REDIS_TOKEN=None)

        assert settings.kv.configured is False

    def test_loaded_from_environment(self, monkeypatch):
        monkeypatch.setenv("UPSTASH_REDIS_URL", "redis://env:6379")
        monkeypatch.setenv("UPSTASH_REDIS_TOKEN", "env-token")
        monkeypatch.delenv("KV_URL", raising=False)
        monkeypatch.delenv("KV_TOKEN", raising=False)

        settings = Settings(_env_file=None)

        assert settings.kv.KV_URL == "redis://env:6379"
        assert settings.kv.configured is True


@pytest.mark.unit
class TestValidation:
    """Test field validators."""

    def test_log_level_is_upper_cased(self):
        settings = Settings(_env_file=None, LOG_LEVEL="debug")
        assert settings.LOG_LEVEL == "DEBUG"

    def test_invalid_log_level_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, LOG_LEVEL="LOUD")

    def test_non_positive_retries_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, CACHE_GET_MAX_RETRIES=0)

    def test_invalid_environment_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, ENVIRONMENT="qa")


@pytest.mark.unit
class TestDefaults:
    """Test defaults exposed through the grouped views."""

    def test_cache_defaults(self):
        cache = Settings(_env_file=None).cache

        assert cache.ENABLE_CACHING is True
        assert cache.CACHE_DEFAULT_TTL == 3600
        assert cache.CACHE_STALE_TTL == 86400
        assert cache.CACHE_MAX_VALUE_BYTES == 1024 * 1024
        assert cache.CACHE_GET_MAX_RETRIES == 3
        assert cache.CACHE_SCAN_BATCH_SIZE == 100

    def test_slow_query_threshold_falls_back_to_default(self):
        assert Settings(_env_file=None).apm.slow_query_threshold_ms == 500

    def test_slow_query_threshold_override(self):
        settings = Settings(_env_file=None, APM_SLOW_QUERY_THRESHOLD_MS=250)
        assert settings.apm.slow_query_threshold_ms == 250

    def test_rate_limit_defaults(self):
        rate_limit = Settings(_env_file=None).rate_limit

        assert rate_limit.RATE_LIMIT_ENABLED is True
        assert rate_limit.RATE_LIMIT_KEY_PREFIX == "ratelimit"

    def test_ttl_tiers(self):
        assert (CacheTTL.SHORT, CacheTTL.MEDIUM, CacheTTL.LONG, CacheTTL.VERY_LONG) == (60, 300, 3600, 86400)

    def test_limiter_class_wire_names(self):
        assert LimiterClass("passwordReset") is LimiterClass.PASSWORD_RESET
        assert LimiterClass("emailVerification") is LimiterClass.EMAIL_VERIFICATION


@pytest.mark.unit
class TestSingleton:
    """Test get_settings / reload_settings."""

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()

    def test_reload_builds_new_instance(self, monkeypatch):
        first = get_settings()
        monkeypatch.setenv("APP_NAME", "Reloaded")

        second = reload_settings()

        assert second is not first
        assert second.app.APP_NAME == "Reloaded"
        monkeypatch.delenv("APP_NAME")
        reload_settings()

#!/usr/bin/env python3
"""
Centralized Configuration Module using Pydantic Settings

This module provides type-safe, environment-based configuration for the
caching and rate-limiting layer. All configuration is centralized here to
ensure consistency across modules.

Architectural Decision: Pydantic Settings for type safety and validation
- Environment variable loading with .env support
- Type validation at startup (fail fast on misconfiguration)
- Missing KV credentials are NOT a startup error: every dependent
  component degrades to "always miss" / "fail open"

Author: Platform Team
Date: 2025-11-18
"""

from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from practice_cache.core.config.constants import (
    APM_ERROR_TTL,
    APM_REQUEST_TTL,
    DEFAULT_SLOW_QUERY_THRESHOLD_MS,
    GET_MAX_RETRIES,
    L1_CACHE_MAX_SIZE,
    MAX_CACHE_VALUE_BYTES,
    REDIS_KEY_RATE_LIMIT,
    RETRY_BASE_DELAY,
    SCAN_BATCH_SIZE,
    SWR_REFRESH_RATIO,
    CacheTTL,
)


class KVSettings(BaseSettings):
    """
    Backing key-value store connection.

    STAGE-0.1: KV connection configuration

    The store is addressed by a URL plus an access token. When either is
    missing the KV client reports itself unavailable instead of raising.
    """

    KV_URL: str | None = Field(default=None, description="Key-value store URL (redis:// or rediss://)")
    KV_TOKEN: str | None = Field(default=None, description="Key-value store access token")
    KV_SOCKET_TIMEOUT: float = Field(default=5.0, description="Socket timeout in seconds")
    KV_SOCKET_CONNECT_TIMEOUT: float = Field(default=5.0, description="Connection timeout in seconds")
    KV_HEALTH_CHECK_INTERVAL: int = Field(default=30, description="Health check interval in seconds")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)

    @property
    def configured(self) -> bool:
        return bool(self.KV_URL and self.KV_TOKEN)


class CacheSettings(BaseSettings):
    """
    Cache façade configuration.

    STAGE-2: Cache limits, retry policy and TTL defaults
    """

    ENABLE_CACHING: bool = Field(default=True, description="Master switch for the cache façade")
    CACHE_DEFAULT_TTL: int = Field(default=int(CacheTTL.LONG), description="Default TTL (1 hour)")
    CACHE_STALE_TTL: int = Field(default=int(CacheTTL.VERY_LONG), description="Stale copy TTL (24 hours)")
    CACHE_MAX_VALUE_BYTES: int = Field(default=MAX_CACHE_VALUE_BYTES, description="Max serialized size")
    CACHE_GET_MAX_RETRIES: int = Field(default=GET_MAX_RETRIES, description="GET attempts before a miss")
    CACHE_RETRY_BASE_DELAY: float = Field(default=RETRY_BASE_DELAY, description="Backoff base in seconds")
    CACHE_SCAN_BATCH_SIZE: int = Field(default=SCAN_BATCH_SIZE, description="Keys per SCAN step")
    CACHE_SWR_REFRESH_RATIO: float = Field(default=SWR_REFRESH_RATIO, description="Fresh TTL refresh ratio")
    QUERY_CACHE_L1_MAX_SIZE: int = Field(default=L1_CACHE_MAX_SIZE, description="In-process query cache entries")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class RateLimitSettings(BaseSettings):
    """
    Rate limiting configuration.

    STAGE-3: Rate limiting switches

    Architectural Decision: distributed sliding window with in-memory fallback
    """

    RATE_LIMIT_ENABLED: bool = Field(default=True, description="Enable rate limiting")
    RATE_LIMIT_KEY_PREFIX: str = Field(default=REDIS_KEY_RATE_LIMIT, description="Key prefix for counters")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class APMSettings(BaseSettings):
    """Application performance monitoring configuration."""

    APM_ENABLED: bool = Field(default=True, description="Enable request telemetry")
    APM_SLOW_QUERY_THRESHOLD_MS: int | None = Field(default=None, description="Slow query threshold override")
    APM_REQUEST_TTL: int = Field(default=APM_REQUEST_TTL, description="Raw request metric TTL")
    APM_ERROR_TTL: int = Field(default=APM_ERROR_TTL, description="Raw error TTL")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)

    @property
    def slow_query_threshold_ms(self) -> int:
        return self.APM_SLOW_QUERY_THRESHOLD_MS or DEFAULT_SLOW_QUERY_THRESHOLD_MS


class LoggingSettings(BaseSettings):
    """
    Logging configuration for structured logging.

    STAGE-L: Logging configuration
    """

    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: Literal["json", "console"] = Field(default="json", description="Log output format")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class ApplicationSettings(BaseSettings):
    """General application settings."""

    ENVIRONMENT: Literal["development", "staging", "production", "test"] = Field(
        default="development",
        description="Application environment"
    )
    APP_NAME: str = Field(default="Practice Cache Service", description="Application name")
    APP_VERSION: str = Field(default="1.0.0", description="Application version")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class Settings(BaseSettings):
    """
    Main settings class that aggregates all configuration sections.

    STAGE-0: Centralized configuration initialization

    Usage:
        from practice_cache.core.config.settings import get_settings

        settings = get_settings()
        url = settings.kv.KV_URL
        max_bytes = settings.cache.CACHE_MAX_VALUE_BYTES

    Both ``KV_URL``/``KV_TOKEN`` and ``UPSTASH_REDIS_URL``/``UPSTASH_REDIS_TOKEN``
    are accepted; the ``KV_*`` names win when both are present.
    """

    # KV settings
    KV_URL: str | None = Field(default=None, description="Key-value store URL")
    KV_TOKEN: str | None = Field(default=None, description="Key-value store access token")
    UPSTASH_REDIS_URL: str | None = Field(default=None, description="Key-value store URL (alternative)")
    UPSTASH_REDIS_TOKEN: str | None = Field(default=None, description="Key-value store token (alternative)")
    KV_SOCKET_TIMEOUT: float = Field(default=5.0, description="Socket timeout in seconds")
    KV_SOCKET_CONNECT_TIMEOUT: float = Field(default=5.0, description="Connection timeout in seconds")
    KV_HEALTH_CHECK_INTERVAL: int = Field(default=30, description="Health check interval in seconds")

    # Cache settings
    ENABLE_CACHING: bool = Field(default=True, description="Master switch for the cache façade")
    CACHE_DEFAULT_TTL: int = Field(default=int(CacheTTL.LONG), description="Default TTL (1 hour)")
    CACHE_STALE_TTL: int = Field(default=int(CacheTTL.VERY_LONG), description="Stale copy TTL (24 hours)")
    CACHE_MAX_VALUE_BYTES: int = Field(default=MAX_CACHE_VALUE_BYTES, description="Max serialized size")
    CACHE_GET_MAX_RETRIES: int = Field(default=GET_MAX_RETRIES, description="GET attempts before a miss")
    CACHE_RETRY_BASE_DELAY: float = Field(default=RETRY_BASE_DELAY, description="Backoff base in seconds")
    CACHE_SCAN_BATCH_SIZE: int = Field(default=SCAN_BATCH_SIZE, description="Keys per SCAN step")
    CACHE_SWR_REFRESH_RATIO: float = Field(default=SWR_REFRESH_RATIO, description="Fresh TTL refresh ratio")
    QUERY_CACHE_L1_MAX_SIZE: int = Field(default=L1_CACHE_MAX_SIZE, description="In-process query cache entries")

    # Rate limiting settings
    RATE_LIMIT_ENABLED: bool = Field(default=True, description="Enable rate limiting")
    RATE_LIMIT_KEY_PREFIX: str = Field(default=REDIS_KEY_RATE_LIMIT, description="Key prefix for counters")

    # APM settings
    APM_ENABLED: bool = Field(default=True, description="Enable request telemetry")
    APM_SLOW_QUERY_THRESHOLD_MS: int | None = Field(default=None, description="Slow query threshold override")
    APM_REQUEST_TTL: int = Field(default=APM_REQUEST_TTL, description="Raw request metric TTL")
    APM_ERROR_TTL: int = Field(default=APM_ERROR_TTL, description="Raw error TTL")

    # Logging settings
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: Literal["json", "console"] = Field(default="json", description="Log output format")

    # Application settings
    ENVIRONMENT: Literal["development", "staging", "production", "test"] = Field(
        default="development",
        description="Application environment"
    )
    APP_NAME: str = Field(default="Practice Cache Service", description="Application name")
    APP_VERSION: str = Field(default="1.0.0", description="Application version")

    @model_validator(mode="after")
    def merge_kv_credentials(self):
        """Merge the alternate UPSTASH_* names into KV_URL / KV_TOKEN."""
        if self.KV_URL is None and self.UPSTASH_REDIS_URL:
            self.KV_URL = self.UPSTASH_REDIS_URL
        if self.KV_TOKEN is None and self.UPSTASH_REDIS_TOKEN:
            self.KV_TOKEN = self.UPSTASH_REDIS_TOKEN
        return self

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    @field_validator("CACHE_GET_MAX_RETRIES", "CACHE_SCAN_BATCH_SIZE", "CACHE_MAX_VALUE_BYTES")
    @classmethod
    def validate_positive(cls, v):
        if v < 1:
            raise ValueError("value must be a positive integer")
        return v

    # Nested configuration views
    @property
    def kv(self) -> KVSettings:
        """Get KV connection settings."""
        return KVSettings(
            KV_URL=self.KV_URL,
            KV_TOKEN=self.KV_TOKEN,
            KV_SOCKET_TIMEOUT=self.KV_SOCKET_TIMEOUT,
            KV_SOCKET_CONNECT_TIMEOUT=self.KV_SOCKET_CONNECT_TIMEOUT,
            KV_HEALTH_CHECK_INTERVAL=self.KV_HEALTH_CHECK_INTERVAL,
        )

    @property
    def cache(self) -> CacheSettings:
        """Get cache settings."""
        return CacheSettings(
            ENABLE_CACHING=self.ENABLE_CACHING,
            CACHE_DEFAULT_TTL=self.CACHE_DEFAULT_TTL,
            CACHE_STALE_TTL=self.CACHE_STALE_TTL,
            CACHE_MAX_VALUE_BYTES=self.CACHE_MAX_VALUE_BYTES,
            CACHE_GET_MAX_RETRIES=self.CACHE_GET_MAX_RETRIES,
            CACHE_RETRY_BASE_DELAY=self.CACHE_RETRY_BASE_DELAY,
            CACHE_SCAN_BATCH_SIZE=self.CACHE_SCAN_BATCH_SIZE,
            CACHE_SWR_REFRESH_RATIO=self.CACHE_SWR_REFRESH_RATIO,
            QUERY_CACHE_L1_MAX_SIZE=self.QUERY_CACHE_L1_MAX_SIZE,
        )

    @property
    def rate_limit(self) -> RateLimitSettings:
        """Get rate limit settings."""
        return RateLimitSettings(
            RATE_LIMIT_ENABLED=self.RATE_LIMIT_ENABLED,
            RATE_LIMIT_KEY_PREFIX=self.RATE_LIMIT_KEY_PREFIX,
        )

    @property
    def apm(self) -> APMSettings:
        """Get APM settings."""
        return APMSettings(
            APM_ENABLED=self.APM_ENABLED,
            APM_SLOW_QUERY_THRESHOLD_MS=self.APM_SLOW_QUERY_THRESHOLD_MS,
            APM_REQUEST_TTL=self.APM_REQUEST_TTL,
            APM_ERROR_TTL=self.APM_ERROR_TTL,
        )

    @property
    def logging(self) -> LoggingSettings:
        """Get logging settings."""
        return LoggingSettings(LOG_LEVEL=self.LOG_LEVEL, LOG_FORMAT=self.LOG_FORMAT)

    @property
    def app(self) -> ApplicationSettings:
        """Get application settings."""
        return ApplicationSettings(
            ENVIRONMENT=self.ENVIRONMENT,
            APP_NAME=self.APP_NAME,
            APP_VERSION=self.APP_VERSION,
        )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"  # Ignore extra environment variables
    )


# Global settings instance (singleton pattern)
_settings: Settings | None = None


def get_settings() -> Settings:
    """
    Get the global settings instance (singleton).

    STAGE-0.3: Settings initialization

    Returns:
        Settings: Global settings instance
    """
    global _settings

    if _settings is None:
        _settings = Settings()

    return _settings


def reload_settings() -> Settings:
    """
    Reload settings (useful for testing).

    Returns:
        Settings: New settings instance
    """
    global _settings
    _settings = Settings()
    return _settings

#!/usr/bin/env python3
"""
FastAPI Application Entry Point

Wires the caching and rate-limiting layer into a FastAPI application:
logging, KV client, cache manager, rate limiter and APM sink are built in
the lifespan and published on ``app.state`` for the dependencies.

Author: Platform Team
Date: 2025-11-18
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from practice_cache.application.api.dependencies import rate_limit_headers
from practice_cache.application.api.middleware.apm import APMMiddleware
from practice_cache.application.api.routes.health import router as health_router
from practice_cache.core.config.constants import HEADER_REQUEST_ID
from practice_cache.core.config.settings import get_settings
from practice_cache.core.exceptions import PracticeCacheError, RateLimitExceededError
from practice_cache.core.logging.logger import get_logger, setup_logging
from practice_cache.infrastructure.cache.cache_manager import close_cache, init_cache
from practice_cache.infrastructure.cache.redis_client import close_redis, get_redis_client
from practice_cache.infrastructure.monitoring.apm_service import APMService, set_apm_service
from practice_cache.rate_limiting.rate_limiter import RateLimiter, set_rate_limiter

logger = get_logger(__name__)


# ============================================================================
# Application Lifespan
# ============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifecycle (startup and shutdown).
    """
    settings = get_settings()

    setup_logging(log_level=settings.logging.LOG_LEVEL, log_format=settings.logging.LOG_FORMAT)

    logger.info(
        "Starting practice cache service",
        environment=settings.app.ENVIRONMENT,
        version=settings.app.APP_VERSION,
    )

    apm: APMService | None = None
    try:
        redis_client = get_redis_client()
        cache_manager = init_cache(redis_client)
        await cache_manager.sync_version()
        logger.info("Cache initialized", kv_available=redis_client.is_available)

        rate_limiter = RateLimiter(redis_client=redis_client, settings=settings)
        set_rate_limiter(rate_limiter)

        apm = APMService(cache=cache_manager, settings=settings)
        set_apm_service(apm)

        app.state.redis = redis_client
        app.state.cache = cache_manager
        app.state.rate_limiter = rate_limiter
        app.state.apm = apm

        logger.info("Application startup complete")

        yield

    finally:
        logger.info("Shutting down application")

        if apm is not None:
            await apm.drain()
        set_apm_service(None)
        set_rate_limiter(None)
        close_cache()
        await close_redis()

        logger.info("Application shutdown complete")


# ============================================================================
# Exception Handlers
# ============================================================================


async def rate_limit_handler(request: Request, exc: RateLimitExceededError):
    """Handle rate limit exceeded errors."""
    return JSONResponse(
        status_code=429,
        content={
            "error": "rate_limit_exceeded",
            "message": exc.message,
            "retry_after": exc.retry_after,
            "limit": exc.result.limit,
            "window": exc.window,
        },
        headers=rate_limit_headers(exc.result),
    )


async def practice_cache_exception_handler(request: Request, exc: PracticeCacheError):
    """Handle caching-layer exceptions that reached the HTTP boundary."""
    logger.error(f"Unhandled caching-layer error: {exc.message}", error_type=type(exc).__name__)

    return JSONResponse(
        status_code=500, content=exc.to_dict(), headers={HEADER_REQUEST_ID: exc.request_id or ""}
    )


# ============================================================================
# Application Factory
# ============================================================================


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        FastAPI: Configured application instance
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.app.APP_NAME,
        version=settings.app.APP_VERSION,
        description="Caching and rate-limiting layer for the practice management API",
        lifespan=lifespan,
    )

    app.add_middleware(APMMiddleware)

    # RateLimitExceededError subclasses PracticeCacheError; the more specific handler wins
    app.add_exception_handler(RateLimitExceededError, rate_limit_handler)
    app.add_exception_handler(PracticeCacheError, practice_cache_exception_handler)

    app.include_router(health_router)

    @app.get("/", tags=["Root"])
    async def root():
        return {
            "name": settings.app.APP_NAME,
            "version": settings.app.APP_VERSION,
            "environment": settings.app.ENVIRONMENT,
            "health": "/health",
        }

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(create_app(), host="0.0.0.0", port=8000, log_level=get_settings().logging.LOG_LEVEL.lower())

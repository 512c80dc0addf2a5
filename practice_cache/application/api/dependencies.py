"""
FastAPI Dependencies

Rate limiting is applied per route as a dependency, so each route picks
its own limiter class:

    @router.post("/auth/login", dependencies=[Depends(rate_limit(LimiterClass.AUTH))])
    async def login(...): ...

Denied requests raise RateLimitExceededError, which the application turns
into a 429 response. Allowed requests get X-RateLimit-* headers on their
response, and the result is kept on ``request.state.rate_limit``.
"""

from collections.abc import Awaitable, Callable

from fastapi import Request, Response

from practice_cache.core.config.constants import (
    HEADER_RATE_LIMIT,
    HEADER_RATE_REMAINING,
    HEADER_RATE_RESET,
    HEADER_RETRY_AFTER,
    LimiterClass,
)
from practice_cache.core.exceptions import RateLimitExceededError
from practice_cache.core.logging.logger import get_request_id
from practice_cache.infrastructure.cache.cache_manager import CacheManager, get_cache_manager
from practice_cache.infrastructure.monitoring.apm_service import APMService, get_apm_service
from practice_cache.rate_limiting.rate_limiter import (
    RateLimiter,
    RateLimitResult,
    get_client_identifier,
    get_rate_limiter,
)


def get_limiter(request: Request) -> RateLimiter:
    """Rate limiter from application state, or the process-wide one."""
    return getattr(request.app.state, "rate_limiter", None) or get_rate_limiter()


def get_cache(request: Request) -> CacheManager:
    return getattr(request.app.state, "cache", None) or get_cache_manager()


def get_apm(request: Request) -> APMService:
    return getattr(request.app.state, "apm", None) or get_apm_service()


def rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    """
    Response headers describing a rate-limit decision.

    Retry-After is only present on denial.
    """
    headers = {
        HEADER_RATE_LIMIT: str(result.limit),
        HEADER_RATE_REMAINING: str(max(0, result.remaining)),
        HEADER_RATE_RESET: str(int(result.reset_time)),
    }
    if not result.allowed:
        headers[HEADER_RETRY_AFTER] = str(result.retry_after())
    return headers


def rate_limit(limiter_class: LimiterClass | str = LimiterClass.API) -> Callable[..., Awaitable[RateLimitResult]]:
    """
    Build a dependency that consumes one point of ``limiter_class``.

    Args:
        limiter_class: Budget to charge

    Returns:
        Async dependency callable for ``Depends``
    """
    limiter_class = LimiterClass(limiter_class)

    async def dependency(request: Request, response: Response) -> RateLimitResult:
        limiter = get_limiter(request)
        identifier = get_client_identifier(request)
        result = await limiter.check_rate_limit(identifier, limiter_class)
        request.state.rate_limit = result

        if not result.allowed:
            policy = limiter.policy(limiter_class)
            raise RateLimitExceededError(
                "Too many requests. Please try again later.",
                result=result,
                limiter_class=limiter_class.value,
                window=policy.duration,
                request_id=get_request_id(),
                details={"identifier": identifier},
            )

        response.headers.update(rate_limit_headers(result))
        return result

    return dependency

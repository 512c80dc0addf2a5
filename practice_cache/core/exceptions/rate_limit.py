"""
Rate Limiting Exceptions

All exceptions related to rate limiting operations

Author: Platform Team
Date: 2025-11-18
"""

from typing import TYPE_CHECKING

from practice_cache.core.exceptions.base import PracticeCacheError

if TYPE_CHECKING:
    from practice_cache.rate_limiting.rate_limiter import RateLimitResult


class RateLimitError(PracticeCacheError):
    """Base exception for rate limiting errors."""
    pass


class RateLimitExceededError(RateLimitError):
    """
    Raised when a caller exceeds the budget of a limiter class.

    The HTTP layer turns this into a 429 response with:
    - Retry-After: Seconds until the window frees up
    - X-RateLimit-Limit: Maximum requests allowed
    - X-RateLimit-Remaining: Requests remaining (0)
    - X-RateLimit-Reset: Time when limit resets (Unix timestamp)
    """

    def __init__(
        self,
        message: str,
        result: "RateLimitResult",
        limiter_class: str,
        window: int,
        request_id: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(message, request_id=request_id, details=details)
        self.result = result
        self.limiter_class = limiter_class
        self.window = window

    @property
    def retry_after(self) -> int:
        return self.result.retry_after()

"""
Rate Limiting Module

Sliding-window rate limiting with a distributed primary backend and an
in-memory fallback.
"""

from .rate_limiter import (
    DEFAULT_POLICIES,
    RateLimiter,
    RateLimitPolicy,
    RateLimitResult,
    get_client_identifier,
    get_client_ip,
    get_rate_limiter,
)

__all__ = [
    "DEFAULT_POLICIES",
    "RateLimiter",
    "RateLimitPolicy",
    "RateLimitResult",
    "get_client_identifier",
    "get_client_ip",
    "get_rate_limiter",
]

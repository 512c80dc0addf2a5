"""
Cache Module

Read-through caching over the shared key-value store: KV adapter,
Date-aware serialization, single-flight façade, stale-while-revalidate
and domain query helpers.
"""

from .cache_manager import (
    CacheManager,
    close_cache,
    get_cache_manager,
    init_cache,
)
from .query_cache import QueryCache, build_key, get_query_cache
from .redis_client import RedisClient, close_redis, get_redis_client
from .stale_while_revalidate import StaleWhileRevalidateCache

__all__ = [
    "CacheManager",
    "get_cache_manager",
    "init_cache",
    "close_cache",
    "QueryCache",
    "build_key",
    "get_query_cache",
    "RedisClient",
    "get_redis_client",
    "close_redis",
    "StaleWhileRevalidateCache",
]

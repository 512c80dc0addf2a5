"""
Cache-Related Exceptions

All exceptions related to caching operations (key-value store, in-process cache).

None of these escape the public cache façade: they are raised by the
internal executor layers, logged, and turned into a miss / False / 0.

Author: Platform Team
Date: 2025-11-18
"""

from practice_cache.core.exceptions.base import PracticeCacheError


class CacheError(PracticeCacheError):
    """Base exception for cache-related errors."""
    pass


class CacheConnectionError(CacheError):
    """
    Raised when unable to reach the key-value store.

    Common causes:
    - KV_URL / KV_TOKEN not configured
    - Network connectivity issues
    - Authentication failure
    """
    pass


class CacheKeyError(CacheError):
    """
    Raised when a cache key operation fails.

    Common causes:
    - Operation timeout
    - Transport error mid-command
    - Memory limit exceeded on the store
    """
    pass


class CacheSerializationError(CacheError):
    """
    Raised when a value cannot be encoded or decoded.

    Common causes:
    - Value contains types with no JSON representation
    - Stored payload is not valid JSON
    - Serialized payload exceeds the size limit
    """
    pass

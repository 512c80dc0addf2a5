"""
Exception Module

Structured exception hierarchy for the caching and rate-limiting layer.

Module Structure:
-----------------
- **base.py**: PracticeCacheError base class + ConfigurationError
- **cache.py**: Key-value store and serialization exceptions
- **rate_limit.py**: Rate limiting exceptions

Usage:
------
```python
from practice_cache.core.exceptions import CacheKeyError, RateLimitExceededError
```
"""

from practice_cache.core.exceptions.base import ConfigurationError, PracticeCacheError
from practice_cache.core.exceptions.cache import (
    CacheConnectionError,
    CacheError,
    CacheKeyError,
    CacheSerializationError,
)
from practice_cache.core.exceptions.rate_limit import RateLimitError, RateLimitExceededError

__all__ = [
    # Base
    "PracticeCacheError",
    "ConfigurationError",
    # Cache
    "CacheError",
    "CacheConnectionError",
    "CacheKeyError",
    "CacheSerializationError",
    # Rate Limit
    "RateLimitError",
    "RateLimitExceededError",
]

"""
Configuration Module

This module provides centralized, type-safe configuration management
for the caching and rate-limiting layer.

Components:
-----------
- **settings.py**: Pydantic-based configuration with environment variable loading
- **constants.py**: TTL tiers, key prefixes, limiter classes and HTTP headers

Usage:
------
```python
from practice_cache.core.config import get_settings
from practice_cache.core.config.constants import CacheTTL, LimiterClass

settings = get_settings()
print(settings.cache.CACHE_MAX_VALUE_BYTES)
```
"""

from practice_cache.core.config.settings import Settings, get_settings, reload_settings

__all__ = ["Settings", "get_settings", "reload_settings"]

"""
API Middleware Package

Contains middleware for:
- APM request timing and error reporting
"""

from practice_cache.application.api.middleware.apm import APMMiddleware

__all__ = ["APMMiddleware"]

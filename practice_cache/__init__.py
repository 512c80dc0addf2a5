"""
Practice Cache

Caching, stampede protection, pattern invalidation, rate limiting and
request telemetry for the dental practice-management service.
"""

__version__ = "1.0.0"

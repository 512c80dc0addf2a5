#!/usr/bin/env python3
"""
Metrics Collector with Prometheus Integration

Prometheus counters for the caching and rate-limiting layer:
- Cache lookups and writes by result
- Stampede joins (callers served by an in-flight fetch)
- Keys removed by pattern invalidation
- Rate-limit decisions by limiter class, outcome and backend
- HTTP request latency

Architectural Decision: prometheus-client for industry-standard metrics
- Compatible with Grafana dashboards
- Process-local counters, scraped from /metrics

Author: Platform Team
Date: 2025-11-18
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Histogram,
    Info,
    generate_latest,
)

from practice_cache.core.config.settings import get_settings
from practice_cache.core.logging.logger import get_logger

logger = get_logger(__name__)


# ============================================================================
# Metric Definitions
# ============================================================================

CACHE_OPERATIONS = Counter(
    'practice_cache_operations_total',
    'Cache façade operations by result',
    ['operation', 'result']  # get: hit/miss/error, set: stored/skipped/failed
)

CACHE_STAMPEDE_JOINS = Counter(
    'practice_cache_stampede_joins_total',
    'Callers that awaited an in-flight fetch instead of starting one'
)

CACHE_INVALIDATED_KEYS = Counter(
    'practice_cache_invalidated_keys_total',
    'Keys removed by pattern invalidation'
)

RATE_LIMIT_DECISIONS = Counter(
    'practice_rate_limit_decisions_total',
    'Rate limit decisions',
    ['limiter_class', 'outcome', 'backend']  # outcome: allowed/denied
)

RATE_LIMIT_FALLBACKS = Counter(
    'practice_rate_limit_fallbacks_total',
    'Checks served by the in-memory fallback limiter',
    ['limiter_class']
)

HTTP_REQUEST_DURATION = Histogram(
    'practice_http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'status'],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
)

APP_INFO = Info(
    'practice_cache_app',
    'Application information'
)


class MetricsCollector:
    """
    Centralized metrics collector.

    STAGE-M: Metrics collection

    Usage:
        metrics = get_metrics_collector()
        metrics.record_cache_operation("get", "hit")
        metrics.record_rate_limit_decision("auth", allowed=False, backend="redis")
    """

    def __init__(self):
        self.settings = get_settings()

        APP_INFO.info({
            'version': self.settings.app.APP_VERSION,
            'environment': self.settings.app.ENVIRONMENT,
            'app_name': self.settings.app.APP_NAME
        })

        logger.info("Metrics collector initialized", stage="M.0")

    # =========================================================================
    # Cache Metrics
    # =========================================================================

    def record_cache_operation(self, operation: str, result: str) -> None:
        """Record a façade get/set outcome."""
        CACHE_OPERATIONS.labels(operation=operation, result=result).inc()

    def record_stampede_join(self) -> None:
        CACHE_STAMPEDE_JOINS.inc()

    def record_invalidated_keys(self, count: int) -> None:
        if count > 0:
            CACHE_INVALIDATED_KEYS.inc(count)

    # =========================================================================
    # Rate Limiting Metrics
    # =========================================================================

    def record_rate_limit_decision(self, limiter_class: str, allowed: bool, backend: str) -> None:
        """Record an allow/deny decision."""
        outcome = "allowed" if allowed else "denied"
        RATE_LIMIT_DECISIONS.labels(limiter_class=limiter_class, outcome=outcome, backend=backend).inc()

    def record_rate_limit_fallback(self, limiter_class: str) -> None:
        RATE_LIMIT_FALLBACKS.labels(limiter_class=limiter_class).inc()

    # =========================================================================
    # HTTP Metrics
    # =========================================================================

    def record_http_request(self, method: str, status: int, duration_seconds: float) -> None:
        HTTP_REQUEST_DURATION.labels(method=method, status=str(status)).observe(duration_seconds)

    # =========================================================================
    # Export
    # =========================================================================

    def get_prometheus_metrics(self) -> bytes:
        """
        Get Prometheus metrics output.

        Returns:
            bytes: Prometheus text format metrics
        """
        return generate_latest(REGISTRY)

    def get_content_type(self) -> str:
        """Get Prometheus content type."""
        return CONTENT_TYPE_LATEST


# Global metrics collector
_metrics: MetricsCollector | None = None


def get_metrics_collector() -> MetricsCollector:
    """Get global metrics collector."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics

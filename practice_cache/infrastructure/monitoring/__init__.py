"""
Monitoring Module

Prometheus counters. The request telemetry (APM) sink lives in
``practice_cache.infrastructure.monitoring.apm_service``; it depends on the
cache façade, which itself records into these counters, so it is not
re-exported here.
"""

from .metrics_collector import MetricsCollector, get_metrics_collector

__all__ = [
    "MetricsCollector",
    "get_metrics_collector",
]

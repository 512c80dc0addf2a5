"""
Unit Tests for the Prometheus Metrics Collector
"""

import pytest

from practice_cache.infrastructure.monitoring import get_metrics_collector


def has_series(output: str, name: str, **labels: str) -> bool:
    """True if one sample line of ``name`` carries every label, in any order."""
    for line in output.splitlines():
        if not line.startswith(name + "{"):
            continue
        if all(f'{key}="{value}"' in line for key, value in labels.items()):
            return True
    return False


@pytest.mark.unit
class TestMetricsCollector:
    """Counters show up in the exposition output."""

    def test_singleton(self):
        assert get_metrics_collector() is get_metrics_collector()

    def test_exposition_contains_recorded_series(self):
        metrics = get_metrics_collector()

        metrics.record_cache_operation("get", "hit")
        metrics.record_stampede_join()
        metrics.record_invalidated_keys(3)
        metrics.record_rate_limit_decision("auth", allowed=False, backend="memory")
        metrics.record_rate_limit_fallback("auth")
        metrics.record_http_request("GET", 200, 0.012)

        output = metrics.get_prometheus_metrics().decode()

        assert has_series(output, "practice_cache_operations_total", operation="get", result="hit")
        assert "practice_cache_stampede_joins_total" in output
        assert has_series(
            output, "practice_rate_limit_decisions_total", limiter_class="auth", outcome="denied", backend="memory"
        )
        assert "practice_http_request_duration_seconds_bucket" in output
        assert metrics.get_content_type().startswith("text/plain")

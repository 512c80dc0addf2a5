"""
APM Service - Request Telemetry Sink

Uses the cache store for real-time metrics and a MetricsHistoryStore for
durable history.

Real-time layout:
    apm:request:<epoch_ms>:<rand>            raw request metric   (1h)
    apm:error:<epoch_ms>:<rand>              raw error            (24h)
    apm:webvital:<name>:<epoch_ms>:<rand>    raw web vital        (1h)
    apm:stats:minute:<0|5|...|55>            StatsBucket          (5 min)
    apm:stats:hour:<0..23>                   StatsBucket          (1h)
    apm:stats:day:<YYYY-MM-DD>               StatsBucket          (24h)

StatsBuckets are updated by read-modify-write through the cache façade.
Concurrent writers can lose increments; telemetry tolerates that.
Bucket keys use UTC wall-clock time, so the day bucket resets at midnight
rather than covering a trailing 24 hours.

Every failure in this module is logged and swallowed: telemetry must
never fail the request it describes.

With APM_ENABLED=false the track_* calls record nothing; the summaries
still read whatever is already stored.

Author: Platform Team
Date: 2025-11-18
"""

import asyncio
import uuid
from collections.abc import Callable, Coroutine
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Literal

from practice_cache.core.config.constants import (
    REDIS_KEY_APM,
    SLOW_QUERY_MAX_LENGTH,
    STATS_DAY_BUCKET_TTL,
    STATS_HOUR_BUCKET_TTL,
    STATS_MINUTE_BUCKET_TTL,
    Stage,
)
from practice_cache.core.config.settings import Settings, get_settings
from practice_cache.core.interfaces.metrics_history import (
    ErrorLog,
    MetricsHistoryStore,
    NullHistoryStore,
    PerformanceMetric,
    SlowQuery,
    WebVitalMetric,
)
from practice_cache.core.logging.logger import get_logger, log_stage
from practice_cache.infrastructure.cache.cache_manager import CacheManager, get_cache_manager

logger = get_logger(__name__)

RealTimeRange = Literal["1h", "24h"]
HistoricalRange = Literal["1h", "24h", "7d", "30d"]

MINUTES_IN_RANGE: dict[str, int] = {"1h": 60, "24h": 1440, "7d": 10080, "30d": 43200}
RANGE_DELTAS: dict[str, timedelta] = {
    "1h": timedelta(hours=1),
    "24h": timedelta(days=1),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}

HISTORY_REQUEST_LIMIT = 1000
HISTORY_ERROR_LIMIT = 100
HISTORY_SLOW_QUERY_LIMIT = 50


@dataclass
class MetricsSummary:
    total_requests: int = 0
    avg_response_time: int = 0
    p95_response_time: float = 0
    p99_response_time: float = 0
    error_count: int = 0
    error_rate: float = 0
    requests_per_minute: int = 0
    slow_query_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _empty_bucket() -> dict[str, float]:
    return {"count": 0, "totalDuration": 0, "errors": 0}


def _percentile(sorted_values: list[float], fraction: float) -> float:
    """Value at floor(n * fraction), or 0 past the end."""
    index = int(len(sorted_values) * fraction)
    return sorted_values[index] if index < len(sorted_values) else 0


def _record_key(kind: str, now: datetime) -> str:
    epoch_ms = int(now.timestamp() * 1000)
    return f"{REDIS_KEY_APM}:{kind}:{epoch_ms}:{uuid.uuid4().hex[:6]}"


def minute_bucket_key(now: datetime) -> str:
    return f"{REDIS_KEY_APM}:stats:minute:{(now.minute // 5) * 5}"


def hour_bucket_key(now: datetime) -> str:
    return f"{REDIS_KEY_APM}:stats:hour:{now.hour}"


def day_bucket_key(now: datetime) -> str:
    return f"{REDIS_KEY_APM}:stats:day:{now.date().isoformat()}"


class APMService:
    """
    Application performance monitoring sink.

    Usage:
        apm = get_apm_service()
        await apm.track_request(PerformanceMetric("/api/patients", "GET", 42.0, 200))
        summary = await apm.get_real_time_metrics("1h")
    """

    def __init__(
        self,
        cache: CacheManager | None = None,
        history_store: MetricsHistoryStore | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        settings = settings or get_settings()
        self._cache = cache or get_cache_manager()
        self._history = history_store or NullHistoryStore()
        self._settings = settings.apm
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._background: set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return self._settings.APM_ENABLED

    @property
    def slow_query_threshold_ms(self) -> int:
        return self._settings.slow_query_threshold_ms

    # -------------------------------------------------------------------------
    # Tracking
    # -------------------------------------------------------------------------

    async def track_request(self, metric: PerformanceMetric) -> None:
        """Store a raw request metric and update the aggregated buckets in the background."""
        if not self.enabled:
            return
        try:
            await self._cache.set(
                _record_key("request", self._clock()), asdict(metric), self._settings.APM_REQUEST_TTL
            )
            self._spawn(self.update_aggregated_stats(metric), "update aggregated stats")
            self._spawn(self._history.record_request(metric), "store request history")
        except Exception as e:
            logger.error("Failed to track request", stage=Stage.APM.value, error=str(e))

    def track_request_nowait(self, metric: PerformanceMetric) -> None:
        """Schedule ``track_request`` without waiting for it (request path)."""
        if not self.enabled:
            return
        self._spawn(self.track_request(metric), "track request")

    async def track_error(self, error: ErrorLog) -> None:
        if not self.enabled:
            return
        try:
            await self._cache.set(_record_key("error", self._clock()), asdict(error), self._settings.APM_ERROR_TTL)
            self._spawn(self._history.record_error(error), "store error history")
        except Exception as e:
            logger.error("Failed to track error", stage=Stage.APM.value, error=str(e))

    async def track_web_vital(self, metric: WebVitalMetric) -> None:
        if not self.enabled:
            return
        try:
            key = _record_key(f"webvital:{metric.name}", self._clock())
            await self._cache.set(key, asdict(metric), self._settings.APM_REQUEST_TTL)
            self._spawn(self._history.record_web_vital(metric), "store web vital")
        except Exception as e:
            logger.error("Failed to track web vital", stage=Stage.APM.value, error=str(e))

    async def track_slow_query(
        self,
        query: str,
        duration: float,
        endpoint: str | None = None,
        model: str | None = None,
    ) -> bool:
        """
        Record a database query that took at least the slow-query threshold.
        Nothing is recorded while APM is disabled.

        Returns:
            True if the query was recorded
        """
        if not self.enabled or duration < self.slow_query_threshold_ms:
            return False

        try:
            slow = SlowQuery(
                query=query[:SLOW_QUERY_MAX_LENGTH],
                duration=duration,
                endpoint=endpoint,
                model=model,
                timestamp=self._clock(),
            )
            self._spawn(self._history.record_slow_query(slow), "store slow query")
            return True
        except Exception as e:
            logger.error("Failed to track slow query", stage=Stage.APM.value, error=str(e))
            return False

    async def update_aggregated_stats(self, metric: PerformanceMetric) -> None:
        """
        Add one request to the minute, hour and day buckets.

        STAGE-APM.STATS: Read-modify-write of three StatsBuckets
        """
        try:
            now = self._clock()
            buckets = (
                (minute_bucket_key(now), STATS_MINUTE_BUCKET_TTL),
                (hour_bucket_key(now), STATS_HOUR_BUCKET_TTL),
                (day_bucket_key(now), STATS_DAY_BUCKET_TTL),
            )

            current = await asyncio.gather(*(self._cache.get(key) for key, _ in buckets))
            is_error = metric.status_code >= 400

            writes = []
            for (key, ttl), stats in zip(buckets, current):
                stats = stats or _empty_bucket()
                stats["count"] += 1
                stats["totalDuration"] += metric.duration
                if is_error:
                    stats["errors"] += 1
                writes.append(self._cache.set(key, stats, ttl))

            await asyncio.gather(*writes)
            log_stage(logger, Stage.APM_STATS, "Aggregated stats updated", level="debug",
                      endpoint=metric.endpoint, status_code=metric.status_code)
        except Exception as e:
            logger.error("Failed to update aggregated stats", stage=Stage.APM_STATS.value, error=str(e))

    # -------------------------------------------------------------------------
    # Reporting
    # -------------------------------------------------------------------------

    async def get_real_time_metrics(self, time_range: RealTimeRange = "1h") -> dict[str, Any]:
        """
        Summarise the current hour or day bucket.

        Returns:
            total_requests, avg_response_time, error_count, error_rate (%),
            requests_per_minute; all zero when the bucket is missing.
        """
        empty = {
            "total_requests": 0,
            "avg_response_time": 0,
            "error_count": 0,
            "error_rate": 0,
            "requests_per_minute": 0,
        }

        try:
            now = self._clock()
            key = hour_bucket_key(now) if time_range == "1h" else day_bucket_key(now)
            stats = await self._cache.get(key)
            if not stats:
                return empty

            count = stats.get("count", 0)
            errors = stats.get("errors", 0)
            avg = round(stats.get("totalDuration", 0) / count) if count > 0 else 0
            error_rate = (errors / count) * 100 if count > 0 else 0
            per_minute = round(count / 60) if time_range == "1h" else round(count / 1440)

            return {
                "total_requests": count,
                "avg_response_time": avg,
                "error_count": errors,
                "error_rate": round(error_rate, 2),
                "requests_per_minute": per_minute,
            }
        except Exception as e:
            logger.error("Failed to get real-time metrics", stage=Stage.APM.value, error=str(e))
            return empty

    async def get_historical_metrics(self, time_range: HistoricalRange = "24h") -> dict[str, Any]:
        """Pull history rows for ``time_range`` and summarise them."""
        since = self._clock() - RANGE_DELTAS.get(time_range, RANGE_DELTAS["24h"])

        try:
            metrics, errors, slow_queries = await asyncio.gather(
                self._history.fetch_requests(since, HISTORY_REQUEST_LIMIT),
                self._history.fetch_errors(since, HISTORY_ERROR_LIMIT),
                self._history.fetch_slow_queries(since, HISTORY_SLOW_QUERY_LIMIT),
            )
        except Exception as e:
            logger.error("Failed to get historical metrics", stage=Stage.APM.value, error=str(e))
            return {"metrics": [], "errors": [], "slow_queries": [], "summary": MetricsSummary().to_dict()}

        durations = sorted(m.duration for m in metrics)
        total = len(metrics)
        error_count = len(errors)
        error_rate = (error_count / total) * 100 if total > 0 else 0

        summary = MetricsSummary(
            total_requests=total,
            avg_response_time=round(sum(durations) / total) if total > 0 else 0,
            p95_response_time=_percentile(durations, 0.95),
            p99_response_time=_percentile(durations, 0.99),
            error_count=error_count,
            error_rate=round(error_rate, 2),
            requests_per_minute=round(total / MINUTES_IN_RANGE.get(time_range, 1440)),
            slow_query_count=len(slow_queries),
        )

        return {
            "metrics": metrics,
            "errors": errors,
            "slow_queries": slow_queries,
            "summary": summary.to_dict(),
        }

    # -------------------------------------------------------------------------
    # Background work
    # -------------------------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, Any], what: str) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(lambda t: self._on_background_done(t, what))

    def _on_background_done(self, task: asyncio.Task, what: str) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Failed to {what}", stage=Stage.APM.value, error=str(exc))

    async def drain(self) -> None:
        """Wait for all scheduled background writes (shutdown and tests)."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)


# =============================================================================
# GLOBAL INSTANCE (SINGLETON PATTERN)
# =============================================================================

_apm_service: APMService | None = None


def get_apm_service() -> APMService:
    """Get the global APM service instance (singleton)."""
    global _apm_service

    if _apm_service is None:
        _apm_service = APMService()

    return _apm_service


def set_apm_service(service: APMService | None) -> None:
    """Replace the global APM service (application startup and tests)."""
    global _apm_service
    _apm_service = service

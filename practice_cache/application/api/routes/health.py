"""
Health Check Routes

- GET /health           cache store status (200 when usable, 503 when unhealthy)
- GET /health/metrics   real-time request metrics from the APM buckets
- GET /health/prometheus  Prometheus exposition of cache and rate-limit counters
"""

from datetime import datetime, timezone
from typing import Literal

from fastapi import APIRouter, Depends, Query, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from practice_cache.application.api.dependencies import get_apm, get_cache
from practice_cache.infrastructure.cache.cache_manager import CacheManager
from practice_cache.infrastructure.monitoring.apm_service import APMService
from practice_cache.infrastructure.monitoring.metrics_collector import get_metrics_collector

router = APIRouter(prefix="/health", tags=["Health"])


class HealthResponse(BaseModel):
    status: str  # "healthy", "unhealthy", "unavailable"
    timestamp: str  # ISO 8601
    components: dict | None = None


class RealTimeMetricsResponse(BaseModel):
    range: str
    total_requests: int
    avg_response_time: int
    error_count: int
    error_rate: float
    requests_per_minute: int


@router.get("", response_model=HealthResponse)
async def health_check(cache: CacheManager = Depends(get_cache)):
    """
    Report cache store health.

    An unconfigured store ("unavailable") is still a 200: the service
    degrades to cache misses and the in-memory rate limiter.
    """
    cache_health = await cache.health_check()
    status = cache_health.get("status", "unhealthy")

    body = HealthResponse(
        status=status,
        timestamp=datetime.now(timezone.utc).isoformat(),
        components={"cache": cache_health},
    )
    status_code = 503 if status == "unhealthy" else 200
    return JSONResponse(status_code=status_code, content=body.model_dump())


@router.get("/metrics", response_model=RealTimeMetricsResponse)
async def realtime_metrics(
    time_range: Literal["1h", "24h"] = Query(default="1h", alias="range"),
    apm: APMService = Depends(get_apm),
):
    """Request totals, latency and error rate for the current hour or day bucket."""
    metrics = await apm.get_real_time_metrics(time_range)
    return RealTimeMetricsResponse(range=time_range, **metrics)


@router.get("/prometheus")
async def prometheus_metrics():
    metrics = get_metrics_collector()
    return Response(content=metrics.get_prometheus_metrics(), media_type=metrics.get_content_type())

"""
APM Middleware

Times every request and reports it to the APM sink:
- Assigns the request id (X-Request-ID header or a new uuid4) for log correlation
- Reports duration and status through APMService.track_request_nowait
- Reports unhandled exceptions through APMService.track_error, then re-raises
- Adds X-Response-Time and X-Request-ID response headers
"""

import time
import traceback
import uuid
from collections.abc import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from practice_cache.core.config.constants import (
    HEADER_CLINIC_ID,
    HEADER_REQUEST_ID,
    HEADER_RESPONSE_TIME,
    HEADER_USER_ID,
)
from practice_cache.core.interfaces.metrics_history import ErrorLog, PerformanceMetric
from practice_cache.core.logging.logger import clear_request_id, get_logger, set_request_id
from practice_cache.infrastructure.monitoring.apm_service import APMService, get_apm_service
from practice_cache.infrastructure.monitoring.metrics_collector import get_metrics_collector
from practice_cache.rate_limiting.rate_limiter import get_client_ip

logger = get_logger(__name__)

# Threshold for logging slow requests (in seconds)
SLOW_REQUEST_THRESHOLD = 1.0


class APMMiddleware(BaseHTTPMiddleware):
    """Request timing and error reporting."""

    def __init__(self, app, apm: APMService | None = None, slow_threshold: float = SLOW_REQUEST_THRESHOLD):
        super().__init__(app)
        self._apm = apm
        self.slow_threshold = slow_threshold

    def _get_apm(self, request: Request) -> APMService:
        return self._apm or getattr(request.app.state, "apm", None) or get_apm_service()

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(HEADER_REQUEST_ID) or str(uuid.uuid4())
        set_request_id(request_id)

        apm = self._get_apm(request)
        start_time = time.perf_counter()

        try:
            try:
                response = await call_next(request)
            except Exception as e:
                await apm.track_error(
                    ErrorLog(
                        endpoint=request.url.path,
                        method=request.method,
                        error=str(e) or type(e).__name__,
                        stack=traceback.format_exc(),
                        **self._caller_fields(request),
                    )
                )
                raise

            duration = time.perf_counter() - start_time
            duration_ms = round(duration * 1000, 2)

            if duration > self.slow_threshold:
                logger.warning(
                    f"Slow request detected: {request.method} {request.url.path}",
                    method=request.method,
                    path=request.url.path,
                    duration_seconds=round(duration, 4),
                    threshold_seconds=self.slow_threshold,
                )

            apm.track_request_nowait(
                PerformanceMetric(
                    endpoint=request.url.path,
                    method=request.method,
                    duration=duration_ms,
                    status_code=response.status_code,
                    **self._caller_fields(request),
                )
            )
            get_metrics_collector().record_http_request(request.method, response.status_code, duration)

            response.headers[HEADER_RESPONSE_TIME] = f"{duration_ms}ms"
            response.headers[HEADER_REQUEST_ID] = request_id
            return response

        finally:
            clear_request_id()

    @staticmethod
    def _caller_fields(request: Request) -> dict[str, str | None]:
        return {
            "user_id": request.headers.get(HEADER_USER_ID),
            "clinic_id": request.headers.get(HEADER_CLINIC_ID),
            "user_agent": request.headers.get("user-agent"),
            "ip_address": get_client_ip(request),
        }

"""
Metrics History Protocol

Durable storage for request telemetry lives outside this package (the
relational store owned by the data-access layer). This module defines the
records the APM sink produces and the protocol a history backend must
satisfy.

Architectural Decision: Protocol-based abstraction
- The APM sink only depends on this interface
- NullHistoryStore is the default when no backend is wired in
- InMemoryHistoryStore serves tests and development

Author: Platform Team
Date: 2025-11-18
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol, runtime_checkable


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PerformanceMetric:
    endpoint: str
    method: str
    duration: float  # milliseconds
    status_code: int
    user_id: str | None = None
    clinic_id: str | None = None
    user_agent: str | None = None
    ip_address: str | None = None
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass
class ErrorLog:
    endpoint: str
    method: str
    error: str
    stack: str | None = None
    user_id: str | None = None
    clinic_id: str | None = None
    user_agent: str | None = None
    ip_address: str | None = None
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass
class WebVitalMetric:
    name: str  # LCP, FID, CLS, INP, TTFB
    value: float
    rating: str  # good, needs-improvement, poor
    page: str
    user_id: str | None = None
    clinic_id: str | None = None
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass
class SlowQuery:
    query: str
    duration: float  # milliseconds
    endpoint: str | None = None
    model: str | None = None
    timestamp: datetime = field(default_factory=_utcnow)


@runtime_checkable
class MetricsHistoryStore(Protocol):
    """
    Protocol for durable telemetry storage.

    Writes are fire-and-forget from the APM sink's point of view: failures
    are logged and never reach the request path.
    """

    async def record_request(self, metric: PerformanceMetric) -> None:
        ...

    async def record_error(self, error: ErrorLog) -> None:
        ...

    async def record_web_vital(self, metric: WebVitalMetric) -> None:
        ...

    async def record_slow_query(self, query: SlowQuery) -> None:
        ...

    async def fetch_requests(self, since: datetime, limit: int = 1000) -> list[PerformanceMetric]:
        """Newest first."""
        ...

    async def fetch_errors(self, since: datetime, limit: int = 100) -> list[ErrorLog]:
        """Newest first."""
        ...

    async def fetch_slow_queries(self, since: datetime, limit: int = 50) -> list[SlowQuery]:
        """Slowest first."""
        ...


class NullHistoryStore:
    """Discards writes and reports no history."""

    async def record_request(self, metric: PerformanceMetric) -> None:
        return None

    async def record_error(self, error: ErrorLog) -> None:
        return None

    async def record_web_vital(self, metric: WebVitalMetric) -> None:
        return None

    async def record_slow_query(self, query: SlowQuery) -> None:
        return None

    async def fetch_requests(self, since: datetime, limit: int = 1000) -> list[PerformanceMetric]:
        return []

    async def fetch_errors(self, since: datetime, limit: int = 100) -> list[ErrorLog]:
        return []

    async def fetch_slow_queries(self, since: datetime, limit: int = 50) -> list[SlowQuery]:
        return []


class InMemoryHistoryStore:
    """
    List-backed history store for tests and development.

    Note: This is NOT shared across processes and grows without bound.
    """

    def __init__(self):
        self.requests: list[PerformanceMetric] = []
        self.errors: list[ErrorLog] = []
        self.web_vitals: list[WebVitalMetric] = []
        self.slow_queries: list[SlowQuery] = []

    async def record_request(self, metric: PerformanceMetric) -> None:
        self.requests.append(metric)

    async def record_error(self, error: ErrorLog) -> None:
        self.errors.append(error)

    async def record_web_vital(self, metric: WebVitalMetric) -> None:
        self.web_vitals.append(metric)

    async def record_slow_query(self, query: SlowQuery) -> None:
        self.slow_queries.append(query)

    async def fetch_requests(self, since: datetime, limit: int = 1000) -> list[PerformanceMetric]:
        rows = [m for m in self.requests if m.timestamp >= since]
        return sorted(rows, key=lambda m: m.timestamp, reverse=True)[:limit]

    async def fetch_errors(self, since: datetime, limit: int = 100) -> list[ErrorLog]:
        rows = [e for e in self.errors if e.timestamp >= since]
        return sorted(rows, key=lambda e: e.timestamp, reverse=True)[:limit]

    async def fetch_slow_queries(self, since: datetime, limit: int = 50) -> list[SlowQuery]:
        rows = [q for q in self.slow_queries if q.timestamp >= since]
        return sorted(rows, key=lambda q: q.duration, reverse=True)[:limit]

"""
Core Interfaces Module

Protocols for external collaborators, so components can be wired with
real implementations in production and in-memory ones in tests.

Components:
-----------
- **metrics_history.py**: MetricsHistoryStore protocol for durable APM history

Usage:
------
```python
from practice_cache.core.interfaces import MetricsHistoryStore, NullHistoryStore

apm = APMService(cache, history_store=NullHistoryStore())
```
"""

from practice_cache.core.interfaces.metrics_history import (
    ErrorLog,
    InMemoryHistoryStore,
    MetricsHistoryStore,
    NullHistoryStore,
    PerformanceMetric,
    SlowQuery,
    WebVitalMetric,
)

__all__ = [
    "ErrorLog",
    "InMemoryHistoryStore",
    "MetricsHistoryStore",
    "NullHistoryStore",
    "PerformanceMetric",
    "SlowQuery",
    "WebVitalMetric",
]

#!/usr/bin/env python3
"""
Query Cache Wrapper

Domain-oriented helpers used by the data-access layer:
- Deterministic, sanitized cache keys built from tenant/entity ids and filters
- A per-process tagged tier in front of the shared store, so repeated
  renders in one process skip the network round-trip
- Invalidation helpers called by mutation code paths

Architecture:
    QueryCache (Public API)
        ├── LocalTagCache (in-process LRU with expiry and tags)
        └── CacheManager (shared store, single-flight get_or_set)

Key layout:
    analytics:<clinic|all>:<user>:<filters>
    patient:<clinic>:<patient>
    patients:<clinic>:<filters>
    appointment:<clinic>:<appointment>
    appointments:<clinic>:<filters>

Author: Platform Team
Date: 2025-11-18
"""

import asyncio
import fnmatch
import re
import time
from collections import OrderedDict
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

import orjson

from practice_cache.core.config.constants import (
    CLINIC_SCOPED_PREFIXES,
    KEY_PREFIX_ANALYTICS,
    KEY_PREFIX_APPOINTMENT,
    KEY_PREFIX_APPOINTMENTS,
    KEY_PREFIX_PATIENT,
    KEY_PREFIX_PATIENTS,
    CacheTTL,
    Stage,
)
from practice_cache.core.config.settings import Settings, get_settings
from practice_cache.core.exceptions import CacheSerializationError
from practice_cache.core.logging.logger import get_logger, log_stage
from practice_cache.infrastructure.cache import serialization
from practice_cache.infrastructure.cache.cache_manager import CacheManager, Fetcher, get_cache_manager

logger = get_logger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


# =============================================================================
# KEY BUILDING
# =============================================================================


def sanitize_key_part(part: Any) -> str:
    """Replace every character outside [a-zA-Z0-9_-] with an underscore."""
    return _UNSAFE_KEY_CHARS.sub("_", str(part))


def build_key(prefix: str, *parts: Any) -> str:
    """
    Build a colon-delimited cache key.

    None parts are dropped; the rest are sanitized, so free-text filter
    values can never introduce extra separators or glob characters.

    Example:
        >>> build_key("patient", "123", "clinic-456")
        'patient:123:clinic-456'
        >>> build_key("test", "key with spaces", None, "a/b")
        'test:key_with_spaces:a_b'
    """
    clean = [sanitize_key_part(part) for part in parts if part is not None]
    return f"{prefix}:{':'.join(clean)}"


def filter_key(filters: Any) -> str:
    """Stable JSON form of a filter object (keys sorted)."""
    return orjson.dumps(filters if filters is not None else {}, option=orjson.OPT_SORT_KEYS, default=str).decode()


# =============================================================================
# LAYER 1: LOCAL TAGGED STORAGE
# =============================================================================


@dataclass
class LocalEntry:
    value: Any
    expires_at: float
    tags: frozenset[str] = field(default_factory=frozenset)


class LocalTagCache:
    """
    In-memory LRU storage with per-entry expiry and tags.

    This is a per-process cache, not shared across workers.

    Implementation Details:
    - OrderedDict for O(1) access and LRU ordering
    - Guarded by asyncio.Lock
    - Expired entries are dropped lazily on read
    """

    def __init__(self, max_size: int, clock: Callable[[], float] = time.monotonic):
        self._max_size = max_size
        self._clock = clock
        self._entries: OrderedDict[str, LocalEntry] = OrderedDict()
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Any | None:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at <= self._clock():
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return entry.value

    async def set(self, key: str, value: Any, ttl: int, tags: Iterable[str] = ()) -> None:
        async with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
            self._entries[key] = LocalEntry(value, self._clock() + ttl, frozenset(tags))

            while len(self._entries) > self._max_size:
                self._entries.popitem(last=False)

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._entries.pop(key, None) is not None

    async def invalidate_tag(self, tag: str) -> int:
        """Drop every entry carrying ``tag``."""
        async with self._lock:
            doomed = [key for key, entry in self._entries.items() if tag in entry.tags]
            for key in doomed:
                del self._entries[key]
            return len(doomed)

    async def invalidate_pattern(self, pattern: str) -> int:
        """Drop every entry whose key matches a glob pattern."""
        async with self._lock:
            doomed = [key for key in self._entries if fnmatch.fnmatchcase(key, pattern)]
            for key in doomed:
                del self._entries[key]
            return len(doomed)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()

    def get_size(self) -> int:
        return len(self._entries)


# =============================================================================
# LAYER 2: PUBLIC API
# =============================================================================


class QueryCache:
    """
    Caches data-access results by tenant and entity.

    Usage:
        queries = get_query_cache()

        patient = await queries.cache_patient(clinic_id, patient_id, load_patient)
        ...
        await repository.update_patient(...)
        await queries.invalidate_patient_cache(clinic_id, patient_id)
    """

    def __init__(
        self,
        cache: CacheManager | None = None,
        settings: Settings | None = None,
        local: LocalTagCache | None = None,
    ):
        settings = settings or get_settings()
        self._cache = cache or get_cache_manager()
        self._local = local or LocalTagCache(max_size=settings.cache.QUERY_CACHE_L1_MAX_SIZE)

    @property
    def local(self) -> LocalTagCache:
        return self._local

    async def cache_query(
        self,
        key: str,
        fetcher: Fetcher,
        ttl: int = CacheTTL.MEDIUM,
        tags: Iterable[str] | None = None,
    ) -> Any:
        """
        Read-through lookup: local tier, then shared store, then fetcher.

        Args:
            key: Cache key (use ``build_key``)
            fetcher: Zero-argument callable, sync or async
            ttl: Lifetime in both tiers
            tags: Local invalidation tags
        """
        encoded = await self._local.get(key)
        if encoded is not None:
            return serialization.decode(encoded)

        value = await self._cache.get_or_set(key, fetcher, int(ttl))
        if value is None:
            return None

        # Local entries are encoded bytes; every hit decodes a fresh copy
        try:
            encoded = serialization.encode(value)
        except CacheSerializationError:
            return value
        await self._local.set(key, encoded, int(ttl), tags or ())
        return value

    # -------------------------------------------------------------------------
    # Domain wrappers
    # -------------------------------------------------------------------------

    async def cache_analytics(
        self,
        user_id: str,
        date_filter: Any,
        fetcher: Fetcher,
        ttl: int = CacheTTL.SHORT,
        clinic_id: str | None = None,
    ) -> Any:
        key = build_key(KEY_PREFIX_ANALYTICS, clinic_id or "all", user_id, filter_key(date_filter))
        tags = [f"analytics-user-{user_id}", f"user-{user_id}"]
        if clinic_id:
            tags.append(f"clinic-{clinic_id}")
        return await self.cache_query(key, fetcher, ttl, tags)

    async def cache_patient(
        self, clinic_id: str, patient_id: str, fetcher: Fetcher, ttl: int = CacheTTL.MEDIUM
    ) -> Any:
        key = build_key(KEY_PREFIX_PATIENT, clinic_id, patient_id)
        return await self.cache_query(key, fetcher, ttl, [f"patient-{patient_id}", f"clinic-{clinic_id}"])

    async def cache_patient_list(
        self, clinic_id: str, filters: Any, fetcher: Fetcher, ttl: int = CacheTTL.SHORT
    ) -> Any:
        key = build_key(KEY_PREFIX_PATIENTS, clinic_id, filter_key(filters))
        return await self.cache_query(key, fetcher, ttl, [f"patients-{clinic_id}", f"clinic-{clinic_id}"])

    async def cache_appointment(
        self, clinic_id: str, appointment_id: str, fetcher: Fetcher, ttl: int = CacheTTL.MEDIUM
    ) -> Any:
        key = build_key(KEY_PREFIX_APPOINTMENT, clinic_id, appointment_id)
        return await self.cache_query(
            key, fetcher, ttl, [f"appointment-{appointment_id}", f"clinic-{clinic_id}"]
        )

    async def cache_appointments(
        self, clinic_id: str, filters: Any, fetcher: Fetcher, ttl: int = CacheTTL.SHORT
    ) -> Any:
        key = build_key(KEY_PREFIX_APPOINTMENTS, clinic_id, filter_key(filters))
        return await self.cache_query(key, fetcher, ttl, [f"appointments-{clinic_id}", f"clinic-{clinic_id}"])

    # -------------------------------------------------------------------------
    # Invalidation
    # -------------------------------------------------------------------------

    async def invalidate_tag(self, tag: str) -> int:
        """Drop local entries carrying ``tag``. The shared store is untouched."""
        return await self._local.invalidate_tag(tag)

    async def invalidate_clinic_cache(self, clinic_id: str) -> int:
        """
        Drop everything cached for a clinic, in both tiers.

        Returns:
            Number of shared-store keys deleted
        """
        clinic = sanitize_key_part(clinic_id)
        await self._local.invalidate_tag(f"clinic-{clinic_id}")
        deleted = 0
        for prefix in CLINIC_SCOPED_PREFIXES:
            deleted += await self._drop_pattern(f"{prefix}:{clinic}:*")
        log_stage(logger, Stage.CACHE_INVALIDATE, "Clinic cache invalidated", clinic_id=clinic_id, deleted=deleted)
        return deleted

    async def invalidate_user_cache(self, user_id: str) -> int:
        """Drop analytics cached for a user across all clinics."""
        user = sanitize_key_part(user_id)
        await self._local.invalidate_tag(f"analytics-user-{user_id}")
        await self._local.invalidate_tag(f"user-{user_id}")
        return await self._drop_pattern(f"{KEY_PREFIX_ANALYTICS}:*:{user}:*")

    async def invalidate_patient_cache(self, clinic_id: str, patient_id: str) -> int:
        """Drop one patient and every patient list of the clinic."""
        clinic = sanitize_key_part(clinic_id)
        key = build_key(KEY_PREFIX_PATIENT, clinic_id, patient_id)

        await self._local.invalidate_tag(f"patient-{patient_id}")
        await self._local.invalidate_tag(f"patients-{clinic_id}")
        await self._local.delete(key)

        deleted = await self._cache.delete_many([key])
        deleted += await self._drop_pattern(f"{key}:*")
        deleted += await self._drop_pattern(f"{KEY_PREFIX_PATIENTS}:{clinic}:*")
        return deleted

    async def invalidate_appointment_cache(self, clinic_id: str, appointment_id: str | None = None) -> int:
        """Drop one appointment (when given) and every appointment list of the clinic."""
        clinic = sanitize_key_part(clinic_id)
        deleted = 0

        if appointment_id is not None:
            key = build_key(KEY_PREFIX_APPOINTMENT, clinic_id, appointment_id)
            await self._local.invalidate_tag(f"appointment-{appointment_id}")
            await self._local.delete(key)
            deleted += await self._cache.delete_many([key])
            deleted += await self._drop_pattern(f"{key}:*")

        await self._local.invalidate_tag(f"appointments-{clinic_id}")
        deleted += await self._drop_pattern(f"{KEY_PREFIX_APPOINTMENTS}:{clinic}:*")
        return deleted

    async def _drop_pattern(self, pattern: str) -> int:
        await self._local.invalidate_pattern(pattern)
        return await self._cache.delete_by_pattern(pattern)


# =============================================================================
# GLOBAL INSTANCE (SINGLETON PATTERN)
# =============================================================================

_query_cache: QueryCache | None = None


def get_query_cache() -> QueryCache:
    """Get the global query cache instance (singleton)."""
    global _query_cache

    if _query_cache is None:
        _query_cache = QueryCache()

    return _query_cache


def reset_query_cache() -> None:
    """Drop the global query cache (tests)."""
    global _query_cache
    _query_cache = None

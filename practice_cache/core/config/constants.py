"""
System Constants and Enumerations

This module defines the constants and enumerations shared by the caching
and rate-limiting layer of the practice-management service.

Architectural Decision: Centralized constants for maintainability
- Single source of truth for TTL tiers, key prefixes and budgets
- Type-safe enums for limiter classes and stage identifiers
- Easy to update and track changes

Author: Platform Team
Date: 2025-11-18
"""

from enum import Enum, IntEnum

# ============================================================================
# Stage Identifiers (for structured logging)
# ============================================================================


class Stage(str, Enum):
    """
    Processing stages used as the ``stage`` field of log events.

    Format: {COMPONENT}.{STEP}

    Examples:
        log_stage(logger, Stage.CACHE_GET, "Cache hit", cache_key="patient:c1:p1")
    """

    KV_INIT = "KV.1"
    KV_GET = "KV.GET"
    KV_SET = "KV.SET"
    KV_DEL = "KV.DEL"
    KV_SCAN = "KV.SCAN"
    KV_TTL = "KV.TTL"
    KV_EXISTS = "KV.EXISTS"

    CACHE_GET = "CACHE.GET"
    CACHE_SET = "CACHE.SET"
    CACHE_FETCH = "CACHE.FETCH"
    CACHE_INVALIDATE = "CACHE.INVALIDATE"
    CACHE_SWR = "CACHE.SWR"
    CACHE_VERSION = "CACHE.VERSION"

    RATE_LIMIT = "RL.CHECK"
    RATE_LIMIT_FALLBACK = "RL.FALLBACK"

    APM = "APM.TRACK"
    APM_STATS = "APM.STATS"


# ============================================================================
# Cache TTL Tiers
# ============================================================================


class CacheTTL(IntEnum):
    """
    Cache lifetimes in seconds for different query types.

    SHORT: frequently changing data (dashboards, analytics)
    MEDIUM: entity lookups (patients, appointments)
    LONG: slow-moving reference data
    VERY_LONG: stale copies kept for stale-while-revalidate
    """

    SHORT = 60
    MEDIUM = 300
    LONG = 3600
    VERY_LONG = 86400


# ============================================================================
# Cache Limits
# ============================================================================

MAX_CACHE_VALUE_BYTES = 1024 * 1024  # 1 MiB serialized payload
GET_MAX_RETRIES = 3
RETRY_BASE_DELAY = 0.1  # seconds, doubled per attempt
SCAN_BATCH_SIZE = 100
SWR_REFRESH_RATIO = 0.1  # refresh once less than 10% of the fresh TTL remains
L1_CACHE_MAX_SIZE = 1000

# ============================================================================
# Redis Key Prefixes
# ============================================================================

REDIS_KEY_CACHE_VERSION = "cache:version"
REDIS_KEY_RATE_LIMIT = "ratelimit"
REDIS_KEY_APM = "apm"

SWR_FRESH_SUFFIX = "fresh"
SWR_STALE_SUFFIX = "stale"

# Domain key prefixes used by the query cache
KEY_PREFIX_ANALYTICS = "analytics"
KEY_PREFIX_PATIENT = "patient"
KEY_PREFIX_PATIENTS = "patients"
KEY_PREFIX_APPOINTMENT = "appointment"
KEY_PREFIX_APPOINTMENTS = "appointments"

CLINIC_SCOPED_PREFIXES = (
    KEY_PREFIX_ANALYTICS,
    KEY_PREFIX_PATIENT,
    KEY_PREFIX_PATIENTS,
    KEY_PREFIX_APPOINTMENT,
    KEY_PREFIX_APPOINTMENTS,
)

# ============================================================================
# Rate Limiting
# ============================================================================


class LimiterClass(str, Enum):
    """
    Endpoint classes with independent rate-limit budgets.
    """

    API = "api"
    AUTH = "auth"
    UPLOAD = "upload"
    PASSWORD_RESET = "passwordReset"
    EMAIL_VERIFICATION = "emailVerification"
    INVITATION = "invitation"


# ============================================================================
# APM
# ============================================================================

DEFAULT_SLOW_QUERY_THRESHOLD_MS = 500
APM_REQUEST_TTL = 3600
APM_ERROR_TTL = 86400
SLOW_QUERY_MAX_LENGTH = 1000

# Stats bucket lifetimes (seconds)
STATS_MINUTE_BUCKET_TTL = 300
STATS_HOUR_BUCKET_TTL = 3600
STATS_DAY_BUCKET_TTL = 86400

# ============================================================================
# HTTP Headers
# ============================================================================

HEADER_REQUEST_ID = "X-Request-ID"
HEADER_USER_ID = "X-User-ID"
HEADER_CLINIC_ID = "X-Clinic-ID"
HEADER_FORWARDED_FOR = "X-Forwarded-For"
HEADER_REAL_IP = "X-Real-IP"
HEADER_RATE_LIMIT = "X-RateLimit-Limit"
HEADER_RATE_REMAINING = "X-RateLimit-Remaining"
HEADER_RATE_RESET = "X-RateLimit-Reset"
HEADER_RETRY_AFTER = "Retry-After"
HEADER_RESPONSE_TIME = "X-Response-Time"

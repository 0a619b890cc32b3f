"""Usage-limits client and caching.

Modules:
    client: OAuth usage endpoint client with cache fallback
    cache: On-disk limits cache with legacy file support
"""

from claude_keepalive.api.cache import (
    LEGACY_CACHE_FILES,
    LIMITS_CACHE_FILE,
    LimitsCacheEntry,
    load_limits_cache,
    save_limits_cache,
)
from claude_keepalive.api.client import (
    API_BETA_HEADER,
    API_URL,
    LimitsResult,
    LimitsStatus,
    fetch_usage,
    fetch_usage_limits,
    limit_ok,
    limits_ok,
)

__all__ = [
    # Cache
    "LIMITS_CACHE_FILE",
    "LEGACY_CACHE_FILES",
    "LimitsCacheEntry",
    "load_limits_cache",
    "save_limits_cache",
    # Client
    "API_URL",
    "API_BETA_HEADER",
    "LimitsStatus",
    "LimitsResult",
    "limit_ok",
    "limits_ok",
    "fetch_usage",
    "fetch_usage_limits",
]

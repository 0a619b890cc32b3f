"""Usage-limits client for the Claude Code OAuth usage endpoint.

Lookup order: credential, live request, on-disk cache. Every failure
short of "no signal at all" degrades to the cache, with an age so the
caller can decide whether stale data is good enough.
"""

from __future__ import annotations

import http.client
import json
import math
import socket
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from claude_keepalive._version import __version__
from claude_keepalive.api.cache import load_limits_cache, pick_limits, save_limits_cache
from claude_keepalive.config.credentials import get_oauth_token
from claude_keepalive.errors import (
    APIError,
    AuthenticationExpiredError,
    KeepaliveError,
    categorize_http_error,
    categorize_network_error,
)
from claude_keepalive.log import get_logger
from claude_keepalive.utils.time import now_ms

# API endpoint
API_URL = "https://api.anthropic.com/api/oauth/usage"
API_BETA_HEADER = "oauth-2025-04-20"

DEFAULT_TIMEOUT = 10  # seconds
DEFAULT_MAX_AGE_MINUTES = 360

TOKEN_EXPIRED = "token_expired"

logger = get_logger(__name__)


class LimitsStatus(str, Enum):
    """How a limits lookup was resolved."""

    NO_CREDENTIAL = "no_credential"
    LIVE_OK = "live_ok"
    LIVE_FAILED = "live_failed"
    CACHE_FRESH = "cache_fresh"
    CACHE_STALE = "cache_stale"
    CACHE_MISS = "cache_miss"
    TOKEN_EXPIRED = "token_expired"


@dataclass
class LimitsResult:
    """Outcome of fetch_usage_limits().

    Attributes:
        limits: {'five_hour': {...}, 'seven_day': {...}} or None when only
            a token-expired signal is available.
        status: LIVE_OK, CACHE_FRESH, CACHE_STALE or TOKEN_EXPIRED.
        stale: True when the data is older than the requested max age.
        age_minutes: Age of the data (0 for live data).
        fallback_from: Why the cache was consulted (NO_CREDENTIAL or
            LIVE_FAILED), None for live data.
        error_code: 'token_expired' when the live call rejected the token.
        extra_usage: The API's extra_usage object, when known.
    """

    limits: Optional[dict[str, Any]]
    status: LimitsStatus
    stale: bool = False
    age_minutes: Optional[float] = None
    fallback_from: Optional[LimitsStatus] = None
    error_code: Optional[str] = None
    extra_usage: Optional[dict[str, Any]] = None

    @property
    def is_live(self) -> bool:
        return self.status is LimitsStatus.LIVE_OK

    @property
    def token_expired(self) -> bool:
        return self.error_code == TOKEN_EXPIRED


def limit_ok(limit: Any) -> bool:
    """True iff the window's utilization is a finite number below 100."""
    if not isinstance(limit, dict):
        return False
    utilization = limit.get("utilization")
    if isinstance(utilization, bool) or not isinstance(utilization, (int, float)):
        return False
    return math.isfinite(utilization) and utilization < 100


def limits_ok(limits: Optional[dict[str, Any]]) -> bool:
    """True iff both the five-hour and seven-day windows are ok."""
    if not limits:
        return False
    return limit_ok(limits.get("five_hour")) and limit_ok(limits.get("seven_day"))


def _read_error_body(error: HTTPError) -> str:
    try:
        return error.read().decode("utf-8", errors="replace")
    except (OSError, AttributeError, TypeError):
        return ""


def fetch_usage(token: str, timeout: int = DEFAULT_TIMEOUT) -> dict:
    """Fetch current usage from the OAuth endpoint.

    Args:
        token: OAuth access token.
        timeout: Request timeout in seconds.

    Returns:
        Usage data dictionary with 'five_hour', 'seven_day', etc. keys.

    Raises:
        AuthenticationExpiredError: If the token was rejected.
        KeepaliveError: For any other HTTP, network or decoding failure.
    """
    req = Request(
        API_URL,
        headers={
            "Accept": "application/json",
            "Authorization": f"Bearer {token}",
            "anthropic-beta": API_BETA_HEADER,
            "Content-Type": "application/json",
            "User-Agent": f"claude-keepalive/{__version__}",
        },
    )

    try:
        with urlopen(req, timeout=timeout) as response:
            data = json.loads(response.read().decode())
    except HTTPError as e:
        if e.code == 403:
            body = _read_error_body(e).lower()
            if "token" in body and ("expired" in body or "invalid" in body):
                raise AuthenticationExpiredError("OAuth token expired or revoked.") from None
        raise categorize_http_error(e.code, str(e.reason or "")) from e
    except URLError as e:
        raise categorize_network_error(str(e.reason)) from e
    except (socket.timeout, TimeoutError) as e:
        raise categorize_network_error("timed out") from e
    except (OSError, http.client.HTTPException) as e:
        raise categorize_network_error(str(e) or type(e).__name__) from e
    except ValueError as e:
        raise APIError("Usage endpoint returned invalid JSON.", details=str(e)) from e

    if not isinstance(data, dict):
        raise APIError("Usage endpoint returned an unexpected payload.")
    return data


def _from_cache(
    allow_stale: bool,
    max_age_minutes: float,
    now: int,
    fallback_from: LimitsStatus,
    error_code: Optional[str],
) -> Optional[LimitsResult]:
    entry = load_limits_cache()
    if entry is None:
        logger.debug("limits_cache_miss", fallback_from=fallback_from.value)
        return None

    age = entry.age_minutes(now)
    fresh = entry.is_fresh(max_age_minutes, now)
    if not fresh and not allow_stale:
        logger.debug("limits_cache_stale_rejected", age_minutes=round(age, 1))
        return None

    return LimitsResult(
        limits=entry.limits,
        status=LimitsStatus.CACHE_FRESH if fresh else LimitsStatus.CACHE_STALE,
        stale=not fresh,
        age_minutes=age,
        fallback_from=fallback_from,
        error_code=error_code,
        extra_usage=entry.extra_usage,
    )


def fetch_usage_limits(
    allow_cache: bool = True,
    allow_stale: bool = True,
    max_age_minutes: float = DEFAULT_MAX_AGE_MINUTES,
    timeout: int = DEFAULT_TIMEOUT,
    now: Optional[int] = None,
) -> Optional[LimitsResult]:
    """Fetch usage limits, falling back to the on-disk cache.

    Args:
        allow_cache: Consult the cache when the live call is impossible or fails.
        allow_stale: Accept a cache entry older than max_age_minutes.
        max_age_minutes: Freshness threshold for cached data.
        timeout: Live request timeout in seconds.
        now: Override for the current time in epoch ms.

    Returns:
        A LimitsResult, or None when no live or cached signal is usable
        and the token was not reported expired.
    """
    if now is None:
        now = now_ms()

    error_code: Optional[str] = None
    token = get_oauth_token()
    if token is None:
        fallback_from = LimitsStatus.NO_CREDENTIAL
    else:
        fallback_from = LimitsStatus.LIVE_FAILED
        try:
            data = fetch_usage(token, timeout=timeout)
        except AuthenticationExpiredError as e:
            logger.info("limits_token_expired", error=e.message)
            error_code = TOKEN_EXPIRED
        except KeepaliveError as e:
            logger.info("limits_fetch_failed", error=e.message)
        else:
            limits = pick_limits(data)
            if limits is not None:
                extra = data.get("extra_usage")
                extra = extra if isinstance(extra, dict) else None
                save_limits_cache(limits, extra, now=now)
                return LimitsResult(
                    limits=limits,
                    status=LimitsStatus.LIVE_OK,
                    age_minutes=0.0,
                    extra_usage=extra,
                )
            logger.info("limits_payload_invalid")

    result = None
    if allow_cache:
        result = _from_cache(allow_stale, max_age_minutes, now, fallback_from, error_code)
    if result is None and error_code == TOKEN_EXPIRED:
        return LimitsResult(
            limits=None,
            status=LimitsStatus.TOKEN_EXPIRED,
            fallback_from=fallback_from,
            error_code=error_code,
        )
    return result


__all__ = [
    "API_URL",
    "API_BETA_HEADER",
    "DEFAULT_TIMEOUT",
    "DEFAULT_MAX_AGE_MINUTES",
    "TOKEN_EXPIRED",
    "LimitsStatus",
    "LimitsResult",
    "limit_ok",
    "limits_ok",
    "fetch_usage",
    "fetch_usage_limits",
]

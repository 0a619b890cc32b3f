"""On-disk cache of the last successful usage-limits response.

The dedicated cache file is written after every live fetch. When it is
missing or unreadable, the newest of the legacy cache files is used so
older installs keep a signal while offline.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from claude_keepalive.config.settings import CACHE_DIR
from claude_keepalive.log import get_logger
from claude_keepalive.utils.time import now_ms, to_epoch_ms

# Cache file locations
LIMITS_CACHE_FILE = CACHE_DIR / "limits-cache.json"
LEGACY_CACHE_FILES = [
    Path.home() / ".cache" / "claude-dashboard" / "limits-cache.json",
    Path.home() / ".claude" / ".usage_cache.json",
]

LIMIT_WINDOWS = ("five_hour", "seven_day")

logger = get_logger(__name__)


@dataclass
class LimitsCacheEntry:
    """A cached limits payload and when it was fetched."""

    timestamp: int
    limits: dict[str, Any]
    extra_usage: Optional[dict[str, Any]] = None
    path: Optional[Path] = None

    def age_minutes(self, now: Optional[int] = None) -> float:
        if now is None:
            now = now_ms()
        return max(0.0, (now - self.timestamp) / 60000)

    def is_fresh(self, max_age_minutes: float, now: Optional[int] = None) -> bool:
        return self.age_minutes(now) <= max_age_minutes


def pick_limits(data: Any) -> Optional[dict[str, Any]]:
    """Keep only the limit windows of an API payload; None if it has neither."""
    if not isinstance(data, dict):
        return None
    if not any(isinstance(data.get(key), dict) for key in LIMIT_WINDOWS):
        return None
    return {key: data.get(key) for key in LIMIT_WINDOWS}


def parse_cache_payload(payload: Any, path: Optional[Path] = None) -> Optional[LimitsCacheEntry]:
    """Parse either cache layout into an entry.

    Accepts {timestamp: ms, limits: {...}} and the older
    {cached_at: ISO, data: {...}} layout.
    """
    if not isinstance(payload, dict):
        return None
    if "limits" in payload:
        timestamp = to_epoch_ms(payload.get("timestamp"))
        body = payload.get("limits")
        extra = payload.get("extra_usage")
    else:
        timestamp = to_epoch_ms(payload.get("cached_at") or payload.get("timestamp"))
        body = payload.get("data")
        extra = body.get("extra_usage") if isinstance(body, dict) else None
    limits = pick_limits(body)
    if timestamp is None or limits is None:
        return None
    return LimitsCacheEntry(
        timestamp=timestamp,
        limits=limits,
        extra_usage=extra if isinstance(extra, dict) else None,
        path=path,
    )


def read_cache_file(path: Path) -> Optional[LimitsCacheEntry]:
    """Read one cache file; None when absent or malformed."""
    try:
        with open(path, encoding="utf-8") as f:
            payload = json.load(f)
    except (OSError, ValueError):
        return None
    return parse_cache_payload(payload, path)


def load_limits_cache(
    cache_file: Optional[Path] = None,
    legacy_files: Optional[list[Path]] = None,
) -> Optional[LimitsCacheEntry]:
    """Load the most recent usable cache entry.

    Returns:
        The dedicated cache entry if valid, else the newest legacy entry,
        else None.
    """
    if cache_file is None:
        cache_file = LIMITS_CACHE_FILE
    if legacy_files is None:
        legacy_files = LEGACY_CACHE_FILES

    entry = read_cache_file(cache_file)
    if entry is not None:
        return entry

    legacy = [e for e in (read_cache_file(p) for p in legacy_files) if e is not None]
    if not legacy:
        return None
    newest = max(legacy, key=lambda e: e.timestamp)
    logger.debug("limits_cache_legacy", path=str(newest.path))
    return newest


def save_limits_cache(
    limits: dict[str, Any],
    extra_usage: Optional[dict[str, Any]] = None,
    cache_file: Optional[Path] = None,
    now: Optional[int] = None,
) -> None:
    """Persist limits to the dedicated cache file (best-effort)."""
    if cache_file is None:
        cache_file = LIMITS_CACHE_FILE
    payload: dict[str, Any] = {
        "timestamp": now if now is not None else now_ms(),
        "limits": limits,
    }
    if extra_usage is not None:
        payload["extra_usage"] = extra_usage
    try:
        cache_file.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
        with open(cache_file, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)
        os.chmod(cache_file, 0o600)
    except OSError as e:
        logger.debug("limits_cache_write_failed", error=str(e))


__all__ = [
    "LIMITS_CACHE_FILE",
    "LEGACY_CACHE_FILES",
    "LIMIT_WINDOWS",
    "LimitsCacheEntry",
    "pick_limits",
    "parse_cache_payload",
    "read_cache_file",
    "load_limits_cache",
    "save_limits_cache",
]

"""Time parsing and formatting utilities.

Activity timestamps are carried as integer milliseconds since the epoch;
these helpers convert from the formats found in transcripts and API
responses and render ages for the status menu.
"""

from __future__ import annotations

import math
import re
import time
from datetime import datetime, timezone
from typing import Optional

_FRACTION = re.compile(r"\.\d+")


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def parse_iso_timestamp(iso_str: str) -> datetime:
    """Parse an ISO 8601 timestamp string to an aware datetime.

    Handles a trailing Z, arbitrary fractional seconds and naive values
    (treated as UTC).

    Raises:
        ValueError: If the string is not an ISO 8601 timestamp.
    """
    iso_str = iso_str.strip().replace("Z", "+00:00").replace("z", "+00:00")
    try:
        parsed = datetime.fromisoformat(iso_str)
    except ValueError:
        parsed = datetime.fromisoformat(_FRACTION.sub("", iso_str, count=1))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_epoch_ms(value) -> Optional[int]:
    """Convert a transcript/API timestamp value to epoch milliseconds.

    Numbers are taken as milliseconds already; strings are parsed as ISO
    8601. Anything else (or an unparseable value) yields None.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value) if math.isfinite(value) else None
    if isinstance(value, str) and value.strip():
        try:
            return int(parse_iso_timestamp(value).timestamp() * 1000)
        except ValueError:
            return None
    return None


def format_age(timestamp_ms: Optional[float], now: Optional[int] = None) -> str:
    """Format the age of a timestamp as a compact string like '42s' or '3h'."""
    if not timestamp_ms:
        return "unknown"
    if now is None:
        now = now_ms()
    delta_ms = now - timestamp_ms
    if delta_ms < 0:
        return "in future"

    seconds = int(delta_ms // 1000)
    if seconds < 60:
        return f"{seconds}s"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes}m"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h"
    return f"{hours // 24}d"


def format_age_from_minutes(minutes: Optional[float]) -> str:
    """Format an age given in minutes, rounding to the largest unit."""
    if not isinstance(minutes, (int, float)) or not math.isfinite(minutes):
        return "unknown"
    if minutes < 60:
        return f"{round(minutes)}m"
    hours = round(minutes / 60)
    if hours < 24:
        return f"{hours}h"
    return f"{round(hours / 24)}d"


def format_reset_time(value: Optional[str], now: Optional[int] = None) -> str:
    """Format a reset timestamp as time remaining: 'now', '45m', '2h 5m', '3d 1h 0m'."""
    ts = to_epoch_ms(value) if value else None
    if ts is None:
        return "unknown"
    if now is None:
        now = now_ms()
    total_minutes = max(0, math.ceil((ts - now) / 60000))
    if total_minutes == 0:
        return "now"
    if total_minutes < 60:
        return f"{total_minutes}m"
    if total_minutes < 1440:
        return f"{total_minutes // 60}h {total_minutes % 60}m"
    days, remainder = divmod(total_minutes, 1440)
    return f"{days}d {remainder // 60}h {remainder % 60}m"


def format_clock(value: str) -> str:
    """Format a timestamp as local clock time like '9:30 AM'."""
    local_dt = parse_iso_timestamp(value).astimezone()
    # %I is zero-padded everywhere; strip the pad manually for portability
    return local_dt.strftime("%I:%M %p").lstrip("0")


def format_reset_time_with_clock(value: Optional[str], now: Optional[int] = None) -> str:
    """Relative reset time followed by the local clock time."""
    if not value or to_epoch_ms(value) is None:
        return "unknown"
    return f"{format_reset_time(value, now)} ({format_clock(value)})"


def local_date_key(dt: datetime) -> str:
    """YYYY-MM-DD key in local time."""
    return dt.astimezone().strftime("%Y-%m-%d") if dt.tzinfo else dt.strftime("%Y-%m-%d")


def local_month_key(dt: datetime) -> str:
    """YYYY-MM key in local time."""
    return local_date_key(dt)[:7]


__all__ = [
    "now_ms",
    "parse_iso_timestamp",
    "to_epoch_ms",
    "format_age",
    "format_age_from_minutes",
    "format_reset_time",
    "format_clock",
    "format_reset_time_with_clock",
    "local_date_key",
    "local_month_key",
]

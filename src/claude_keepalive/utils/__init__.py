"""Utility functions.

Modules:
    time: Timestamp parsing and age/reset formatting
"""

from claude_keepalive.utils.time import (
    format_age,
    format_reset_time,
    now_ms,
    parse_iso_timestamp,
    to_epoch_ms,
)

__all__ = [
    "now_ms",
    "parse_iso_timestamp",
    "to_epoch_ms",
    "format_age",
    "format_reset_time",
]

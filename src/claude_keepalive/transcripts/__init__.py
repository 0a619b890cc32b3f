"""Transcript discovery and activity timestamps.

Modules:
    locator: Find the most recently modified transcript file
    reader: Extract activity timestamps from a bounded read window
"""

from claude_keepalive.transcripts.locator import (
    TranscriptFile,
    find_latest_transcript,
    get_search_dirs,
)
from claude_keepalive.transcripts.reader import (
    get_latest_activity_cwd,
    get_latest_activity_timestamp,
    get_session_start_timestamp,
    read_first_timestamp,
    read_last_timestamp,
)

__all__ = [
    "TranscriptFile",
    "get_search_dirs",
    "find_latest_transcript",
    "read_last_timestamp",
    "read_first_timestamp",
    "get_latest_activity_timestamp",
    "get_session_start_timestamp",
    "get_latest_activity_cwd",
]

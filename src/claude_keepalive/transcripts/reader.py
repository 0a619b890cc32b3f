"""Read activity timestamps from a bounded window of a transcript.

Only the last (or first) N bytes of a file are read, so a multi-megabyte
log costs the same as a small one. A line cut in half by the window edge
fails to parse and is skipped.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, List, Optional

from claude_keepalive.config.settings import KeeperConfig
from claude_keepalive.log import get_logger
from claude_keepalive.transcripts.locator import find_latest_transcript, get_search_dirs
from claude_keepalive.utils.time import to_epoch_ms

HEAD_BYTES_LIMIT = 256 * 1024

logger = get_logger(__name__)


def _dig(*keys: str) -> Callable[[Any], Any]:
    def extract(record: Any) -> Any:
        value = record
        for key in keys:
            if not isinstance(value, dict):
                return None
            value = value.get(key)
        return value

    return extract


# Tried in order; first extractor yielding a parseable timestamp wins
TIMESTAMP_EXTRACTORS: List[Callable[[Any], Any]] = [
    _dig("timestamp"),
    _dig("snapshot", "timestamp"),
    _dig("message", "timestamp"),
    _dig("data", "timestamp"),
]


def extract_timestamp(record: Any) -> Optional[int]:
    """Return the first parseable timestamp in a record, in epoch ms."""
    for extractor in TIMESTAMP_EXTRACTORS:
        value = extractor(record)
        if not value:
            continue
        ts = to_epoch_ms(value)
        if ts is not None:
            return ts
    return None


def read_window(path: Path, size: int, from_end: bool = True) -> bytes:
    """Read at most `size` bytes from the end (or start) of a file.

    Raises:
        OSError: If the file cannot be opened or read.
    """
    with open(path, "rb") as f:
        file_size = os.fstat(f.fileno()).st_size
        read_size = max(0, min(file_size, size))
        if from_end:
            f.seek(file_size - read_size)
        return f.read(read_size)


def iter_records(window: bytes, reverse: bool = False) -> Iterator[Any]:
    """Yield parsed JSON records from a byte window, skipping bad lines."""
    text = window.decode("utf-8", errors="replace")
    lines: Iterable[str] = [line.strip() for line in text.split("\n") if line.strip()]
    if reverse:
        lines = reversed(list(lines))
    for line in lines:
        try:
            yield json.loads(line)
        except ValueError:
            continue


def _read_timestamp(path: Path, window_bytes: int, latest: bool) -> Optional[int]:
    try:
        mtime_ms = int(os.stat(path).st_mtime_ns // 1_000_000)
        window = read_window(path, window_bytes, from_end=latest)
    except OSError as e:
        logger.debug("transcript_unreadable", path=str(path), error=str(e))
        return None

    for record in iter_records(window, reverse=latest):
        ts = extract_timestamp(record)
        if ts is not None:
            return ts
    return mtime_ms


def read_last_timestamp(path: Path, tail_bytes: int) -> Optional[int]:
    """Latest event timestamp in the tail window, else the file mtime.

    Returns None if the file cannot be stat'd or opened.
    """
    return _read_timestamp(Path(path), tail_bytes, latest=True)


def read_first_timestamp(path: Path, head_bytes: int) -> Optional[int]:
    """Earliest event timestamp in the head window, else the file mtime."""
    return _read_timestamp(Path(path), head_bytes, latest=False)


def read_last_cwd(path: Path, tail_bytes: int) -> Optional[str]:
    """Working directory of the latest record that names an existing one."""
    try:
        window = read_window(Path(path), tail_bytes)
    except OSError:
        return None
    for record in iter_records(window, reverse=True):
        cwd = record.get("cwd") if isinstance(record, dict) else None
        if isinstance(cwd, str) and cwd and os.path.isdir(cwd):
            return cwd
    return None


def resolve_transcript(config: KeeperConfig) -> Optional[Path]:
    """The configured transcript, or the most recently modified one found."""
    if config.transcript_path:
        return Path(config.transcript_path)
    latest = find_latest_transcript(get_search_dirs(), config.max_depth)
    return latest.path if latest else None


def get_latest_activity_timestamp(config: KeeperConfig) -> Optional[int]:
    """Last observed activity in epoch ms, or None when unknown."""
    path = resolve_transcript(config)
    if path is None:
        return None
    return read_last_timestamp(path, config.tail_bytes)


def get_session_start_timestamp(config: KeeperConfig) -> Optional[int]:
    """First event of the current transcript in epoch ms, or None."""
    path = resolve_transcript(config)
    if path is None:
        return None
    head_bytes = min(config.tail_bytes or HEAD_BYTES_LIMIT, HEAD_BYTES_LIMIT)
    return read_first_timestamp(path, head_bytes)


def get_latest_activity_cwd(config: KeeperConfig) -> Optional[str]:
    """Working directory of the latest session, or None."""
    path = resolve_transcript(config)
    if path is None:
        return None
    return read_last_cwd(path, config.tail_bytes)


__all__ = [
    "TIMESTAMP_EXTRACTORS",
    "extract_timestamp",
    "read_window",
    "iter_records",
    "read_last_timestamp",
    "read_first_timestamp",
    "read_last_cwd",
    "resolve_transcript",
    "get_latest_activity_timestamp",
    "get_session_start_timestamp",
    "get_latest_activity_cwd",
]

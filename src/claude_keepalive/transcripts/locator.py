"""Locate the most recently written transcript file.

Transcripts are line-delimited JSON logs written by the CLI under its
config directories. The locator walks a bounded number of levels below
each search directory and keeps the candidate with the newest mtime.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional

from claude_keepalive.log import get_logger

TRANSCRIPT_SUFFIX = ".jsonl"
TRANSCRIPT_KEYWORD = "transcript"
HISTORY_FILENAME = "history.jsonl"
PROJECTS_SEGMENT = "projects"
SKIP_DIRS = frozenset({"node_modules", ".git", "dist", "__pycache__", ".venv"})

CONFIG_DIR_ENV = "CLAUDE_CONFIG_DIR"
TRANSCRIPT_DIRS_ENV = "CLAUDE_TRANSCRIPT_DIRS"

logger = get_logger(__name__)


@dataclass(frozen=True)
class TranscriptFile:
    """A transcript candidate and its modification time."""

    path: Path
    mtime_ms: float


def get_search_dirs() -> List[Path]:
    """Return the directories to scan for transcripts, in priority order.

    CLAUDE_TRANSCRIPT_DIRS (os.pathsep separated) comes first, then the
    'projects' directory of every CLI config base: each entry of
    CLAUDE_CONFIG_DIR (comma separated), ~/.config/claude and ~/.claude.
    """
    dirs: List[Path] = []

    for part in os.environ.get(TRANSCRIPT_DIRS_ENV, "").split(os.pathsep):
        if part.strip():
            dirs.append(Path(part.strip()).expanduser())

    bases: List[Path] = []
    for part in os.environ.get(CONFIG_DIR_ENV, "").split(","):
        if part.strip():
            bases.append(Path(part.strip()).expanduser())
    home = Path.home()
    bases += [home / ".config" / "claude", home / ".claude"]

    dirs += [base / PROJECTS_SEGMENT for base in bases]
    return list(dict.fromkeys(dirs))


def is_projects_file(path: Path) -> bool:
    """True for a .jsonl file anywhere below a 'projects' directory."""
    return path.name.endswith(TRANSCRIPT_SUFFIX) and PROJECTS_SEGMENT in path.parts


def looks_like_transcript(name: str) -> bool:
    """True for a .jsonl file named like a transcript or the history log."""
    lower = name.lower()
    return name.endswith(TRANSCRIPT_SUFFIX) and (
        TRANSCRIPT_KEYWORD in lower or lower == HISTORY_FILENAME
    )


def find_latest_transcript(dirs: Iterable[Path], max_depth: int) -> Optional[TranscriptFile]:
    """Find the transcript with the greatest modification time.

    Args:
        dirs: Directories to walk, in priority order.
        max_depth: Levels of subdirectories to descend; each directory
            level consumes one, and a negative budget stops the walk.

    Returns:
        The newest candidate, or None if nothing matched. On equal mtimes
        the first one found wins; entries are visited in name order so
        the result is stable.
    """
    latest: Optional[TranscriptFile] = None

    def walk(directory: Path, depth: int) -> None:
        nonlocal latest
        if depth < 0:
            return
        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError:
            return

        for entry in entries:
            full_path = Path(entry.path)
            try:
                if entry.is_dir():
                    if entry.name not in SKIP_DIRS:
                        walk(full_path, depth - 1)
                    continue
                if not entry.is_file():
                    continue
                if not (is_projects_file(full_path) or looks_like_transcript(entry.name)):
                    continue
                mtime_ms = entry.stat().st_mtime_ns / 1_000_000
            except OSError:
                continue
            if latest is None or mtime_ms > latest.mtime_ms:
                latest = TranscriptFile(full_path, mtime_ms)

    for directory in dirs:
        walk(Path(directory), max_depth)

    if latest is not None:
        logger.debug("transcript_located", path=str(latest.path))
    return latest


__all__ = [
    "TranscriptFile",
    "SKIP_DIRS",
    "get_search_dirs",
    "is_projects_file",
    "looks_like_transcript",
    "find_latest_transcript",
]

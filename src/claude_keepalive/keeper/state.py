"""Persisted keeper state.

A single JSON file shared by the keeper (the only writer) and the status
renderer (read-only). No locking: the keeper's ticks are serialized, so
the last write always wins.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from claude_keepalive.config.settings import CACHE_DIR
from claude_keepalive.log import get_logger

STATE_FILE = CACHE_DIR / "active-session-keeper.json"
HISTORY_LIMIT = 20

_KNOWN_KEYS = ("lastLaunch", "history", "pauseUntil", "lastReauthOpen")

logger = get_logger(__name__)


def _ms(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value != value:
        return None
    return int(value)


@dataclass
class KeepaliveState:
    """Launch bookkeeping, pause window and re-auth throttle (epoch ms)."""

    last_launch: Optional[int] = None
    history: List[int] = field(default_factory=list)
    pause_until: Optional[int] = None
    last_reauth_open: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KeepaliveState":
        history = data.get("history")
        return cls(
            last_launch=_ms(data.get("lastLaunch")),
            history=[ts for ts in map(_ms, history) if ts is not None]
            if isinstance(history, list)
            else [],
            pause_until=_ms(data.get("pauseUntil")),
            last_reauth_open=_ms(data.get("lastReauthOpen")),
            extra={k: v for k, v in data.items() if k not in _KNOWN_KEYS},
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = dict(self.extra)
        data["lastLaunch"] = self.last_launch
        data["history"] = list(self.history)
        if self.pause_until is not None:
            data["pauseUntil"] = self.pause_until
        if self.last_reauth_open is not None:
            data["lastReauthOpen"] = self.last_reauth_open
        return data

    def is_paused(self, now: int) -> bool:
        return self.pause_until is not None and now < self.pause_until

    def cooldown_active(self, now: int, cooldown_minutes: float) -> bool:
        if not self.last_launch:
            return False
        return now - self.last_launch < cooldown_minutes * 60_000

    def reauth_allowed(self, now: int, cooldown_minutes: float) -> bool:
        if not self.last_reauth_open:
            return True
        return now - self.last_reauth_open >= cooldown_minutes * 60_000

    def record_launch(self, now: int) -> None:
        """Set lastLaunch and append to history, keeping the newest HISTORY_LIMIT."""
        self.last_launch = now
        self.history = self.history[-(HISTORY_LIMIT - 1):] + [now]


def read_state(path: Optional[Path] = None) -> Optional[KeepaliveState]:
    """Load the state file; None when it does not exist or is unreadable."""
    if path is None:
        path = STATE_FILE
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError):
        return None
    if not isinstance(data, dict):
        return None
    return KeepaliveState.from_dict(data)


def write_state(state: KeepaliveState, path: Optional[Path] = None) -> bool:
    """Persist state with owner-only permissions (best-effort).

    Returns:
        True if the file was written.
    """
    if path is None:
        path = STATE_FILE
    try:
        path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(state.to_dict(), f, indent=2)
        os.chmod(path, 0o600)
    except OSError as e:
        logger.warning("state_write_failed", path=str(path), error=str(e))
        return False
    return True


__all__ = [
    "STATE_FILE",
    "HISTORY_LIMIT",
    "KeepaliveState",
    "read_state",
    "write_state",
]

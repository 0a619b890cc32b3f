"""Menu-bar plugin output (SwiftBar / xbar line format).

Each printed line is one menu item: ``text | key=value key=value``.
The first line is the menu-bar title, ``---`` separates the dropdown
sections. Nothing here writes keepalive state; signals are recomputed
from transcripts, the limits client and the state file on every run.
"""

from __future__ import annotations

import math
import os
import shlex
import sys
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional

from claude_keepalive.api.client import LimitsResult, fetch_usage_limits, limit_ok, limits_ok
from claude_keepalive.config.settings import (
    KEEPALIVE_LOG_FILE,
    KeeperConfig,
    config_from_env,
    get_companion_command,
)
from claude_keepalive.keeper.launcher import OPEN_COMMAND, resolve_app_open_args
from claude_keepalive.keeper.state import KeepaliveState, read_state
from claude_keepalive.log import get_logger
from claude_keepalive.transcripts.reader import (
    get_latest_activity_cwd,
    get_latest_activity_timestamp,
    get_session_start_timestamp,
)
from claude_keepalive.usage.history import update_usage_history
from claude_keepalive.utils.time import (
    format_age,
    format_age_from_minutes,
    format_reset_time,
    format_reset_time_with_clock,
    now_ms,
)

# Colors
RED = "#EF4444"
AMBER = "#F59E0B"
GREEN = "#10B981"
GRAY = "#9CA3AF"
BLUE = "#60A5FA"
SLATE = "#94A3B8"
ORANGE = "#F97316"
MINT = "#A7F3D0"
SKY = "#93C5FD"

LIMITS_MAX_AGE_MINUTES = 360
BAR_WIDTH = 10

logger = get_logger(__name__)


@dataclass
class StatusSnapshot:
    """Everything the menu is rendered from."""

    now: int
    active_minutes: float
    last_activity: Optional[int] = None
    last_cwd: Optional[str] = None
    session_start: Optional[int] = None
    limits: Optional[LimitsResult] = None
    usage: Optional[dict] = None
    state: KeepaliveState = field(default_factory=KeepaliveState)

    @property
    def is_active(self) -> bool:
        return bool(self.last_activity) and self.now - self.last_activity <= self.active_minutes * 60_000

    @property
    def stale(self) -> bool:
        return bool(self.limits and self.limits.stale)

    @property
    def token_expired(self) -> bool:
        return bool(self.limits and self.limits.token_expired)


def clamp_percent(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        return None
    return max(0.0, min(100.0, float(value)))


def pick_color_by_percent(percent: Any) -> str:
    """Red from 90%, amber from 70%, green below."""
    clamped = clamp_percent(percent)
    if clamped is None:
        return GRAY
    if clamped >= 90:
        return RED
    if clamped >= 70:
        return AMBER
    return GREEN


STATUS_COLORS = {
    "Unknown": RED,
    "Cached": AMBER,
    "Limit": RED,
    "Active": GREEN,
    "Idle": GRAY,
}


def progress_bar(percent: Any, width: int = BAR_WIDTH) -> str:
    """Block bar followed by the rounded percentage, or 'n/a'."""
    clamped = clamp_percent(percent)
    if clamped is None:
        return "n/a"
    filled = round(clamped / 100 * width)
    return f"{'█' * filled}{'░' * max(0, width - filled)} {round(clamped)}%"


def format_usd(value: Any) -> str:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        return "n/a"
    return f"${value:.2f}"


def format_history(history: List[int], last_launch: Optional[int], now: int, max_items: int = 3) -> str:
    """Ages of the most recent launches, newest first."""
    items = list(history) or ([last_launch] if last_launch else [])
    if not items:
        return "none"
    return ", ".join(format_age(ts, now) for ts in reversed(items[-max_items:]))


def _window(limits: Optional[dict], name: str) -> dict:
    window = (limits or {}).get(name)
    return window if isinstance(window, dict) else {}


def _is_full(window: dict) -> bool:
    utilization = window.get("utilization")
    return clamp_percent(utilization) is not None and utilization >= 100


def header_state(snapshot: StatusSnapshot) -> str:
    limits = snapshot.limits.limits if snapshot.limits else None
    if not limits:
        return "Cached" if snapshot.stale else "Unknown"
    if _is_full(_window(limits, "five_hour")) or _is_full(_window(limits, "seven_day")):
        return "Limit"
    if snapshot.stale:
        return "Cached"
    if snapshot.is_active:
        return "Active"
    return "Idle"


def _window_title(label: str, window: dict, now: int) -> str:
    if _is_full(window):
        return f"{label}: {format_reset_time(window.get('resets_at'), now)}"
    clamped = clamp_percent(window.get("utilization"))
    if clamped is None:
        return f"{label}: n/a"
    return f"{label}: {round(clamped)}%"


def format_title(snapshot: StatusSnapshot) -> str:
    """Menu-bar title: 'Claude  $1.23  5h: 34%  7d: 12%' in the status color."""
    limits = snapshot.limits.limits if snapshot.limits else None
    parts = ["Claude"]
    usage = snapshot.usage or {}
    if usage.get("ok") and format_usd(usage.get("dayCost")) != "n/a":
        parts.append(format_usd(usage["dayCost"]))
    parts.append(_window_title("5h", _window(limits, "five_hour"), snapshot.now))
    parts.append(_window_title("7d", _window(limits, "seven_day"), snapshot.now))
    color = STATUS_COLORS[header_state(snapshot)]
    return f"{'  '.join(parts)} | color={color} font=SF Pro Text size=12"


def format_extra_usage(snapshot: StatusSnapshot) -> str:
    info = snapshot.limits.extra_usage if snapshot.limits else None
    enabled = (info or {}).get("is_enabled", (info or {}).get("enabled"))
    label, color = "unknown", RED
    if isinstance(enabled, bool):
        label, color = ("On", GREEN) if enabled else ("Off", GRAY)
    if info is not None and snapshot.stale:
        label, color = f"{label} (cached)", AMBER
    return f"Extra usage: {label} | color={color}"


def format_health(snapshot: StatusSnapshot) -> str:
    auth = "Token Expired" if snapshot.token_expired else "OK"
    if snapshot.stale:
        limits_state = "Cached"
    elif snapshot.limits and snapshot.limits.limits:
        limits_state = "Live"
    else:
        limits_state = "Unknown"
    keepalive = "Paused" if snapshot.state.is_paused(snapshot.now) else "On"
    return f"Health: Auth {auth} · Limits {limits_state} · Keepalive {keepalive} | color={SLATE}"


def format_usage_lines(usage: Optional[dict]) -> List[str]:
    if not usage:
        return []
    if not usage.get("ok"):
        if usage.get("reason") == "ccusage_missing":
            return [f"Usage: ccusage missing | color={GRAY}"]
        return [f"Usage: unavailable | color={GRAY}"]

    lines = []
    missing = bool(usage.get("missingPricing"))
    color = AMBER if missing else GREEN
    if not usage.get("pricingLoaded"):
        lines.append(f"Usage: set pricing | color={AMBER}")
    else:
        note = " (pricing missing)" if missing else ""
        lines.append(f"Usage today: {format_usd(usage.get('dayCost'))}{note} | color={color}")
        lines.append(f"Usage 3d: {format_usd(usage.get('last3Cost'))}{note} | color={color}")
        lines.append(
            f"Usage {usage.get('monthKey')}: {format_usd(usage.get('monthCost'))}{note} | color={color}"
        )
        if format_usd(usage.get("allTimeCost")) != "n/a":
            lines.append(f"Usage all-time: {format_usd(usage['allTimeCost'])}{note} | color={color}")
    if usage.get("historyPath"):
        argv = [OPEN_COMMAND, str(usage["historyPath"])]
        lines.append(_action("Open usage history", BLUE, argv, "terminal=false"))
    return lines


def format_limit_lines(snapshot: StatusSnapshot) -> List[str]:
    limits = snapshot.limits.limits if snapshot.limits else None
    if not limits:
        return [f"5h limit: n/a | color={GRAY}", f"7d limit: n/a | color={GRAY}"]
    lines = []
    for label, name in (("5h", "five_hour"), ("7d", "seven_day")):
        window = _window(limits, name)
        utilization = window.get("utilization")
        verdict = "ok" if limit_ok(window) else "full"
        lines.append(
            f"{label} limit: {progress_bar(utilization)} ({verdict}) "
            f"| color={pick_color_by_percent(utilization)} font=Menlo"
        )
        lines.append(
            f"{label} resets: {format_reset_time_with_clock(window.get('resets_at'), snapshot.now)} "
            f"| color={SKY}"
        )
    return lines


def quote_param(value: str) -> str:
    """Double-quote a parameter value that the plugin host would split on whitespace."""
    if value and not any(ch.isspace() for ch in value):
        return value
    escaped = value.replace('"', '\\"')
    return f'"{escaped}"'


def _action(label: str, color: str, argv: List[str], extra: str) -> str:
    params = [f"param{i}={quote_param(arg)}" for i, arg in enumerate(argv[1:], start=1)]
    return " ".join([f"{label} | color={color} bash={quote_param(argv[0])}", *params, extra])


def keeper_argv(*args: str) -> List[str]:
    """Command line that runs the keeper with this interpreter."""
    return [sys.executable, "-m", "claude_keepalive", *args]


def cli_shell_command(cwd: Optional[str]) -> str:
    """Shell command that starts the companion CLI, in `cwd` when known."""
    cmd, args = get_companion_command()
    cli = " ".join(shlex.quote(part) for part in [cmd, *args])
    if cwd:
        return f"cd {shlex.quote(cwd)} && {cli}"
    return cli


def format_action_lines(snapshot: StatusSnapshot) -> List[str]:
    limits = snapshot.limits.limits if snapshot.limits else None
    ok = limits_ok(limits)
    lines = []
    if ok:
        argv = keeper_argv("--once", "--active-minutes=0", "--cooldown-minutes=0")
        lines.append(_action("Send hello now", "#22C55E", argv, "terminal=false refresh=true"))
    else:
        lines.append("Send hello now (limits full) | disabled=true")
        argv = keeper_argv("--once", "--force", "--active-minutes=0", "--cooldown-minutes=0")
        lines.append(_action("Send hello anyway", ORANGE, argv, "terminal=false refresh=true"))
    lines.append(
        _action("Pause keepalive 30m", AMBER, keeper_argv("--pause-minutes=30"), "terminal=false refresh=true")
    )
    lines.append(_action("Resume keepalive", BLUE, keeper_argv("--resume"), "terminal=false refresh=true"))
    lines.append(_action("Open Claude Code app", BLUE, resolve_app_open_args(), "terminal=false"))

    label = "Open Claude CLI (last dir)" if snapshot.last_cwd else "Open Claude CLI"
    shell = ["/bin/sh", "-lc", cli_shell_command(snapshot.last_cwd)]
    lines.append(_action(label, BLUE, shell, "terminal=true"))

    lines.append(
        _action(
            "Open keepalive log",
            SLATE,
            [OPEN_COMMAND, "-a", "Console.app", str(KEEPALIVE_LOG_FILE)],
            "terminal=false",
        )
    )
    lines.append(f"Active session keeper status | color={SLATE}")
    return lines


def render_lines(snapshot: StatusSnapshot) -> List[str]:
    """Full plugin output for a snapshot."""
    state = snapshot.state
    lines = [format_title(snapshot), "---", format_health(snapshot), format_extra_usage(snapshot)]
    status_color = STATUS_COLORS[header_state(snapshot)]
    lines.append(f"Status: {'Active' if snapshot.is_active else 'Idle'} | color={status_color}")
    lines.append(
        f"Session start: {format_age(snapshot.session_start, snapshot.now)}   ·   "
        f"Last activity: {format_age(snapshot.last_activity, snapshot.now)} | color=#CBD5F5"
    )
    if snapshot.stale:
        age = format_age_from_minutes(snapshot.limits.age_minutes)
        lines.append(f"Limits: cached ({age} ago) | color={AMBER}")
    if snapshot.token_expired:
        lines.append(f"Auth: token expired (open Claude Code) | color={ORANGE}")

    lines.extend(format_usage_lines(snapshot.usage))
    lines.extend(format_limit_lines(snapshot))

    if state.last_launch:
        lines.append(f"Last hello: {format_age(state.last_launch, snapshot.now)} ago | color={MINT}")
    else:
        lines.append(f"Last hello: never | color={MINT}")
    lines.append(
        f"Hello history: {format_history(state.history, state.last_launch, snapshot.now)} | color={MINT}"
    )

    lines.append("---")
    lines.extend(format_action_lines(snapshot))
    return lines


def _usage_summary() -> Optional[dict]:
    try:
        return update_usage_history(now=datetime.now().astimezone())
    except Exception:
        logger.debug("usage_summary_failed", exc_info=True)
        return None


def collect_snapshot(config: Optional[KeeperConfig] = None, now: Optional[int] = None) -> StatusSnapshot:
    """Gather every signal the menu shows. Read-only with respect to keepalive state."""
    if config is None:
        config = config_from_env()
    if now is None:
        now = now_ms()
    return StatusSnapshot(
        now=now,
        active_minutes=config.active_minutes,
        last_activity=get_latest_activity_timestamp(config),
        last_cwd=get_latest_activity_cwd(config),
        session_start=get_session_start_timestamp(config),
        limits=fetch_usage_limits(
            allow_cache=True,
            allow_stale=True,
            max_age_minutes=LIMITS_MAX_AGE_MINUTES,
            now=now,
        ),
        usage=_usage_summary(),
        state=read_state() or KeepaliveState(),
    )


def ensure_log_file(path: Optional[Path] = None) -> None:
    """Create the keepalive log so the "open log" action has a target."""
    if path is None:
        path = KEEPALIVE_LOG_FILE
    if path.exists():
        return
    try:
        path.touch(mode=0o600)
    except OSError as e:
        logger.debug("log_file_create_failed", path=str(path), error=str(e))


def render_status(config: Optional[KeeperConfig] = None) -> List[str]:
    """Collect signals and render the menu; a single error line on failure."""
    try:
        lines = render_lines(collect_snapshot(config))
    except Exception:
        if os.environ.get("DEBUG_MENU"):
            logger.exception("status_render_failed")
        return ["Claude: Error"]
    ensure_log_file()
    return lines


__all__ = [
    "StatusSnapshot",
    "clamp_percent",
    "pick_color_by_percent",
    "progress_bar",
    "format_usd",
    "format_history",
    "header_state",
    "format_title",
    "format_health",
    "format_extra_usage",
    "format_usage_lines",
    "format_limit_lines",
    "format_action_lines",
    "quote_param",
    "keeper_argv",
    "cli_shell_command",
    "render_lines",
    "collect_snapshot",
    "ensure_log_file",
    "render_status",
]

"""Keepalive decision loop.

Each tick walks a fixed sequence of gates and stops at the first one that
says "not now":

1. pause / resume commands (persist or clear pauseUntil, then stop)
2. an active pause window
3. recent transcript activity
4. usage limits unavailable (an expired token also opens the app for
   re-authentication, at most once per re-auth cooldown)
5. a limit window full, or limits stale (unless forced)
6. launch cooldown
7. launch the companion and record the launch

Any failure along the way turns into a skipped tick; the next interval
tries again.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from claude_keepalive.api.client import fetch_usage_limits, limits_ok
from claude_keepalive.config.settings import KeeperConfig
from claude_keepalive.keeper.launcher import launch_companion, open_companion_app
from claude_keepalive.keeper.state import KeepaliveState, read_state, write_state
from claude_keepalive.log import get_logger
from claude_keepalive.transcripts.reader import get_latest_activity_timestamp
from claude_keepalive.utils.time import now_ms

logger = get_logger(__name__)


class TickOutcome(str, Enum):
    """Why a tick ended."""

    BUSY = "busy"
    PAUSE_SET = "pause_set"
    RESUMED = "resumed"
    PAUSED = "paused"
    ACTIVE = "active"
    LIMITS_UNAVAILABLE = "limits_unavailable"
    LIMITS_BLOCKED = "limits_blocked"
    COOLDOWN = "cooldown"
    DRY_RUN = "dry_run"
    LAUNCH_FAILED = "launch_failed"
    LAUNCHED = "launched"
    ERROR = "error"


@dataclass
class TickContext:
    """Everything a tick needs, plus the in-progress guard.

    Attributes:
        config: Keeper options.
        in_progress: Set while a tick runs; a tick started meanwhile
            returns BUSY instead of queueing.
        state_path: Override for the state file location.
    """

    config: KeeperConfig
    in_progress: bool = False
    state_path: Optional[Path] = None
    pending: Optional[asyncio.Task] = None


async def _save(ctx: TickContext, state: KeepaliveState) -> bool:
    return await asyncio.to_thread(write_state, state, ctx.state_path)


async def _maybe_reauth(ctx: TickContext, state: KeepaliveState, now: int) -> None:
    config = ctx.config
    if not state.reauth_allowed(now, config.reauth_cooldown_minutes):
        logger.debug("reauth_cooldown_active")
        return
    if config.dry_run:
        logger.info("reauth_dry_run")
        return
    if await asyncio.to_thread(open_companion_app):
        state.last_reauth_open = now
        await _save(ctx, state)
        logger.info("reauth_app_opened")


async def evaluate(ctx: TickContext, now: int) -> TickOutcome:
    """Run the gates in order for one tick. Does not check the guard."""
    config = ctx.config
    state = await asyncio.to_thread(read_state, ctx.state_path) or KeepaliveState()

    if config.resume:
        state.pause_until = None
        if config.dry_run:
            logger.info("dry_run_state_unchanged", command="resume")
        else:
            await _save(ctx, state)
        logger.info("keepalive_resumed")
        return TickOutcome.RESUMED
    if config.pause_minutes is not None and config.pause_minutes > 0:
        state.pause_until = now + int(config.pause_minutes * 60_000)
        if config.dry_run:
            logger.info("dry_run_state_unchanged", command="pause")
        else:
            await _save(ctx, state)
        logger.info("keepalive_paused", minutes=config.pause_minutes)
        return TickOutcome.PAUSE_SET

    if state.is_paused(now):
        logger.debug("tick_skipped", reason="paused", pause_until=state.pause_until)
        return TickOutcome.PAUSED

    last_activity = await asyncio.to_thread(get_latest_activity_timestamp, config)
    if last_activity and now - last_activity <= config.active_minutes * 60_000:
        logger.info("tick_skipped", reason="active_session")
        return TickOutcome.ACTIVE

    result = await asyncio.to_thread(
        fetch_usage_limits,
        allow_cache=True,
        allow_stale=True,
        max_age_minutes=config.limits_max_age_minutes,
        now=now,
    )
    if result is not None and result.token_expired:
        await _maybe_reauth(ctx, state, now)
    if result is None or result.limits is None:
        logger.info("tick_skipped", reason="limits_unavailable")
        return TickOutcome.LIMITS_UNAVAILABLE

    if not limits_ok(result.limits) or result.stale:
        if not config.force:
            logger.info(
                "tick_skipped",
                reason="limits_blocked",
                stale=result.stale,
                five_hour=(result.limits.get("five_hour") or {}).get("utilization"),
                seven_day=(result.limits.get("seven_day") or {}).get("utilization"),
            )
            return TickOutcome.LIMITS_BLOCKED
        logger.info("limits_overridden", stale=result.stale)

    if state.cooldown_active(now, config.cooldown_minutes):
        logger.info("tick_skipped", reason="cooldown")
        return TickOutcome.COOLDOWN

    if config.dry_run:
        logger.info("dry_run_launch_skipped")
        return TickOutcome.DRY_RUN

    companion = await launch_companion(config.hello_delay_seconds)
    if not companion.started:
        return TickOutcome.LAUNCH_FAILED

    state.record_launch(now)
    await _save(ctx, state)
    logger.info("companion_launched", state=companion.state.value)
    return TickOutcome.LAUNCHED


async def tick(ctx: TickContext, now: Optional[int] = None) -> TickOutcome:
    """One guarded evaluation cycle; overlapping calls return BUSY."""
    if ctx.in_progress:
        logger.debug("tick_skipped", reason="in_progress")
        return TickOutcome.BUSY
    ctx.in_progress = True
    try:
        return await evaluate(ctx, now if now is not None else now_ms())
    except Exception:
        logger.exception("tick_failed")
        return TickOutcome.ERROR
    finally:
        ctx.in_progress = False


async def run(config: KeeperConfig, state_path: Optional[Path] = None) -> TickOutcome:
    """Tick now, then every interval_minutes until cancelled.

    Single runs (--once, --pause-minutes, --resume) return the first
    tick's outcome.
    """
    ctx = TickContext(config=config, state_path=state_path)
    outcome = await tick(ctx)
    if config.once or config.is_command:
        return outcome

    interval = config.interval_minutes * 60
    while True:
        await asyncio.sleep(interval)
        if ctx.in_progress:
            logger.debug("tick_skipped", reason="in_progress")
            continue
        ctx.pending = asyncio.create_task(tick(ctx))


__all__ = [
    "TickOutcome",
    "TickContext",
    "evaluate",
    "tick",
    "run",
]

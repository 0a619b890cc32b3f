"""Keepalive decision loop.

Modules:
    state: Persisted launch/pause/re-auth state
    launcher: Companion process launch and app re-authentication
    loop: Tick gates and the periodic runner
"""

from claude_keepalive.keeper.launcher import CompanionProcess, LaunchState, launch_companion
from claude_keepalive.keeper.loop import TickContext, TickOutcome, run, tick
from claude_keepalive.keeper.state import KeepaliveState, read_state, write_state

__all__ = [
    "KeepaliveState",
    "read_state",
    "write_state",
    "LaunchState",
    "CompanionProcess",
    "launch_companion",
    "TickContext",
    "TickOutcome",
    "tick",
    "run",
]

"""Companion process launch and re-authentication helpers.

A launch is two awaited steps: start the process (Starting -> Ready, or
Failed), then after a delay write the priming line and close its stdin
(Ready -> Primed). The process is detached and never waited on.
"""

from __future__ import annotations

import asyncio
import os
import subprocess
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple

from claude_keepalive.config.settings import HELLO_TEXT, get_companion_command, subprocess_env
from claude_keepalive.errors import LaunchError
from claude_keepalive.log import get_logger

OPEN_COMMAND = "/usr/bin/open"
DEFAULT_APP_NAME = "Claude Code"
OPEN_TIMEOUT = 10  # seconds

logger = get_logger(__name__)


class LaunchState(str, Enum):
    STARTING = "starting"
    READY = "ready"
    PRIMED = "primed"
    FAILED = "failed"


class CompanionProcess:
    """One detached companion CLI run."""

    def __init__(self, cmd: str, args: List[str]):
        self.cmd = cmd
        self.args = list(args)
        self.state = LaunchState.STARTING
        self.process: Optional[subprocess.Popen] = None
        self.error: Optional[LaunchError] = None

    @property
    def started(self) -> bool:
        return self.state in (LaunchState.READY, LaunchState.PRIMED)

    async def start(self) -> bool:
        """Spawn the process with a piped stdin. Returns True once it is running."""
        try:
            self.process = await asyncio.to_thread(
                subprocess.Popen,
                [self.cmd, *self.args],
                stdin=subprocess.PIPE,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                env=subprocess_env(),
                start_new_session=True,
            )
        except (OSError, ValueError) as e:
            self.state = LaunchState.FAILED
            self.error = LaunchError(f"Could not start {self.cmd}", details=str(e))
            logger.warning("companion_spawn_failed", command=self.cmd, error=str(e))
            return False
        self.state = LaunchState.READY
        logger.debug("companion_started", command=self.cmd, pid=self.process.pid)
        return True

    async def prime(self, text: str, delay_seconds: float) -> bool:
        """Wait, then send one line on stdin and close it."""
        if self.state is not LaunchState.READY or self.process is None:
            return False
        await asyncio.sleep(max(0.0, delay_seconds))
        stdin = self.process.stdin
        try:
            if stdin is None:
                raise ValueError("stdin is not piped")
            stdin.write(f"{text}\n".encode("utf-8"))
            stdin.flush()
            stdin.close()
        except (OSError, ValueError) as e:
            # Exited before the delay elapsed; the launch itself still happened
            logger.info("companion_prime_failed", command=self.cmd, error=str(e))
            return False
        self.state = LaunchState.PRIMED
        return True


async def launch_companion(
    delay_seconds: float,
    text: str = HELLO_TEXT,
    command: Optional[Tuple[str, List[str]]] = None,
) -> CompanionProcess:
    """Start the companion CLI and send it the priming line.

    Args:
        delay_seconds: Wait between start and writing the line.
        text: Line to send (newline appended).
        command: (cmd, args) override; defaults to CLAUDE_CMD / CLAUDE_ARGS.
    """
    cmd, args = command or get_companion_command()
    companion = CompanionProcess(cmd, args)
    if await companion.start():
        await companion.prime(text, delay_seconds)
    return companion


def resolve_app_open_args() -> List[str]:
    """Command line that opens the companion desktop app.

    CLAUDE_APP_PATH wins when it exists, then the usual install
    locations, then `open -a $CLAUDE_APP`.
    """
    env_path = os.environ.get("CLAUDE_APP_PATH")
    if env_path and os.path.exists(env_path):
        return [OPEN_COMMAND, env_path]
    home = Path.home()
    candidates = [
        Path("/Applications/Claude Code.app"),
        Path("/Applications/Claude.app"),
        home / "Applications" / "Claude Code.app",
        home / "Applications" / "Claude.app",
    ]
    for candidate in candidates:
        if candidate.exists():
            return [OPEN_COMMAND, str(candidate)]
    return [OPEN_COMMAND, "-a", os.environ.get("CLAUDE_APP") or DEFAULT_APP_NAME]


def open_companion_app() -> bool:
    """Open the desktop app so the user can sign in again. True on success."""
    args = resolve_app_open_args()
    try:
        result = subprocess.run(args, capture_output=True, timeout=OPEN_TIMEOUT, check=False)
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.info("reauth_open_failed", error=str(e))
        return False
    if result.returncode != 0:
        logger.info("reauth_open_failed", returncode=result.returncode)
        return False
    return True


__all__ = [
    "LaunchState",
    "CompanionProcess",
    "launch_companion",
    "resolve_app_open_args",
    "open_companion_app",
]

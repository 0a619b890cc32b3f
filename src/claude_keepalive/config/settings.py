"""Configuration for claude-keepalive.

Holds file locations, default option values, the keeper configuration
object, environment overrides and validation.
"""

from __future__ import annotations

import math
import os
import shlex
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

# File paths
CACHE_DIR = Path.home() / ".cache" / "claude-keepalive"
CONFIG_DIR = Path.home() / ".config" / "claude-keepalive"
KEEPALIVE_LOG_FILE = Path("/tmp/claude-keepalive.err")

# Default option values
DEFAULTS = {
    "interval_minutes": 10,
    "active_minutes": 10,
    "hello_delay_seconds": 5,
    "cooldown_minutes": 10,
    "reauth_cooldown_minutes": 60,
    "max_depth": 6,
    "tail_bytes": 256 * 1024,
    "limits_max_age_minutes": 360,
}

HELLO_TEXT = "hello"

# Appended to the search path of spawned tools (Homebrew, /usr/local, user bin)
EXTRA_PATH_DIRS = [
    "/opt/homebrew/bin",
    "/usr/local/bin",
    "/usr/bin",
    str(Path.home() / ".local" / "bin"),
]


@dataclass
class KeeperConfig:
    """Options for one keeper process (CLI flags merged over DEFAULTS)."""

    once: bool = False
    dry_run: bool = False
    force: bool = False
    verbose: bool = False
    interval_minutes: float = DEFAULTS["interval_minutes"]
    active_minutes: float = DEFAULTS["active_minutes"]
    hello_delay_seconds: float = DEFAULTS["hello_delay_seconds"]
    cooldown_minutes: float = DEFAULTS["cooldown_minutes"]
    reauth_cooldown_minutes: float = DEFAULTS["reauth_cooldown_minutes"]
    limits_max_age_minutes: float = DEFAULTS["limits_max_age_minutes"]
    pause_minutes: Optional[float] = None
    resume: bool = False
    max_depth: int = DEFAULTS["max_depth"]
    tail_bytes: int = DEFAULTS["tail_bytes"]
    transcript_path: Optional[Path] = None

    @property
    def is_command(self) -> bool:
        """True when this run is a one-shot pause/resume command."""
        return self.resume or (self.pause_minutes is not None and self.pause_minutes > 0)


# Format: key -> (expected_types, validator_func or None)
# validator_func takes value and returns (is_valid, error_message)
ValidatorFunc = Callable[[Union[int, float, bool, Path, None]], Tuple[bool, str]]


def _non_negative(v) -> Tuple[bool, str]:
    if isinstance(v, (int, float)) and math.isfinite(v) and v >= 0:
        return True, ""
    return False, "must be a finite number >= 0"


def _positive(v) -> Tuple[bool, str]:
    if isinstance(v, (int, float)) and math.isfinite(v) and v > 0:
        return True, ""
    return False, "must be a finite number > 0"


CONFIG_SCHEMA: Dict[str, Tuple[tuple, Optional[ValidatorFunc]]] = {
    "once": ((bool,), None),
    "dry_run": ((bool,), None),
    "force": ((bool,), None),
    "verbose": ((bool,), None),
    "interval_minutes": ((int, float), _positive),
    "active_minutes": ((int, float), _non_negative),
    "hello_delay_seconds": ((int, float), _non_negative),
    "cooldown_minutes": ((int, float), _non_negative),
    "reauth_cooldown_minutes": ((int, float), _non_negative),
    "limits_max_age_minutes": ((int, float), _non_negative),
    "pause_minutes": ((int, float, type(None)), _non_negative),
    "resume": ((bool,), None),
    "max_depth": ((int,), _non_negative),
    "tail_bytes": ((int,), _positive),
    "transcript_path": ((Path, type(None)), None),
}


def validate_config(config: KeeperConfig) -> List[str]:
    """Validate a keeper configuration against the schema.

    Args:
        config: Configuration to validate.

    Returns:
        List of validation error messages. Empty list if valid.
    """
    errors = []
    for field in fields(config):
        expected_types, validator = CONFIG_SCHEMA[field.name]
        value = getattr(config, field.name)

        if not isinstance(value, expected_types):
            type_names = " or ".join(t.__name__ for t in expected_types)
            errors.append(
                f"'{field.name}' has invalid type: expected {type_names}, "
                f"got {type(value).__name__}"
            )
            continue

        if validator and value is not None:
            is_valid, error_msg = validator(value)
            if not is_valid:
                errors.append(f"'{field.name}' {error_msg}")

    if config.pause_minutes and config.resume:
        errors.append("'pause_minutes' and 'resume' cannot be combined")

    return errors


def env_number(name: str, fallback: float) -> float:
    """Read a finite number from the environment, falling back when unset or invalid."""
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return fallback
    try:
        value = float(raw)
    except ValueError:
        return fallback
    return value if math.isfinite(value) else fallback


def config_from_env() -> KeeperConfig:
    """Build the renderer's read-only configuration from environment overrides.

    Honours ACTIVE_MINUTES, MAX_DEPTH, TAIL_BYTES and TRANSCRIPT_PATH.
    """
    transcript = os.environ.get("TRANSCRIPT_PATH")
    return KeeperConfig(
        active_minutes=env_number("ACTIVE_MINUTES", DEFAULTS["active_minutes"]),
        max_depth=int(env_number("MAX_DEPTH", DEFAULTS["max_depth"])),
        tail_bytes=int(env_number("TAIL_BYTES", DEFAULTS["tail_bytes"])),
        transcript_path=Path(transcript).expanduser() if transcript else None,
    )


def split_command(raw: str) -> List[str]:
    """Split a command string from the environment, honouring quotes."""
    try:
        return shlex.split(raw)
    except ValueError:
        # Unbalanced quote: fall back to whitespace splitting
        return raw.split()


def get_companion_command() -> Tuple[str, List[str]]:
    """Return the companion CLI command and its arguments.

    Reads CLAUDE_CMD (default 'claude') and CLAUDE_ARGS.
    """
    cmd = os.environ.get("CLAUDE_CMD") or "claude"
    args = split_command(os.environ.get("CLAUDE_ARGS", ""))
    return cmd, args


def augmented_path(current: Optional[str] = None) -> str:
    """Return PATH with the common install locations appended, deduplicated."""
    if current is None:
        current = os.environ.get("PATH", "")
    parts = [p for p in current.split(os.pathsep) if p] + EXTRA_PATH_DIRS
    return os.pathsep.join(dict.fromkeys(parts))


def subprocess_env() -> Dict[str, str]:
    """Environment for spawned tools: inherited, with an augmented PATH."""
    env = dict(os.environ)
    env["PATH"] = augmented_path(env.get("PATH", ""))
    return env


__all__ = [
    "CACHE_DIR",
    "CONFIG_DIR",
    "KEEPALIVE_LOG_FILE",
    "DEFAULTS",
    "HELLO_TEXT",
    "EXTRA_PATH_DIRS",
    "CONFIG_SCHEMA",
    "KeeperConfig",
    "validate_config",
    "env_number",
    "config_from_env",
    "split_command",
    "get_companion_command",
    "augmented_path",
    "subprocess_env",
]

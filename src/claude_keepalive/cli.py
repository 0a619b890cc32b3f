"""Command-line interface for claude-keepalive.

Entry points:
    claude-keepalive          Keeper loop (also `python -m claude_keepalive`)
    claude-keepalive-status   Menu-bar plugin output
    claude-keepalive-usage    Refresh usage history and print the summary as JSON
"""

import argparse
import asyncio
import json
import platform
import sys
from pathlib import Path
from typing import List, Optional

from claude_keepalive._version import __version__
from claude_keepalive.config.settings import DEFAULTS, KeeperConfig, validate_config
from claude_keepalive.errors import ConfigError, KeepaliveError, format_error_for_user, get_exit_code
from claude_keepalive.log import get_logger, setup_logging, verbose_from_env

logger = get_logger(__name__)


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the keeper's argument parser.

    Returns:
        Configured ArgumentParser instance.
    """
    parser = argparse.ArgumentParser(
        prog="claude-keepalive",
        description="Keep a Claude Code session warm while you are away",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  claude-keepalive                      Tick now, then every 10 minutes
  claude-keepalive --once --dry-run     Evaluate once without launching
  claude-keepalive --once --force       Launch even if limits look full or stale
  claude-keepalive --pause-minutes=30   Pause launches for 30 minutes
  claude-keepalive --resume             Clear a pause

Environment:
  CLAUDE_CMD, CLAUDE_ARGS     Companion command and arguments
  CLAUDE_CONFIG_DIR           Comma-separated config roots to search
  CLAUDE_TRANSCRIPT_DIRS      Extra transcript directories
  VERBOSE=1 / DEBUG=1         Same as --verbose
""",
    )

    parser.add_argument("--once", action="store_true", help="Run a single tick and exit")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Evaluate every gate but never launch or write state",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Launch even when limits are full or stale",
    )
    parser.add_argument(
        "--interval-minutes",
        type=float,
        default=DEFAULTS["interval_minutes"],
        metavar="N",
        help=f"Minutes between ticks (default: {DEFAULTS['interval_minutes']})",
    )
    parser.add_argument(
        "--active-minutes",
        type=float,
        default=DEFAULTS["active_minutes"],
        metavar="N",
        help=f"Transcript activity newer than this counts as active (default: {DEFAULTS['active_minutes']})",
    )
    parser.add_argument(
        "--hello-delay-seconds",
        type=float,
        default=DEFAULTS["hello_delay_seconds"],
        metavar="N",
        help=f"Wait before writing the priming line (default: {DEFAULTS['hello_delay_seconds']})",
    )
    parser.add_argument(
        "--cooldown-minutes",
        type=float,
        default=DEFAULTS["cooldown_minutes"],
        metavar="N",
        help=f"Minimum minutes between launches (default: {DEFAULTS['cooldown_minutes']})",
    )
    parser.add_argument(
        "--reauth-cooldown-minutes",
        type=float,
        default=DEFAULTS["reauth_cooldown_minutes"],
        metavar="N",
        help=f"Minimum minutes between re-auth app opens (default: {DEFAULTS['reauth_cooldown_minutes']})",
    )
    parser.add_argument(
        "--limits-max-age-minutes",
        type=float,
        default=DEFAULTS["limits_max_age_minutes"],
        metavar="N",
        help=f"Cached limits older than this are stale (default: {DEFAULTS['limits_max_age_minutes']})",
    )
    parser.add_argument(
        "--pause-minutes",
        type=float,
        metavar="N",
        help="Pause launches for N minutes and exit",
    )
    parser.add_argument("--resume", action="store_true", help="Clear a pause and exit")
    parser.add_argument(
        "--max-depth",
        type=int,
        default=DEFAULTS["max_depth"],
        metavar="N",
        help=f"Transcript search depth (default: {DEFAULTS['max_depth']})",
    )
    parser.add_argument(
        "--tail-bytes",
        type=int,
        default=DEFAULTS["tail_bytes"],
        metavar="N",
        help=f"Bytes read from the end of a transcript (default: {DEFAULTS['tail_bytes']})",
    )
    parser.add_argument(
        "--transcript-path",
        type=Path,
        metavar="PATH",
        help="Use this transcript instead of searching for the newest one",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Log every decision")
    parser.add_argument(
        "--version",
        "-V",
        action="store_true",
        help="Show version and system information",
    )
    return parser


def print_version() -> None:
    """Print version and system information."""
    print(
        f"claude-keepalive {__version__} "
        f"(Python {sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}, "
        f"{platform.system()} {platform.machine()})"
    )


def config_from_args(args: argparse.Namespace) -> KeeperConfig:
    """Build a KeeperConfig from parsed arguments.

    Raises:
        ConfigError: If any option is out of range.
    """
    config = KeeperConfig(
        once=args.once,
        dry_run=args.dry_run,
        force=args.force,
        verbose=args.verbose or verbose_from_env(),
        interval_minutes=args.interval_minutes,
        active_minutes=args.active_minutes,
        hello_delay_seconds=args.hello_delay_seconds,
        cooldown_minutes=args.cooldown_minutes,
        reauth_cooldown_minutes=args.reauth_cooldown_minutes,
        limits_max_age_minutes=args.limits_max_age_minutes,
        pause_minutes=args.pause_minutes,
        resume=args.resume,
        max_depth=args.max_depth,
        tail_bytes=args.tail_bytes,
        transcript_path=args.transcript_path.expanduser() if args.transcript_path else None,
    )
    errors = validate_config(config)
    if errors:
        raise ConfigError("Invalid options: " + "; ".join(errors))
    return config


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the keeper.

    Parses arguments, validates them and runs the loop until interrupted.
    Single-shot runs (--once, --pause-minutes, --resume) exit after one tick.
    """
    from claude_keepalive.keeper.loop import run

    parser = create_parser()
    args = parser.parse_args(argv)

    if args.version:
        print_version()
        return

    try:
        config = config_from_args(args)
    except KeepaliveError as e:
        print(format_error_for_user(e, verbose=args.verbose), file=sys.stderr)
        sys.exit(get_exit_code(e))

    setup_logging("DEBUG" if config.verbose else "WARNING")
    logger.debug("keeper_starting", version=__version__, once=config.once, dry_run=config.dry_run)

    try:
        asyncio.run(run(config))
    except KeyboardInterrupt:
        logger.debug("keeper_stopped")


def status_main(argv: Optional[List[str]] = None) -> None:
    """Print the menu-bar plugin output."""
    from claude_keepalive.display.menubar import render_status

    parser = argparse.ArgumentParser(
        prog="claude-keepalive-status",
        description="Print keepalive status in SwiftBar / xbar format",
    )
    parser.parse_args(argv)

    setup_logging("DEBUG" if verbose_from_env() else "WARNING")
    for line in render_status():
        print(line)


def usage_main(argv: Optional[List[str]] = None) -> None:
    """Refresh the usage history and print the summary as JSON."""
    from claude_keepalive.usage.history import update_usage_history

    parser = argparse.ArgumentParser(
        prog="claude-keepalive-usage",
        description="Update the usage cost history and print today's summary",
    )
    parser.add_argument(
        "--source",
        choices=["ccusage", "pricing"],
        help="Cost source (default: USAGE_COST_SOURCE or ccusage)",
    )
    args = parser.parse_args(argv)

    setup_logging("DEBUG" if verbose_from_env() else "WARNING")
    summary = update_usage_history(cost_source=args.source)
    print(json.dumps(summary, indent=2))
    if not summary.get("ok"):
        sys.exit(1)


__all__ = [
    "create_parser",
    "print_version",
    "config_from_args",
    "main",
    "status_main",
    "usage_main",
]

"""Structured logging setup using structlog."""

from __future__ import annotations

import logging
import os
import sys

import structlog


def verbose_from_env() -> bool:
    """Return True when VERBOSE=1 or DEBUG=1 is set in the environment."""
    return os.environ.get("VERBOSE") == "1" or os.environ.get("DEBUG") == "1"


def setup_logging(level: str = "WARNING") -> None:
    """Configure structlog with console output on stderr.

    Args:
        level: Minimum level name. Keeper runs use WARNING unless verbose.
    """
    log_level = getattr(logging, level.upper(), logging.WARNING)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a named logger instance."""
    return structlog.get_logger(name)


__all__ = ["setup_logging", "get_logger", "verbose_from_env"]

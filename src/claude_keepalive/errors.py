"""Categorized error handling with actionable messages.

Internal code raises these to describe what went wrong; the soft-fail
entry points (limits lookup, keeper tick) catch them and degrade to
"unknown" or "skip this tick". Only startup errors reach the exit code.
"""

from __future__ import annotations

from enum import IntEnum
from typing import ClassVar


class ExitCode(IntEnum):
    """Process exit status for a fatal startup error, grouped by tens.

    Single digits are bad options, the teens credentials, the twenties
    connectivity, the thirties endpoint replies and the forties local
    failures. A clean exit is plain 0 and has no member here.
    """

    CONFIG_ERROR = 2
    INVALID_ARGUMENT = 4

    AUTH_EXPIRED = 10
    AUTH_INVALID = 11
    AUTH_MISSING = 12

    NETWORK_OFFLINE = 20
    NETWORK_TIMEOUT = 21

    API_ERROR = 30
    API_RATE_LIMIT = 31
    API_SERVER_ERROR = 32

    LAUNCH_FAILED = 43
    SYSTEM_ERROR = 49


class KeepaliveError(Exception):
    """Root of every categorized keepalive failure.

    Attributes:
        message: One-line description shown to the user.
        code: Exit status used when the error ends the process.
        suggestion: What the user can do about it.
        details: Underlying cause, shown only in verbose output.
    """

    code: ClassVar[ExitCode] = ExitCode.SYSTEM_ERROR
    suggestion: ClassVar[str] = ""

    def __init__(
        self,
        message: str,
        suggestion: str | None = None,
        details: str | None = None,
    ):
        self.message = message
        self._suggestion = suggestion
        self.details = details
        super().__init__(message)

    def get_suggestion(self) -> str:
        """Per-instance suggestion if given, else the class default."""
        return self._suggestion or self.suggestion

    def format_full(self) -> str:
        """Message, details and suggestion on separate lines."""
        parts = [f"Error: {self.message}"]
        if self.details:
            parts.append(f"Details: {self.details}")
        suggestion = self.get_suggestion()
        if suggestion:
            parts.append(f"Suggestion: {suggestion}")
        return "\n".join(parts)


# Credentials


class AuthenticationExpiredError(KeepaliveError):
    """Usage endpoint rejected the OAuth token."""

    code = ExitCode.AUTH_EXPIRED
    suggestion = "Open the Claude Code app and sign in again."


class AuthenticationInvalidError(KeepaliveError):
    """Credentials exist but could not be read."""

    code = ExitCode.AUTH_INVALID
    suggestion = "Your credentials appear corrupted. Run 'claude' to re-authenticate."


class AuthenticationMissingError(KeepaliveError):
    """Neither the Keychain nor the credentials file holds a token."""

    code = ExitCode.AUTH_MISSING
    suggestion = "Run 'claude' to install and authenticate with Claude Code first."


# Connectivity


class NetworkOfflineError(KeepaliveError):
    """Usage endpoint could not be reached."""

    code = ExitCode.NETWORK_OFFLINE
    suggestion = "Check your internet connection. Cached limits are used meanwhile."


class NetworkTimeoutError(KeepaliveError):
    """Usage request did not finish in time."""

    code = ExitCode.NETWORK_TIMEOUT
    suggestion = "The usage endpoint did not answer in time. Cached limits are used meanwhile."


# Usage endpoint replies


class APIError(KeepaliveError):
    """Unexpected reply from the usage endpoint."""

    code = ExitCode.API_ERROR
    suggestion = "Try again later. If the problem persists, check Anthropic's status page."


class RateLimitError(KeepaliveError):
    """Usage endpoint answered 429."""

    code = ExitCode.API_RATE_LIMIT
    suggestion = "The usage endpoint is rate limiting requests. Wait a few minutes."


class ServerError(KeepaliveError):
    """Usage endpoint answered with a 5xx status."""

    code = ExitCode.API_SERVER_ERROR
    suggestion = "The Anthropic API is experiencing issues. Check status.anthropic.com."


# Local failures


class ConfigError(KeepaliveError):
    """Invalid option value or environment override."""

    code = ExitCode.CONFIG_ERROR
    suggestion = "Run 'claude-keepalive --help' to see accepted values."


class LaunchError(KeepaliveError):
    """Companion process could not be started."""

    code = ExitCode.LAUNCH_FAILED
    suggestion = "Check CLAUDE_CMD and that the companion CLI is on PATH."


def categorize_http_error(status_code: int, reason: str = "") -> KeepaliveError:
    """Map a non-2xx status from the usage endpoint to an error.

    401 means the token expired, 429 rate limiting, 5xx a server fault.
    Any other status is a plain APIError carrying the reason phrase.
    """
    label = f"{status_code} {reason}".rstrip()
    if status_code == 401:
        return AuthenticationExpiredError(f"Usage endpoint rejected the token ({label}).")
    if status_code == 429:
        return RateLimitError(f"Usage endpoint is rate limiting ({label}).")
    if status_code >= 500:
        return ServerError(f"Usage endpoint failed ({label}).")
    return APIError(f"Usage endpoint returned {label}.")


def categorize_network_error(error_reason: str) -> KeepaliveError:
    """Timeout when the reason mentions one, otherwise offline."""
    reason_lower = error_reason.lower()

    if "timed out" in reason_lower or "timeout" in reason_lower:
        return NetworkTimeoutError(f"Connection timed out: {error_reason}")
    return NetworkOfflineError(f"Network error: {error_reason}")


def format_error_for_user(error: Exception, verbose: bool = False) -> str:
    """Text printed to stderr before a fatal exit.

    Args:
        error: Any exception that reached the command line entry point.
        verbose: Append details and the suggestion for categorized errors.
    """
    if isinstance(error, KeepaliveError):
        if verbose:
            return error.format_full()
        return f"Error: {error.message}"
    else:
        return f"Error: {error}"


def get_exit_code(error: Exception) -> int:
    """Categorized errors carry their own code; ValueError is a bad
    argument and anything else a system error.
    """
    if isinstance(error, KeepaliveError):
        return error.code
    elif isinstance(error, ValueError):
        return ExitCode.INVALID_ARGUMENT
    else:
        return ExitCode.SYSTEM_ERROR


__all__ = [
    "ExitCode",
    "KeepaliveError",
    "AuthenticationExpiredError",
    "AuthenticationInvalidError",
    "AuthenticationMissingError",
    "NetworkOfflineError",
    "NetworkTimeoutError",
    "APIError",
    "RateLimitError",
    "ServerError",
    "ConfigError",
    "LaunchError",
    "categorize_http_error",
    "categorize_network_error",
    "format_error_for_user",
    "get_exit_code",
]

"""
Tests for categorized errors and exit codes.
"""

import pytest

from claude_keepalive.errors import (
    APIError,
    AuthenticationExpiredError,
    ConfigError,
    ExitCode,
    KeepaliveError,
    NetworkOfflineError,
    NetworkTimeoutError,
    RateLimitError,
    ServerError,
    categorize_http_error,
    categorize_network_error,
    format_error_for_user,
    get_exit_code,
)


class TestKeepaliveError:
    """Tests for the base error."""

    def test_format_full(self):
        error = ConfigError("Invalid options: bad", details="interval")
        text = error.format_full()

        assert text.startswith("Error: Invalid options: bad")
        assert "Details: interval" in text
        assert "Suggestion: Run 'claude-keepalive --help'" in text

    def test_custom_suggestion_wins(self):
        assert KeepaliveError("x", suggestion="do y").get_suggestion() == "do y"

    def test_codes(self):
        assert ConfigError("x").code == ExitCode.CONFIG_ERROR
        assert AuthenticationExpiredError("x").code == ExitCode.AUTH_EXPIRED
        assert KeepaliveError("x").code == ExitCode.SYSTEM_ERROR

    def test_every_exit_code_is_reachable(self):
        reachable = {cls.code for cls in KeepaliveError.__subclasses__()}
        reachable.add(get_exit_code(ValueError("x")))
        reachable.add(get_exit_code(RuntimeError("x")))
        assert reachable == set(ExitCode)


class TestCategorize:
    """Tests for HTTP and network error mapping."""

    @pytest.mark.parametrize(
        "status,expected",
        [
            (401, AuthenticationExpiredError),
            (429, RateLimitError),
            (500, ServerError),
            (503, ServerError),
            (404, APIError),
        ],
    )
    def test_http(self, status, expected):
        error = categorize_http_error(status, "reason")
        assert type(error) is expected
        assert f"{status} reason" in error.message

    def test_network(self):
        assert isinstance(categorize_network_error("timed out"), NetworkTimeoutError)
        assert isinstance(categorize_network_error("Name or service not known"), NetworkOfflineError)


class TestUserFacing:
    """Tests for format_error_for_user and get_exit_code."""

    def test_format_short_and_verbose(self):
        error = ConfigError("Invalid options: bad")
        assert format_error_for_user(error) == "Error: Invalid options: bad"
        assert "Suggestion:" in format_error_for_user(error, verbose=True)
        assert format_error_for_user(RuntimeError("boom")) == "Error: boom"

    def test_exit_codes(self):
        assert get_exit_code(ConfigError("x")) == 2
        assert get_exit_code(ValueError("x")) == ExitCode.INVALID_ARGUMENT
        assert get_exit_code(RuntimeError("x")) == ExitCode.SYSTEM_ERROR

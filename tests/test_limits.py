"""
Tests for the usage-limits client and its on-disk cache.

Tests cover:
- limit_ok() / limits_ok() - window classification
- fetch_usage() - OAuth API communication and error mapping
- fetch_usage_limits() - live, cache fallback, staleness, token expiry
- load_limits_cache() / save_limits_cache() - both cache layouts
"""

import http.client
import io
import json
import math
from unittest.mock import patch
from urllib.error import HTTPError, URLError

import pytest

from claude_keepalive.api import cache as cache_mod
from claude_keepalive.api import client
from claude_keepalive.api.client import LimitsStatus, fetch_usage, fetch_usage_limits, limit_ok, limits_ok
from claude_keepalive.errors import (
    APIError,
    AuthenticationExpiredError,
    NetworkOfflineError,
    NetworkTimeoutError,
    RateLimitError,
    ServerError,
)

MINUTE_MS = 60_000


def http_error(code, body=b""):
    return HTTPError(
        url=client.API_URL,
        code=code,
        msg="error",
        hdrs={},
        fp=io.BytesIO(body),
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Test limit_ok()
# ═══════════════════════════════════════════════════════════════════════════════


class TestLimitOk:
    """Tests for limit_ok() and limits_ok()."""

    def test_below_100(self):
        assert limit_ok({"utilization": 99.9}) is True
        assert limit_ok({"utilization": 0}) is True

    def test_at_or_over_100(self):
        assert limit_ok({"utilization": 100}) is False
        assert limit_ok({"utilization": 140.5}) is False

    def test_non_finite(self):
        assert limit_ok({"utilization": math.nan}) is False
        assert limit_ok({"utilization": math.inf}) is False

    def test_not_a_number(self):
        assert limit_ok(None) is False
        assert limit_ok({}) is False
        assert limit_ok({"utilization": "50"}) is False
        assert limit_ok({"utilization": True}) is False

    def test_both_windows_required(self, usage_normal, usage_critical):
        assert limits_ok(usage_normal) is True
        assert limits_ok(usage_critical) is False
        assert limits_ok({"five_hour": usage_normal["five_hour"]}) is False
        assert limits_ok(None) is False


# ═══════════════════════════════════════════════════════════════════════════════
# Test fetch_usage()
# ═══════════════════════════════════════════════════════════════════════════════


class TestFetchUsage:
    """Tests for fetch_usage() API communication."""

    def test_successful_fetch(self, usage_normal, api_response):
        """Test successful API response parsing."""
        with patch.object(client, "urlopen", return_value=api_response(usage_normal)):
            result = fetch_usage("test-token")

        assert result["five_hour"]["utilization"] == 34.5
        assert result["seven_day"]["utilization"] == 12.3

    def test_request_headers(self, usage_normal, api_response):
        """Bearer token and beta header are sent."""
        with patch.object(client, "urlopen", return_value=api_response(usage_normal)) as mock:
            fetch_usage("test-token")

        request = mock.call_args[0][0]
        assert request.get_header("Authorization") == "Bearer test-token"
        assert request.get_header("Anthropic-beta") == client.API_BETA_HEADER
        assert mock.call_args[1]["timeout"] == client.DEFAULT_TIMEOUT

    def test_401_is_expired(self):
        with patch.object(client, "urlopen", side_effect=http_error(401)):
            with pytest.raises(AuthenticationExpiredError):
                fetch_usage("test-token")

    def test_403_token_expired_body(self):
        body = json.dumps({"error": {"message": "OAuth token has expired"}}).encode()
        with patch.object(client, "urlopen", side_effect=http_error(403, body)):
            with pytest.raises(AuthenticationExpiredError):
                fetch_usage("test-token")

    def test_403_other(self):
        with patch.object(client, "urlopen", side_effect=http_error(403, b"forbidden")):
            with pytest.raises(APIError):
                fetch_usage("test-token")

    def test_rate_limit_and_server_error(self):
        with patch.object(client, "urlopen", side_effect=http_error(429)):
            with pytest.raises(RateLimitError):
                fetch_usage("test-token")
        with patch.object(client, "urlopen", side_effect=http_error(503)):
            with pytest.raises(ServerError):
                fetch_usage("test-token")

    def test_network_errors(self):
        with patch.object(client, "urlopen", side_effect=URLError("Connection refused")):
            with pytest.raises(NetworkOfflineError):
                fetch_usage("test-token")
        with patch.object(client, "urlopen", side_effect=URLError("timed out")):
            with pytest.raises(NetworkTimeoutError):
                fetch_usage("test-token")

    def test_dropped_connection(self, api_response):
        with patch.object(client, "urlopen", side_effect=http.client.RemoteDisconnected("closed")):
            with pytest.raises(NetworkOfflineError):
                fetch_usage("test-token")

        response = api_response({})
        response.read.side_effect = ConnectionResetError("reset by peer")
        with patch.object(client, "urlopen", return_value=response):
            with pytest.raises(NetworkOfflineError):
                fetch_usage("test-token")

    def test_invalid_json(self, api_response):
        response = api_response({})
        response.read.return_value = b"<html>"
        with patch.object(client, "urlopen", return_value=response):
            with pytest.raises(APIError):
                fetch_usage("test-token")


# ═══════════════════════════════════════════════════════════════════════════════
# Test fetch_usage_limits()
# ═══════════════════════════════════════════════════════════════════════════════


class TestFetchUsageLimits:
    """Tests for the live-then-cache lookup."""

    def test_live_ok_saves_cache(self, usage_normal, api_response, cache_dir, now_ms):
        with patch.object(client, "get_oauth_token", return_value="tok"):
            with patch.object(client, "urlopen", return_value=api_response(usage_normal)):
                result = fetch_usage_limits(now=now_ms)

        assert result.status is LimitsStatus.LIVE_OK
        assert result.is_live
        assert result.stale is False
        assert result.limits["five_hour"]["utilization"] == 34.5
        assert result.extra_usage == {"is_enabled": False, "monthly_limit": None, "used_credits": None}

        saved = json.loads((cache_dir / "limits-cache.json").read_text())
        assert saved["timestamp"] == now_ms
        assert saved["limits"]["seven_day"]["utilization"] == 12.3
        assert "seven_day_opus" not in saved["limits"]

    def test_no_credential_uses_fresh_cache(self, write_limits_cache, now_ms):
        write_limits_cache(age_minutes=30)

        result = fetch_usage_limits(max_age_minutes=360, now=now_ms)

        assert result.status is LimitsStatus.CACHE_FRESH
        assert result.fallback_from is LimitsStatus.NO_CREDENTIAL
        assert result.stale is False
        assert result.age_minutes == pytest.approx(30)

    def test_live_failure_uses_cache(self, write_limits_cache, now_ms):
        write_limits_cache(age_minutes=5)
        with patch.object(client, "get_oauth_token", return_value="tok"):
            with patch.object(client, "urlopen", side_effect=URLError("offline")):
                result = fetch_usage_limits(now=now_ms)

        assert result.status is LimitsStatus.CACHE_FRESH
        assert result.fallback_from is LimitsStatus.LIVE_FAILED

    def test_disconnect_uses_cache(self, write_limits_cache, now_ms):
        write_limits_cache(age_minutes=5)
        with patch.object(client, "get_oauth_token", return_value="tok"):
            with patch.object(client, "urlopen", side_effect=http.client.RemoteDisconnected("closed")):
                result = fetch_usage_limits(now=now_ms)

        assert result.status is LimitsStatus.CACHE_FRESH
        assert result.fallback_from is LimitsStatus.LIVE_FAILED

    def test_truncated_body_uses_cache(self, write_limits_cache, api_response, now_ms):
        write_limits_cache(age_minutes=5)
        response = api_response({})
        response.read.side_effect = http.client.IncompleteRead(b"{")
        with patch.object(client, "get_oauth_token", return_value="tok"):
            with patch.object(client, "urlopen", return_value=response):
                result = fetch_usage_limits(now=now_ms)

        assert result.status is LimitsStatus.CACHE_FRESH
        assert result.limits["five_hour"]["utilization"] == 34.5

    def test_stale_cache_allowed(self, write_limits_cache, now_ms):
        write_limits_cache(age_minutes=400)

        result = fetch_usage_limits(max_age_minutes=360, allow_stale=True, now=now_ms)

        assert result.status is LimitsStatus.CACHE_STALE
        assert result.stale is True

    def test_stale_cache_rejected(self, write_limits_cache, now_ms):
        write_limits_cache(age_minutes=400)
        assert fetch_usage_limits(max_age_minutes=360, allow_stale=False, now=now_ms) is None

    def test_cache_disabled(self, write_limits_cache, now_ms):
        write_limits_cache(age_minutes=1)
        assert fetch_usage_limits(allow_cache=False, now=now_ms) is None

    def test_nothing_available(self, now_ms):
        assert fetch_usage_limits(now=now_ms) is None

    def test_token_expired_with_cache(self, write_limits_cache, now_ms):
        write_limits_cache(age_minutes=10)
        with patch.object(client, "get_oauth_token", return_value="tok"):
            with patch.object(client, "urlopen", side_effect=http_error(401)):
                result = fetch_usage_limits(now=now_ms)

        assert result.token_expired
        assert result.limits is not None
        assert result.status is LimitsStatus.CACHE_FRESH

    def test_token_expired_without_cache(self, now_ms):
        with patch.object(client, "get_oauth_token", return_value="tok"):
            with patch.object(client, "urlopen", side_effect=http_error(401)):
                result = fetch_usage_limits(now=now_ms)

        assert result.status is LimitsStatus.TOKEN_EXPIRED
        assert result.limits is None
        assert result.token_expired

    def test_payload_without_windows_falls_back(self, api_response, write_limits_cache, now_ms):
        write_limits_cache(age_minutes=1)
        with patch.object(client, "get_oauth_token", return_value="tok"):
            with patch.object(client, "urlopen", return_value=api_response({"other": 1})):
                result = fetch_usage_limits(now=now_ms)

        assert result.status is LimitsStatus.CACHE_FRESH


# ═══════════════════════════════════════════════════════════════════════════════
# Test the limits cache
# ═══════════════════════════════════════════════════════════════════════════════


class TestLimitsCache:
    """Tests for load_limits_cache() and save_limits_cache()."""

    def test_round_trip(self, usage_high, tmp_path, now_ms):
        path = tmp_path / "cache.json"
        limits = cache_mod.pick_limits(usage_high)
        cache_mod.save_limits_cache(limits, usage_high["extra_usage"], cache_file=path, now=now_ms)

        entry = cache_mod.load_limits_cache(cache_file=path, legacy_files=[])

        assert entry.timestamp == now_ms
        assert entry.limits == limits
        assert entry.extra_usage["is_enabled"] is True
        assert (path.stat().st_mode & 0o777) == 0o600

    def test_legacy_cached_at_layout(self, usage_normal, tmp_path, now_ms):
        legacy = tmp_path / ".usage_cache.json"
        legacy.write_text(json.dumps({"cached_at": "2025-01-15T11:00:00+00:00", "data": usage_normal}))

        entry = cache_mod.load_limits_cache(cache_file=tmp_path / "missing.json", legacy_files=[legacy])

        assert entry.timestamp == now_ms - 60 * MINUTE_MS
        assert entry.age_minutes(now_ms) == pytest.approx(60)
        assert entry.extra_usage == usage_normal["extra_usage"]

    def test_newest_legacy_wins(self, usage_normal, tmp_path, now_ms):
        older = tmp_path / "a.json"
        newer = tmp_path / "b.json"
        limits = cache_mod.pick_limits(usage_normal)
        older.write_text(json.dumps({"timestamp": now_ms - 100 * MINUTE_MS, "limits": limits}))
        newer.write_text(json.dumps({"timestamp": now_ms - 10 * MINUTE_MS, "limits": limits}))

        entry = cache_mod.load_limits_cache(cache_file=tmp_path / "missing.json", legacy_files=[older, newer])

        assert entry.path == newer

    def test_dedicated_cache_preferred(self, usage_normal, tmp_path, now_ms):
        dedicated = tmp_path / "limits.json"
        legacy = tmp_path / "legacy.json"
        limits = cache_mod.pick_limits(usage_normal)
        dedicated.write_text(json.dumps({"timestamp": now_ms - 100 * MINUTE_MS, "limits": limits}))
        legacy.write_text(json.dumps({"timestamp": now_ms, "limits": limits}))

        entry = cache_mod.load_limits_cache(cache_file=dedicated, legacy_files=[legacy])

        assert entry.path == dedicated

    def test_corrupt_cache(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{not json")
        assert cache_mod.load_limits_cache(cache_file=path, legacy_files=[]) is None

    def test_cache_without_windows(self, tmp_path, now_ms):
        path = tmp_path / "empty.json"
        path.write_text(json.dumps({"timestamp": now_ms, "limits": {}}))
        assert cache_mod.load_limits_cache(cache_file=path, legacy_files=[]) is None

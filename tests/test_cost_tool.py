"""
Tests for the external cost tool integration.

Tests cover:
- run_cost_tool() - subprocess handling and soft failures
- parse_daily_rows() / group_monthly() / summarize_rows() - row shaping
- fetch_cost_summary() - tool output, result cache
"""

import json
import subprocess
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from claude_keepalive.usage import cost_tool
from claude_keepalive.usage.cost_tool import (
    extract_cost_value,
    group_monthly,
    parse_daily_rows,
    summarize_rows,
)


def completed(stdout="", returncode=0):
    result = MagicMock()
    result.stdout = stdout
    result.returncode = returncode
    return result


# ═══════════════════════════════════════════════════════════════════════════════
# Test run_cost_tool()
# ═══════════════════════════════════════════════════════════════════════════════


class TestRunCostTool:
    """Tests for run_cost_tool()."""

    def test_success(self, monkeypatch):
        monkeypatch.setenv("CCUSAGE_CMD", "npx ccusage")
        monkeypatch.setenv("CCUSAGE_ARGS", "--offline")
        with patch.object(cost_tool.os.path, "exists", return_value=False):
            with patch.object(cost_tool.subprocess, "run", return_value=completed('{"daily": []}')) as mock:
                output = cost_tool.run_cost_tool(["daily", "--json"])

        assert output == '{"daily": []}'
        args, kwargs = mock.call_args
        assert args[0] == ["npx", "ccusage", "--offline", "daily", "--json"]
        assert kwargs["timeout"] == cost_tool.TOOL_TIMEOUT

    def test_missing_binary(self):
        with patch.object(cost_tool.subprocess, "run", side_effect=FileNotFoundError("ccusage")):
            assert cost_tool.run_cost_tool(["daily", "--json"]) is None

    def test_timeout(self):
        with patch.object(
            cost_tool.subprocess, "run", side_effect=subprocess.TimeoutExpired("ccusage", 10)
        ):
            assert cost_tool.run_cost_tool(["daily", "--json"]) is None

    def test_non_zero_exit(self):
        with patch.object(cost_tool.subprocess, "run", return_value=completed("oops", returncode=1)):
            assert cost_tool.run_cost_tool(["daily", "--json"]) is None

    def test_known_install_location(self):
        """A bare command name resolves to the first existing candidate path."""
        candidate = cost_tool.CCUSAGE_CANDIDATES[1]
        with patch.object(cost_tool.os.path, "exists", side_effect=lambda p: p == candidate):
            assert cost_tool.resolve_command() == [candidate]


# ═══════════════════════════════════════════════════════════════════════════════
# Test row shaping
# ═══════════════════════════════════════════════════════════════════════════════


class TestRows:
    """Tests for row parsing and grouping."""

    def test_extract_cost_value(self):
        assert extract_cost_value({"costUSD": 1.5}) == 1.5
        assert extract_cost_value({"totalCost": "2.25"}) == 2.25
        assert extract_cost_value({"totalCostUSD": 3}) == 3.0
        assert extract_cost_value({"totalCost": "n/a"}) == 0.0
        assert extract_cost_value({}) == 0.0

    def test_parse_daily_rows(self, ccusage_daily):
        rows = parse_daily_rows(ccusage_daily)
        assert [r["date"] for r in rows] == ["2025-01-13", "2025-01-14", "2025-01-15"]
        assert rows[1]["costUSD"] == 2.25
        assert rows[1]["cacheReadTokens"] == 50

    def test_parse_data_key_and_bad_rows(self):
        payload = {"data": [{"date": "2025-01-01", "costUSD": 1}, {"cost": 3}, "junk"]}
        assert len(parse_daily_rows(payload)) == 1
        assert parse_daily_rows([]) == []

    def test_group_monthly(self):
        rows = [
            {"date": "2024-12-31", "costUSD": 1.0},
            {"date": "2025-01-01", "costUSD": 2.0},
            {"date": "2025-01-02", "costUSD": 3.0},
        ]
        months = group_monthly(rows)
        assert [m["month"] for m in months] == ["2024-12", "2025-01"]
        assert months[1]["costUSD"] == pytest.approx(5.0)

    def test_summarize_rows(self, ccusage_daily, fixed_now):
        daily = parse_daily_rows(ccusage_daily)
        summary = summarize_rows(daily, group_monthly(daily), fixed_now)
        assert summary["dayKey"] == "2025-01-15"
        assert summary["dayCost"] == pytest.approx(0.75)
        assert summary["last3Cost"] == pytest.approx(4.5)
        assert summary["monthCost"] == pytest.approx(4.5)
        assert summary["allTimeCost"] == pytest.approx(4.5)


# ═══════════════════════════════════════════════════════════════════════════════
# Test fetch_cost_summary()
# ═══════════════════════════════════════════════════════════════════════════════


class TestFetchCostSummary:
    """Tests for fetch_cost_summary()."""

    def test_from_tool(self, ccusage_daily, fixed_now, cache_dir):
        with patch.object(cost_tool, "run_cost_tool", return_value=json.dumps(ccusage_daily)):
            summary = cost_tool.fetch_cost_summary(fixed_now)

        assert summary["source"] == "ccusage"
        assert len(summary["dailyRows"]) == 3
        assert summary["monthlyRows"][0]["month"] == "2025-01"
        assert (cache_dir / "ccusage-cache.json").exists()

    def test_tool_unavailable(self, fixed_now):
        with patch.object(cost_tool, "run_cost_tool", return_value=None):
            assert cost_tool.fetch_cost_summary(fixed_now) is None

    def test_bad_json(self, fixed_now):
        with patch.object(cost_tool, "run_cost_tool", return_value="not json"):
            assert cost_tool.fetch_cost_summary(fixed_now) is None

    def test_uses_cache_when_enabled(self, ccusage_daily, fixed_now, monkeypatch):
        monkeypatch.setenv("CCUSAGE_CACHE_MINUTES", "30")
        with patch.object(cost_tool, "run_cost_tool", return_value=json.dumps(ccusage_daily)):
            cost_tool.fetch_cost_summary(fixed_now)

        later = datetime(2025, 1, 15, 12, 5, tzinfo=timezone.utc)
        with patch.object(cost_tool, "run_cost_tool") as mock_run:
            summary = cost_tool.fetch_cost_summary(later)

        mock_run.assert_not_called()
        assert summary["dayCost"] == pytest.approx(0.75)

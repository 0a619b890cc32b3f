"""
Pytest fixtures for claude-keepalive tests.

Test imports use the src/claude_keepalive/ package via --import-mode=importlib
(see pyproject.toml). Every test runs against temporary state, cache and
history files; nothing touches the real home directory, keychain or network.
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import structlog

from claude_keepalive.api import cache as cache_mod
from claude_keepalive.api import client as client_mod
from claude_keepalive.display import menubar
from claude_keepalive.keeper import state as state_mod
from claude_keepalive.usage import cost_tool, history, pricing

# ═══════════════════════════════════════════════════════════════════════════════
# Path Constants
# ═══════════════════════════════════════════════════════════════════════════════

PROJECT_ROOT = Path(__file__).parent.parent
SRC_DIR = PROJECT_ROOT / "src"

# Load fixtures data
FIXTURES_DIR = Path(__file__).parent / "fixtures"
with open(FIXTURES_DIR / "api_responses.json") as f:
    FIXTURES = json.load(f)

# 2025-01-15T12:00:00Z in epoch ms
NOW_MS = 1736942400000
MINUTE_MS = 60_000


# ═══════════════════════════════════════════════════════════════════════════════
# Isolation
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.fixture(autouse=True)
def isolated_paths(tmp_path, monkeypatch):
    """Point every persisted file at tmp_path and disable the real credential."""
    cache_dir = tmp_path / "cache"
    home = tmp_path / "home"
    home.mkdir()

    monkeypatch.setenv("HOME", str(home))
    for name in (
        "CLAUDE_CONFIG_DIR",
        "CLAUDE_TRANSCRIPT_DIRS",
        "CLAUDE_PRICING_PATH",
        "CLAUDE_STATS_CACHE_PATH",
        "CACHE_WRITE_MODE",
        "CCUSAGE_CMD",
        "CCUSAGE_ARGS",
        "CCUSAGE_CACHE_MINUTES",
        "USAGE_COST_SOURCE",
        "CLAUDE_CMD",
        "CLAUDE_ARGS",
        "CLAUDE_APP",
        "CLAUDE_APP_PATH",
        "VERBOSE",
        "DEBUG",
    ):
        monkeypatch.delenv(name, raising=False)

    monkeypatch.setattr(cache_mod, "LIMITS_CACHE_FILE", cache_dir / "limits-cache.json")
    monkeypatch.setattr(cache_mod, "LEGACY_CACHE_FILES", [])
    monkeypatch.setattr(state_mod, "STATE_FILE", cache_dir / "active-session-keeper.json")
    monkeypatch.setattr(history, "USAGE_HISTORY_FILE", cache_dir / "usage-history.json")
    monkeypatch.setattr(history, "DEFAULT_STATS_FILE", home / ".claude" / "stats-cache.json")
    monkeypatch.setattr(cost_tool, "CCUSAGE_CACHE_FILE", cache_dir / "ccusage-cache.json")
    monkeypatch.setattr(pricing, "DEFAULT_PRICING_FILE", tmp_path / "config" / "pricing.json")
    monkeypatch.setattr(menubar, "KEEPALIVE_LOG_FILE", tmp_path / "claude-keepalive.err")
    monkeypatch.setattr(client_mod, "get_oauth_token", lambda: None)
    return cache_dir


@pytest.fixture(autouse=True)
def reset_logging():
    """Undo setup_logging() calls so no test keeps a captured stream."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def cache_dir(isolated_paths):
    """Temporary cache directory (created on first write)."""
    return isolated_paths


# ═══════════════════════════════════════════════════════════════════════════════
# API Response Fixtures
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.fixture
def usage_normal():
    """Normal usage response (34.5% session, 12.3% weekly)."""
    return json.loads(json.dumps(FIXTURES["usage_normal"]))


@pytest.fixture
def usage_high():
    """High usage response (85.2% session, 67.8% weekly)."""
    return json.loads(json.dumps(FIXTURES["usage_high"]))


@pytest.fixture
def usage_critical():
    """Session window full (100% session, 95.1% weekly)."""
    return json.loads(json.dumps(FIXTURES["usage_critical"]))


@pytest.fixture
def usage_empty():
    """Empty usage response (0% usage)."""
    return json.loads(json.dumps(FIXTURES["usage_empty"]))


@pytest.fixture
def api_response():
    """Factory for a context-manager mock standing in for urlopen()'s response."""

    def make(payload):
        response = MagicMock()
        response.read.return_value = json.dumps(payload).encode()
        response.__enter__ = MagicMock(return_value=response)
        response.__exit__ = MagicMock(return_value=False)
        return response

    return make


# ═══════════════════════════════════════════════════════════════════════════════
# Credentials Fixtures
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.fixture
def credentials_valid():
    """Valid credentials with access token."""
    return json.loads(json.dumps(FIXTURES["credentials_valid"]))


@pytest.fixture
def credentials_missing_token():
    """Credentials without access token."""
    return json.loads(json.dumps(FIXTURES["credentials_missing_token"]))


@pytest.fixture
def tmp_credentials_file(tmp_path, credentials_valid):
    """Create temporary credentials file."""
    creds_file = tmp_path / ".credentials.json"
    creds_file.write_text(json.dumps(credentials_valid))
    return creds_file


# ═══════════════════════════════════════════════════════════════════════════════
# Usage Fixtures
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.fixture
def pricing_table():
    """Pricing table with exact and wildcard entries."""
    return json.loads(json.dumps(FIXTURES["pricing_table"]))


@pytest.fixture
def stats_cache():
    """Stats cache with cumulative per-model token totals."""
    return json.loads(json.dumps(FIXTURES["stats_cache"]))


@pytest.fixture
def ccusage_daily():
    """`ccusage daily --json` output for three days."""
    return json.loads(json.dumps(FIXTURES["ccusage_daily"]))


@pytest.fixture
def tmp_pricing_file(tmp_path, pricing_table):
    """Create temporary pricing file."""
    path = tmp_path / "pricing.json"
    path.write_text(json.dumps(pricing_table))
    return path


# ═══════════════════════════════════════════════════════════════════════════════
# Limits Cache Fixtures
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.fixture
def write_limits_cache(cache_dir, usage_normal):
    """Factory writing the dedicated limits cache with a given age in minutes."""

    def write(age_minutes=0, limits=None, extra_usage=None, now=NOW_MS):
        cache_dir.mkdir(parents=True, exist_ok=True)
        payload = {
            "timestamp": now - int(age_minutes * MINUTE_MS),
            "limits": limits
            or {"five_hour": usage_normal["five_hour"], "seven_day": usage_normal["seven_day"]},
        }
        if extra_usage is not None:
            payload["extra_usage"] = extra_usage
        path = cache_dir / "limits-cache.json"
        path.write_text(json.dumps(payload))
        return path

    return write


# ═══════════════════════════════════════════════════════════════════════════════
# Transcript Fixtures
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.fixture
def iso():
    """Format epoch ms as an ISO-8601 'Z' timestamp."""

    def fmt(ms):
        dt = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
        return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"

    return fmt


@pytest.fixture
def write_transcript(tmp_path):
    """Factory writing a .jsonl transcript from records (dicts or raw strings)."""

    def write(records, name="session.jsonl", directory=None):
        directory = directory or tmp_path / "projects" / "-Users-me-repo"
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / name
        lines = [r if isinstance(r, str) else json.dumps(r) for r in records]
        path.write_text("\n".join(lines) + "\n")
        return path

    return write


# ═══════════════════════════════════════════════════════════════════════════════
# Time Fixtures
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.fixture
def now_ms():
    """Fixed epoch ms for reproducible tests."""
    return NOW_MS


@pytest.fixture
def fixed_now():
    """Fixed datetime for reproducible tests."""
    return datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

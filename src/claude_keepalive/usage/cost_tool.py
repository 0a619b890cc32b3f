"""Daily cost data from the external `ccusage` tool.

The tool is run as `ccusage daily --json`. A missing binary, a non-zero
exit, a timeout or unparseable output all mean "no cost data", never an
error. Results can be cached for CCUSAGE_CACHE_MINUTES.
"""

from __future__ import annotations

import json
import os
import subprocess
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from claude_keepalive.config.settings import (
    CACHE_DIR,
    env_number,
    split_command,
    subprocess_env,
)
from claude_keepalive.log import get_logger
from claude_keepalive.utils.time import local_date_key, local_month_key, now_ms

CCUSAGE_CACHE_FILE = CACHE_DIR / "ccusage-cache.json"
CCUSAGE_CANDIDATES = [
    "/opt/homebrew/bin/ccusage",
    "/usr/local/bin/ccusage",
    "/usr/bin/ccusage",
]
TOOL_TIMEOUT = 10  # seconds
DEFAULT_CACHE_MINUTES = 0

TOKEN_FIELDS = ("inputTokens", "outputTokens", "cacheReadTokens", "cacheCreationTokens")

logger = get_logger(__name__)


def resolve_command() -> List[str]:
    """Command line for the tool: CCUSAGE_CMD, else a known install location."""
    base = split_command(os.environ.get("CCUSAGE_CMD") or "ccusage")
    if not base:
        return []
    if os.path.exists(base[0]):
        return base
    for candidate in CCUSAGE_CANDIDATES:
        if os.path.exists(candidate):
            return [candidate] + base[1:]
    return base


def run_cost_tool(args: List[str]) -> Optional[str]:
    """Run the tool with CCUSAGE_ARGS plus `args`; stdout or None."""
    base = resolve_command()
    if not base:
        return None
    extra = split_command(os.environ.get("CCUSAGE_ARGS", ""))
    try:
        result = subprocess.run(
            base + extra + args,
            capture_output=True,
            text=True,
            timeout=TOOL_TIMEOUT,
            env=subprocess_env(),
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug("cost_tool_unavailable", command=base[0], error=str(e))
        return None
    if result.returncode != 0:
        logger.debug("cost_tool_failed", command=base[0], returncode=result.returncode)
        return None
    output = (result.stdout or "").strip()
    return output or None


def extract_cost_value(row: Dict[str, Any]) -> float:
    """Cost in USD from whichever cost field the tool version emits."""
    for key in ("costUSD", "totalCostUSD", "totalCost"):
        value = row.get(key)
        if isinstance(value, bool):
            continue
        if isinstance(value, (int, float)):
            return float(value)
        if isinstance(value, str):
            try:
                return float(value)
            except ValueError:
                return 0.0
    return 0.0


def _int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def parse_daily_rows(payload: Any) -> List[Dict[str, Any]]:
    """Normalize the tool's daily rows (under 'daily' or 'data')."""
    rows: Any = []
    if isinstance(payload, dict):
        rows = payload.get("data") if isinstance(payload.get("data"), list) else payload.get("daily")
    if not isinstance(rows, list):
        return []
    parsed = []
    for row in rows:
        if not isinstance(row, dict) or not isinstance(row.get("date"), str):
            continue
        entry: Dict[str, Any] = {"date": row["date"], "costUSD": extract_cost_value(row)}
        for key in TOKEN_FIELDS:
            entry[key] = _int(row.get(key))
        parsed.append(entry)
    return parsed


def group_monthly(daily_rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Sum daily rows into YYYY-MM buckets, sorted by month."""
    buckets: Dict[str, Dict[str, Any]] = {}
    for row in daily_rows:
        month = row["date"][:7]
        bucket = buckets.setdefault(
            month, {"month": month, "costUSD": 0.0, **{key: 0 for key in TOKEN_FIELDS}}
        )
        bucket["costUSD"] += row.get("costUSD", 0.0)
        for key in TOKEN_FIELDS:
            bucket[key] += row.get(key, 0)
    return [buckets[key] for key in sorted(buckets)]


def summarize_rows(
    daily_rows: List[Dict[str, Any]],
    monthly_rows: List[Dict[str, Any]],
    now: datetime,
) -> Dict[str, Any]:
    """Today / last three days / month / all-time totals."""
    daily_sorted = sorted(daily_rows, key=lambda r: r["date"])
    day_key = local_date_key(now)
    month_key = local_month_key(now)
    today = next((r for r in daily_sorted if r["date"] == day_key), None)
    month = next((r for r in monthly_rows if r["month"] == month_key), None)
    if month is None and monthly_rows:
        month = monthly_rows[-1]
    return {
        "last3Cost": sum(r.get("costUSD", 0.0) for r in daily_sorted[-3:]),
        "dayCost": today.get("costUSD", 0.0) if today else 0.0,
        "dayKey": day_key,
        "monthCost": month.get("costUSD", 0.0) if month else 0.0,
        "monthKey": month_key,
        "allTimeCost": sum(r.get("costUSD", 0.0) for r in monthly_rows),
    }


def read_cost_cache(
    max_age_minutes: float,
    cache_file: Optional[Path] = None,
    now: Optional[int] = None,
) -> Optional[Dict[str, Any]]:
    """Cached summary if younger than max_age_minutes."""
    if cache_file is None:
        cache_file = CCUSAGE_CACHE_FILE
    if now is None:
        now = now_ms()
    try:
        with open(cache_file, encoding="utf-8") as f:
            payload = json.load(f)
    except (OSError, ValueError):
        return None
    if not isinstance(payload, dict):
        return None
    ts = payload.get("timestamp")
    if isinstance(ts, bool) or not isinstance(ts, (int, float)) or not ts:
        return None
    if now - ts > max_age_minutes * 60_000:
        return None
    data = payload.get("data")
    return data if isinstance(data, dict) else None


def write_cost_cache(data: Dict[str, Any], cache_file: Optional[Path] = None) -> None:
    """Persist a summary for later runs (best-effort)."""
    if cache_file is None:
        cache_file = CCUSAGE_CACHE_FILE
    try:
        cache_file.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
        with open(cache_file, "w", encoding="utf-8") as f:
            json.dump({"timestamp": now_ms(), "data": data}, f, indent=2)
        os.chmod(cache_file, 0o600)
    except OSError as e:
        logger.debug("cost_cache_write_failed", error=str(e))


def fetch_cost_summary(now: datetime) -> Optional[Dict[str, Any]]:
    """Daily and monthly cost rows plus a summary, or None if unavailable."""
    cache_minutes = env_number("CCUSAGE_CACHE_MINUTES", DEFAULT_CACHE_MINUTES)
    if cache_minutes > 0:
        cached = read_cost_cache(cache_minutes)
        if cached and isinstance(cached.get("dailyRows"), list):
            daily = [r for r in cached["dailyRows"] if isinstance(r, dict) and "date" in r]
            monthly = group_monthly(daily)
            # Today's keys may have rolled over since the cache was written
            return {**cached, **summarize_rows(daily, monthly, now), "monthlyRows": monthly}

    raw = run_cost_tool(["daily", "--json"])
    if not raw:
        return None
    try:
        payload = json.loads(raw)
    except ValueError:
        logger.debug("cost_tool_bad_json")
        return None

    daily_rows = parse_daily_rows(payload)
    if not daily_rows:
        return None
    monthly_rows = group_monthly(daily_rows)
    data = {
        "source": "ccusage",
        **summarize_rows(daily_rows, monthly_rows, now),
        "dailyRows": daily_rows,
        "monthlyRows": monthly_rows,
    }
    write_cost_cache(data)
    return data


__all__ = [
    "CCUSAGE_CACHE_FILE",
    "TOOL_TIMEOUT",
    "resolve_command",
    "run_cost_tool",
    "extract_cost_value",
    "parse_daily_rows",
    "group_monthly",
    "summarize_rows",
    "read_cost_cache",
    "write_cost_cache",
    "fetch_cost_summary",
]

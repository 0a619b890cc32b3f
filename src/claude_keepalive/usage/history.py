"""Daily and monthly usage cost history.

History is kept in one JSON file:

    {"version": 1,
     "daily":   {"2025-01-31": {"models": {...}, "costUSD": 1.2, ...}},
     "monthly": {"2025-01": {...}},
     "lastUpdated": "...", "lastTotals": {"models": {...}}}

Costs come from one of two sources (USAGE_COST_SOURCE):

- ``ccusage``: rows from the external cost tool. Closed (past) buckets
  that already exist are never rewritten; open buckets are replaced.
- ``pricing``: cumulative per-model token totals from the CLI's stats
  cache are diffed against the previous run and priced locally.
"""

from __future__ import annotations

import json
import math
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from claude_keepalive.config.settings import CACHE_DIR
from claude_keepalive.log import get_logger
from claude_keepalive.usage.cost_tool import fetch_cost_summary
from claude_keepalive.usage.pricing import (
    TOKEN_KINDS,
    compute_cost,
    get_pricing_path,
    refresh_pricing_if_stale,
    resolve_pricing,
)
from claude_keepalive.utils.time import local_date_key, local_month_key

# History file location
USAGE_HISTORY_FILE = CACHE_DIR / "usage-history.json"
DEFAULT_STATS_FILE = Path.home() / ".claude" / "stats-cache.json"

HISTORY_VERSION = 1
MAX_DAILY_KEYS = 120
MAX_MONTHLY_KEYS = 24

COST_SOURCE_ENV = "USAGE_COST_SOURCE"
DEFAULT_COST_SOURCE = "ccusage"
COST_SOURCES = ("ccusage", "pricing")

# Stats-cache field names for each token kind
STATS_TOKEN_FIELDS = {
    "input": "inputTokens",
    "output": "outputTokens",
    "cacheRead": "cacheReadInputTokens",
    "cacheWrite": "cacheCreationInputTokens",
}

logger = get_logger(__name__)


def new_history() -> Dict[str, Any]:
    return {"version": HISTORY_VERSION, "daily": {}, "monthly": {}}


def _read_json(path: Path) -> Any:
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError):
        return None


def load_history(path: Optional[Path] = None) -> Dict[str, Any]:
    """Load usage history, or an empty history if missing or corrupt."""
    if path is None:
        path = USAGE_HISTORY_FILE
    history = _read_json(path)
    if not isinstance(history, dict):
        return new_history()
    for key in ("daily", "monthly"):
        if not isinstance(history.get(key), dict):
            history[key] = {}
    history.setdefault("version", HISTORY_VERSION)
    return history


def save_history(history: Dict[str, Any], path: Optional[Path] = None) -> bool:
    """Save usage history (best-effort). Returns True if written."""
    if path is None:
        path = USAGE_HISTORY_FILE
    try:
        path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(history, f, indent=2)
        os.chmod(path, 0o600)
    except OSError as e:
        logger.warning("usage_history_write_failed", path=str(path), error=str(e))
        return False
    return True


def trim_keys(buckets: Dict[str, Any], keep: int) -> Dict[str, Any]:
    """Keep the newest `keep` buckets; date keys sort chronologically."""
    keys = sorted(buckets)
    if len(keys) <= keep:
        return buckets
    return {key: buckets[key] for key in keys[-keep:]}


def clamp_delta(current: Any, previous: Any) -> float:
    """Growth of a cumulative counter; a drop means the counter was reset."""
    if isinstance(current, bool) or not isinstance(current, (int, float)) or not math.isfinite(current):
        return 0
    if isinstance(previous, bool) or not isinstance(previous, (int, float)) or not math.isfinite(previous):
        return current
    delta = current - previous
    return current if delta < 0 else delta


def _count(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    return number if math.isfinite(number) else 0


def normalize_totals(model_usage: Dict[str, Any]) -> Dict[str, Dict[str, float]]:
    """Map the stats cache's per-model usage onto our token kinds."""
    totals = {}
    for model, usage in model_usage.items():
        usage = usage if isinstance(usage, dict) else {}
        totals[model] = {kind: _count(usage.get(field)) for kind, field in STATS_TOKEN_FIELDS.items()}
    return totals


def add_model_tokens(bucket: Dict[str, Any], model: str, delta: Dict[str, float]) -> None:
    counts = bucket.setdefault("models", {}).setdefault(model, {})
    for kind in TOKEN_KINDS:
        counts[kind] = counts.get(kind, 0) + delta.get(kind, 0)


def merge_cost_rows(
    history: Dict[str, Any],
    daily_rows: List[Dict[str, Any]],
    monthly_rows: List[Dict[str, Any]],
    now: datetime,
) -> None:
    """Record external cost rows into history.

    A past day or month that is already recorded is left as is, so
    re-running never double counts or rewrites a closed bucket. The
    current day and month are overwritten with the latest figures.
    """
    today = local_date_key(now)
    this_month = local_month_key(now)
    stamp = now.isoformat()

    for row in daily_rows:
        existing = history["daily"].get(row["date"])
        if row["date"] < today and existing:
            continue
        history["daily"][row["date"]] = {
            **(existing or {}),
            "costUSD": row.get("costUSD", 0.0),
            "source": "ccusage",
            "updatedAt": stamp,
        }

    for row in monthly_rows:
        existing = history["monthly"].get(row["month"])
        if row["month"] < this_month and existing:
            continue
        history["monthly"][row["month"]] = {
            **(existing or {}),
            "costUSD": row.get("costUSD", 0.0),
            "source": "ccusage",
            "updatedAt": stamp,
        }


def apply_token_deltas(
    history: Dict[str, Any],
    totals: Dict[str, Dict[str, float]],
    pricing: Optional[dict],
    now: datetime,
) -> bool:
    """Add token growth since the last run to today's and this month's buckets.

    Returns:
        True if any model grew.
    """
    last_totals = (history.get("lastTotals") or {}).get("models") or {}
    deltas = {}
    for model, current in totals.items():
        previous = last_totals.get(model) or {}
        deltas[model] = {kind: clamp_delta(current.get(kind), previous.get(kind)) for kind in TOKEN_KINDS}
    found = any(d[kind] > 0 for d in deltas.values() for kind in TOKEN_KINDS)

    history["lastTotals"] = {"models": totals}
    if not found:
        return False

    day = history["daily"].setdefault(local_date_key(now), {"models": {}, "costUSD": 0.0})
    month = history["monthly"].setdefault(local_month_key(now), {"models": {}, "costUSD": 0.0})
    for model, delta in deltas.items():
        add_model_tokens(day, model, delta)
        add_model_tokens(month, model, delta)

    cost = compute_cost(deltas, pricing)
    for bucket in (day, month):
        bucket["costUSD"] = bucket.get("costUSD", 0.0) + cost.total
        bucket["missingPricing"] = list(cost.missing)
        bucket["source"] = "pricing"
    return True


def summarize_usage(
    history: Dict[str, Any],
    now: datetime,
    pricing: Optional[dict] = None,
) -> Dict[str, Any]:
    """Cost totals for today, the last three recorded days, the month and all time.

    Models without pricing in the last three days or this month are
    reported under missingPricing: resolved against `pricing` when given,
    else taken from what each bucket recorded.
    """
    day_key = local_date_key(now)
    month_key = local_month_key(now)
    daily = history.get("daily") or {}
    monthly = history.get("monthly") or {}
    last3 = sorted(daily)[-3:]

    def cost(bucket: Any) -> float:
        value = bucket.get("costUSD") if isinstance(bucket, dict) else None
        return value if isinstance(value, (int, float)) and not isinstance(value, bool) else 0.0

    buckets = [daily[key] for key in last3]
    if month_key in monthly:
        buckets.append(monthly[month_key])

    missing: Dict[str, None] = {}
    for bucket in buckets:
        if not isinstance(bucket, dict):
            continue
        if pricing:
            for model in bucket.get("models") or {}:
                if resolve_pricing(model, pricing) is None:
                    missing[model] = None
        else:
            for model in bucket.get("missingPricing") or []:
                missing[model] = None

    return {
        "ok": True,
        "dayKey": day_key,
        "monthKey": month_key,
        "dayCost": cost(daily.get(day_key)),
        "last3Cost": sum(cost(daily[key]) for key in last3),
        "monthCost": cost(monthly.get(month_key)),
        "allTimeCost": sum(cost(bucket) for bucket in monthly.values()),
        "missingPricing": list(missing),
    }


def get_cost_source() -> str:
    return (os.environ.get(COST_SOURCE_ENV) or DEFAULT_COST_SOURCE).lower()


def update_usage_history(
    history_path: Optional[Path] = None,
    stats_path: Optional[Path] = None,
    pricing_path: Optional[Path] = None,
    now: Optional[datetime] = None,
    cost_source: Optional[str] = None,
) -> Dict[str, Any]:
    """Refresh the usage history from the configured cost source.

    Returns:
        A summary dict with ok=True and cost totals, or ok=False with a
        reason ('ccusage_missing', 'stats_missing', 'invalid_cost_source').
    """
    if history_path is None:
        history_path = USAGE_HISTORY_FILE
    if stats_path is None:
        override = os.environ.get("CLAUDE_STATS_CACHE_PATH")
        stats_path = Path(override).expanduser() if override else DEFAULT_STATS_FILE
    if pricing_path is None:
        pricing_path = get_pricing_path()
    if now is None:
        now = datetime.now().astimezone()
    if cost_source is None:
        cost_source = get_cost_source()

    if cost_source not in COST_SOURCES:
        return {"ok": False, "reason": "invalid_cost_source", "historyPath": str(history_path)}

    history = load_history(history_path)

    if cost_source == "ccusage":
        summary = fetch_cost_summary(now)
        if not summary:
            return {"ok": False, "reason": "ccusage_missing", "historyPath": str(history_path)}
        merge_cost_rows(history, summary.get("dailyRows") or [], summary.get("monthlyRows") or [], now)
        pricing = None
        pricing_loaded = True
    else:
        pricing = refresh_pricing_if_stale(pricing_path, now=now)
        stats = _read_json(stats_path)
        model_usage = stats.get("modelUsage") if isinstance(stats, dict) else None
        if not isinstance(model_usage, dict):
            return {"ok": False, "reason": "stats_missing", "historyPath": str(history_path)}
        apply_token_deltas(history, normalize_totals(model_usage), pricing, now)
        pricing_loaded = bool(pricing and pricing.get("models"))

    history["lastUpdated"] = now.isoformat()
    history["daily"] = trim_keys(history["daily"], MAX_DAILY_KEYS)
    history["monthly"] = trim_keys(history["monthly"], MAX_MONTHLY_KEYS)
    save_history(history, history_path)

    result = summarize_usage(history, now, pricing)
    if cost_source == "ccusage":
        # The tool prices its own rows
        result["missingPricing"] = []
    result.update(
        source=cost_source,
        pricingLoaded=pricing_loaded,
        historyPath=str(history_path),
    )
    return result


__all__ = [
    "USAGE_HISTORY_FILE",
    "DEFAULT_STATS_FILE",
    "MAX_DAILY_KEYS",
    "MAX_MONTHLY_KEYS",
    "new_history",
    "load_history",
    "save_history",
    "trim_keys",
    "clamp_delta",
    "normalize_totals",
    "merge_cost_rows",
    "apply_token_deltas",
    "summarize_usage",
    "get_cost_source",
    "update_usage_history",
]

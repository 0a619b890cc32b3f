"""Model pricing table: lookup, cost computation and opportunistic refresh.

The table is a user-editable JSON file:

    {
      "models": {"claude-opus-4-5*": {"input": 5, "output": 25}, ...},
      "cache": {"readMultiplier": 0.1, "writeMultiplier5m": 1.25,
                "writeMultiplier1h": 2, "writeMode": "5m"},
      "updatedAt": "...", "lastRefreshAttempt": "..."
    }

Rates are USD per million tokens. Keys ending in '*' match by prefix,
first match in table order wins.
"""

from __future__ import annotations

import json
import math
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.error import URLError
from urllib.request import Request, urlopen

from claude_keepalive._version import __version__
from claude_keepalive.config.settings import CONFIG_DIR
from claude_keepalive.log import get_logger
from claude_keepalive.utils.time import parse_iso_timestamp

DEFAULT_PRICING_FILE = CONFIG_DIR / "pricing.json"
PRICING_PATH_ENV = "CLAUDE_PRICING_PATH"
CACHE_WRITE_MODE_ENV = "CACHE_WRITE_MODE"

PRICING_URL = "https://platform.claude.com/docs/en/about-claude/pricing"
PRICING_REFRESH_DAYS = 30
PRICING_REFRESH_RETRY_HOURS = 12

DEFAULT_CACHE_RULES = {
    "readMultiplier": 0.1,
    "writeMultiplier5m": 1.25,
    "writeMultiplier1h": 2,
    "writeMode": "5m",
}

# (row label on the pricing page, table key); more specific rows first
PRICING_ROWS = [
    ("Claude Opus 4.5", "claude-opus-4-5*"),
    ("Claude Opus 4.1", "claude-opus-4-1*"),
    ("Claude Opus 4", "claude-opus-4*"),
    ("Claude Sonnet 4.5", "claude-sonnet-4-5*"),
    ("Claude Sonnet 4", "claude-sonnet-4*"),
    ("Claude Sonnet 3.7 (deprecated)", "claude-sonnet-3-7*"),
    ("Claude Haiku 4.5", "claude-haiku-4-5*"),
    ("Claude Haiku 3.5", "claude-haiku-3-5*"),
    ("Claude Opus 3 (deprecated)", "claude-opus-3*"),
    ("Claude Haiku 3", "claude-haiku-3*"),
]

TOKEN_KINDS = ("input", "output", "cacheRead", "cacheWrite")

_PRICE_CELL = r"\$([0-9.]+)\s*/\s*MTok"
_TAG = re.compile(r"<[^>]+>")
_SPACE = re.compile(r"\s+")

logger = get_logger(__name__)


@dataclass
class CostBreakdown:
    """Cost of a set of per-model token deltas."""

    total: float = 0.0
    per_model: Dict[str, float] = field(default_factory=dict)
    missing: List[str] = field(default_factory=list)


def get_pricing_path() -> Path:
    """Pricing file location (CLAUDE_PRICING_PATH overrides the default)."""
    override = os.environ.get(PRICING_PATH_ENV)
    if override:
        return Path(override).expanduser()
    return DEFAULT_PRICING_FILE


def load_pricing(path: Optional[Path] = None) -> Optional[dict]:
    """Load the pricing table; None when missing or malformed."""
    if path is None:
        path = get_pricing_path()
    try:
        with open(path, encoding="utf-8") as f:
            pricing = json.load(f)
    except (OSError, ValueError):
        return None
    return pricing if isinstance(pricing, dict) else None


def save_pricing(pricing: dict, path: Optional[Path] = None) -> None:
    """Write the pricing table (best-effort)."""
    if path is None:
        path = get_pricing_path()
    try:
        path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(pricing, f, indent=2)
        os.chmod(path, 0o600)
    except OSError as e:
        logger.debug("pricing_write_failed", path=str(path), error=str(e))


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value) if math.isfinite(value) else None


def resolve_pricing(model: str, pricing: Optional[dict]) -> Optional[dict]:
    """Find the rates for a model: exact key, else first matching 'prefix*' key."""
    if not pricing:
        return None
    models = pricing.get("models") or {}
    if not isinstance(models, dict):
        return None
    if isinstance(models.get(model), dict):
        return models[model]
    for key, rates in models.items():
        if key.endswith("*") and model.startswith(key[:-1]) and isinstance(rates, dict):
            return rates
    return None


def _cache_rules(pricing: Optional[dict]) -> dict:
    rules = (pricing or {}).get("cache")
    return rules if isinstance(rules, dict) else {}


def cache_write_mode(pricing: Optional[dict]) -> str:
    """'5m' or '1h': CACHE_WRITE_MODE env, else the table's writeMode."""
    mode = os.environ.get(CACHE_WRITE_MODE_ENV) or _cache_rules(pricing).get("writeMode") or "5m"
    return str(mode).lower()


def cache_read_rate(pricing: Optional[dict], base_input: float, rates: dict) -> float:
    """Per-MTok cache read rate: explicit override, else input x readMultiplier."""
    explicit = _number(rates.get("cacheRead"))
    if explicit is not None:
        return explicit
    multiplier = _number(_cache_rules(pricing).get("readMultiplier"))
    return base_input * (multiplier if multiplier is not None else DEFAULT_CACHE_RULES["readMultiplier"])


def cache_write_rate(pricing: Optional[dict], base_input: float, rates: dict) -> float:
    """Per-MTok cache write rate for the configured write mode."""
    explicit = _number(rates.get("cacheWrite"))
    if explicit is not None:
        return explicit

    mode = cache_write_mode(pricing)
    per_mode = _number(rates.get("cacheWrite1h" if mode == "1h" else "cacheWrite5m"))
    if per_mode is not None:
        return per_mode

    rules = _cache_rules(pricing)
    if mode == "1h":
        multiplier = _number(rules.get("writeMultiplier1h"))
        default = DEFAULT_CACHE_RULES["writeMultiplier1h"]
    else:
        multiplier = _number(rules.get("writeMultiplier5m"))
        default = DEFAULT_CACHE_RULES["writeMultiplier5m"]
    return base_input * (multiplier if multiplier is not None else default)


def compute_cost(deltas: Dict[str, Dict[str, float]], pricing: Optional[dict]) -> CostBreakdown:
    """Price per-model token deltas.

    cost = sum over token kinds of (count / 1e6) x rate. Models without a
    pricing entry are listed in `missing` and contribute nothing.
    """
    breakdown = CostBreakdown()
    for model, delta in deltas.items():
        rates = resolve_pricing(model, pricing)
        if rates is None:
            breakdown.missing.append(model)
            continue
        base_input = _number(rates.get("input"))
        if base_input is None:
            base_input = _number(rates.get("baseInput")) or 0.0
        output_rate = _number(rates.get("output")) or 0.0
        cost = (
            delta.get("input", 0) / 1_000_000 * base_input
            + delta.get("output", 0) / 1_000_000 * output_rate
            + delta.get("cacheRead", 0) / 1_000_000 * cache_read_rate(pricing, base_input, rates)
            + delta.get("cacheWrite", 0) / 1_000_000 * cache_write_rate(pricing, base_input, rates)
        )
        breakdown.per_model[model] = cost
        breakdown.total += cost
    return breakdown


def parse_pricing_from_text(text: str) -> Dict[str, Dict[str, float]]:
    """Extract input/output rates for the known model rows of the pricing page.

    Each row reads: name, base input, 5m cache write, 1h cache write,
    cache hit, output (all '$X / MTok').
    """
    cleaned = _SPACE.sub(" ", _TAG.sub(" ", text)).strip()
    models: Dict[str, Dict[str, float]] = {}
    for name, key in PRICING_ROWS:
        pattern = re.compile(
            re.escape(name) + r"\s+" + r"\s+".join([_PRICE_CELL] * 5),
            re.IGNORECASE,
        )
        match = pattern.search(cleaned)
        if not match:
            continue
        try:
            input_rate = float(match.group(1))
            output_rate = float(match.group(5))
        except ValueError:
            continue
        if math.isfinite(input_rate) and math.isfinite(output_rate):
            models[key] = {"input": input_rate, "output": output_rate}
    return models


def fetch_pricing_page(timeout: int = 10) -> str:
    """Download the public pricing page.

    Raises:
        URLError: On HTTP or network failure.
    """
    req = Request(
        PRICING_URL,
        headers={"Accept": "text/html", "User-Agent": f"claude-keepalive/{__version__}"},
    )
    with urlopen(req, timeout=timeout) as response:
        return response.read().decode("utf-8", errors="replace")


def _parse_time(value: Any) -> Optional[datetime]:
    if not isinstance(value, str):
        return None
    try:
        return parse_iso_timestamp(value)
    except ValueError:
        return None


def refresh_pricing_if_stale(
    path: Optional[Path] = None,
    now: Optional[datetime] = None,
) -> Optional[dict]:
    """Refresh the pricing table from the web when it is older than 30 days.

    Attempts are spaced at least 12 hours apart. A failed download or an
    empty parse leaves the existing models untouched; only the attempt
    time is recorded.

    Returns:
        The pricing table after the attempt (possibly unchanged or None).
    """
    if path is None:
        path = get_pricing_path()
    if now is None:
        now = datetime.now(timezone.utc)

    pricing = load_pricing(path)
    updated_at = _parse_time((pricing or {}).get("updatedAt"))
    last_attempt = _parse_time((pricing or {}).get("lastRefreshAttempt"))
    stale = updated_at is None or now - updated_at > timedelta(days=PRICING_REFRESH_DAYS)
    can_retry = last_attempt is None or now - last_attempt > timedelta(
        hours=PRICING_REFRESH_RETRY_HOURS
    )
    if not stale or not can_retry:
        return pricing

    next_pricing = dict(pricing or {})
    next_pricing["lastRefreshAttempt"] = now.isoformat()

    try:
        models = parse_pricing_from_text(fetch_pricing_page())
    except (URLError, OSError, ValueError) as e:
        logger.info("pricing_refresh_failed", error=str(e))
        models = {}

    if models:
        next_pricing = {
            "source": PRICING_URL,
            "updatedAt": now.isoformat(),
            "lastRefreshAttempt": next_pricing["lastRefreshAttempt"],
            "cache": dict(DEFAULT_CACHE_RULES),
            "models": models,
        }
        logger.info("pricing_refreshed", models=len(models))
    elif pricing is not None:
        logger.info("pricing_refresh_kept_existing")

    save_pricing(next_pricing, path)
    return next_pricing


__all__ = [
    "DEFAULT_PRICING_FILE",
    "PRICING_URL",
    "PRICING_REFRESH_DAYS",
    "PRICING_REFRESH_RETRY_HOURS",
    "DEFAULT_CACHE_RULES",
    "PRICING_ROWS",
    "TOKEN_KINDS",
    "CostBreakdown",
    "get_pricing_path",
    "load_pricing",
    "save_pricing",
    "resolve_pricing",
    "cache_write_mode",
    "cache_read_rate",
    "cache_write_rate",
    "compute_cost",
    "parse_pricing_from_text",
    "fetch_pricing_page",
    "refresh_pricing_if_stale",
]

"""Usage cost tracking.

Modules:
    pricing: Pricing table lookup, cost formula, web refresh
    cost_tool: Daily cost rows from the external ccusage tool
    history: Daily/monthly cost history and summaries
"""

from claude_keepalive.usage.history import (
    USAGE_HISTORY_FILE,
    load_history,
    merge_cost_rows,
    summarize_usage,
    update_usage_history,
)
from claude_keepalive.usage.pricing import (
    CostBreakdown,
    compute_cost,
    load_pricing,
    refresh_pricing_if_stale,
    resolve_pricing,
)

__all__ = [
    "USAGE_HISTORY_FILE",
    "load_history",
    "merge_cost_rows",
    "summarize_usage",
    "update_usage_history",
    "CostBreakdown",
    "compute_cost",
    "load_pricing",
    "resolve_pricing",
    "refresh_pricing_if_stale",
]

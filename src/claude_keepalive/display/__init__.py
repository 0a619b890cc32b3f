"""Status display.

Modules:
    menubar: SwiftBar / xbar plugin output
"""

from claude_keepalive.display.menubar import (
    StatusSnapshot,
    collect_snapshot,
    render_lines,
    render_status,
)

__all__ = [
    "StatusSnapshot",
    "collect_snapshot",
    "render_lines",
    "render_status",
]

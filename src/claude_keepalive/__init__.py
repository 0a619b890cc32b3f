"""Claude Keepalive - keep a Claude Code session warm while you are away.

This package watches transcript activity and subscription usage limits,
launches the Claude Code CLI with a short priming message when the user is
idle and limits allow, and renders a status menu for SwiftBar / xbar.
"""

from claude_keepalive._version import __version__
from claude_keepalive.cli import create_parser, print_version

__all__ = [
    "__version__",
    "create_parser",
    "print_version",
]

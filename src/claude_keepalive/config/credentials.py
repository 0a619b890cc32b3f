"""Credential retrieval for the usage-limits endpoint.

Reads the Claude Code OAuth credentials from the macOS Keychain, falling
back to the credentials file written by the CLI.
"""

from __future__ import annotations

import json
import platform
import subprocess
from pathlib import Path
from typing import Optional

from claude_keepalive.errors import AuthenticationInvalidError, AuthenticationMissingError
from claude_keepalive.log import get_logger

KEYCHAIN_SERVICE = "Claude Code-credentials"

logger = get_logger(__name__)


def get_credentials_path() -> Path:
    """Credentials file the CLI writes, ~/.claude/.credentials.json."""
    return Path.home() / ".claude" / ".credentials.json"


def get_macos_keychain_credentials() -> dict | None:
    """Retrieve credentials from macOS Keychain.

    Returns:
        Credentials dict if found in Keychain, None otherwise.
    """
    try:
        result = subprocess.run(
            ["security", "find-generic-password", "-s", KEYCHAIN_SERVICE, "-w"],
            capture_output=True,
            text=True,
            check=True,
            timeout=10,
        )
        return json.loads(result.stdout.strip())
    except (
        subprocess.CalledProcessError,
        subprocess.TimeoutExpired,
        json.JSONDecodeError,
        FileNotFoundError,
    ):
        return None


def get_credentials() -> dict:
    """Get Claude Code credentials from the appropriate source.

    First tries macOS Keychain on Darwin systems, then falls back to
    the credentials file.

    Raises:
        AuthenticationMissingError: If no credentials are stored.
        AuthenticationInvalidError: If the credentials file is unreadable.
    """
    if platform.system() == "Darwin":
        creds = get_macos_keychain_credentials()
        if creds:
            return creds

    creds_path = get_credentials_path()
    if not creds_path.exists():
        raise AuthenticationMissingError(f"Credentials not found at {creds_path}")

    try:
        with open(creds_path, encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise AuthenticationInvalidError(
            f"Could not read credentials at {creds_path}", details=str(e)
        ) from e


def get_access_token() -> str:
    """Get the OAuth access token from credentials.

    Raises:
        AuthenticationMissingError: If no access token is stored.
        AuthenticationInvalidError: If the credentials are unreadable.
    """
    creds = get_credentials()
    oauth = creds.get("claudeAiOauth") if isinstance(creds, dict) else None
    token = oauth.get("accessToken") if isinstance(oauth, dict) else None
    if not token or not isinstance(token, str):
        raise AuthenticationMissingError("No access token found in credentials")
    return token


def get_oauth_token() -> Optional[str]:
    """Soft variant of get_access_token: None when no usable token exists."""
    try:
        return get_access_token()
    except (AuthenticationMissingError, AuthenticationInvalidError) as e:
        logger.debug("credential_unavailable", reason=e.message)
        return None


__all__ = [
    "KEYCHAIN_SERVICE",
    "get_credentials_path",
    "get_macos_keychain_credentials",
    "get_credentials",
    "get_access_token",
    "get_oauth_token",
]

"""Configuration management.

Modules:
    settings: Paths, defaults, keeper options, environment overrides
    credentials: OAuth credential retrieval
"""

from claude_keepalive.config.credentials import (
    get_access_token,
    get_credentials,
    get_credentials_path,
    get_macos_keychain_credentials,
    get_oauth_token,
)
from claude_keepalive.config.settings import (
    CACHE_DIR,
    CONFIG_DIR,
    DEFAULTS,
    KeeperConfig,
    config_from_env,
    get_companion_command,
    subprocess_env,
    validate_config,
)

__all__ = [
    # Settings
    "CACHE_DIR",
    "CONFIG_DIR",
    "DEFAULTS",
    "KeeperConfig",
    "validate_config",
    "config_from_env",
    "get_companion_command",
    "subprocess_env",
    # Credentials
    "get_credentials_path",
    "get_macos_keychain_credentials",
    "get_credentials",
    "get_access_token",
    "get_oauth_token",
]

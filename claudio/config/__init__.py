"""Bridge configuration.

Config is loaded once at startup and passed explicitly to the coordinator:
    from claudio.config import load_bridge_config
    config = load_bridge_config()
"""

from claudio.config.loader import load_bridge_config, load_config, resolve_config_path
from claudio.config.runtime_settings import RuntimeSettings, SettingsPatch
from claudio.config.schema import (
    BridgeConfig,
    HeadlessConfig,
    HookServerConfig,
    NotificationPreferences,
    SessionsConfig,
    TelegramConfig,
)

__all__ = [
    "BridgeConfig",
    "HeadlessConfig",
    "HookServerConfig",
    "NotificationPreferences",
    "RuntimeSettings",
    "SessionsConfig",
    "SettingsPatch",
    "TelegramConfig",
    "load_bridge_config",
    "load_config",
    "resolve_config_path",
]

"""postscan utilities module."""

from postscan.utils.config import (
    get_settings,
    get_config,
    load_config,
    save_config,
    update_config,
    AppConfig,
    ScanConfig,
    Settings,
)

__all__ = [
    "get_settings",
    "get_config",
    "load_config",
    "save_config",
    "update_config",
    "AppConfig",
    "ScanConfig",
    "Settings",
]

"""Configuration loading for ccIndex."""

from ccindex.config.config import (
    ConfigManager,
    get_config,
    init_config,
    reload_config,
    set_config,
)

__all__ = [
    "ConfigManager",
    "get_config",
    "init_config",
    "reload_config",
    "set_config",
]

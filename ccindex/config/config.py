"""Configuration management for ccIndex.

Hierarchical loading: defaults → TOML file → ``CCINDEX_*`` environment
variables. The merged data is validated into :class:`ccindex.models.Config`.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import toml

from ccindex.models import Config, LimitsConfig, StorageConfig
from ccindex.utils.exceptions import ConfigurationError
from ccindex.utils.logging_config import get_logger, setup_logging

logger = get_logger(__name__)

# Global configuration instance
_config_manager: ConfigManager | None = None

_LIST_PATHS = frozenset({"auth.moderator_roles", "taxonomy.tags"})


class ConfigManager:
    """Manages configuration loading and validation."""

    def __init__(
        self,
        config_file: str | Path | None = None,
        configure_logging: bool = True,
    ):
        """Initialize configuration manager.

        Args:
            config_file: Path to TOML config file. If None, searches for ccindex.toml
            configure_logging: Apply the observability section to logging

        """
        self.config_file = self._find_config_file(config_file)
        self.config = self._load_config()
        if configure_logging:
            self._setup_logging()

    def _find_config_file(
        self,
        config_file: str | Path | None,
    ) -> Path | None:
        """Find configuration file in standard locations."""
        if config_file:
            return Path(config_file)

        search_paths = [
            Path.cwd() / "ccindex.toml",
            Path.home() / ".config" / "ccindex" / "ccindex.toml",
            Path.home() / ".ccindex.toml",
        ]

        for path in search_paths:
            if path.exists():
                return path

        return None

    def _load_config(self) -> Config:
        """Load configuration from file and environment."""
        config_data: dict[str, Any] = {}

        if self.config_file and self.config_file.exists():
            try:
                with open(self.config_file, encoding="utf-8") as f:
                    config_data.update(toml.load(f))
            except (OSError, toml.TomlDecodeError) as e:
                msg = f"Failed to load config file {self.config_file}: {e}"
                raise ConfigurationError(msg) from e

        env_config = self._get_env_config()
        config_data = self._merge_config(config_data, env_config)

        try:
            return Config(**config_data)
        except Exception as e:
            msg = f"Invalid configuration: {e}"
            raise ConfigurationError(msg) from e

    def _get_env_config(self) -> dict[str, Any]:
        """Get configuration from environment variables."""
        env_config: dict[str, Any] = {}

        # Mapping of environment variables to config paths
        env_mappings: dict[str, str] = {
            # Storage
            "CCINDEX_DATABASE_PATH": "storage.database_path",
            "CCINDEX_BUSY_TIMEOUT": "storage.busy_timeout",
            "CCINDEX_JOURNAL_MODE": "storage.journal_mode",
            "CCINDEX_READ_RETRY_DELAY": "storage.read_retry_delay",
            # Limits
            "CCINDEX_MAX_PAYLOAD_BYTES": "limits.max_payload_bytes",
            "CCINDEX_MAX_NESTING_DEPTH": "limits.max_nesting_depth",
            "CCINDEX_MAX_TOTAL_LENGTH": "limits.max_total_length",
            "CCINDEX_MAX_FILES": "limits.max_files",
            "CCINDEX_TEXT_POLICY": "limits.text_policy",
            # Listing
            "CCINDEX_DEFAULT_PAGE_SIZE": "listing.default_page_size",
            "CCINDEX_MAX_PAGE_SIZE": "listing.max_page_size",
            # Moderation
            "CCINDEX_RESUBMISSION_POLICY": "moderation.resubmission_policy",
            "CCINDEX_REQUIRE_REJECT_REASON": "moderation.require_reject_reason",
            # Auth / taxonomy
            "CCINDEX_MODERATOR_ROLES": "auth.moderator_roles",
            "CCINDEX_TAGS": "taxonomy.tags",
            "CCINDEX_MAX_TAGS": "taxonomy.max_tags",
            # Tracker
            "CCINDEX_ANNOUNCE_URL": "tracker.announce_url",
            # Observability
            "CCINDEX_LOG_LEVEL": "observability.log_level",
            "CCINDEX_LOG_FILE": "observability.log_file",
            "CCINDEX_STRUCTURED_LOGGING": "observability.structured_logging",
            "CCINDEX_LOG_CORRELATION_ID": "observability.log_correlation_id",
            "CCINDEX_RICH_CONSOLE": "observability.rich_console",
        }

        def _parse_env_value(raw: str, path: str) -> bool | int | float | str | list[str]:
            if path in _LIST_PATHS:
                return [item.strip() for item in raw.split(",") if item.strip()]

            low = raw.lower()
            if low in {"true", "yes", "on"}:
                return True
            if low in {"false", "no", "off"}:
                return False
            try:
                if "." in raw:
                    return float(raw)
                return int(raw)
            except ValueError:
                return raw

        def _set_nested(d: dict[str, Any], path: str, value: Any) -> None:
            parts = path.split(".")
            cur = d
            for p in parts[:-1]:
                cur = cur.setdefault(p, {})
            cur[parts[-1]] = value

        for env_name, cfg_path in env_mappings.items():
            raw = os.getenv(env_name)
            if raw is None:
                continue
            _set_nested(env_config, cfg_path, _parse_env_value(raw, cfg_path))

        return env_config

    def _merge_config(
        self,
        base: dict[str, Any],
        override: dict[str, Any],
    ) -> dict[str, Any]:
        """Merge configuration dictionaries recursively."""
        result = base.copy()

        for key, value in override.items():
            if (
                key in result
                and isinstance(result[key], dict)
                and isinstance(value, dict)
            ):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value

        return result

    def export(self, fmt: str = "toml") -> str:
        """Export current configuration as a string in the given format.

        Args:
            fmt: one of "toml" or "json"

        """
        data = self.config.model_dump(mode="json", exclude_none=True)
        fmt = (fmt or "toml").lower()
        if fmt == "toml":
            return toml.dumps(data)
        if fmt == "json":
            return json.dumps(data, indent=2)
        msg = f"Unsupported export format: {fmt}"
        raise ConfigurationError(msg)

    def _setup_logging(self) -> None:
        """Set up logging configuration."""
        setup_logging(self.config.observability)


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager.config


def init_config(config_file: str | Path | None = None) -> ConfigManager:
    """Initialize the global configuration manager."""
    global _config_manager
    _config_manager = ConfigManager(config_file)
    return _config_manager


def reload_config() -> Config:
    """Reload configuration from file."""
    if _config_manager is None:
        msg = "Configuration not initialized"
        raise ConfigurationError(msg)

    _config_manager.config = _config_manager._load_config()  # noqa: SLF001
    _config_manager._setup_logging()  # noqa: SLF001
    logger.info("Configuration reloaded from %s", _config_manager.config_file)
    return _config_manager.config


def set_config(new_config: Config) -> None:
    """Replace the global configuration at runtime.

    Reconfigures logging based on the new config. Services built from the
    old config keep their snapshot until rebuilt.
    """
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager(None, configure_logging=False)
    _config_manager.config = new_config
    _config_manager._setup_logging()  # noqa: SLF001


def get_storage_config() -> StorageConfig:
    """Get storage configuration."""
    return get_config().storage


def get_limits_config() -> LimitsConfig:
    """Get upload limits configuration."""
    return get_config().limits

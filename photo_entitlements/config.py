"""Configuration management - loads store.yaml and environment variables."""

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from photo_entitlements.models import StoreConfig
from photo_entitlements.models.settings import DownloadConfig, NotificationConfig, StorageConfig


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing."""

    pass


class Config:
    """Application configuration loader and manager.

    Loads store.yaml and provides validated access to:
    - Entitlement store backend settings
    - Download fulfillment settings
    - Payment notification settings

    Deployment secrets can be supplied through the environment instead of the
    file: DATABASE_URL, NOTIFICATION_SIGNING_SECRET and ASSETS_ROOT take
    precedence over the corresponding YAML values.
    """

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration loader.

        Args:
            config_path: Path to store.yaml file. If not provided, uses CONFIG_PATH env var
                        or defaults to ./config/store.yaml
        """
        self._config_path = self._resolve_config_path(config_path)
        self._store_config: Optional[StoreConfig] = None
        self._load_config()

    def _resolve_config_path(self, config_path: Optional[str]) -> Path:
        """Resolve configuration file path from argument, env var, or default."""
        if config_path:
            return Path(config_path)

        env_path = os.getenv("CONFIG_PATH")
        if env_path:
            return Path(env_path)

        return Path("config/store.yaml")

    def _load_config(self) -> None:
        """Load and validate store.yaml configuration."""
        if not self._config_path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {self._config_path}\n"
                f"Please create config/store.yaml or set CONFIG_PATH environment variable"
            )

        try:
            with open(self._config_path, encoding="utf-8") as f:
                raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse YAML configuration: {e}") from e

        if not raw_config:
            raise ConfigurationError(f"Configuration file is empty: {self._config_path}")
        if not isinstance(raw_config, dict):
            raise ConfigurationError(
                f"Configuration root must be a mapping: {self._config_path}"
            )

        try:
            store_config = StoreConfig(**raw_config)
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}") from e

        self._apply_env_overrides(store_config)
        self._store_config = store_config

    @staticmethod
    def _apply_env_overrides(store_config: StoreConfig) -> None:
        database_url = os.getenv("DATABASE_URL")
        if database_url:
            store_config.storage.database_url = database_url

        signing_secret = os.getenv("NOTIFICATION_SIGNING_SECRET")
        if signing_secret:
            store_config.notifications.signing_secret = signing_secret

        assets_root = os.getenv("ASSETS_ROOT")
        if assets_root:
            store_config.downloads.assets_root = assets_root

    @property
    def settings(self) -> StoreConfig:
        """Get validated configuration."""
        if self._store_config is None:
            raise ConfigurationError("Configuration not loaded")
        return self._store_config

    @property
    def config_path(self) -> Path:
        """Get path to configuration file."""
        return self._config_path

    @property
    def storage(self) -> StorageConfig:
        return self.settings.storage

    @property
    def downloads(self) -> DownloadConfig:
        return self.settings.downloads

    @property
    def notifications(self) -> NotificationConfig:
        return self.settings.notifications

    @property
    def assets_root(self) -> Path:
        """Get the assets directory.

        Relative paths are resolved against the directory containing the
        configuration file, so the service behaves the same regardless of
        the working directory it is started from.
        """
        root = Path(self.downloads.assets_root)
        if not root.is_absolute():
            root = self._config_path.parent / root
        return root.resolve()

    def reload(self) -> None:
        """Reload configuration from disk."""
        self._load_config()


# Global configuration instance
_config_instance: Optional[Config] = None


def get_config(config_path: Optional[str] = None) -> Config:
    """Get global configuration instance (singleton).

    Args:
        config_path: Optional path to configuration file (only used on first call)

    Returns:
        Config instance
    """
    global _config_instance
    if _config_instance is None:
        _config_instance = Config(config_path)
    return _config_instance


def reload_config() -> None:
    """Reload global configuration from disk."""
    global _config_instance
    if _config_instance:
        _config_instance.reload()
    else:
        _config_instance = Config()


def reset_config() -> None:
    """Drop the global configuration so the next get_config() reloads it."""
    global _config_instance
    _config_instance = None

"""
Configuration settings management for My Records.

This module handles loading, validating, and saving configuration settings
from YAML files with support for environment variable overrides.

Configuration is loaded from ~/.myrecords/config.yaml by default, with the
path overridable via the MYRECORDS_CONFIG environment variable.
"""

import os
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# Default configuration directory
DEFAULT_CONFIG_DIR = Path.home() / ".myrecords"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"

# Backups live in a user-visible folder of the downloads area
BACKUP_FOLDER_NAME = "my_records"
DEFAULT_BACKUP_DIR = Path.home() / "Downloads" / BACKUP_FOLDER_NAME

VALID_FREQUENCIES = ("daily", "weekly")


@dataclass
class BackupConfig:
    """Backup engine settings."""

    max_backups: int = 3
    frequency: str = "daily"


@dataclass
class Settings:
    """
    Complete My Records configuration settings.

    Settings are loaded from a YAML configuration file and can be overridden
    by environment variables prefixed with MYRECORDS_.

    Attributes:
        data_dir: Directory holding the records database and preferences.
        backup_dir: Directory scanned for and receiving backup files.
        log_level: Logging verbosity (DEBUG, INFO, WARNING, ERROR).
        backup: Backup engine settings.
    """

    data_dir: str = str(DEFAULT_CONFIG_DIR / "data")
    backup_dir: str = str(DEFAULT_BACKUP_DIR)
    log_level: str = "INFO"

    backup: BackupConfig = field(default_factory=BackupConfig)

    @property
    def database_path(self) -> Path:
        """Path to the SQLite records database."""
        return Path(self.data_dir) / "my_records.db"

    @property
    def preferences_path(self) -> Path:
        """Path to the key-value preferences file."""
        return Path(self.data_dir) / "preferences.json"

    @property
    def secrets_path(self) -> Path:
        """Path to the owner-only secret store file."""
        return Path(self.data_dir) / "secrets.json"


class ConfigurationError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


def get_config_path() -> Path:
    """
    Get the configuration file path.

    Returns the path from MYRECORDS_CONFIG environment variable if set,
    otherwise returns the default path (~/.myrecords/config.yaml).
    """
    env_path = os.environ.get("MYRECORDS_CONFIG")
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_FILE


def load_config(config_path: Path | None = None) -> Settings:
    """
    Load configuration from YAML file.

    Reads configuration from the specified path (or default if not provided),
    applies environment variable overrides, and validates the configuration.

    Args:
        config_path: Optional path to configuration file. If not provided,
                    uses MYRECORDS_CONFIG environment variable or default path.

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If the configuration file cannot be read or
                          contains invalid settings.
    """
    if config_path is None:
        config_path = get_config_path()

    settings = Settings()

    if config_path.exists():
        try:
            with open(config_path) as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Cannot read config file: {e}") from e

        if not isinstance(config_data, dict):
            raise ConfigurationError("Config file must contain a mapping")

        settings = _apply_config_data(settings, config_data)

    settings = _apply_environment_overrides(settings)

    _validate_config(settings)

    return settings


def save_config(settings: Settings, config_path: Path | None = None) -> None:
    """
    Save configuration to YAML file.

    Raises:
        ConfigurationError: If the configuration cannot be written.
    """
    if config_path is None:
        config_path = get_config_path()

    config_path.parent.mkdir(parents=True, exist_ok=True)

    config_data = _settings_to_dict(settings)

    try:
        with open(config_path, "w") as f:
            yaml.safe_dump(config_data, f, default_flow_style=False, sort_keys=False)
    except OSError as e:
        raise ConfigurationError(f"Cannot write config file: {e}") from e


def _apply_config_data(settings: Settings, data: dict[str, Any]) -> Settings:
    """Apply configuration data from parsed YAML to settings."""
    general = data.get("myrecords", {}) or {}

    if "data_dir" in general:
        settings.data_dir = str(general["data_dir"])
    if "backup_dir" in general:
        settings.backup_dir = str(general["backup_dir"])
    if "log_level" in general:
        settings.log_level = str(general["log_level"]).upper()

    backup = data.get("backup", {}) or {}
    try:
        if "max_backups" in backup:
            settings.backup.max_backups = int(backup["max_backups"])
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid max_backups: {backup['max_backups']}") from e
    if "frequency" in backup:
        settings.backup.frequency = str(backup["frequency"]).lower()

    return settings


def _apply_environment_overrides(settings: Settings) -> Settings:
    """Apply environment variable overrides to settings."""
    env_map: dict[str, tuple[str, Callable[[str], Any]]] = {
        "MYRECORDS_DATA_DIR": ("data_dir", str),
        "MYRECORDS_BACKUP_DIR": ("backup_dir", str),
        "MYRECORDS_LOG_LEVEL": ("log_level", lambda x: x.upper()),
        "MYRECORDS_MAX_BACKUPS": ("backup.max_backups", int),
    }

    for env_var, (attr_path, converter) in env_map.items():
        value = os.environ.get(env_var)
        if value is not None:
            try:
                converted = converter(value)
            except ValueError as e:
                raise ConfigurationError(f"Invalid value for {env_var}: {value}") from e
            _set_nested_attr(settings, attr_path, converted)

    return settings


def _set_nested_attr(obj: Any, path: str, value: Any) -> None:
    """Set a nested attribute on an object using dot notation."""
    parts = path.split(".")
    for part in parts[:-1]:
        obj = getattr(obj, part)
    setattr(obj, parts[-1], value)


def _validate_config(settings: Settings) -> None:
    """
    Validate configuration settings.

    Raises:
        ConfigurationError: If configuration is invalid.
    """
    valid_log_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
    if settings.log_level not in valid_log_levels:
        raise ConfigurationError(
            f"Invalid log_level: {settings.log_level}. "
            f"Must be one of: {', '.join(sorted(valid_log_levels))}"
        )

    if settings.backup.max_backups < 1:
        raise ConfigurationError("max_backups must be at least 1")

    if settings.backup.frequency not in VALID_FREQUENCIES:
        raise ConfigurationError(
            f"Invalid frequency: {settings.backup.frequency}. "
            f"Must be one of: {', '.join(VALID_FREQUENCIES)}"
        )


def _settings_to_dict(settings: Settings) -> dict[str, Any]:
    """Convert Settings instance to dictionary for YAML serialization."""
    return {
        "myrecords": {
            "data_dir": settings.data_dir,
            "backup_dir": settings.backup_dir,
            "log_level": settings.log_level,
        },
        "backup": {
            "max_backups": settings.backup.max_backups,
            "frequency": settings.backup.frequency,
        },
    }

"""
Configuration management for My Records.

This module handles loading, validating, and saving configuration settings,
the key-value preferences store, and the owner-only secret store that holds
the backup device key.
"""

from myrecords.config.preferences import Preferences, PreferencesError
from myrecords.config.secret_store import SecretStore, SecretStoreError
from myrecords.config.settings import (
    ConfigurationError,
    Settings,
    load_config,
    save_config,
)

__all__ = [
    # Settings
    "Settings",
    "load_config",
    "save_config",
    "ConfigurationError",
    # Preferences
    "Preferences",
    "PreferencesError",
    # Secrets
    "SecretStore",
    "SecretStoreError",
]

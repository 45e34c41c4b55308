"""
My Records - encrypted backup and restore for a personal records organizer.

Keeps folders of records in a local SQLite database and protects them with
full, single-file snapshots written to a user-visible backup directory.

Key Features:
    - AES-256 encrypted backups under a per-installation device key
    - Optional password-protected backups portable to other installations
    - Retention of the newest backups and purge of legacy plaintext files
    - Restore from both encrypted and legacy plaintext backups
    - Daily or weekly automatic backups, plus backups after every change
"""

__version__ = "0.1.0"
__author__ = ""
__email__ = ""

from myrecords.config.settings import Settings, load_config

__all__ = [
    "__version__",
    "Settings",
    "load_config",
]

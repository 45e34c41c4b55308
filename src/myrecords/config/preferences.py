"""
Simple persisted key-value preferences.

Stores small application preferences (auto-backup switch, frequency, last
backup timestamp) in a JSON file next to the records database.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class PreferencesError(Exception):
    """Raised when the preferences file cannot be read for update or written."""

    pass


class Preferences:
    """
    JSON-file backed key-value store.

    Every mutation rewrites the file, so values survive restarts. Reads are
    lenient: a missing, unreadable or corrupt file behaves like an empty
    store. Writes are not: if the existing file cannot be read, ``set`` and
    ``remove`` raise PreferencesError instead of replacing it with a partial
    map.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            try:
                data = self._load()
            except PreferencesError as e:
                logger.warning(f"Could not load preferences: {e}")
                return default
            return data.get(key, default)

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self.get(key, default)
        return value if isinstance(value, bool) else default

    def get_str(self, key: str, default: str | None = None) -> str | None:
        value = self.get(key, default)
        return value if isinstance(value, str) else default

    def set(self, key: str, value: Any) -> None:
        """
        Store a value.

        Raises:
            PreferencesError: If the file cannot be read or written.
        """
        with self._lock:
            data = self._load()
            data[key] = value
            self._save(data)

    def remove(self, key: str) -> None:
        with self._lock:
            data = self._load()
            if key in data:
                del data[key]
                self._save(data)

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}

        try:
            with open(self.path) as f:
                text = f.read()
        except OSError as e:
            raise PreferencesError(f"Cannot read preferences {self.path}: {e}") from e

        # Unparseable content has nothing left to preserve
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning(f"Ignoring corrupt preferences file {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: dict[str, Any]) -> None:
        temp_path = self.path.with_suffix(".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_path, "w") as f:
                json.dump(data, f, indent=2)
            os.replace(temp_path, self.path)
        except OSError as e:
            temp_path.unlink(missing_ok=True)
            raise PreferencesError(f"Cannot write preferences {self.path}: {e}") from e

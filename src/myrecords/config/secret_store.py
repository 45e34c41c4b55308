"""
Owner-only secret storage for My Records.

Holds small secrets (the backup device key) outside the records database and
outside the user-visible backup folder.

Security Design:
    - Secrets are kept in a single JSON map, keyed by fixed identifiers
    - The file is created with owner-only permissions (0600) and the
      containing directory with 0700 where the platform supports it
    - Writes go to a private temp file in the same directory, which is then
      renamed over the secrets file

Threat Model:
    - Protects against: other local users reading the key, copies of the
      backup folder leaking the key alongside the backups
    - Does NOT protect against: root access, compromise of the running
      process, or theft of the whole home directory
"""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path

logger = logging.getLogger(__name__)


class SecretStoreError(Exception):
    """Raised when the secret store cannot be read or written."""

    pass


class SecretStore:
    """
    Persistent key-value store for secrets.

    Usage:
        store = SecretStore(Path("~/.myrecords/data/secrets.json"))
        store.write("backup_device_key", "base64...")
        value = store.read("backup_device_key")

    Attributes:
        path: Location of the secrets file.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def read(self, key: str) -> str | None:
        """
        Read a secret.

        Returns:
            The stored value, or None if the key has never been written.

        Raises:
            SecretStoreError: If the secrets file exists but is unreadable.
        """
        with self._lock:
            return self._load().get(key)

    def write(self, key: str, value: str) -> None:
        """
        Store a secret, replacing any previous value.

        Raises:
            SecretStoreError: If the secrets file cannot be written.
        """
        with self._lock:
            secrets_map = self._load()
            secrets_map[key] = value
            self._save(secrets_map)

    def delete(self, key: str) -> None:
        """Remove a secret if present."""
        with self._lock:
            secrets_map = self._load()
            if secrets_map.pop(key, None) is not None:
                self._save(secrets_map)

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}

        try:
            data = json.loads(self.path.read_text())
        except (json.JSONDecodeError, OSError) as e:
            raise SecretStoreError(f"Cannot read secret store {self.path}: {e}") from e

        if not isinstance(data, dict):
            raise SecretStoreError(f"Secret store {self.path} is corrupt")
        return data

    def _save(self, secrets_map: dict[str, str]) -> None:
        directory = self.path.parent
        payload = json.dumps(secrets_map).encode()

        try:
            directory.mkdir(parents=True, exist_ok=True)
            # mkstemp creates the file with mode 0600
            fd, temp_name = tempfile.mkstemp(dir=directory, prefix=f".{self.path.name}.")
        except OSError as e:
            raise SecretStoreError(f"Cannot write secret store {self.path}: {e}") from e

        try:
            os.chmod(directory, 0o700)
        except OSError:
            logger.debug(f"Could not restrict permissions on {directory}")

        try:
            with os.fdopen(fd, "wb") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_name, self.path)
        except OSError as e:
            Path(temp_name).unlink(missing_ok=True)
            raise SecretStoreError(f"Cannot write secret store {self.path}: {e}") from e

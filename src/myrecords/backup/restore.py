"""
Restore engine.

Reads a backup file, decides which generation it belongs to, decrypts it if
needed, validates the manifest and replaces the contents of the primary store.

Two container generations are understood:
    - Encrypted: {encrypted_data, iv, salt, is_password_protected}
    - Legacy plaintext: the manifest itself
      {version, timestamp, folders, records, totalFolders, totalRecords}

Every row is checked against the store schema before the first delete, so a
backup the store would refuse leaves it untouched. Replacement order is
records out, folders out, folders in, records in, so no record is ever
inserted before the folder it references. The steps are not wrapped in a
transaction; a failure part-way leaves the store as far as the replacement
got.
"""

from __future__ import annotations

import json
import logging
import threading
from contextlib import nullcontext
from pathlib import Path

from myrecords.backup.crypto import CryptoEngine
from myrecords.backup.errors import (
    BackupError,
    DecryptionError,
    InvalidFormatError,
    UnknownInternalError,
    WrongPasswordError,
)
from myrecords.backup.models import (
    EncryptionEnvelope,
    Manifest,
    RestoreResult,
    is_encrypted_container,
)
from myrecords.backup.store import read_container
from myrecords.storage.records_store import (
    FOLDERS_TABLE,
    RECORDS_TABLE,
    RecordsStore,
    StorageError,
)

logger = logging.getLogger(__name__)


class RestoreEngine:
    """
    Restores the primary store from backup files.

    Usage:
        engine = RestoreEngine(records_store, crypto, lock=scheduler.lock)
        result = engine.restore(Path("my_records28Oct25_0955AM.enc"))

    Attributes:
        records_store: Store whose contents are replaced.
        crypto: Engine used to open encrypted containers.
        lock: Advisory lock held for the whole restore, shared with the
            backup triggers. None disables locking.
    """

    def __init__(
        self,
        records_store: RecordsStore,
        crypto: CryptoEngine,
        lock: threading.Lock | None = None,
    ) -> None:
        self.records_store = records_store
        self.crypto = crypto
        self.lock = lock

    def restore(self, path: Path, password: str | None = None) -> RestoreResult:
        """
        Replace the store's folders and records with a backup's contents.

        Args:
            path: Backup file to restore.
            password: Password for password-protected backups.

        Returns:
            RestoreResult with the restored counts.

        Raises:
            BackupFileNotFoundError: If the file does not exist.
            FilesystemError: If the file cannot be read.
            InvalidFormatError: If the file is not a valid backup.
            PasswordRequiredError: If a password is needed but not given.
            WrongPasswordError: If the password is wrong.
            DecryptionError: If the device key cannot decrypt the backup.
            UnknownInternalError: For any other failure.
        """
        path = Path(path)
        with self.lock if self.lock is not None else nullcontext():
            try:
                manifest, encrypted = self.load_manifest(path, password)
                self._check_rows(manifest)
                self._replace_store(manifest)
            except BackupError as e:
                logger.warning(f"Restore from {path} failed: {e}")
                raise
            except Exception as e:
                logger.exception(f"Restore from {path} failed")
                raise UnknownInternalError(f"Failed to restore backup: {e}") from e

        logger.info(
            f"Backup restored from {path.name}: {manifest.total_folders} folders, "
            f"{manifest.total_records} records"
        )
        return RestoreResult(
            folders_restored=manifest.total_folders,
            records_restored=manifest.total_records,
            was_encrypted=encrypted,
        )

    def load_manifest(
        self,
        path: Path,
        password: str | None = None,
    ) -> tuple[Manifest, bool]:
        """
        Read, classify, decrypt and validate a backup file.

        Does not touch the store.

        Returns:
            Tuple of (manifest, was_encrypted).
        """
        container = read_container(Path(path))

        if is_encrypted_container(container):
            envelope = EncryptionEnvelope.from_container(container)
            logger.debug(
                f"Restore: encrypted backup, "
                f"password protected = {envelope.is_password_protected}"
            )
            plaintext = self.crypto.open(envelope, password=password)
            try:
                content = json.loads(plaintext.decode("utf-8"))
            except (UnicodeDecodeError, json.JSONDecodeError) as e:
                if envelope.is_password_protected:
                    raise WrongPasswordError("Invalid password for this backup") from e
                raise DecryptionError("Decrypted backup is unreadable") from e
            return Manifest.from_dict(content), True

        logger.debug("Restore: legacy plaintext backup")
        return Manifest.from_dict(container), False

    def _replace_store(self, manifest: Manifest) -> None:
        store = self.records_store

        removed_records = store.delete(RECORDS_TABLE)
        removed_folders = store.delete(FOLDERS_TABLE)
        logger.debug(
            f"Cleared {removed_folders} folders and {removed_records} records before restore"
        )

        for folder in manifest.folders:
            store.insert(FOLDERS_TABLE, folder)

        for record in manifest.records:
            store.insert(RECORDS_TABLE, record)

    def _check_rows(self, manifest: Manifest) -> None:
        """Reject rows the store would refuse, before anything is deleted."""
        sections = ((FOLDERS_TABLE, manifest.folders), (RECORDS_TABLE, manifest.records))
        for table, rows in sections:
            for index, row in enumerate(rows):
                try:
                    self.records_store.check_row(table, row)
                except StorageError as e:
                    raise InvalidFormatError(f"Invalid backup: {table}[{index}]: {e}") from e

"""
Data models for the backup engine.

Defines the snapshot manifest, the encryption envelope with its key source
variant, and the lightweight descriptors returned by listings and restores.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from myrecords.backup.errors import InvalidFormatError

MANIFEST_VERSION = "1.0"

# Container keys of the encrypted generation
ENCRYPTED_DATA_KEY = "encrypted_data"
IV_KEY = "iv"
SALT_KEY = "salt"
PASSWORD_FLAG_KEY = "is_password_protected"


@dataclass
class Manifest:
    """
    Versioned snapshot of every folder and record at a point in time.

    Rows are kept as plain dictionaries with every database column, so a
    restore reproduces identities and field values exactly. The totals are
    derived from the row lists and cannot drift from them.
    """

    folders: list[dict[str, Any]]
    records: list[dict[str, Any]]
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())
    version: str = MANIFEST_VERSION

    @property
    def total_folders(self) -> int:
        return len(self.folders)

    @property
    def total_records(self) -> int:
        return len(self.records)

    def to_dict(self) -> dict[str, Any]:
        """Convert manifest to its on-disk dictionary form."""
        return {
            "version": self.version,
            "timestamp": self.timestamp,
            "folders": self.folders,
            "records": self.records,
            "totalFolders": self.total_folders,
            "totalRecords": self.total_records,
        }

    @classmethod
    def from_dict(cls, data: Any) -> Manifest:
        """
        Create a manifest from its dictionary form, validating the shape.

        Raises:
            InvalidFormatError: If folders or records are missing, are not
                lists of objects, or no folders are present.
        """
        if not isinstance(data, dict):
            raise InvalidFormatError("Backup content is not a JSON object")

        if "folders" not in data or "records" not in data:
            raise InvalidFormatError(
                "Invalid backup file format - missing folders or records data"
            )

        folders = data["folders"]
        records = data["records"]
        if not isinstance(folders, list) or not isinstance(records, list):
            raise InvalidFormatError("Folders and records must be lists")
        if not all(isinstance(row, dict) for row in folders + records):
            raise InvalidFormatError("Folder and record entries must be objects")

        if not folders:
            raise InvalidFormatError("Invalid backup file - no folders found in backup")

        return cls(
            folders=folders,
            records=records,
            timestamp=str(data.get("timestamp", "")),
            version=str(data.get("version", MANIFEST_VERSION)),
        )


@dataclass(frozen=True)
class DeviceKeySource:
    """The envelope was sealed with this installation's device key."""


@dataclass(frozen=True)
class PasswordKeySource:
    """The envelope was sealed with a key derived from a password and salt."""

    salt: bytes


KeySource = DeviceKeySource | PasswordKeySource


@dataclass(frozen=True)
class EncryptionEnvelope:
    """
    Encrypted container wrapping a serialized manifest.

    Created once per backup with a fresh IV (and salt on the password path)
    and written verbatim to disk.
    """

    ciphertext: bytes
    iv: bytes
    key_source: KeySource

    @property
    def is_password_protected(self) -> bool:
        return isinstance(self.key_source, PasswordKeySource)

    def to_container(self) -> dict[str, Any]:
        """Convert to the JSON container written to disk."""
        salt = None
        if isinstance(self.key_source, PasswordKeySource):
            salt = base64.b64encode(self.key_source.salt).decode("ascii")

        return {
            ENCRYPTED_DATA_KEY: base64.b64encode(self.ciphertext).decode("ascii"),
            IV_KEY: base64.b64encode(self.iv).decode("ascii"),
            SALT_KEY: salt,
            PASSWORD_FLAG_KEY: self.is_password_protected,
        }

    @classmethod
    def from_container(cls, data: dict[str, Any]) -> EncryptionEnvelope:
        """
        Parse an encrypted JSON container.

        Raises:
            InvalidFormatError: If a field is missing, not base64, or a
                password-protected container carries no salt.
        """
        protected = data.get(PASSWORD_FLAG_KEY, False)
        if not isinstance(protected, bool):
            raise InvalidFormatError(f"'{PASSWORD_FLAG_KEY}' must be a boolean")

        try:
            ciphertext = base64.b64decode(data[ENCRYPTED_DATA_KEY], validate=True)
            iv = base64.b64decode(data[IV_KEY], validate=True)
        except (KeyError, TypeError, ValueError, binascii.Error) as e:
            raise InvalidFormatError(f"Malformed encrypted container: {e}") from e

        key_source: KeySource
        if protected:
            salt_value = data.get(SALT_KEY)
            if not salt_value:
                raise InvalidFormatError("Password-protected backup has no salt")
            try:
                salt = base64.b64decode(salt_value, validate=True)
            except (TypeError, ValueError, binascii.Error) as e:
                raise InvalidFormatError(f"Malformed salt: {e}") from e
            key_source = PasswordKeySource(salt=salt)
        else:
            key_source = DeviceKeySource()

        return cls(ciphertext=ciphertext, iv=iv, key_source=key_source)


def is_encrypted_container(data: Any) -> bool:
    """True when a parsed container belongs to the encrypted generation."""
    return isinstance(data, dict) and ENCRYPTED_DATA_KEY in data and IV_KEY in data


@dataclass(frozen=True)
class BackupFile:
    """A backup file found in the backup directory."""

    path: Path
    filename: str
    created_at: datetime
    size_bytes: int

    @classmethod
    def from_path(cls, path: Path) -> BackupFile:
        stat = path.stat()
        return cls(
            path=path,
            filename=path.name,
            created_at=datetime.fromtimestamp(stat.st_mtime),
            size_bytes=stat.st_size,
        )


@dataclass
class BackupInfo:
    """
    Description of a backup file, readable without a key.

    Counts and version are only known for legacy plaintext files; encrypted
    files report None for them.
    """

    filename: str
    size_bytes: int
    created_at: datetime
    is_encrypted: bool
    is_password_protected: bool
    folder_count: int | None = None
    record_count: int | None = None
    version: str | None = None

    @property
    def requires_password(self) -> bool:
        return self.is_password_protected

    def to_dict(self) -> dict[str, Any]:
        return {
            "filename": self.filename,
            "size": self.size_bytes,
            "created": self.created_at.isoformat(),
            "is_encrypted": self.is_encrypted,
            "is_password_protected": self.is_password_protected,
            "requires_password": self.requires_password,
            "folder_count": self.folder_count,
            "record_count": self.record_count,
            "version": self.version,
        }


@dataclass
class RestoreResult:
    """Result of a completed restore."""

    folders_restored: int = 0
    records_restored: int = 0
    was_encrypted: bool = False

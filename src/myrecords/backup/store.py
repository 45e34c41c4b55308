"""
Backup file storage.

Turns manifests into encrypted files in the backup directory and keeps that
directory tidy. The directory is user-visible and may be curated by hand, so
it is scanned on every listing instead of being tracked in an index.

File naming:
    my_records{day}{Mon}{YY}_{hh}{mm}{AM|PM}.enc   e.g. my_records28Oct25_0955AM.enc

Files from the plaintext generation (``.json``) are still restorable but are
purged whenever retention runs.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from datetime import datetime
from pathlib import Path

from myrecords.backup.crypto import CryptoEngine
from myrecords.backup.errors import (
    BackupFileNotFoundError,
    FilesystemError,
    InvalidFormatError,
)
from myrecords.backup.models import (
    PASSWORD_FLAG_KEY,
    BackupFile,
    BackupInfo,
    Manifest,
    is_encrypted_container,
)

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "my_records"
BACKUP_EXTENSION = ".enc"
LEGACY_EXTENSIONS = frozenset({".json"})
DEFAULT_MAX_BACKUPS = 3

MONTH_NAMES = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)

# Collision suffix added by _unique_path, e.g. "_2" in "..._0955AM_2.enc"
SEQUENCE_PATTERN = re.compile(rf"_(\d+){re.escape(BACKUP_EXTENSION)}$")


def format_backup_stem(moment: datetime) -> str:
    """Build the filename stem for a backup created at ``moment``."""
    hour12 = moment.hour % 12 or 12
    am_pm = "PM" if moment.hour >= 12 else "AM"
    return (
        f"{BACKUP_PREFIX}{moment.day}{MONTH_NAMES[moment.month - 1]}"
        f"{moment.year % 100:02d}_{hour12:02d}{moment.minute:02d}{am_pm}"
    )


def is_backup_filename(name: str) -> bool:
    """True for names this engine writes: prefix and extension must both match."""
    return name.startswith(BACKUP_PREFIX) and name.endswith(BACKUP_EXTENSION)


def is_legacy_filename(name: str) -> bool:
    return name.startswith(BACKUP_PREFIX) and Path(name).suffix in LEGACY_EXTENSIONS


def split_sequence(name: str) -> tuple[str, int]:
    """
    Split a backup filename into its base and same-minute sequence number.

    The first backup of a minute has no suffix and counts as 1.
    """
    match = SEQUENCE_PATTERN.search(name)
    if match is None:
        return name.removesuffix(BACKUP_EXTENSION), 1
    return name[: match.start()], int(match.group(1))


def read_container(path: Path) -> dict:
    """
    Read and parse the outer JSON object of a backup file.

    Raises:
        BackupFileNotFoundError: If the file does not exist.
        InvalidFormatError: If the content is not a JSON object.
        FilesystemError: If the file cannot be read.
    """
    if not path.exists():
        raise BackupFileNotFoundError(f"Backup file not found: {path}")
    try:
        content = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise InvalidFormatError(f"Backup file is not text: {path}") from e
    except OSError as e:
        raise FilesystemError(f"Cannot read backup {path}: {e}") from e

    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise InvalidFormatError(f"Backup file is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise InvalidFormatError("Backup file is not a JSON object")
    return data


class BackupStore:
    """
    Writes, lists, inspects and prunes backup files.

    Usage:
        store = BackupStore(Path("~/Downloads/my_records"), crypto)

        backup = store.write(manifest)
        store.enforce_retention()

        for backup in store.list_backups():
            print(backup.filename, backup.size_bytes)

    Attributes:
        backup_dir: Directory holding the backup files.
        max_backups: Number of newest backups kept by retention.
    """

    def __init__(
        self,
        backup_dir: Path,
        crypto: CryptoEngine,
        max_backups: int = DEFAULT_MAX_BACKUPS,
    ) -> None:
        self.backup_dir = Path(backup_dir)
        self.crypto = crypto
        self.max_backups = max_backups

    def ensure_directory(self) -> Path:
        """Create the backup directory if needed and return it."""
        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FilesystemError(f"Cannot create backup directory {self.backup_dir}: {e}") from e
        return self.backup_dir

    def write(
        self,
        manifest: Manifest,
        password: str | None = None,
        now: datetime | None = None,
    ) -> BackupFile:
        """
        Encrypt a manifest and write it as a new backup file.

        Args:
            manifest: Snapshot to write.
            password: Seal with a password-derived key instead of the device key.
            now: Creation instant used for the filename.

        Returns:
            The written backup file.

        Raises:
            FilesystemError: If the file cannot be written.
        """
        payload = json.dumps(manifest.to_dict(), separators=(",", ":")).encode("utf-8")
        envelope = self.crypto.seal(payload, password=password)
        container = json.dumps(envelope.to_container()).encode("utf-8")

        backup_dir = self.ensure_directory()
        path = self._unique_path(format_backup_stem(now or datetime.now()))

        self._write_atomic(path, container)

        backup = BackupFile.from_path(path)
        logger.info(
            f"Backup written: {backup.path} ({backup.size_bytes:,} bytes, "
            f"{manifest.total_folders} folders, {manifest.total_records} records, "
            f"{'password' if envelope.is_password_protected else 'device key'})"
        )
        logger.debug(f"Backup directory: {backup_dir}")
        return backup

    def list_backups(self) -> list[BackupFile]:
        """
        List recognized backup files, newest first.

        Ordered by modification time. Ties are broken by filename, comparing
        the same-minute sequence numerically so "_10" is newer than "_9".

        Raises:
            FilesystemError: If the directory cannot be scanned.
        """
        if not self.backup_dir.exists():
            return []

        try:
            entries = [
                entry
                for entry in self.backup_dir.iterdir()
                if entry.is_file() and is_backup_filename(entry.name)
            ]
            keyed = [
                (entry.stat().st_mtime_ns, *split_sequence(entry.name), entry)
                for entry in entries
            ]
        except OSError as e:
            raise FilesystemError(f"Cannot list backups in {self.backup_dir}: {e}") from e

        keyed.sort(key=lambda item: item[:3], reverse=True)
        return [BackupFile.from_path(item[3]) for item in keyed]

    def enforce_retention(self, max_count: int | None = None) -> list[Path]:
        """
        Delete the oldest backups beyond ``max_count`` and any legacy files.

        Individual delete failures are logged and skipped.

        Returns:
            Paths that were deleted.
        """
        if max_count is None:
            max_count = self.max_backups
        if max_count < 1:
            raise ValueError("max_count must be at least 1")

        removed: list[Path] = []

        for backup in self.list_backups()[max_count:]:
            if self._remove(backup.path):
                removed.append(backup.path)

        for legacy in self._legacy_files():
            if self._remove(legacy):
                removed.append(legacy)

        if removed:
            logger.info(f"Retention removed {len(removed)} file(s) from {self.backup_dir}")
        return removed

    def get_backup_info(self, path: Path) -> BackupInfo:
        """
        Describe a backup file without decrypting it.

        Raises:
            BackupFileNotFoundError: If the file does not exist.
            InvalidFormatError: If the file is not a JSON object.
            FilesystemError: If the file cannot be read.
        """
        path = Path(path)
        data = read_container(path)
        stat = path.stat()

        encrypted = is_encrypted_container(data)
        info = BackupInfo(
            filename=path.name,
            size_bytes=stat.st_size,
            created_at=datetime.fromtimestamp(stat.st_mtime),
            is_encrypted=encrypted,
            is_password_protected=bool(data.get(PASSWORD_FLAG_KEY, False)),
        )
        if not encrypted:
            folders = data.get("folders")
            records = data.get("records")
            info.folder_count = data.get(
                "totalFolders", len(folders) if isinstance(folders, list) else 0
            )
            info.record_count = data.get(
                "totalRecords", len(records) if isinstance(records, list) else 0
            )
            info.version = str(data.get("version", "1.0"))
        return info

    def is_encrypted(self, path: Path) -> bool:
        """True if the file is an encrypted container. Unreadable files are not."""
        try:
            return is_encrypted_container(read_container(Path(path)))
        except (BackupFileNotFoundError, InvalidFormatError, FilesystemError):
            return False

    def requires_password(self, path: Path) -> bool:
        """True if restoring the file needs the backup password."""
        try:
            data = read_container(Path(path))
        except (BackupFileNotFoundError, InvalidFormatError, FilesystemError):
            return False
        return bool(data.get(PASSWORD_FLAG_KEY, False))

    def describe_last_backup(self, now: datetime | None = None) -> str:
        """Human-friendly age of the newest backup."""
        backups = self.list_backups()
        if not backups:
            return "No backup created yet"

        elapsed = (now or datetime.now()) - backups[0].created_at
        seconds = max(0, int(elapsed.total_seconds()))
        days = seconds // 86400
        hours = seconds // 3600
        minutes = seconds // 60

        if days > 0:
            ago = f"{days} day{'' if days == 1 else 's'} ago"
        elif hours > 0:
            ago = f"{hours} hour{'' if hours == 1 else 's'} ago"
        elif minutes > 0:
            ago = f"{minutes} minute{'' if minutes == 1 else 's'} ago"
        else:
            ago = "Just now"
        return f"Last backup: {ago}"

    def _unique_path(self, stem: str) -> Path:
        path = self.backup_dir / f"{stem}{BACKUP_EXTENSION}"
        sequence = 2
        while path.exists():
            path = self.backup_dir / f"{stem}_{sequence}{BACKUP_EXTENSION}"
            sequence += 1
        return path

    def _write_atomic(self, path: Path, data: bytes) -> None:
        """Write to a temp file in the same directory, then rename into place."""
        fd, temp_name = tempfile.mkstemp(
            dir=self.backup_dir, prefix=f".{path.stem}.", suffix=".tmp"
        )
        temp_path = Path(temp_name)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, path)
        except OSError as e:
            temp_path.unlink(missing_ok=True)
            raise FilesystemError(f"Cannot write backup {path}: {e}") from e

    def _legacy_files(self) -> list[Path]:
        if not self.backup_dir.exists():
            return []
        try:
            return sorted(
                entry
                for entry in self.backup_dir.iterdir()
                if entry.is_file() and is_legacy_filename(entry.name)
            )
        except OSError as e:
            logger.warning(f"Could not scan for legacy backups: {e}")
            return []

    def _remove(self, path: Path) -> bool:
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"Could not delete old backup {path}: {e}")
            return False
        logger.debug(f"Deleted old backup: {path}")
        return True

"""
Backup and restore engine for My Records.

Creates encrypted, single-file snapshots of every folder and record, keeps
the newest few in the backup directory and restores the primary store from
any of them, including files from the older plaintext generation.

Usage:
    from myrecords.backup import BackupStore, CryptoEngine, RestoreEngine
    from myrecords.backup import run_backup_pipeline

    crypto = CryptoEngine(SecretStore(settings.secrets_path))
    backup_store = BackupStore(settings.backup_dir, crypto)

    # Create a backup (None when there is nothing to back up)
    backup = run_backup_pipeline(records_store, backup_store)

    # Restore from a backup
    result = RestoreEngine(records_store, crypto).restore(backup.path)
"""

from myrecords.backup.crypto import CryptoEngine
from myrecords.backup.errors import (
    BackupError,
    BackupFileNotFoundError,
    DecryptionError,
    FilesystemError,
    InvalidFormatError,
    NoDataToBackupError,
    PasswordRequiredError,
    UnknownInternalError,
    WrongPasswordError,
)
from myrecords.backup.models import (
    BackupFile,
    BackupInfo,
    DeviceKeySource,
    EncryptionEnvelope,
    Manifest,
    PasswordKeySource,
    RestoreResult,
)
from myrecords.backup.pipeline import run_backup_pipeline
from myrecords.backup.restore import RestoreEngine
from myrecords.backup.snapshot import SnapshotBuilder
from myrecords.backup.store import BackupStore

__all__ = [
    # Engines
    "CryptoEngine",
    "SnapshotBuilder",
    "BackupStore",
    "RestoreEngine",
    "run_backup_pipeline",
    # Models
    "Manifest",
    "EncryptionEnvelope",
    "DeviceKeySource",
    "PasswordKeySource",
    "BackupFile",
    "BackupInfo",
    "RestoreResult",
    # Errors
    "BackupError",
    "NoDataToBackupError",
    "PasswordRequiredError",
    "DecryptionError",
    "WrongPasswordError",
    "InvalidFormatError",
    "BackupFileNotFoundError",
    "FilesystemError",
    "UnknownInternalError",
]

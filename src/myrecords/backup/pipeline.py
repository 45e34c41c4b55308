"""
Backup pipeline.

One backup run: snapshot the primary store, encrypt and write the manifest,
then prune old files. Every trigger (scheduled, manual, on-mutation) goes
through run_backup_pipeline; the callers only differ in locking and in how
they report an empty store.
"""

from __future__ import annotations

import logging
from datetime import datetime

from myrecords.backup.models import BackupFile
from myrecords.backup.snapshot import SnapshotBuilder
from myrecords.backup.store import BackupStore
from myrecords.storage.records_store import RecordsStore

logger = logging.getLogger(__name__)


def run_backup_pipeline(
    records_store: RecordsStore,
    backup_store: BackupStore,
    snapshot_builder: SnapshotBuilder | None = None,
    password: str | None = None,
    now: datetime | None = None,
) -> BackupFile | None:
    """
    Build, encrypt, write and retain.

    The caller is responsible for holding the backup lock.

    Args:
        records_store: Primary store to snapshot.
        backup_store: Destination of the backup file.
        snapshot_builder: Builder to use. Defaults to a new SnapshotBuilder.
        password: Seal with a password instead of the device key.
        now: Creation instant for the manifest and filename.

    Returns:
        The written backup, or None when the store holds no folders.
    """
    builder = snapshot_builder or SnapshotBuilder()
    now = now or datetime.now()

    manifest = builder.build_manifest(records_store, now=now)
    if manifest is None:
        logger.info("No folders to back up")
        return None

    backup = backup_store.write(manifest, password=password, now=now)
    backup_store.enforce_retention()
    return backup

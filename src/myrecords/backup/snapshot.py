"""
Snapshot builder.

Reads every folder and record from the primary store and assembles a
Manifest. Records whose folder no longer exists are deleted from the store
in the same pass, so building any snapshot also repairs the data set.
"""

from __future__ import annotations

import logging
from datetime import datetime

from myrecords.backup.models import MANIFEST_VERSION, Manifest
from myrecords.storage.records_store import FOLDERS_TABLE, RECORDS_TABLE, RecordsStore

logger = logging.getLogger(__name__)


class SnapshotBuilder:
    """Builds manifests from a RecordsStore."""

    def build_manifest(
        self,
        store: RecordsStore,
        now: datetime | None = None,
    ) -> Manifest | None:
        """
        Snapshot the store.

        Args:
            store: Primary store to read (and repair).
            now: Creation instant recorded in the manifest.

        Returns:
            The manifest, or None when the store holds no folders. An empty
            store is a recognized condition, not an error; callers decide
            whether to skip silently or tell the user.
        """
        folders = store.query_all(FOLDERS_TABLE)
        if not folders:
            logger.debug("No folders in store, nothing to snapshot")
            return None

        all_records = store.query_all(RECORDS_TABLE)

        folder_ids = {folder["id"] for folder in folders}
        records = []
        orphans = []
        for record in all_records:
            if record.get("folder_id") in folder_ids:
                records.append(record)
            else:
                orphans.append(record)

        if orphans:
            for orphan in orphans:
                store.delete(RECORDS_TABLE, "id = ?", [orphan["id"]])
            logger.warning(
                f"Removed {len(orphans)} orphaned record(s) referencing missing folders: "
                f"{sorted(orphan['id'] for orphan in orphans)}"
            )

        logger.debug(
            f"Snapshot: {len(folders)} folders, {len(records)} of "
            f"{len(all_records)} records kept"
        )

        return Manifest(
            folders=folders,
            records=records,
            timestamp=(now or datetime.now()).isoformat(),
            version=MANIFEST_VERSION,
        )

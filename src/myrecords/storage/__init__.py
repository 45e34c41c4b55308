"""
Primary records storage.

SQLite tables for folders and the records filed inside them, exposed through
the small query/insert/delete interface the backup engine consumes.

Usage:
    from myrecords.storage import RecordsStore

    store = RecordsStore(settings.database_path)
    folders = store.query_all("folders")
"""

from myrecords.storage.records_store import (
    FOLDERS_TABLE,
    RECORDS_TABLE,
    RecordsStore,
    StorageError,
    UnknownTableError,
)

__all__ = [
    "RecordsStore",
    "FOLDERS_TABLE",
    "RECORDS_TABLE",
    "StorageError",
    "UnknownTableError",
]

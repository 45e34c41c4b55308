"""
Primary data store for My Records.

This module provides the RecordsStore class, a thin SQLite layer holding the
user's folders and the records filed inside them. The backup engine talks to
it only through three generic calls:

    query_all(table) -> rows
    insert(table, row) -> id
    delete(table, where, params) -> deleted row count

Design Decisions:
    - Each call opens its own connection and is atomic on its own; callers
      never get a transaction spanning several calls
    - Foreign keys are declared but not enforced by SQLite, so records whose
      folder disappeared can exist; the snapshot builder removes them
    - Rows are exchanged as plain dictionaries so backups carry every column

Thread Safety:
    Connection-per-operation; safe to share one instance between threads.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Generator, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Base exception for storage errors."""

    pass


class UnknownTableError(StorageError):
    """Raised when a table outside the records schema is addressed."""

    pass


# Database schema version for migrations
SCHEMA_VERSION = 3

FOLDERS_TABLE = "folders"
RECORDS_TABLE = "records"
TABLES = (FOLDERS_TABLE, RECORDS_TABLE)


CREATE_TABLES_SQL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS folders (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    description TEXT,
    color INTEGER NOT NULL DEFAULT 4280391411,
    icon INTEGER NOT NULL DEFAULT 57415,
    records_count INTEGER NOT NULL DEFAULT 0,
    sort_order INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS records (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    folder_id INTEGER NOT NULL,
    field_name TEXT NOT NULL,
    field_value TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (folder_id) REFERENCES folders (id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_records_folder ON records(folder_id);
"""


class RecordsStore:
    """
    SQLite storage for folders and records.

    Example:
        store = RecordsStore(Path("./data/my_records.db"))

        folder_id = store.insert("folders", {"name": "Passports"})
        store.insert("records", {
            "folder_id": folder_id,
            "field_name": "Number",
            "field_value": '["X1234567"]',
        })

        folders = store.query_all("folders")
        store.delete("records", "folder_id = ?", [folder_id])

    Attributes:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._columns: dict[str, set[str]] = {}
        self._required: dict[str, set[str]] = {}
        self._init_database()

    def _init_database(self) -> None:
        """Initialize the database schema."""
        with self._get_connection() as conn:
            conn.executescript(CREATE_TABLES_SQL)

            cursor = conn.execute(
                "SELECT version FROM schema_version ORDER BY version DESC LIMIT 1"
            )
            row = cursor.fetchone()
            if row is None:
                conn.execute(
                    "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                    (SCHEMA_VERSION, datetime.now(UTC).isoformat()),
                )
                logger.info(f"Initialized records schema version {SCHEMA_VERSION}")

            for table in TABLES:
                info = conn.execute(f"PRAGMA table_info({table})").fetchall()
                self._columns[table] = {column["name"] for column in info}
                self._required[table] = {
                    column["name"]
                    for column in info
                    if column["notnull"] and column["dflt_value"] is None and not column["pk"]
                }

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Get a database connection with proper settings.

        Yields:
            SQLite connection in autocommit mode with row factory set.
        """
        conn = sqlite3.connect(
            str(self.db_path),
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def _require_table(self, table: str) -> None:
        if table not in TABLES:
            raise UnknownTableError(f"Unknown table: {table}")

    def query_all(self, table: str) -> list[dict[str, Any]]:
        """
        Return every row of a table, ordered by id.

        Raises:
            UnknownTableError: If the table is not part of the schema.
            StorageError: If the query fails.
        """
        self._require_table(table)
        try:
            with self._get_connection() as conn:
                cursor = conn.execute(f"SELECT * FROM {table} ORDER BY id")  # noqa: S608
                return [dict(row) for row in cursor]
        except sqlite3.Error as e:
            raise StorageError(f"Failed to query {table}: {e}") from e

    def check_row(self, table: str, row: dict[str, Any]) -> None:
        """
        Check that ``row`` could be inserted into ``table`` without writing it.

        Every key must be a column, and every NOT NULL column without a
        default must be present with a value.

        Raises:
            UnknownTableError: If the table is not part of the schema.
            StorageError: If the row does not fit the table.
        """
        self._require_table(table)

        if not row:
            raise StorageError(f"Cannot insert an empty row into {table}")

        unknown = set(row) - self._columns[table]
        if unknown:
            raise StorageError(
                f"Unknown column(s) for {table}: {', '.join(sorted(unknown))}"
            )

        missing = {column for column in self._required[table] if row.get(column) is None}
        if missing:
            raise StorageError(
                f"Missing required column(s) for {table}: {', '.join(sorted(missing))}"
            )

    def insert(self, table: str, row: dict[str, Any]) -> int:
        """
        Insert a row and return its id.

        Keys of ``row`` must be columns of ``table``; an explicit ``id`` is
        kept, which is how restores preserve identities.

        Raises:
            UnknownTableError: If the table is not part of the schema.
            StorageError: If a column is unknown or the insert fails.
        """
        self.check_row(table, row)

        columns = list(row)
        placeholders = ", ".join("?" for _ in columns)
        sql = (
            f"INSERT INTO {table} ({', '.join(columns)}) "  # noqa: S608
            f"VALUES ({placeholders})"
        )

        try:
            with self._get_connection() as conn:
                cursor = conn.execute(sql, [row[column] for column in columns])
                return int(cursor.lastrowid)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to insert into {table}: {e}") from e

    def delete(
        self,
        table: str,
        where: str | None = None,
        params: Sequence[Any] = (),
    ) -> int:
        """
        Delete rows matching a predicate, or every row when ``where`` is None.

        Args:
            table: Table name.
            where: SQL predicate with ``?`` placeholders.
            params: Values bound to the placeholders.

        Returns:
            Number of deleted rows.
        """
        self._require_table(table)

        sql = f"DELETE FROM {table}"  # noqa: S608
        if where:
            sql += f" WHERE {where}"

        try:
            with self._get_connection() as conn:
                cursor = conn.execute(sql, list(params))
                return cursor.rowcount
        except sqlite3.Error as e:
            raise StorageError(f"Failed to delete from {table}: {e}") from e

    def count(self, table: str) -> int:
        """Return the number of rows in a table."""
        self._require_table(table)
        try:
            with self._get_connection() as conn:
                (total,) = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()  # noqa: S608
                return int(total)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to count {table}: {e}") from e

    def get_statistics(self) -> dict[str, int]:
        """Folder and record counts, as shown before creating a backup."""
        return {
            "folders": self.count(FOLDERS_TABLE),
            "records": self.count(RECORDS_TABLE),
        }

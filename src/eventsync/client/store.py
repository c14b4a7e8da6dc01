"""Local store of already-synchronized records.

This module provides:
- SyncedRecord: A local record created from a remote event
- SyncedRecordStore: SQLite-based store implementing the RecordStore protocol

The fetch engine only reads identifiers from this store, to bootstrap the
high-water mark when no cached watermark exists.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class SyncedRecord:
    """A local record synchronized from a remote event.

    Attributes:
        collection_key: Collection the event was fetched from.
        identifier: Remote event id, as stored locally.
        category_id: Local category the record was created in.
        synced_at: Timestamp when the record was synchronized.
    """

    collection_key: str
    identifier: str
    category_id: int | None
    synced_at: float

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> SyncedRecord:
        """Create SyncedRecord from database row."""
        return cls(
            collection_key=row["collection_key"],
            identifier=row["identifier"],
            category_id=row["category_id"],
            synced_at=row["synced_at"],
        )


class SyncedRecordStore:
    """SQLite-based store of synchronized records."""

    def __init__(self, db_path: Path) -> None:
        """Initialize the store database.

        Args:
            db_path: Path to SQLite database file.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        # Lock for thread-safe database access
        self._lock = threading.RLock()

        self._conn = sqlite3.connect(
            str(self._db_path),
            check_same_thread=False,
            isolation_level=None,  # Autocommit mode
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")

        self._create_tables()

    def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS synced_records (
                collection_key TEXT NOT NULL,
                identifier TEXT NOT NULL,
                category_id INTEGER,
                synced_at REAL NOT NULL,
                PRIMARY KEY (collection_key, identifier)
            );
        """)

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def __enter__(self) -> SyncedRecordStore:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def record_synced(
        self,
        collection_key: str,
        identifier: str | int,
        category_id: int | None = None,
    ) -> None:
        """Record that an event was synchronized (upsert).

        Args:
            collection_key: Collection the event belongs to.
            identifier: Remote event id.
            category_id: Local category of the created record.
        """
        with self._lock:
            self._conn.execute(
                """
                INSERT OR REPLACE INTO synced_records (
                    collection_key, identifier, category_id, synced_at
                ) VALUES (?, ?, ?, ?)
                """,
                (collection_key, str(identifier), category_id, time.time()),
            )

    def forget(self, collection_key: str, identifier: str | int) -> None:
        """Remove a record from the store."""
        with self._lock:
            self._conn.execute(
                "DELETE FROM synced_records WHERE collection_key = ? AND identifier = ?",
                (collection_key, str(identifier)),
            )

    def get_records(self, collection_key: str) -> list[SyncedRecord]:
        """List all records of a collection."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM synced_records WHERE collection_key = ? ORDER BY synced_at",
                (collection_key,),
            ).fetchall()
        return [SyncedRecord.from_row(row) for row in rows]

    def list_synchronized_ids(self, collection_key: str) -> list[str]:
        """List identifiers of records synchronized for a collection.

        Args:
            collection_key: Collection to list.

        Returns:
            Identifiers (as stored, not necessarily numeric).
        """
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT identifier FROM synced_records
                WHERE collection_key = ? AND identifier != ''
                """,
                (collection_key,),
            ).fetchall()
        return [row["identifier"] for row in rows]

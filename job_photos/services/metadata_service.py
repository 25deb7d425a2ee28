"""SQLite metadata store for uploaded job photos."""

import sqlite3
import threading
from collections.abc import Sequence
from datetime import UTC, date, datetime
from pathlib import Path

from job_photos.services.errors import MetadataInsertError
from job_photos.services.models import BookingContext, MetadataRecord, PhotoCategory


class MetadataStore:
    """Thread-safe SQLite access to the ``cleaning_photos`` table."""

    def __init__(self, db_path: str | Path) -> None:
        """Open (or create) the metadata database."""
        self._db_path = Path(db_path)
        self._local = threading.local()
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if getattr(self._local, "connection", None) is None:
            self._local.connection = sqlite3.connect(
                str(self._db_path),
                check_same_thread=False,
                timeout=30.0,
            )
            self._local.connection.row_factory = sqlite3.Row
        conn: sqlite3.Connection = self._local.connection
        return conn

    def _init_db(self) -> None:
        """Initialize the database schema."""
        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS cleaning_photos (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                booking_id INTEGER NOT NULL,
                customer_id INTEGER NOT NULL,
                cleaner_id INTEGER,
                file_path TEXT NOT NULL,
                photo_type TEXT NOT NULL,
                postcode TEXT NOT NULL,
                booking_date TEXT NOT NULL,
                damage_details TEXT,
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_booking ON cleaning_photos(booking_id)
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_file_path ON cleaning_photos(file_path)
        """)

        conn.commit()

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> MetadataRecord:
        return MetadataRecord(
            id=row["id"],
            booking_id=row["booking_id"],
            customer_id=row["customer_id"],
            cleaner_id=row["cleaner_id"],
            file_path=row["file_path"],
            category=PhotoCategory(row["photo_type"]),
            postcode=row["postcode"],
            booking_date=date.fromisoformat(row["booking_date"]),
            annotation=row["damage_details"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def insert(self, record: MetadataRecord) -> int:
        """Insert a record and return its new id.

        Raises:
            sqlite3.Error: If the insert fails
        """
        conn = self._get_connection()
        cursor = conn.execute(
            """
            INSERT INTO cleaning_photos
                (booking_id, customer_id, cleaner_id, file_path, photo_type,
                 postcode, booking_date, damage_details, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.booking_id,
                record.customer_id,
                record.cleaner_id,
                record.file_path,
                record.category.value,
                record.postcode,
                record.booking_date.isoformat(),
                record.annotation,
                record.created_at.isoformat(),
            ),
        )
        conn.commit()
        record_id = int(cursor.lastrowid or 0)
        record.id = record_id
        return record_id

    def get(self, record_id: int) -> MetadataRecord | None:
        conn = self._get_connection()
        row = conn.execute("SELECT * FROM cleaning_photos WHERE id = ?", (record_id,)).fetchone()
        return self._row_to_record(row) if row else None

    def select_by_booking(self, booking_id: int) -> list[MetadataRecord]:
        """All records for a booking, newest first."""
        conn = self._get_connection()
        rows = conn.execute(
            """
            SELECT * FROM cleaning_photos
            WHERE booking_id = ?
            ORDER BY created_at DESC, id DESC
            """,
            (booking_id,),
        ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def file_paths_for_booking(self, booking_id: int) -> set[str]:
        conn = self._get_connection()
        rows = conn.execute(
            "SELECT file_path FROM cleaning_photos WHERE booking_id = ?", (booking_id,)
        ).fetchall()
        return {row["file_path"] for row in rows}

    def delete(self, record_id: int) -> bool:
        """Delete a record. Returns True if a row was removed."""
        conn = self._get_connection()
        cursor = conn.execute("DELETE FROM cleaning_photos WHERE id = ?", (record_id,))
        conn.commit()
        return cursor.rowcount > 0

    def delete_many(self, record_ids: Sequence[int]) -> int:
        """Delete several records in one statement. Returns the number removed."""
        if not record_ids:
            return 0
        placeholders = ",".join("?" for _ in record_ids)
        conn = self._get_connection()
        cursor = conn.execute(
            f"DELETE FROM cleaning_photos WHERE id IN ({placeholders})", tuple(record_ids)
        )
        conn.commit()
        return cursor.rowcount

    def close(self) -> None:
        """Close this thread's connection."""
        conn = getattr(self._local, "connection", None)
        if conn is not None:
            conn.close()
            self._local.connection = None


class MetadataRecorder:
    """Writes one metadata row per successfully stored object.

    There is no transaction spanning the object write and this insert; a
    failure here leaves a stored object without a row, which the orphan
    reconciler later surfaces.
    """

    def __init__(self, store: MetadataStore) -> None:
        self.store = store

    def record(
        self,
        context: BookingContext,
        key: str,
        category: PhotoCategory,
        annotation: str | None = None,
    ) -> int:
        """Insert the row for a stored object and return its id.

        Raises:
            MetadataInsertError: If the insert fails
        """
        record = MetadataRecord(
            booking_id=context.booking_id,
            customer_id=context.customer_id,
            cleaner_id=context.cleaner_id,
            file_path=key,
            category=category,
            postcode=context.postcode,
            booking_date=context.booking_date,
            annotation=annotation if category is PhotoCategory.ADDITIONAL else None,
            created_at=datetime.now(UTC),
        )
        try:
            return self.store.insert(record)
        except sqlite3.Error as e:
            raise MetadataInsertError(key, f"Metadata insert failed: {e}") from e

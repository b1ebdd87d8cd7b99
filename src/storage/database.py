"""
Durable capture state backed by SQLite.

Holds the timestamp of the last persisted capture (read once at startup,
written after every save) and a log of saved captures.
A version row in schema_meta decides when the tables are rebuilt.
"""

from __future__ import annotations

import logging
import os
import sqlite3
from typing import Any, Dict, List, Optional, Protocol, Sequence

from models.detection import Detection

# Bump when any table below changes shape
EXPECTED_SCHEMA_VERSION = 1


class CounterStore(Protocol):
    """Durable storage for the last-save timestamp."""

    def get_last_save_timestamp(self) -> int:
        ...

    def set_last_save_timestamp(self, ts_ms: int) -> None:
        ...


class CaptureLog(Protocol):
    """Record of persisted captures."""

    def record_capture(self, ts_ms: int, image_path: str, detections: Sequence[Detection]) -> Optional[int]:
        ...


class StateDatabase:
    """
    SQLite store for capture state.

    Schema:
    - schema_meta: single row with the schema version
    - capture_state: single row with last_save_ts (epoch ms, 0 = never saved)
    - captures: one row per persisted capture

    On a schema version mismatch the tables are recreated; the last-save
    timestamp is carried over so the save quota survives upgrades.
    """

    def __init__(self, database_path: str):
        """
        Initialize the database.

        Args:
            database_path: Path to the SQLite database file.
        """
        self.database_path = database_path
        self.conn: Optional[sqlite3.Connection] = None

        # sqlite3 will not create missing parent directories
        db_dir = os.path.dirname(database_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        logging.info(f"State database initialized at {database_path}")

    def _get_connection(self) -> sqlite3.Connection:
        """Lazily open the connection."""
        if self.conn is None:
            self.conn = sqlite3.connect(self.database_path)
        return self.conn

    def _get_schema_version(self) -> Optional[int]:
        """Version stored in schema_meta, or None for a fresh or foreign file."""
        try:
            cursor = self._get_connection().cursor()
            cursor.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name='schema_meta'"
            )
            if cursor.fetchone() is None:
                return None

            cursor.execute("SELECT schema_version FROM schema_meta LIMIT 1")
            row = cursor.fetchone()
            return row[0] if row else None
        except sqlite3.Error:
            return None

    def _read_legacy_last_save(self) -> int:
        """Best-effort read of last_save_ts from an older schema."""
        try:
            cursor = self._get_connection().cursor()
            cursor.execute("SELECT last_save_ts FROM capture_state WHERE id = 1")
            row = cursor.fetchone()
            return int(row[0]) if row and row[0] is not None else 0
        except (sqlite3.Error, ValueError, TypeError):
            return 0

    def _drop_old_tables(self) -> None:
        cursor = self._get_connection().cursor()
        for table in ("captures", "capture_state", "schema_meta"):
            cursor.execute(f"DROP TABLE IF EXISTS {table}")
            logging.debug(f"Dropped table: {table}")
        self._get_connection().commit()

    def _create_schema(self, last_save_ts: int = 0) -> None:
        cursor = self._get_connection().cursor()

        cursor.execute("""
            CREATE TABLE schema_meta (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                schema_version INTEGER NOT NULL,
                created_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
        """)

        cursor.execute("""
            CREATE TABLE capture_state (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                last_save_ts INTEGER NOT NULL DEFAULT 0
            )
        """)

        cursor.execute("""
            CREATE TABLE captures (
                id INTEGER PRIMARY KEY,
                ts INTEGER NOT NULL,
                image_path TEXT NOT NULL,
                detection_count INTEGER NOT NULL,
                class_names TEXT
            )
        """)
        cursor.execute("CREATE INDEX idx_captures_ts ON captures(ts)")

        cursor.execute(
            "INSERT INTO schema_meta (id, schema_version) VALUES (1, ?)",
            (EXPECTED_SCHEMA_VERSION,)
        )
        cursor.execute(
            "INSERT INTO capture_state (id, last_save_ts) VALUES (1, ?)",
            (last_save_ts,)
        )

        self._get_connection().commit()
        logging.info(f"Created state schema version {EXPECTED_SCHEMA_VERSION}")

    def initialize(self) -> None:
        """
        Make sure the schema exists at the expected version.

        If schema_meta is missing or its version doesn't match
        EXPECTED_SCHEMA_VERSION, the tables are recreated.
        """
        try:
            current_version = self._get_schema_version()

            if current_version != EXPECTED_SCHEMA_VERSION:
                if current_version is not None:
                    logging.warning(
                        f"Schema version mismatch: found {current_version}, "
                        f"expected {EXPECTED_SCHEMA_VERSION}. Recreating tables."
                    )
                else:
                    logging.info("No schema found, creating fresh state database.")

                last_save_ts = self._read_legacy_last_save()
                self._drop_old_tables()
                self._create_schema(last_save_ts)
            else:
                logging.info(f"Schema version {current_version} is current")

        except sqlite3.Error as e:
            logging.error(f"State database initialization error: {e}")
            raise

    # Capture state

    def get_last_save_timestamp(self) -> int:
        """Return the last save time in epoch ms, or 0 if nothing was saved yet."""
        cursor = self._get_connection().cursor()
        cursor.execute("SELECT last_save_ts FROM capture_state WHERE id = 1")
        row = cursor.fetchone()
        return int(row[0]) if row else 0

    def set_last_save_timestamp(self, ts_ms: int) -> None:
        """
        Durably record the last save time.

        Raises:
            sqlite3.Error: If the write could not be committed.
        """
        cursor = self._get_connection().cursor()
        cursor.execute(
            "INSERT OR REPLACE INTO capture_state (id, last_save_ts) VALUES (1, ?)",
            (int(ts_ms),)
        )
        self._get_connection().commit()
        logging.debug(f"Last save timestamp set to {ts_ms}")

    # Capture log

    def record_capture(
        self,
        ts_ms: int,
        image_path: str,
        detections: Sequence[Detection],
    ) -> Optional[int]:
        """
        Log a persisted capture.

        Returns:
            Row id of the log entry, or None if the insert failed.
        """
        try:
            cursor = self._get_connection().cursor()
            class_names = ",".join(sorted({d.class_name for d in detections}))
            cursor.execute(
                "INSERT INTO captures (ts, image_path, detection_count, class_names) "
                "VALUES (?, ?, ?, ?)",
                (int(ts_ms), str(image_path), len(detections), class_names),
            )
            self._get_connection().commit()
            return cursor.lastrowid
        except sqlite3.Error as e:
            logging.error(f"Error recording capture: {e}")
            return None

    def get_recent_captures(self, limit: int = 20) -> List[Dict[str, Any]]:
        """Return the most recent captures, newest first."""
        cursor = self._get_connection().cursor()
        cursor.execute(
            "SELECT id, ts, image_path, detection_count, class_names "
            "FROM captures ORDER BY ts DESC, id DESC LIMIT ?",
            (limit,),
        )
        return [
            {
                "id": row[0],
                "ts": row[1],
                "image_path": row[2],
                "detection_count": row[3],
                "class_names": row[4].split(",") if row[4] else [],
            }
            for row in cursor.fetchall()
        ]

    def count_captures_since(self, since_ts_ms: int) -> int:
        """Count captures saved at or after since_ts_ms."""
        cursor = self._get_connection().cursor()
        cursor.execute("SELECT COUNT(*) FROM captures WHERE ts >= ?", (int(since_ts_ms),))
        return int(cursor.fetchone()[0])

    def close(self) -> None:
        """Close the connection; the next call reopens it."""
        if self.conn:
            self.conn.close()
            self.conn = None
            logging.debug("State database connection closed")

    def __enter__(self) -> "StateDatabase":
        self.initialize()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

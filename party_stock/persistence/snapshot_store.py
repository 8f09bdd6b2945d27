"""Session snapshot persistence for restart recovery."""

import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Optional, Union

import orjson
import structlog

from ..errors import PersistenceError
from ..utils.time import format_timestamp, utc_now


@dataclass
class StoredSnapshot:
    """Stored session snapshot with metadata."""
    session_id: str
    round: int
    phase: str
    payload: dict[str, Any]
    saved_at: str
    version: int = 1


class SnapshotStore:
    """SQLite-based store keeping the latest snapshot of each session."""

    def __init__(self, db_path: Union[str, Path] = "sessions.db"):
        self.db_path = Path(db_path)
        self.logger = structlog.get_logger("snapshot.store")
        # One write lock per session id; the guard only protects the map
        self._write_locks: dict[str, threading.Lock] = {}
        self._write_locks_guard = threading.Lock()

        self._init_database()

    def _init_database(self) -> None:
        """Initialize database schema."""
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS session_snapshots (
                    session_id TEXT PRIMARY KEY,
                    round INTEGER NOT NULL,
                    phase TEXT NOT NULL,
                    payload BLOB NOT NULL,
                    saved_at TEXT NOT NULL,
                    version INTEGER NOT NULL DEFAULT 1
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_snapshots_saved_at ON session_snapshots(saved_at)
            """)

            conn.commit()

    def _write_lock(self, session_id: str) -> threading.Lock:
        with self._write_locks_guard:
            lock = self._write_locks.get(session_id)
            if lock is None:
                lock = self._write_locks[session_id] = threading.Lock()
            return lock

    @contextmanager
    def _get_connection(self):
        """Get database connection with proper error handling."""
        conn = None
        try:
            conn = sqlite3.connect(self.db_path, timeout=30.0)
            conn.row_factory = sqlite3.Row
            yield conn
        except sqlite3.Error as e:
            if conn:
                conn.rollback()
            self.logger.error("Database error", error=str(e), db_path=str(self.db_path))
            raise PersistenceError(
                f"Database error: {str(e)}",
                operation="sqlite",
                target=str(self.db_path)
            ) from e
        finally:
            if conn:
                conn.close()

    def save(self, snapshot: dict[str, Any]) -> int:
        """
        Insert or replace the snapshot of a session.

        Args:
            snapshot: Output of MarketSession.to_dict

        Returns:
            Snapshot version after the save
        """
        session_id = snapshot["session_id"]
        with self._write_lock(session_id):
            with self._get_connection() as conn:
                row = conn.execute(
                    "SELECT version FROM session_snapshots WHERE session_id = ?",
                    (session_id,)
                ).fetchone()
                version = (row["version"] + 1) if row else 1

                conn.execute("""
                    INSERT OR REPLACE INTO session_snapshots (
                        session_id, round, phase, payload, saved_at, version
                    ) VALUES (?, ?, ?, ?, ?, ?)
                """, (
                    session_id,
                    snapshot.get("round", 0),
                    snapshot.get("phase", "open"),
                    orjson.dumps(snapshot),
                    format_timestamp(utc_now()),
                    version
                ))
                conn.commit()

        self.logger.debug(
            "Snapshot saved",
            session_id=session_id,
            round=snapshot.get("round"),
            version=version
        )
        return version

    def load(self, session_id: str) -> Optional[StoredSnapshot]:
        """Get the latest snapshot of a session."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM session_snapshots WHERE session_id = ?",
                (session_id,)
            ).fetchone()

        if row:
            return self._row_to_snapshot(row)
        return None

    def load_all(self, newer_than: Optional[datetime] = None) -> list[StoredSnapshot]:
        """Get every stored snapshot, optionally only those saved after a cutoff."""
        with self._get_connection() as conn:
            if newer_than is None:
                rows = conn.execute(
                    "SELECT * FROM session_snapshots ORDER BY saved_at"
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM session_snapshots WHERE saved_at >= ? ORDER BY saved_at",
                    (format_timestamp(newer_than),)
                ).fetchall()

        return [self._row_to_snapshot(row) for row in rows]

    def delete(self, session_id: str) -> bool:
        """Remove the snapshot of a session."""
        with self._write_lock(session_id):
            with self._get_connection() as conn:
                cursor = conn.execute(
                    "DELETE FROM session_snapshots WHERE session_id = ?",
                    (session_id,)
                )
                conn.commit()
                return cursor.rowcount > 0

    def session_ids(self) -> list[str]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT session_id FROM session_snapshots ORDER BY session_id"
            ).fetchall()
        return [row["session_id"] for row in rows]

    def cleanup_expired(self, retention_hours: float, now: Optional[datetime] = None) -> int:
        """Remove snapshots older than the retention window."""
        cutoff = (now or utc_now()) - timedelta(hours=retention_hours)

        with self._get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM session_snapshots WHERE saved_at < ?",
                (format_timestamp(cutoff),)
            )
            conn.commit()
            deleted_count = cursor.rowcount

        self.logger.info("Cleaned up expired snapshots", deleted=deleted_count)
        return deleted_count

    def get_stats(self) -> dict[str, Any]:
        """Get database statistics."""
        with self._get_connection() as conn:
            total_count = conn.execute("SELECT COUNT(*) FROM session_snapshots").fetchone()[0]

            phase_counts = {}
            for row in conn.execute("""
                SELECT phase, COUNT(*) as count FROM session_snapshots GROUP BY phase
            """):
                phase_counts[row[0]] = row[1]

        return {
            "total_snapshots": total_count,
            "snapshots_by_phase": phase_counts,
        }

    def _row_to_snapshot(self, row: sqlite3.Row) -> StoredSnapshot:
        """Convert database row to StoredSnapshot object."""
        return StoredSnapshot(
            session_id=row["session_id"],
            round=row["round"],
            phase=row["phase"],
            payload=orjson.loads(row["payload"]),
            saved_at=row["saved_at"],
            version=row["version"]
        )

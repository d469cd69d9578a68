"""SQLite-backed store holding one PlaylistItem row per tracked playlist."""

import logging
import sqlite3
import threading
from pathlib import Path

from new_tube.core.models import PlaylistItem, StoreError

logger = logging.getLogger(__name__)

MEMORY = ":memory:"

_COLUMNS = "playlist_id, video_id, title, duration, uploader, previous_video_id"


class PlaylistStore:
    """Keyed table of PlaylistItem rows.

    One connection is shared by every thread; all statements run under a lock
    so the polling worker and manual commands never write at the same time.
    """

    def __init__(self, db_path: Path | str = MEMORY):
        self._path = str(db_path)
        self._lock = threading.Lock()
        try:
            if self._path != MEMORY:
                Path(self._path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self._path, check_same_thread=False, timeout=30)
            self._conn.row_factory = sqlite3.Row
            self._init_table()
        except (sqlite3.Error, OSError) as e:
            raise StoreError(f"Failed to open database {self._path}: {e}") from e
        logger.debug(f"Opened playlist store at {self._path}")

    def _init_table(self) -> None:
        self._conn.execute("""
        CREATE TABLE IF NOT EXISTS PlaylistItems (
            playlist_id TEXT PRIMARY KEY,
            video_id TEXT NOT NULL,
            title TEXT NOT NULL,
            duration REAL NOT NULL,
            uploader TEXT NOT NULL,
            previous_video_id TEXT NOT NULL
        )
        """)
        self._conn.commit()

    def _execute(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._lock:
            try:
                cur = self._conn.execute(sql, params)
                rows = cur.fetchall()
                self._conn.commit()
                return rows
            except sqlite3.Error as e:
                self._safe_rollback()
                raise StoreError(f"Database query failed: {e}") from e

    def _safe_rollback(self) -> None:
        try:
            self._conn.rollback()
        except sqlite3.Error as e:
            logger.debug(f"Rollback failed: {e}")

    @staticmethod
    def _to_item(row: sqlite3.Row) -> PlaylistItem:
        return PlaylistItem(
            playlist_id=row["playlist_id"],
            video_id=row["video_id"],
            title=row["title"],
            uploader=row["uploader"],
            duration=float(row["duration"]),
            previous_video_id=row["previous_video_id"],
        )

    def get_all(self) -> list[PlaylistItem]:
        rows = self._execute(f"SELECT {_COLUMNS} FROM PlaylistItems ORDER BY playlist_id")
        return [self._to_item(r) for r in rows]

    def get(self, playlist_id: str) -> PlaylistItem | None:
        rows = self._execute(
            f"SELECT {_COLUMNS} FROM PlaylistItems WHERE playlist_id=?",
            (playlist_id,)
        )
        return self._to_item(rows[0]) if rows else None

    def playlist_ids(self) -> list[str]:
        rows = self._execute("SELECT playlist_id FROM PlaylistItems ORDER BY playlist_id")
        return [r["playlist_id"] for r in rows]

    def upsert(self, item: PlaylistItem) -> None:
        self._execute(f"""
        INSERT INTO PlaylistItems ({_COLUMNS})
        VALUES (?, ?, ?, ?, ?, ?)
        ON CONFLICT(playlist_id)
        DO UPDATE SET video_id=excluded.video_id, title=excluded.title,
            duration=excluded.duration, uploader=excluded.uploader,
            previous_video_id=excluded.previous_video_id
        """, (
            item.playlist_id,
            item.video_id,
            item.title,
            float(item.duration),
            item.uploader,
            item.previous_video_id,
        ))

    def update_if_current(self, item: PlaylistItem, expected_video_id: str) -> bool:
        """Overwrite the row only if it still holds ``expected_video_id``.

        Returns False when the row was deleted or changed since it was read;
        nothing is inserted in that case.
        """
        with self._lock:
            try:
                cur = self._conn.execute("""
                UPDATE PlaylistItems
                SET video_id=?, title=?, duration=?, uploader=?, previous_video_id=?
                WHERE playlist_id=? AND video_id=?
                """, (
                    item.video_id,
                    item.title,
                    float(item.duration),
                    item.uploader,
                    item.previous_video_id,
                    item.playlist_id,
                    expected_video_id,
                ))
                self._conn.commit()
                return cur.rowcount > 0
            except sqlite3.Error as e:
                self._safe_rollback()
                raise StoreError(f"Database update failed: {e}") from e

    def delete(self, playlist_id: str) -> bool:
        """Remove a row. Returns False when nothing was tracked under that ID."""
        with self._lock:
            try:
                cur = self._conn.execute(
                    "DELETE FROM PlaylistItems WHERE playlist_id=?",
                    (playlist_id,)
                )
                self._conn.commit()
                return cur.rowcount > 0
            except sqlite3.Error as e:
                self._safe_rollback()
                raise StoreError(f"Database delete failed: {e}") from e

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __len__(self) -> int:
        rows = self._execute("SELECT COUNT(*) AS n FROM PlaylistItems")
        return int(rows[0]["n"])

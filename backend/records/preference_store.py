from __future__ import annotations

from typing import Protocol

from .database import SQLiteRecordDB
from .time_utils import to_iso, utc_now


class PreferenceStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class SQLitePreferenceStore:
    """Key-value storage for device-level preferences such as the chosen region."""

    def __init__(self, db: SQLiteRecordDB) -> None:
        self._db = db

    def get(self, key: str) -> str | None:
        with self._db.connection() as conn:
            row = conn.execute("SELECT value FROM preferences WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def set(self, key: str, value: str) -> None:
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO preferences (key, value, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                  value = excluded.value,
                  updated_at = excluded.updated_at
                """,
                (key, value, to_iso(utc_now())),
            )

    def remove(self, key: str) -> None:
        with self._db.connection() as conn:
            conn.execute("DELETE FROM preferences WHERE key = ?", (key,))

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator


class SQLiteRecordDB:
    def __init__(self, db_path: str) -> None:
        self._path = Path(db_path).expanduser().resolve()
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._init_schema()

    @property
    def path(self) -> str:
        return str(self._path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._path), timeout=30.0, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def columns(self, table: str) -> list[str]:
        with self.connection() as conn:
            return [row["name"] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()]

    def _init_schema(self) -> None:
        with self._lock, self.connection() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS profiles (
                  id TEXT PRIMARY KEY,
                  user_id TEXT NOT NULL,
                  full_name TEXT NOT NULL,
                  created_at TEXT NOT NULL,
                  updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS symptoms (
                  id TEXT PRIMARY KEY,
                  profile_id TEXT NOT NULL,
                  description TEXT NOT NULL,
                  start_date TEXT NOT NULL,
                  end_date TEXT,
                  severity TEXT NOT NULL,
                  notes TEXT,
                  created_at TEXT NOT NULL,
                  updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS medications (
                  id TEXT PRIMARY KEY,
                  profile_id TEXT NOT NULL,
                  medication_name TEXT NOT NULL,
                  start_date TEXT NOT NULL,
                  end_date TEXT,
                  dosage TEXT NOT NULL,
                  status TEXT NOT NULL DEFAULT 'Active',
                  prescribed_by TEXT,
                  notes TEXT,
                  created_at TEXT NOT NULL,
                  updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS mood_entries (
                  id TEXT PRIMARY KEY,
                  profile_id TEXT NOT NULL,
                  date TEXT NOT NULL,
                  body INTEGER NOT NULL,
                  mind INTEGER NOT NULL,
                  sleep INTEGER NOT NULL,
                  mood INTEGER NOT NULL,
                  notes TEXT,
                  created_at TEXT NOT NULL,
                  updated_at TEXT NOT NULL,
                  UNIQUE(profile_id, date)
                );

                CREATE TABLE IF NOT EXISTS diary_entries (
                  id TEXT PRIMARY KEY,
                  profile_id TEXT NOT NULL,
                  entry_type TEXT NOT NULL,
                  title TEXT NOT NULL,
                  date TEXT NOT NULL,
                  notes TEXT,
                  severity TEXT,
                  attendees TEXT NOT NULL DEFAULT '[]',
                  created_at TEXT NOT NULL,
                  updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS patient_documents (
                  id TEXT PRIMARY KEY,
                  patient_id TEXT NOT NULL,
                  file_name TEXT NOT NULL,
                  file_type TEXT NOT NULL,
                  file_size INTEGER NOT NULL,
                  file_url TEXT NOT NULL,
                  description TEXT,
                  created_at TEXT NOT NULL,
                  updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS concierge_events (
                  id TEXT PRIMARY KEY,
                  user_id TEXT NOT NULL,
                  intent TEXT NOT NULL,
                  confidence REAL NOT NULL,
                  route TEXT NOT NULL,
                  result TEXT NOT NULL,
                  meta TEXT NOT NULL DEFAULT '{}',
                  occurred_at TEXT NOT NULL,
                  created_at TEXT NOT NULL,
                  updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS preferences (
                  key TEXT PRIMARY KEY,
                  value TEXT NOT NULL,
                  updated_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_profiles_user
                  ON profiles(user_id);
                CREATE INDEX IF NOT EXISTS idx_symptoms_profile_created
                  ON symptoms(profile_id, created_at DESC);
                CREATE INDEX IF NOT EXISTS idx_medications_profile_created
                  ON medications(profile_id, created_at DESC);
                CREATE INDEX IF NOT EXISTS idx_diary_entries_profile_date
                  ON diary_entries(profile_id, date DESC);
                CREATE INDEX IF NOT EXISTS idx_concierge_events_user_time
                  ON concierge_events(user_id, occurred_at DESC);
                """
            )

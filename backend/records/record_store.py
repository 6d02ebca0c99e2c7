from __future__ import annotations

import asyncio
import json
import sqlite3
import uuid
from typing import Any, Protocol

from .database import SQLiteRecordDB
from .time_utils import to_iso, utc_now

OWNER_FIELDS = {
    "profiles": "user_id",
    "symptoms": "profile_id",
    "medications": "profile_id",
    "mood_entries": "profile_id",
    "diary_entries": "profile_id",
    "patient_documents": "patient_id",
    "concierge_events": "user_id",
}

JSON_COLUMNS = {
    "diary_entries": {"attendees"},
    "concierge_events": {"meta"},
}

# Postgres error codes, so both store backends report the same thing.
UNIQUE_VIOLATION = "23505"
NOT_NULL_VIOLATION = "23502"
UNDEFINED_TABLE = "42P01"
UNDEFINED_COLUMN = "42703"


class RecordStoreError(Exception):
    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


def owner_field_for(table: str) -> str:
    try:
        return OWNER_FIELDS[table]
    except KeyError:
        raise RecordStoreError(f"Unknown table: {table}", UNDEFINED_TABLE) from None


class RecordStore(Protocol):
    async def insert(self, table: str, owner_id: str, fields: dict[str, Any]) -> dict[str, Any]: ...

    async def query(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        *,
        order_by: str = "created_at",
        descending: bool = True,
        limit: int | None = None,
    ) -> list[dict[str, Any]]: ...

    async def update(self, table: str, record_id: str, fields: dict[str, Any]) -> dict[str, Any]: ...

    async def delete(self, table: str, record_id: str) -> None: ...

    async def aclose(self) -> None: ...


def _encode_value(table: str, column: str, value: Any) -> Any:
    if column in JSON_COLUMNS.get(table, set()):
        return json.dumps(value if value is not None else ([] if column == "attendees" else {}), sort_keys=True)
    return value


def _decode_row(table: str, row: sqlite3.Row) -> dict[str, Any]:
    record = dict(row)
    for column in JSON_COLUMNS.get(table, set()):
        raw = record.get(column)
        if isinstance(raw, str):
            record[column] = json.loads(raw)
    return record


def _integrity_error(exc: sqlite3.IntegrityError) -> RecordStoreError:
    message = str(exc)
    if "UNIQUE" in message:
        return RecordStoreError(f"duplicate key value violates unique constraint ({message})", UNIQUE_VIOLATION)
    if "NOT NULL" in message:
        return RecordStoreError(f"null value violates not-null constraint ({message})", NOT_NULL_VIOLATION)
    return RecordStoreError(message)


class SQLiteRecordStore:
    """Record store over a local SQLite file, used for development and tests."""

    def __init__(self, db: SQLiteRecordDB) -> None:
        self._db = db
        self._columns: dict[str, set[str]] = {}

    @property
    def db(self) -> SQLiteRecordDB:
        return self._db

    def _table_columns(self, table: str) -> set[str]:
        if table not in OWNER_FIELDS:
            raise RecordStoreError(f"Unknown table: {table}", UNDEFINED_TABLE)
        if table not in self._columns:
            self._columns[table] = set(self._db.columns(table))
        return self._columns[table]

    def _check_columns(self, table: str, names: list[str]) -> None:
        known = self._table_columns(table)
        unknown = sorted(name for name in names if name not in known)
        if unknown:
            raise RecordStoreError(
                f"Unknown column(s) for {table}: {', '.join(unknown)}",
                UNDEFINED_COLUMN,
            )

    def _insert_sync(self, table: str, owner_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        now = to_iso(utc_now())
        row = dict(fields)
        row[owner_field_for(table)] = owner_id
        row.setdefault("id", uuid.uuid4().hex)
        row.setdefault("created_at", now)
        row.setdefault("updated_at", now)
        if table == "concierge_events":
            row.setdefault("occurred_at", now)
        columns = list(row.keys())
        self._check_columns(table, columns)
        placeholders = ", ".join("?" for _ in columns)
        values = tuple(_encode_value(table, column, row[column]) for column in columns)
        try:
            with self._db.connection() as conn:
                conn.execute(
                    f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})",
                    values,
                )
                stored = conn.execute(f"SELECT * FROM {table} WHERE id = ?", (row["id"],)).fetchone()
        except sqlite3.IntegrityError as exc:
            raise _integrity_error(exc) from exc
        return _decode_row(table, stored)

    def _query_sync(
        self,
        table: str,
        filters: dict[str, Any] | None,
        order_by: str,
        descending: bool,
        limit: int | None,
    ) -> list[dict[str, Any]]:
        filters = filters or {}
        self._check_columns(table, [*filters.keys(), order_by])
        sql = f"SELECT * FROM {table}"
        params: list[Any] = []
        if filters:
            sql += " WHERE " + " AND ".join(f"{column} = ?" for column in filters)
            params.extend(filters.values())
        sql += f" ORDER BY {order_by} {'DESC' if descending else 'ASC'}, rowid {'DESC' if descending else 'ASC'}"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(max(0, int(limit)))
        with self._db.connection() as conn:
            return [_decode_row(table, row) for row in conn.execute(sql, tuple(params)).fetchall()]

    def _update_sync(self, table: str, record_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        changes = {key: value for key, value in fields.items() if key != "id"}
        changes["updated_at"] = to_iso(utc_now())
        self._check_columns(table, list(changes.keys()))
        assignments = ", ".join(f"{column} = ?" for column in changes)
        values = [_encode_value(table, column, value) for column, value in changes.items()]
        try:
            with self._db.connection() as conn:
                cursor = conn.execute(
                    f"UPDATE {table} SET {assignments} WHERE id = ?",
                    (*values, record_id),
                )
                if cursor.rowcount == 0:
                    raise RecordStoreError(f"{table} record not found: {record_id}")
                stored = conn.execute(f"SELECT * FROM {table} WHERE id = ?", (record_id,)).fetchone()
        except sqlite3.IntegrityError as exc:
            raise _integrity_error(exc) from exc
        return _decode_row(table, stored)

    def _delete_sync(self, table: str, record_id: str) -> None:
        self._table_columns(table)
        with self._db.connection() as conn:
            conn.execute(f"DELETE FROM {table} WHERE id = ?", (record_id,))

    async def insert(self, table: str, owner_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        return await asyncio.to_thread(self._insert_sync, table, owner_id, fields)

    async def query(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        *,
        order_by: str = "created_at",
        descending: bool = True,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        return await asyncio.to_thread(self._query_sync, table, filters, order_by, descending, limit)

    async def update(self, table: str, record_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        return await asyncio.to_thread(self._update_sync, table, record_id, fields)

    async def delete(self, table: str, record_id: str) -> None:
        await asyncio.to_thread(self._delete_sync, table, record_id)

    async def aclose(self) -> None:
        self._columns.clear()

from .database import SQLiteRecordDB
from .preference_store import PreferenceStore, SQLitePreferenceStore
from .record_store import (
    OWNER_FIELDS,
    UNIQUE_VIOLATION,
    RecordStore,
    RecordStoreError,
    SQLiteRecordStore,
    owner_field_for,
)

__all__ = [
    "OWNER_FIELDS",
    "UNIQUE_VIOLATION",
    "PreferenceStore",
    "RecordStore",
    "RecordStoreError",
    "SQLitePreferenceStore",
    "SQLiteRecordDB",
    "SQLiteRecordStore",
    "owner_field_for",
]

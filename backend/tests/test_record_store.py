from __future__ import annotations

import asyncio

import pytest

from records import (
    UNIQUE_VIOLATION,
    RecordStoreError,
    SQLitePreferenceStore,
    SQLiteRecordStore,
    owner_field_for,
)


def test_insert_scopes_owner_and_returns_id(record_db):
    store = SQLiteRecordStore(record_db)
    row = asyncio.run(
        store.insert("diary_entries", "patient-1", {"entry_type": "Note", "title": "Check-up", "date": "2024-01-01", "attendees": ["Dr A"]})
    )
    assert row["id"]
    assert row["profile_id"] == "patient-1"
    assert row["attendees"] == ["Dr A"]
    assert row["created_at"]


def test_query_filters_orders_and_limits(record_db):
    store = SQLiteRecordStore(record_db)

    async def scenario():
        for index in range(3):
            await store.insert("symptoms", "p1", {"description": f"s{index}", "start_date": f"2024-01-0{index + 1}", "severity": "Mild"})
        await store.insert("symptoms", "p2", {"description": "other", "start_date": "2024-01-01", "severity": "Mild"})
        newest = await store.query("symptoms", {"profile_id": "p1"}, limit=2)
        by_date = await store.query("symptoms", {"profile_id": "p1"}, order_by="start_date", descending=False)
        return newest, by_date

    newest, by_date = asyncio.run(scenario())
    assert [row["description"] for row in newest] == ["s2", "s1"]
    assert [row["description"] for row in by_date] == ["s0", "s1", "s2"]


def test_update_and_delete(record_db):
    store = SQLiteRecordStore(record_db)

    async def scenario():
        row = await store.insert("medications", "p1", {"medication_name": "A", "start_date": "2024-01-01", "dosage": "1", "status": "Active"})
        updated = await store.update("medications", row["id"], {"status": "Inactive", "end_date": "2024-02-01"})
        await store.delete("medications", row["id"])
        remaining = await store.query("medications", {"profile_id": "p1"})
        return updated, remaining

    updated, remaining = asyncio.run(scenario())
    assert updated["status"] == "Inactive"
    assert remaining == []


def test_update_missing_record_raises(record_db):
    store = SQLiteRecordStore(record_db)
    with pytest.raises(RecordStoreError):
        asyncio.run(store.update("symptoms", "missing", {"severity": "Mild"}))


def test_unique_mood_per_day_maps_to_postgres_code(record_db):
    store = SQLiteRecordStore(record_db)
    fields = {"date": "2024-01-01", "body": 1, "mind": 2, "sleep": 3, "mood": 4}

    async def scenario():
        await store.insert("mood_entries", "p1", fields)
        await store.insert("mood_entries", "p1", fields)

    with pytest.raises(RecordStoreError) as exc_info:
        asyncio.run(scenario())
    assert exc_info.value.code == UNIQUE_VIOLATION


def test_unknown_table_and_column_rejected(record_db):
    store = SQLiteRecordStore(record_db)
    with pytest.raises(RecordStoreError) as table_error:
        asyncio.run(store.query("allergies"))
    assert table_error.value.code == "42P01"

    with pytest.raises(RecordStoreError) as column_error:
        asyncio.run(store.insert("symptoms", "p1", {"description": "x", "start_date": "x", "severity": "Mild", "color": "red"}))
    assert column_error.value.code == "42703"


def test_owner_field_lookup():
    assert owner_field_for("patient_documents") == "patient_id"
    assert owner_field_for("concierge_events") == "user_id"
    with pytest.raises(RecordStoreError):
        owner_field_for("nope")


def test_preferences_round_trip(record_db):
    preferences = SQLitePreferenceStore(record_db)
    assert preferences.get("mikare_selected_region") is None
    preferences.set("mikare_selected_region", "AU")
    preferences.set("mikare_selected_region", "UK")
    assert preferences.get("mikare_selected_region") == "UK"
    preferences.remove("mikare_selected_region")
    assert preferences.get("mikare_selected_region") is None

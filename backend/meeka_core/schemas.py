from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from records import owner_field_for

# Field kinds drive coercion at submit time.
TEXT = "text"
DATE = "date"
RATING = "rating"
INTEGER = "integer"
LIST = "list"
SEVERITY = "severity"
STATUS = "status"
ENTRY_TYPE = "entry_type"


@dataclass(frozen=True)
class TableSchema:
    table: str
    required_fields: tuple[str, ...]
    optional_fields: tuple[str, ...]
    field_kinds: Mapping[str, str] = field(default_factory=dict)

    @property
    def owner_field(self) -> str:
        return owner_field_for(self.table)

    @property
    def supports_notes(self) -> bool:
        return "notes" in self.optional_fields

    def kind_of(self, field_name: str) -> str:
        return self.field_kinds.get(field_name, TEXT)


def _schema(table: str, required: list[str], optional: list[str], kinds: dict[str, str]) -> TableSchema:
    return TableSchema(
        table=table,
        required_fields=tuple(required),
        optional_fields=tuple(optional),
        field_kinds=MappingProxyType(dict(kinds)),
    )


TABLE_SCHEMAS: Mapping[str, TableSchema] = MappingProxyType(
    {
        "symptoms": _schema(
            "symptoms",
            ["description", "start_date", "severity"],
            ["end_date", "notes"],
            {"start_date": DATE, "end_date": DATE, "severity": SEVERITY},
        ),
        "medications": _schema(
            "medications",
            ["medication_name", "start_date", "dosage", "status"],
            ["end_date", "prescribed_by", "notes"],
            {"start_date": DATE, "end_date": DATE, "status": STATUS},
        ),
        "mood_entries": _schema(
            "mood_entries",
            ["date", "body", "mind", "sleep", "mood"],
            ["notes"],
            {"date": DATE, "body": RATING, "mind": RATING, "sleep": RATING, "mood": RATING},
        ),
        "diary_entries": _schema(
            "diary_entries",
            ["entry_type", "title", "date"],
            ["notes", "severity", "attendees"],
            {"entry_type": ENTRY_TYPE, "date": DATE, "attendees": LIST},
        ),
        "patient_documents": _schema(
            "patient_documents",
            ["file_name", "file_type", "file_size", "file_url"],
            ["description"],
            {"file_size": INTEGER},
        ),
    }
)

RECORD_LABELS = {
    "symptoms": "symptom",
    "medications": "medication",
    "mood_entries": "mood entry",
    "diary_entries": "diary entry",
    "patient_documents": "document",
}


def schema_for(table: str) -> TableSchema:
    """Look up a record type; unknown names are a programming error."""
    try:
        return TABLE_SCHEMAS[table]
    except KeyError:
        raise KeyError(f"Unknown table schema: {table}") from None


def known_tables() -> list[str]:
    return list(TABLE_SCHEMAS.keys())

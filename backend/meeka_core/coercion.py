from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Any, Callable

from .schemas import DATE, ENTRY_TYPE, INTEGER, LIST, RATING, SEVERITY, STATUS, TableSchema

TODAY_TOKENS = {"", "today", "now", "skip", "don't know", "dont know", "not sure", "idk"}
DATE_FORMATS = ("%Y-%m-%d", "%Y/%m/%d", "%d %B %Y", "%d %b %Y", "%B %d %Y", "%B %d, %Y", "%b %d, %Y")
SEVERITIES = {"mild": "Mild", "moderate": "Moderate", "severe": "Severe"}
STATUSES = {"active": "Active", "inactive": "Inactive"}
ENTRY_TYPES = {
    "symptom": "Symptom",
    "appointment": "Appointment",
    "diagnosis": "Diagnosis",
    "note": "Note",
    "treatment": "Treatment",
    "other": "Other",
    "ai": "AI",
}


class CoercionError(ValueError):
    def __init__(self, field_name: str, message: str) -> None:
        super().__init__(message)
        self.field_name = field_name


def _text(value: Any) -> str:
    return "" if value is None else str(value).strip()


def coerce_date(field_name: str, value: Any, today: date | None = None) -> str:
    today = today or date.today()
    raw = _text(value)
    lowered = raw.lower()
    if lowered in TODAY_TOKENS:
        return today.isoformat()
    if lowered == "yesterday":
        return (today - timedelta(days=1)).isoformat()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(raw, fmt).date().isoformat()
        except ValueError:
            continue
    raise CoercionError(field_name, f"'{raw}' is not a date I understand for {field_name} (try YYYY-MM-DD)")


def coerce_rating(field_name: str, value: Any) -> int:
    raw = _text(value)
    try:
        rating = int(raw)
    except ValueError:
        raise CoercionError(field_name, f"{field_name} must be a number from 1 to 5, got '{raw}'") from None
    if not 1 <= rating <= 5:
        raise CoercionError(field_name, f"{field_name} must be between 1 and 5, got {rating}")
    return rating


def coerce_integer(field_name: str, value: Any) -> int:
    raw = _text(value)
    try:
        return int(raw)
    except ValueError:
        raise CoercionError(field_name, f"{field_name} must be a whole number, got '{raw}'") from None


def coerce_list(value: Any) -> list[str]:
    if isinstance(value, (list, tuple)):
        items = [_text(item) for item in value]
    else:
        items = [part.strip() for part in _text(value).split(",")]
    return [item for item in items if item]


def _lookup(table: dict[str, str], value: Any, default: str) -> str:
    return table.get(_text(value).lower(), default)


def _entry_type(value: Any) -> str:
    raw = _text(value)
    if raw.lower() in ENTRY_TYPES:
        return ENTRY_TYPES[raw.lower()]
    return raw[:1].upper() + raw[1:].lower()


_KIND_HANDLERS: dict[str, Callable[[str, Any, date], Any]] = {
    DATE: lambda name, value, today: coerce_date(name, value, today),
    RATING: lambda name, value, today: coerce_rating(name, value),
    INTEGER: lambda name, value, today: coerce_integer(name, value),
    LIST: lambda name, value, today: coerce_list(value),
    SEVERITY: lambda name, value, today: _lookup(SEVERITIES, value, "Mild"),
    STATUS: lambda name, value, today: _lookup(STATUSES, value, "Active"),
    ENTRY_TYPE: lambda name, value, today: _entry_type(value),
}


def coerce_record(schema: TableSchema, collected: dict[str, Any], today: date | None = None) -> dict[str, Any]:
    """Turn raw collected answers into the column values the record store expects.

    Required dates fall back to today when left blank. Optional fields that
    were never collected are left out, except ``notes`` which is always
    written (``None`` when declined). Raises ``CoercionError`` on values that
    cannot be converted.
    """
    today = today or date.today()
    record: dict[str, Any] = {}
    for name in schema.required_fields:
        kind = schema.kind_of(name)
        handler = _KIND_HANDLERS.get(kind)
        value = collected.get(name)
        if handler is not None:
            record[name] = handler(name, value, today)
        else:
            text = _text(value)
            if not text:
                raise CoercionError(name, f"{name.replace('_', ' ')} can't be empty")
            record[name] = text

    for name in schema.optional_fields:
        if name not in collected:
            continue
        value = collected[name]
        if value is None or (isinstance(value, str) and not value.strip()):
            record[name] = [] if schema.kind_of(name) == LIST else None
            continue
        handler = _KIND_HANDLERS.get(schema.kind_of(name))
        record[name] = handler(name, value, today) if handler is not None else _text(value)

    if schema.supports_notes and "notes" not in record:
        record["notes"] = None

    if schema.table == "medications" and record.get("end_date"):
        record["status"] = "Inactive"
    return record


NOTES_DECLINES = {"no", "none", "n/a", "skip", "not really", "no thanks", "no thank you", "nope", "nothing"}


def is_notes_decline(text: str) -> bool:
    normalized = (text or "").strip().lower().rstrip(".!").strip()
    return normalized in NOTES_DECLINES

from __future__ import annotations

from datetime import date

import pytest

from meeka_core import CoercionError, coerce_record, is_notes_decline, schema_for

TODAY = date(2024, 3, 15)


@pytest.mark.parametrize("answer", ["", "today", "Now", "skip", "don't know", "Not sure"])
def test_date_fields_default_to_today(answer):
    record = coerce_record(
        schema_for("symptoms"),
        {"description": "Headache", "start_date": answer, "severity": "Mild"},
        today=TODAY,
    )
    assert record["start_date"] == "2024-03-15"


def test_yesterday_and_written_dates():
    schema = schema_for("mood_entries")
    base = {"body": "3", "mind": "4", "sleep": "2", "mood": "5"}
    assert coerce_record(schema, {**base, "date": "yesterday"}, today=TODAY)["date"] == "2024-03-14"
    assert coerce_record(schema, {**base, "date": "2024/01/05"}, today=TODAY)["date"] == "2024-01-05"
    assert coerce_record(schema, {**base, "date": "5 January 2024"}, today=TODAY)["date"] == "2024-01-05"


def test_unparseable_date_raises():
    with pytest.raises(CoercionError) as exc_info:
        coerce_record(
            schema_for("symptoms"),
            {"description": "Headache", "start_date": "last tuesday-ish", "severity": "Mild"},
            today=TODAY,
        )
    assert exc_info.value.field_name == "start_date"


def test_ratings_are_integers_in_range():
    record = coerce_record(
        schema_for("mood_entries"),
        {"date": "2024-03-01", "body": " 3 ", "mind": "4", "sleep": "1", "mood": "5"},
        today=TODAY,
    )
    assert (record["body"], record["mind"], record["sleep"], record["mood"]) == (3, 4, 1, 5)
    assert record["notes"] is None


@pytest.mark.parametrize("bad", ["great", "6", "0", "3.5"])
def test_bad_ratings_raise_instead_of_nan(bad):
    with pytest.raises(CoercionError):
        coerce_record(
            schema_for("mood_entries"),
            {"date": "today", "body": bad, "mind": "4", "sleep": "1", "mood": "5"},
            today=TODAY,
        )


def test_severity_and_status_normalisation():
    symptom = coerce_record(
        schema_for("symptoms"),
        {"description": "Cough", "start_date": "today", "severity": "SEVERE"},
        today=TODAY,
    )
    assert symptom["severity"] == "Severe"

    vague = coerce_record(
        schema_for("symptoms"),
        {"description": "Cough", "start_date": "today", "severity": "pretty bad"},
        today=TODAY,
    )
    assert vague["severity"] == "Mild"

    medication = coerce_record(
        schema_for("medications"),
        {
            "medication_name": "Ibuprofen",
            "start_date": "2024-01-01",
            "dosage": "200mg",
            "status": "active",
            "end_date": "2024-02-01",
        },
        today=TODAY,
    )
    assert medication["status"] == "Inactive"
    assert medication["end_date"] == "2024-02-01"


def test_diary_entry_type_and_attendees():
    record = coerce_record(
        schema_for("diary_entries"),
        {"entry_type": "appointment", "title": "GP visit", "date": "", "attendees": "Dr Smith, , Mum "},
        today=TODAY,
    )
    assert record["entry_type"] == "Appointment"
    assert record["attendees"] == ["Dr Smith", "Mum"]
    assert record["date"] == "2024-03-15"

    ai = coerce_record(
        schema_for("diary_entries"),
        {"entry_type": "ai", "title": "Summary", "date": "today"},
        today=TODAY,
    )
    assert ai["entry_type"] == "AI"


def test_required_text_cannot_be_blank():
    with pytest.raises(CoercionError):
        coerce_record(schema_for("symptoms"), {"description": "  ", "start_date": "", "severity": ""}, today=TODAY)


def test_document_size_must_be_integer():
    with pytest.raises(CoercionError):
        coerce_record(
            schema_for("patient_documents"),
            {"file_name": "scan.pdf", "file_type": "application/pdf", "file_size": "big", "file_url": "https://x"},
        )


@pytest.mark.parametrize(
    "answer",
    ["no", "No thanks", "n/a", "Skip", "NONE", "not really", "no thank you", "Nope.", "nothing!"],
)
def test_notes_declines(answer):
    assert is_notes_decline(answer) is True


@pytest.mark.parametrize("answer", ["Started after lunch", "no idea why it started", "yes"])
def test_notes_answers_that_are_kept(answer):
    assert is_notes_decline(answer) is False

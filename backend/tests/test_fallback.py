from __future__ import annotations

import asyncio

from conftest import StubCompletion
from meeka_core import FreeTextFallback, Message, Patient, Region, build_context_digest
from meeka_core.prompts import FALLBACK_APOLOGY, PROCESSING_MESSAGE
from meeka_services import CompletionError


def _seed_records(harness) -> None:
    async def seed():
        inner = harness.store.inner
        await inner.insert("symptoms", "patient-1", {"description": "Migraine", "start_date": "2024-01-01", "severity": "Severe"})
        await inner.insert("medications", "patient-1", {"medication_name": "Sumatriptan", "start_date": "2024-01-02", "dosage": "50mg", "status": "Active"})
        await inner.insert("symptoms", "someone-else", {"description": "Rash", "start_date": "2024-01-03", "severity": "Mild"})

    asyncio.run(seed())


def test_digest_contains_selected_patient_records(harness):
    _seed_records(harness)
    harness.session.patients.append(Patient("patient-2", "John Doe"))

    digest = asyncio.run(build_context_digest(harness.store, harness.session))

    assert digest["patient"] == {"id": "patient-1", "full_name": "Jane Doe"}
    assert [row["description"] for row in digest["recent_symptoms"]] == ["Migraine"]
    assert digest["recent_medications"][0]["medication_name"] == "Sumatriptan"
    assert digest["recent_mood_entries"] == []
    assert {patient["id"] for patient in digest["available_patients"]} == {"patient-1", "patient-2"}


def test_digest_is_empty_when_store_fails(harness, store_error):
    harness.store.query_error = store_error("offline")
    assert asyncio.run(build_context_digest(harness.store, harness.session)) == {}


def test_digest_without_patient_skips_queries(harness, store_error):
    harness.session.patients = []
    harness.session.selected_patient_id = None
    harness.store.query_error = store_error("should not be called")

    digest = asyncio.run(build_context_digest(harness.store, harness.session))

    assert digest["patient"] is None
    assert "recent_symptoms" not in digest


def test_preamble_carries_region_language_and_advice_ban(harness):
    completion = StubCompletion(reply="  Sure thing.  ")
    harness.resolver.set_preference(Region.AU)
    fallback = FreeTextFallback(completion, harness.resolver)
    transcript = [
        Message(role="assistant", content="Hi!"),
        Message(role="assistant", content=PROCESSING_MESSAGE),
        Message(role="user", content="How am I doing?"),
    ]

    reply = asyncio.run(fallback.converse(transcript, {"patient": {"full_name": "Jane Doe"}}))

    assert reply == "Sure thing."
    messages, preamble = completion.calls[0]
    assert messages == [
        {"role": "assistant", "content": "Hi!"},
        {"role": "user", "content": "How am I doing?"},
    ]
    assert "Australian English" in preamble
    assert "Never provide medical advice" in preamble
    assert "Jane Doe" in preamble
    assert "for Jane." in preamble


def test_completion_error_gives_apology(harness):
    fallback = FreeTextFallback(StubCompletion(error=CompletionError("quota exceeded")), harness.resolver)
    assert asyncio.run(fallback.converse([Message(role="user", content="hi")], {})) == FALLBACK_APOLOGY


def test_empty_completion_gives_apology(harness):
    fallback = FreeTextFallback(StubCompletion(reply="   "), harness.resolver)
    assert asyncio.run(fallback.converse([Message(role="user", content="hi")], {})) == FALLBACK_APOLOGY


def test_fallback_failure_still_answers_in_transcript(harness):
    harness.completion.error = RuntimeError("socket closed")

    result = asyncio.run(harness.engine.submit(harness.session, "What should I ask my doctor?"))

    assert result.messages[-1].content == FALLBACK_APOLOGY
    assert harness.session.transcript[-1].content == FALLBACK_APOLOGY
    assert harness.session.awaiting_reply is False

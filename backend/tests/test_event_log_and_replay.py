from __future__ import annotations

import asyncio

import pytest

from meeka_core import EventLog, Patient, utterance_for_intent
from meeka_core.regions import RegionConfigError


def test_recent_returns_newest_first_and_respects_limit(harness):
    async def scenario():
        for index in range(4):
            await harness.event_log.record(
                "user-a",
                intent="ADD_SYMPTOM",
                confidence=0.5,
                route="dialogue",
                result="completed",
                meta={"n": index},
            )
        await harness.event_log.record("user-b", intent="ADD_MOOD", confidence=1.0, route="dialogue", result="failed")
        return await harness.event_log.recent("user-a", 3)

    events = asyncio.run(scenario())

    assert [event.meta["n"] for event in events] == [3, 2, 1]
    assert all(event.intent == "ADD_SYMPTOM" for event in events)
    assert events[0].as_dict()["result"] == "completed"


def test_write_failure_keeps_earlier_events(harness, store_error):
    async def scenario():
        await harness.event_log.record("user-a", intent="ADD_NOTE", confidence=0.9, route="dialogue", result="completed")
        harness.store.insert_errors["concierge_events"] = store_error("write rejected")
        await harness.event_log.record("user-a", intent="ADD_MOOD", confidence=0.9, route="dialogue", result="completed")
        return await harness.event_log.recent("user-a", 10)

    events = asyncio.run(scenario())
    assert [event.intent for event in events] == ["ADD_NOTE"]


def test_read_failure_gives_empty_list(harness, store_error):
    harness.store.query_error = store_error("read timeout")
    assert asyncio.run(harness.event_log.recent("user-a", 5)) == []


def test_configuration_errors_are_swallowed_too():
    class BrokenClients:
        async def get_client(self):
            raise RegionConfigError("no endpoint")

    log = EventLog(BrokenClients())

    async def scenario():
        await log.record("user-a", intent="ADD_SYMPTOM", confidence=1.0, route="dialogue", result="completed")
        return await log.recent("user-a")

    assert asyncio.run(scenario()) == []


@pytest.mark.parametrize(
    ("intent", "utterance"),
    [
        ("ADD_SYMPTOM", "Add a symptom"),
        ("ADD_MEDICATION", "Add a medication"),
        ("ADD_APPOINTMENT", "Add an appointment"),
        ("ADD_NOTE", "Add a note"),
        ("ADD_MOOD", "Add mood entry"),
        ("ADD_SLEEP", "Add sleep entry"),
        ("QUERY_DATA", "Query my health data"),
        ("EXPORT_RECORDS", "Repeat my last export records"),
        ("UPLOAD_LAB_RESULT", "Repeat my last upload lab_result"),
    ],
)
def test_intent_utterances(intent, utterance):
    assert utterance_for_intent(intent) == utterance


def test_replay_by_intent_name_starts_matching_collection(harness):
    result = asyncio.run(harness.engine.replay(harness.session, "ADD_MEDICATION"))

    assert result.accepted is True
    assert harness.session.active_collection.table == "medications"
    assert harness.session.transcript[0].content == "Add a medication"


def test_replay_respects_owner_guard(harness):
    harness.session.patients = [Patient("p1", "A B"), Patient("p2", "C D")]
    harness.session.selected_patient_id = None

    result = asyncio.run(harness.engine.replay(harness.session, "ADD_SYMPTOM"))

    assert (result.accepted, result.reason) == (False, "patient_selection_required")
    assert harness.store.inserts == []

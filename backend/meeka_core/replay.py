from __future__ import annotations

INTENT_UTTERANCES = {
    "ADD_SYMPTOM": "Add a symptom",
    "ADD_MEDICATION": "Add a medication",
    "ADD_APPOINTMENT": "Add an appointment",
    "ADD_NOTE": "Add a note",
    "ADD_MOOD": "Add mood entry",
    "ADD_SLEEP": "Add sleep entry",
    "QUERY_DATA": "Query my health data",
}


def utterance_for_intent(intent: str) -> str:
    """Turn a logged intent back into something the user could have typed."""
    key = (intent or "").strip()
    if key in INTENT_UTTERANCES:
        return INTENT_UTTERANCES[key]
    return f"Repeat my last {key.lower().replace('_', ' ', 1)}"

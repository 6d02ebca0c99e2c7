from __future__ import annotations

from dataclasses import dataclass

UNKNOWN_INTENT = "UNKNOWN"

# Checked in order; the first keyword found anywhere in the text wins.
INTENT_KEYWORDS: tuple[tuple[str, str, tuple[str, ...]], ...] = (
    ("ADD_SYMPTOM", "symptoms", ("symptom",)),
    ("ADD_MEDICATION", "medications", ("medication", "medicine")),
    ("ADD_MOOD", "mood_entries", ("track mood", "mood")),
    ("ADD_NOTE", "diary_entries", ("diary", "note")),
)

INTENT_TABLES = {intent: table for intent, table, _ in INTENT_KEYWORDS}


@dataclass(frozen=True)
class IntentMatch:
    intent: str
    table: str
    keyword: str
    confidence: float


def _confidence(keyword: str, text: str) -> float:
    if keyword == text:
        return 1.0
    base = len(keyword) / max(len(text), 1)
    if len(keyword) > len(text) * 0.7:
        return min(0.95, base + 0.2)
    return min(0.9, base + 0.1)


def detect_intent(text: str) -> IntentMatch | None:
    normalized = (text or "").strip().lower()
    if not normalized:
        return None
    for intent, table, keywords in INTENT_KEYWORDS:
        for keyword in keywords:
            if keyword in normalized:
                return IntentMatch(
                    intent=intent,
                    table=table,
                    keyword=keyword,
                    confidence=round(_confidence(keyword, normalized), 3),
                )
    return None

from __future__ import annotations

import logging
from typing import Any, Protocol

from records import RecordStore

from .models import ConversationSession, Message
from .prompts import FALLBACK_APOLOGY, PROCESSING_MESSAGE, build_system_preamble
from .region_resolver import RegionResolver

logger = logging.getLogger(__name__)

DIGEST_RECORD_LIMIT = 5
HISTORY_LIMIT = 20

_DIGEST_COLUMNS = {
    "symptoms": ("description", "severity", "start_date", "end_date"),
    "medications": ("medication_name", "dosage", "status", "start_date"),
    "mood_entries": ("date", "body", "mind", "sleep", "mood"),
}


class TextCompletion(Protocol):
    async def complete(self, messages: list[dict[str, str]], system_preamble: str) -> str: ...


async def build_context_digest(store: RecordStore, session: ConversationSession) -> dict[str, Any]:
    """Summarise the selected patient and their latest records for the model."""
    owner_id = session.owner_id
    patient = session.find_patient(owner_id)
    digest: dict[str, Any] = {
        "patient": {"id": patient.id, "full_name": patient.full_name} if patient else None,
        "available_patients": [{"id": p.id, "full_name": p.full_name} for p in session.patients],
    }
    if not owner_id:
        return digest
    try:
        for table, columns in _DIGEST_COLUMNS.items():
            rows = await store.query(table, {"profile_id": owner_id}, limit=DIGEST_RECORD_LIMIT)
            digest[f"recent_{table}"] = [{column: row.get(column) for column in columns} for row in rows]
    except Exception as exc:
        logger.warning("context digest unavailable: %s", exc)
        return {}
    return digest


def _conversation_turns(transcript: list[Message]) -> list[dict[str, str]]:
    turns = [
        {"role": message.role, "content": message.content}
        for message in transcript
        if message.role in {"user", "assistant"} and message.content and message.content != PROCESSING_MESSAGE
    ]
    return turns[-HISTORY_LIMIT:]


class FreeTextFallback:
    def __init__(self, completion: TextCompletion, resolver: RegionResolver) -> None:
        self._completion = completion
        self._resolver = resolver

    async def converse(self, transcript: list[Message], digest: dict[str, Any]) -> str:
        region = await self._resolver.resolve()
        preamble = build_system_preamble(region, digest)
        try:
            reply = await self._completion.complete(_conversation_turns(transcript), preamble)
        except Exception as exc:
            logger.warning("free-text reply failed: %s", exc)
            return FALLBACK_APOLOGY
        reply = (reply or "").strip()
        return reply or FALLBACK_APOLOGY

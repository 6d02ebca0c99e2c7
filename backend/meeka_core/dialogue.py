from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from records import UNIQUE_VIOLATION, RecordStoreError

from .client_cache import BackendClientCache
from .coercion import CoercionError, coerce_record, is_notes_decline
from .event_log import RESULT_COMPLETED, RESULT_FAILED, RESULT_OPENED, EventLog
from .fallback import FreeTextFallback, build_context_digest
from .intents import UNKNOWN_INTENT, IntentMatch, detect_intent
from .models import (
    ActiveCollection,
    ConversationSession,
    DataUpdate,
    Message,
    Patient,
    RecentEvent,
    TurnResult,
)
from .notifications import DataUpdateNotifier
from .prompts import (
    DUPLICATE_MOOD_MESSAGE,
    GREETING,
    GREETING_EXAMPLES,
    NO_PATIENT_MESSAGE,
    PATIENT_SELECTION_MESSAGE,
    PROCESSING_MESSAGE,
    field_prompt,
    notes_prompt,
    start_prompt,
)
from .regions import RegionConfigError
from .replay import utterance_for_intent
from .schemas import RECORD_LABELS, schema_for

logger = logging.getLogger(__name__)

ROUTE_DIALOGUE = "dialogue"
ROUTE_FALLBACK = "fallback"

# Column quoted back to the user in the confirmation message.
SUMMARY_FIELDS = {
    "symptoms": "description",
    "medications": "medication_name",
    "mood_entries": "date",
    "diary_entries": "title",
}


class UnknownPatientError(LookupError):
    pass


class _NoOwner(Exception):
    pass


class DialogueEngine:
    """Slot-filling chat that turns free text into one stored record at a time.

    The engine owns no sessions; callers pass the session they want advanced
    and must not run two turns for the same session at once.
    """

    def __init__(
        self,
        clients: BackendClientCache,
        fallback: FreeTextFallback,
        event_log: EventLog,
        notifier: DataUpdateNotifier,
        *,
        refresh_delay_seconds: float = 0.5,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._clients = clients
        self._fallback = fallback
        self._event_log = event_log
        self._notifier = notifier
        self._refresh_delay_seconds = refresh_delay_seconds
        self._sleep = sleep

    @property
    def event_log(self) -> EventLog:
        return self._event_log

    async def submit(self, session: ConversationSession, text: str) -> TurnResult:
        text = (text or "").strip()
        if not text:
            return TurnResult(accepted=False, reason="empty")
        if session.busy:
            return TurnResult(accepted=False, reason="busy")
        if session.requires_patient_selection:
            logger.debug("turn refused for %s: patient selection required", session.actor_id)
            return TurnResult(accepted=False, reason="patient_selection_required")

        result = TurnResult(accepted=True, messages=[session.append("user", text)])
        collection = session.active_collection
        if collection is None:
            match = detect_intent(text)
            if match is None:
                await self._converse(session, result)
            else:
                self._start_collection(session, match, result)
            return result

        if collection.awaiting_notes:
            collection.collected_fields["notes"] = None if is_notes_decline(text) else text
            await self._submit_collection(session, collection, result)
            return result

        if collection.pending_field is not None:
            collection.collected_fields[collection.pending_field] = text
        next_field = collection.next_missing_field()
        if next_field is not None:
            collection.pending_field = next_field
            self._say(session, result, field_prompt(collection.table, next_field))
            return result

        collection.pending_field = None
        if "notes" in collection.optional_fields and "notes" not in collection.collected_fields:
            collection.awaiting_notes = True
            logger.debug("collecting notes for %s", collection.table)
            self._say(session, result, notes_prompt(collection.table))
            return result

        await self._submit_collection(session, collection, result)
        return result

    async def replay(self, session: ConversationSession, event: RecentEvent | str) -> TurnResult:
        intent = event.intent if isinstance(event, RecentEvent) else str(event)
        return await self.submit(session, utterance_for_intent(intent))

    def open_chat(self, session: ConversationSession) -> list[Message]:
        session.is_open = True
        if session.greeting_shown:
            return []
        session.greeting_shown = True
        greeting = session.append("assistant", GREETING, meta={"examples": list(GREETING_EXAMPLES)})
        messages = [greeting]
        if session.requires_patient_selection:
            messages.append(self._patient_chips(session))
        return messages

    def close_chat(self, session: ConversationSession) -> None:
        session.is_open = False
        session.greeting_shown = False

    def toggle(self, session: ConversationSession) -> list[Message]:
        if session.is_open:
            self.close_chat(session)
            return []
        return self.open_chat(session)

    async def load_patients(self, session: ConversationSession) -> list[Patient]:
        handle = await self._clients.get_client()
        try:
            rows = await handle.store.query(
                "profiles",
                {"user_id": session.actor_id},
                order_by="created_at",
                descending=False,
            )
        except RecordStoreError as exc:
            logger.warning("could not load patients for %s: %s", session.actor_id, exc)
            return session.patients
        session.patients = [
            Patient(id=str(row["id"]), full_name=str(row.get("full_name") or "").strip())
            for row in rows
            if row.get("id")
        ]
        if session.find_patient(session.selected_patient_id) is None:
            session.selected_patient_id = None
        if len(session.patients) == 1:
            session.selected_patient_id = session.patients[0].id
        return session.patients

    def select_patient(self, session: ConversationSession, patient_id: str) -> list[Message]:
        patient = session.find_patient(patient_id)
        if patient is None:
            raise UnknownPatientError(f"Unknown patient: {patient_id}")
        session.selected_patient_id = patient.id
        name = patient.full_name or "this patient"
        return [
            session.append("user", f"Switch to {name}"),
            session.append(
                "assistant",
                f"Got it. I'll save new entries for {patient.first_name or name}. What would you like to add?",
            ),
        ]

    def _say(self, session: ConversationSession, result: TurnResult, content: str, meta: dict[str, Any] | None = None) -> Message:
        message = session.append("assistant", content, meta=meta)
        result.messages.append(message)
        return message

    def _patient_chips(self, session: ConversationSession) -> Message:
        chips = [{"id": patient.id, "full_name": patient.full_name} for patient in session.patients]
        return session.append("assistant", PATIENT_SELECTION_MESSAGE, meta={"patients": chips})

    def _start_collection(self, session: ConversationSession, match: IntentMatch, result: TurnResult) -> None:
        schema = schema_for(match.table)
        first_field = schema.required_fields[0]
        session.active_collection = ActiveCollection(
            table=schema.table,
            intent=match.intent,
            confidence=match.confidence,
            required_fields=schema.required_fields,
            optional_fields=schema.optional_fields,
            pending_field=first_field,
        )
        logger.debug("collection started: %s via %r", schema.table, match.keyword)
        self._say(session, result, start_prompt(schema.table, first_field))

    async def _converse(self, session: ConversationSession, result: TurnResult) -> None:
        session.awaiting_reply = True
        try:
            try:
                handle = await self._clients.get_client()
                digest = await build_context_digest(handle.store, session)
            except RegionConfigError:
                raise
            except Exception as exc:
                logger.warning("context digest skipped: %s", exc)
                digest = {}
            reply = await self._fallback.converse(session.transcript, digest)
            self._say(session, result, reply)
        finally:
            session.awaiting_reply = False
        await self._event_log.record(
            session.actor_id,
            intent=UNKNOWN_INTENT,
            confidence=0.0,
            route=ROUTE_FALLBACK,
            result=RESULT_OPENED,
            meta={"patient_id": session.owner_id},
        )

    async def _submit_collection(
        self,
        session: ConversationSession,
        collection: ActiveCollection,
        result: TurnResult,
    ) -> None:
        session.active_collection = None
        processing = session.append("assistant", PROCESSING_MESSAGE)
        session.processing_insertion = True
        table = collection.table
        label = RECORD_LABELS.get(table, table)
        owner_id = session.owner_id
        meta: dict[str, Any] = {"table": table, "patient_id": owner_id}
        try:
            try:
                if not owner_id:
                    raise _NoOwner()
                record = coerce_record(schema_for(table), collection.collected_fields)
                handle = await self._clients.get_client()
                inserted = await handle.store.insert(table, owner_id, record)
            except RegionConfigError as exc:
                self._finish(session, result, processing, f"Failed to add {label}: {exc}", "failed")
                raise
            except _NoOwner:
                self._finish(session, result, processing, NO_PATIENT_MESSAGE, "failed")
                meta["error"] = "no_patient"
            except (CoercionError, RecordStoreError) as exc:
                self._finish(session, result, processing, self._failure_text(table, label, exc), "failed")
                meta["error"] = str(exc)
            except Exception as exc:
                logger.exception("unexpected failure adding %s", label)
                self._finish(session, result, processing, f"Failed to add {label}: {exc}", "failed")
                meta["error"] = str(exc)
            else:
                summary = inserted.get(SUMMARY_FIELDS.get(table, "id")) or record.get(SUMMARY_FIELDS.get(table, "id"))
                self._finish(session, result, processing, f"Successfully added {label}: {summary}", "success")
                result.inserted = inserted
                meta["record_id"] = inserted.get("id")
                await self._sleep(self._refresh_delay_seconds)
                update = DataUpdate(
                    table=table,
                    action="insert",
                    patient_id=owner_id,
                    record_id=str(inserted.get("id")) if inserted.get("id") else None,
                )
                self._notifier.notify(update)
                result.data_updates.append(update)
                await self._log_submission(session, collection, RESULT_COMPLETED, meta)
                return
            await self._log_submission(session, collection, RESULT_FAILED, meta)
        finally:
            session.processing_insertion = False

    def _finish(
        self,
        session: ConversationSession,
        result: TurnResult,
        processing: Message,
        content: str,
        status: str,
    ) -> None:
        final = Message(
            role="assistant",
            content=content,
            id=processing.id,
            meta={"status": status},
        )
        session.replace_message(processing.id, final)
        result.messages.append(final)
        logger.debug("submission finished (%s): %s", status, content)

    @staticmethod
    def _failure_text(table: str, label: str, exc: Exception) -> str:
        if table == "mood_entries" and isinstance(exc, RecordStoreError) and exc.code == UNIQUE_VIOLATION:
            return DUPLICATE_MOOD_MESSAGE
        return f"Failed to add {label}: {exc}"

    async def _log_submission(
        self,
        session: ConversationSession,
        collection: ActiveCollection,
        outcome: str,
        meta: dict[str, Any],
    ) -> None:
        await self._event_log.record(
            session.actor_id,
            intent=collection.intent,
            confidence=collection.confidence,
            route=ROUTE_DIALOGUE,
            result=outcome,
            meta=meta,
        )


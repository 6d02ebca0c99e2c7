from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from records.time_utils import to_iso, utc_now


class DialogueState(str, Enum):
    IDLE = "idle"
    COLLECTING = "collecting"
    COLLECTING_NOTES = "collecting_notes"
    SUBMITTING = "submitting"


def _message_id() -> str:
    return f"msg-{uuid.uuid4().hex[:16]}"


@dataclass
class Message:
    role: str
    content: str
    id: str = field(default_factory=_message_id)
    timestamp: str = field(default_factory=lambda: to_iso(utc_now()))
    meta: dict[str, Any] | None = None

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp,
        }
        if self.meta is not None:
            payload["meta"] = self.meta
        return payload


@dataclass
class ActiveCollection:
    table: str
    intent: str
    confidence: float
    required_fields: tuple[str, ...]
    optional_fields: tuple[str, ...]
    pending_field: str | None
    collected_fields: dict[str, Any] = field(default_factory=dict)
    awaiting_notes: bool = False

    def next_missing_field(self) -> str | None:
        for name in self.required_fields:
            if name not in self.collected_fields:
                return name
        return None


@dataclass(frozen=True)
class Patient:
    id: str
    full_name: str

    @property
    def first_name(self) -> str:
        return self.full_name.split(" ")[0] if self.full_name else ""


@dataclass
class ConversationSession:
    actor_id: str
    session_key: str = "default"
    transcript: list[Message] = field(default_factory=list)
    active_collection: ActiveCollection | None = None
    selected_patient_id: str | None = None
    patients: list[Patient] = field(default_factory=list)
    processing_insertion: bool = False
    awaiting_reply: bool = False
    is_open: bool = False
    greeting_shown: bool = False

    @property
    def state(self) -> DialogueState:
        if self.processing_insertion:
            return DialogueState.SUBMITTING
        if self.active_collection is None:
            return DialogueState.IDLE
        if self.active_collection.awaiting_notes:
            return DialogueState.COLLECTING_NOTES
        return DialogueState.COLLECTING

    @property
    def owner_id(self) -> str | None:
        if self.selected_patient_id:
            return self.selected_patient_id
        if len(self.patients) == 1:
            return self.patients[0].id
        return None

    @property
    def requires_patient_selection(self) -> bool:
        return len(self.patients) > 1 and not self.selected_patient_id

    @property
    def busy(self) -> bool:
        return self.processing_insertion or self.awaiting_reply

    @property
    def input_enabled(self) -> bool:
        return not self.busy and not self.requires_patient_selection

    def find_patient(self, patient_id: str | None) -> Patient | None:
        for patient in self.patients:
            if patient.id == patient_id:
                return patient
        return None

    def append(self, role: str, content: str, meta: dict[str, Any] | None = None) -> Message:
        message = Message(role=role, content=content, meta=meta)
        self.transcript.append(message)
        return message

    def replace_message(self, message_id: str, replacement: Message) -> None:
        for index, existing in enumerate(self.transcript):
            if existing.id == message_id:
                self.transcript[index] = replacement
                return
        self.transcript.append(replacement)


@dataclass(frozen=True)
class RecentEvent:
    id: str
    intent: str
    confidence: float
    route: str
    result: str
    occurred_at: str
    meta: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "RecentEvent":
        meta = row.get("meta")
        return cls(
            id=str(row.get("id") or ""),
            intent=str(row.get("intent") or "UNKNOWN"),
            confidence=float(row.get("confidence") or 0.0),
            route=str(row.get("route") or ""),
            result=str(row.get("result") or ""),
            occurred_at=str(row.get("occurred_at") or row.get("created_at") or ""),
            meta=meta if isinstance(meta, dict) else {},
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "intent": self.intent,
            "confidence": self.confidence,
            "route": self.route,
            "result": self.result,
            "occurred_at": self.occurred_at,
            "meta": self.meta,
        }


@dataclass(frozen=True)
class DataUpdate:
    table: str
    action: str
    patient_id: str
    record_id: str | None
    occurred_at: str = field(default_factory=lambda: to_iso(utc_now()))

    def as_dict(self) -> dict[str, Any]:
        return {
            "table": self.table,
            "action": self.action,
            "patient_id": self.patient_id,
            "record_id": self.record_id,
            "occurred_at": self.occurred_at,
        }


@dataclass
class TurnResult:
    accepted: bool
    reason: str = "ok"
    messages: list[Message] = field(default_factory=list)
    inserted: dict[str, Any] | None = None
    data_updates: list[DataUpdate] = field(default_factory=list)

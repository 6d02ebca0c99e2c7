from .client_cache import BackendClientCache, ClientHandle
from .coercion import CoercionError, coerce_record, is_notes_decline
from .config import MeekaSettings
from .dialogue import DialogueEngine, UnknownPatientError
from .event_log import EventLog
from .fallback import FreeTextFallback, build_context_digest
from .intents import IntentMatch, detect_intent
from .models import (
    ActiveCollection,
    ConversationSession,
    DataUpdate,
    DialogueState,
    Message,
    Patient,
    RecentEvent,
    TurnResult,
)
from .notifications import DataUpdateNotifier
from .region_resolver import RegionResolver
from .regions import DEFAULT_REGION, Region, RegionConfig, RegionConfigError, display_name
from .replay import utterance_for_intent
from .schemas import TableSchema, schema_for

__all__ = [
    "DEFAULT_REGION",
    "ActiveCollection",
    "BackendClientCache",
    "ClientHandle",
    "CoercionError",
    "ConversationSession",
    "DataUpdate",
    "DataUpdateNotifier",
    "DialogueEngine",
    "DialogueState",
    "EventLog",
    "FreeTextFallback",
    "IntentMatch",
    "MeekaSettings",
    "Message",
    "Patient",
    "RecentEvent",
    "Region",
    "RegionConfig",
    "RegionConfigError",
    "RegionResolver",
    "TableSchema",
    "TurnResult",
    "UnknownPatientError",
    "build_context_digest",
    "coerce_record",
    "detect_intent",
    "display_name",
    "is_notes_decline",
    "schema_for",
    "utterance_for_intent",
]

from __future__ import annotations

import contextvars
import hashlib
import json
import logging
import os
import re
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator

from fastapi import FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from meeka_core import (
    BackendClientCache,
    ConversationSession,
    DataUpdate,
    DataUpdateNotifier,
    DialogueEngine,
    EventLog,
    FreeTextFallback,
    MeekaSettings,
    Message,
    RecentEvent,
    Region,
    RegionConfigError,
    RegionResolver,
    TurnResult,
    UnknownPatientError,
    display_name,
    schema_for,
)
from meeka_services import CompletionService, build_record_store, country_lookup
from records import RecordStoreError, SQLitePreferenceStore, SQLiteRecordDB

_ENV_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _load_local_env_file(path: Path) -> None:
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError:
        return
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if not _ENV_KEY_RE.fullmatch(key):
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
            value = value[1:-1]
        os.environ.setdefault(key, value)


def _bootstrap_local_env() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    for candidate in (repo_root / ".env", repo_root / "backend/.env"):
        if candidate.exists():
            _load_local_env_file(candidate)


_bootstrap_local_env()

logging.basicConfig(
    level=(os.getenv("MEEKA_LOG_LEVEL") or "INFO").strip().upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("meeka")

# Timezone reported by the client for the request being served.
_client_timezone: contextvars.ContextVar[str | None] = contextvars.ContextVar("client_timezone", default=None)


def _host_timezone() -> str | None:
    configured = (os.getenv("TZ") or "").strip().lstrip(":")
    if configured:
        return configured
    try:
        target = os.readlink("/etc/localtime")
    except OSError:
        return None
    marker = "zoneinfo/"
    return target.split(marker, 1)[1] if marker in target else None


def current_timezone() -> str | None:
    return _client_timezone.get() or _host_timezone()


class ClientContext(BaseModel):
    timezone: str | None = None


class ChatRequest(BaseModel):
    message: str
    session_key: str | None = None
    client_context: ClientContext | None = None


class SessionRequest(BaseModel):
    session_key: str | None = None
    client_context: ClientContext | None = None


class PatientSelectRequest(BaseModel):
    patient_id: str
    session_key: str | None = None


class ReplayRequest(BaseModel):
    event_id: str | None = None
    intent: str | None = None
    session_key: str | None = None
    client_context: ClientContext | None = None


class RegionRequest(BaseModel):
    region: str


class MeekaApp:
    def __init__(
        self,
        settings: MeekaSettings | None = None,
        *,
        completion: Any = None,
        store_factory: Any = None,
    ) -> None:
        self.settings = settings or MeekaSettings.from_env()
        self.db = SQLiteRecordDB(self.settings.db_path)
        self.preferences = SQLitePreferenceStore(self.db)
        lookup = None
        if self.settings.ip_lookup_enabled:
            lookup = country_lookup(
                self.settings.ip_lookup_url,
                timeout_seconds=self.settings.ip_lookup_timeout_seconds,
            )
        self.resolver = RegionResolver(
            self.preferences,
            timezone_provider=current_timezone,
            country_lookup=lookup,
            freshness_seconds=self.settings.region_freshness_seconds,
            lookup_timeout_seconds=self.settings.ip_lookup_timeout_seconds,
        )
        self.clients = BackendClientCache(self.resolver, self.settings.regions, store_factory or build_record_store)
        self.completion = completion or CompletionService.from_env(timeout_seconds=self.settings.chat_timeout_seconds)
        self.event_log = EventLog(self.clients)
        self.notifier = DataUpdateNotifier()
        self.notifier.add_listener(self._log_data_update)
        self.engine = DialogueEngine(
            self.clients,
            FreeTextFallback(self.completion, self.resolver),
            self.event_log,
            self.notifier,
            refresh_delay_seconds=self.settings.refresh_delay_seconds,
        )
        self.sessions: dict[tuple[str, str], ConversationSession] = {}

    @staticmethod
    def _log_data_update(update: DataUpdate) -> None:
        logger.info("data updated: %s %s for %s", update.table, update.action, update.patient_id)

    async def session_for(self, user_id: str, session_key: str | None) -> ConversationSession:
        key = session_key or f"session-{hashlib.sha1(user_id.encode('utf-8')).hexdigest()[:24]}"
        session = self.sessions.get((user_id, key))
        if session is None:
            session = ConversationSession(actor_id=user_id, session_key=key)
            self.sessions[(user_id, key)] = session
            await self.engine.load_patients(session)
        return session

    async def recent_events(self, user_id: str) -> list[RecentEvent]:
        return await self.event_log.recent(user_id, self.settings.recent_events_limit)

    async def aclose(self) -> None:
        await self.clients.aclose()


container = MeekaApp()


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    yield
    await container.aclose()


app = FastAPI(title="Meeka Backend", lifespan=lifespan)

allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in allowed_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RegionConfigError)
async def region_config_error_handler(_: Request, exc: RegionConfigError) -> JSONResponse:
    logger.error("record store unavailable: %s", exc)
    return JSONResponse(status_code=503, content={"detail": str(exc)})


_TRUSTED_USER_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._:@-]{1,63}$")


def _validated_trusted_user_id(x_user_id: str) -> str:
    candidate = x_user_id.strip()
    if not candidate or not _TRUSTED_USER_ID_RE.fullmatch(candidate):
        raise HTTPException(status_code=400, detail="Invalid X-User-Id")
    return candidate


def get_user_id(auth_header: str | None) -> str:
    raw = (auth_header or "").replace("Bearer", "", 1).strip()
    if not raw:
        if os.getenv("ALLOW_ANON", "false").lower() == "true":
            return "demo-user"
        raise HTTPException(status_code=401, detail="Missing Authorization")
    # Opaque bearer token; identity is not derived from unverified claims.
    if len(raw) > 96:
        return f"token_{hashlib.sha256(raw.encode('utf-8')).hexdigest()[:24]}"
    return raw


def resolve_user_id(authorization: str | None, x_user_id: str | None) -> str:
    if x_user_id is not None:
        return _validated_trusted_user_id(x_user_id)
    return get_user_id(authorization)


def _use_client_timezone(client_context: ClientContext | None) -> None:
    _client_timezone.set(client_context.timezone if client_context else None)


def _emit_sse(event: str, data: dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


def _session_state(session: ConversationSession, recent: list[RecentEvent], region: Region) -> dict[str, Any]:
    collection = session.active_collection
    return {
        "session_key": session.session_key,
        "is_open": session.is_open,
        "state": session.state.value,
        "transcript": [message.as_dict() for message in session.transcript],
        "active_collection": (
            {
                "table": collection.table,
                "pending_field": collection.pending_field,
                "awaiting_notes": collection.awaiting_notes,
                "collected_fields": sorted(collection.collected_fields.keys()),
            }
            if collection
            else None
        ),
        "processing_insertion": session.processing_insertion,
        "awaiting_reply": session.awaiting_reply,
        "input_enabled": session.input_enabled,
        "requires_patient_selection": session.requires_patient_selection,
        "patients": [{"id": patient.id, "full_name": patient.full_name} for patient in session.patients],
        "selected_patient_id": session.selected_patient_id,
        "recent_events": [event.as_dict() for event in recent],
        "region": region.value,
    }


async def _state_payload(user_id: str, session: ConversationSession) -> dict[str, Any]:
    recent = await container.recent_events(user_id)
    region = await container.resolver.current_region()
    return _session_state(session, recent, region)


def _refusal_detail(reason: str) -> str:
    if reason == "patient_selection_required":
        return "Select a patient before sending messages."
    if reason == "busy":
        return "Still working on the previous message."
    return "Message is empty."


def _turn_stream(user_id: str, session: ConversationSession, run_turn: Any, timezone_name: str | None):
    async def event_stream():
        _client_timezone.set(timezone_name)
        try:
            result: TurnResult = await run_turn()
            if not result.accepted:
                yield _emit_sse("error", {"message": _refusal_detail(result.reason), "reason": result.reason})
                return
            for message in result.messages:
                if message.role != "assistant":
                    continue
                for chunk in message.content:
                    yield _emit_sse("token", {"delta": chunk})
                yield _emit_sse("message", {"text": message.content, "message": message.as_dict()})
            for update in result.data_updates:
                yield _emit_sse("data_updated", update.as_dict())
            yield _emit_sse("state", await _state_payload(user_id, session))
        except RegionConfigError as exc:
            logger.error("chat turn failed, record store unavailable: %s", exc)
            yield _emit_sse("error", {"message": str(exc), "reason": "configuration"})
        except Exception as exc:
            logger.exception("chat_stream error: %s", exc)
            yield _emit_sse("error", {"message": "Chat pipeline error."})

    return StreamingResponse(event_stream(), media_type="text/event-stream")


def _guard_turn(session: ConversationSession) -> None:
    if session.requires_patient_selection:
        raise HTTPException(status_code=409, detail=_refusal_detail("patient_selection_required"))
    if session.busy:
        raise HTTPException(status_code=409, detail=_refusal_detail("busy"))


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/chat/state")
async def chat_state(
    session_key: str | None = Query(default=None),
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
    x_timezone: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    _client_timezone.set(x_timezone)
    session = await container.session_for(user_id, session_key)
    await container.engine.load_patients(session)
    return await _state_payload(user_id, session)


@app.post("/chat/toggle")
async def chat_toggle(
    payload: SessionRequest,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    _use_client_timezone(payload.client_context)
    session = await container.session_for(user_id, payload.session_key)
    if not session.is_open:
        await container.engine.load_patients(session)
    messages = container.engine.toggle(session)
    return {
        "is_open": session.is_open,
        "messages": [message.as_dict() for message in messages],
        "state": await _state_payload(user_id, session),
    }


@app.post("/chat/patient")
async def chat_select_patient(
    payload: PatientSelectRequest,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    session = await container.session_for(user_id, payload.session_key)
    try:
        messages: list[Message] = container.engine.select_patient(session, payload.patient_id)
    except UnknownPatientError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {
        "selected_patient_id": session.selected_patient_id,
        "messages": [message.as_dict() for message in messages],
        "state": await _state_payload(user_id, session),
    }


@app.post("/chat/stream")
async def chat_stream(
    payload: ChatRequest,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    if not payload.message.strip():
        raise HTTPException(status_code=400, detail=_refusal_detail("empty"))
    _use_client_timezone(payload.client_context)
    session = await container.session_for(user_id, payload.session_key)
    _guard_turn(session)
    timezone_name = payload.client_context.timezone if payload.client_context else None

    async def run_turn() -> TurnResult:
        return await container.engine.submit(session, payload.message)

    return _turn_stream(user_id, session, run_turn, timezone_name)


@app.post("/chat/replay")
async def chat_replay(
    payload: ReplayRequest,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    _use_client_timezone(payload.client_context)
    session = await container.session_for(user_id, payload.session_key)
    if payload.event_id:
        recent = await container.recent_events(user_id)
        event = next((item for item in recent if item.id == payload.event_id), None)
        if event is None:
            raise HTTPException(status_code=404, detail=f"Unknown event: {payload.event_id}")
        target: RecentEvent | str = event
    elif payload.intent:
        target = payload.intent
    else:
        raise HTTPException(status_code=400, detail="Provide event_id or intent")
    _guard_turn(session)
    timezone_name = payload.client_context.timezone if payload.client_context else None

    async def run_turn() -> TurnResult:
        return await container.engine.replay(session, target)

    return _turn_stream(user_id, session, run_turn, timezone_name)


@app.get("/events/recent")
async def events_recent(
    limit: int | None = Query(default=None, ge=1, le=100),
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    events = await container.event_log.recent(user_id, limit or container.settings.recent_events_limit)
    return {"events": [event.as_dict() for event in events]}


def _region_payload(region: Region) -> dict[str, Any]:
    stored = container.resolver.stored_preference()
    return {
        "region": region.value,
        "display_name": display_name(region),
        "stored_preference": stored.value if stored else None,
        "available": [{"region": item.value, "display_name": display_name(item)} for item in Region],
    }


@app.get("/region")
async def get_region(x_timezone: str | None = Header(default=None)):
    _client_timezone.set(x_timezone)
    return _region_payload(await container.resolver.current_region())


@app.put("/region")
async def put_region(payload: RegionRequest):
    region = Region.parse(payload.region)
    if region is None:
        raise HTTPException(status_code=400, detail=f"Unknown region: {payload.region}")
    container.resolver.set_preference(region)
    return _region_payload(region)


@app.delete("/region")
async def delete_region(x_timezone: str | None = Header(default=None)):
    container.resolver.clear_preference()
    _client_timezone.set(x_timezone)
    return _region_payload(await container.resolver.current_region())


@app.get("/records/{table}")
async def list_records(
    table: str,
    session_key: str | None = Query(default=None),
    limit: int = Query(default=20, ge=1, le=200),
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    try:
        schema = schema_for(table)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"Unknown table: {table}") from exc
    session = await container.session_for(user_id, session_key)
    owner_id = session.owner_id
    if not owner_id:
        raise HTTPException(status_code=409, detail="Select a patient first.")
    handle = await container.clients.get_client()
    try:
        rows = await handle.store.query(table, {schema.owner_field: owner_id}, limit=limit)
    except RecordStoreError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return {"table": table, "patient_id": owner_id, "records": rows}

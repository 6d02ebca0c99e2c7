from __future__ import annotations

import importlib
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import pytest
from fastapi.testclient import TestClient

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from meeka_core import (  # noqa: E402
    BackendClientCache,
    ConversationSession,
    DataUpdate,
    DataUpdateNotifier,
    DialogueEngine,
    EventLog,
    FreeTextFallback,
    Patient,
    RegionResolver,
)
from meeka_core.regions import Region, load_region_configs  # noqa: E402
from records import RecordStoreError, SQLitePreferenceStore, SQLiteRecordDB, SQLiteRecordStore  # noqa: E402

_PROVIDER_KEYS = ("GEMINI_API_KEY", "GOOGLE_API_KEY", "OPENAI_API_KEY", "ANTHROPIC_API_KEY", "MEEKA_CHAT_PROVIDER")


def sqlite_region_env(db_path: Path) -> dict[str, str]:
    env: dict[str, str] = {}
    for region in Region:
        env[f"SUPABASE_{region.value}_URL"] = f"sqlite:///{db_path}"
        env[f"SUPABASE_{region.value}_ANON_KEY"] = "test-anon-key"
    return env


class StubCompletion:
    def __init__(self, reply: str = "Happy to help with that.", error: Exception | None = None) -> None:
        self.reply = reply
        self.error = error
        self.calls: list[tuple[list[dict[str, str]], str]] = []

    async def complete(self, messages: list[dict[str, str]], system_preamble: str) -> str:
        self.calls.append((messages, system_preamble))
        if self.error is not None:
            raise self.error
        return self.reply


class SpyStore:
    """Wraps a real store, counting writes and failing on request."""

    def __init__(self, inner: SQLiteRecordStore) -> None:
        self.inner = inner
        self.inserts: list[tuple[str, str, dict[str, Any]]] = []
        self.insert_errors: dict[str, Exception] = {}
        self.query_error: Exception | None = None

    async def insert(self, table: str, owner_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        if table in self.insert_errors:
            raise self.insert_errors[table]
        self.inserts.append((table, owner_id, dict(fields)))
        return await self.inner.insert(table, owner_id, fields)

    async def query(self, table: str, filters: dict[str, Any] | None = None, **kwargs: Any) -> list[dict[str, Any]]:
        if self.query_error is not None:
            raise self.query_error
        return await self.inner.query(table, filters, **kwargs)

    async def update(self, table: str, record_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        return await self.inner.update(table, record_id, fields)

    async def delete(self, table: str, record_id: str) -> None:
        await self.inner.delete(table, record_id)

    async def aclose(self) -> None:
        await self.inner.aclose()

    def dialogue_inserts(self) -> list[tuple[str, str, dict[str, Any]]]:
        return [entry for entry in self.inserts if entry[0] != "concierge_events"]


@dataclass
class EngineHarness:
    engine: DialogueEngine
    session: ConversationSession
    store: SpyStore
    completion: StubCompletion
    resolver: RegionResolver
    clients: BackendClientCache
    event_log: EventLog
    db: SQLiteRecordDB
    updates: list[DataUpdate] = field(default_factory=list)

    async def say(self, *texts: str):
        results = []
        for text in texts:
            results.append(await self.engine.submit(self.session, text))
        return results


@pytest.fixture
def record_db(tmp_path) -> SQLiteRecordDB:
    return SQLiteRecordDB(str(tmp_path / "meeka-test.sqlite"))


@pytest.fixture
def harness(record_db, tmp_path) -> EngineHarness:
    preferences = SQLitePreferenceStore(record_db)
    resolver = RegionResolver(preferences, timezone_provider=lambda: None, freshness_seconds=0.0)
    store = SpyStore(SQLiteRecordStore(record_db))
    configs = load_region_configs(sqlite_region_env(Path(record_db.path)))
    clients = BackendClientCache(resolver, configs, lambda config: store)
    completion = StubCompletion()
    event_log = EventLog(clients)
    notifier = DataUpdateNotifier()
    engine = DialogueEngine(
        clients,
        FreeTextFallback(completion, resolver),
        event_log,
        notifier,
        refresh_delay_seconds=0.0,
    )
    session = ConversationSession(
        actor_id="user-a",
        patients=[Patient(id="patient-1", full_name="Jane Doe")],
        selected_patient_id="patient-1",
    )
    built = EngineHarness(
        engine=engine,
        session=session,
        store=store,
        completion=completion,
        resolver=resolver,
        clients=clients,
        event_log=event_log,
        db=record_db,
    )
    notifier.add_listener(built.updates.append)
    return built


@pytest.fixture
def store_error() -> Callable[[str, str | None], RecordStoreError]:
    def _make(message: str, code: str | None = None) -> RecordStoreError:
        return RecordStoreError(message, code)

    return _make


@pytest.fixture
def backend_module(tmp_path, monkeypatch):
    db_path = tmp_path / "meeka-test.sqlite"
    monkeypatch.setenv("MEEKA_DB_PATH", str(db_path))
    for key, value in sqlite_region_env(db_path).items():
        monkeypatch.setenv(key, value)
    monkeypatch.setenv("MEEKA_REFRESH_DELAY_SECONDS", "0")
    monkeypatch.setenv("MEEKA_REGION_FRESHNESS_SECONDS", "0")
    monkeypatch.setenv("MEEKA_DISABLE_IP_LOOKUP", "true")
    monkeypatch.setenv("ALLOW_ANON", "false")
    monkeypatch.setenv("TZ", "UTC")
    # Keep CI deterministic; provider tests build their own completion service.
    for key in _PROVIDER_KEYS:
        monkeypatch.delenv(key, raising=False)

    if "main" in sys.modules:
        module = importlib.reload(sys.modules["main"])
    else:
        module = importlib.import_module("main")
    return module


@pytest.fixture
def client(backend_module):
    with TestClient(backend_module.app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers() -> Callable[[str], dict[str, str]]:
    def _make(user_id: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {user_id}"}

    return _make


@pytest.fixture
def seed_patients(backend_module) -> Callable[..., list[str]]:
    def _seed(user_id: str, *names: str) -> list[str]:
        ids: list[str] = []
        with backend_module.container.db.connection() as conn:
            for index, name in enumerate(names):
                patient_id = f"{user_id}-patient-{index + 1}"
                conn.execute(
                    """
                    INSERT INTO profiles (id, user_id, full_name, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (patient_id, user_id, name, f"2024-01-0{index + 1}T00:00:00Z", f"2024-01-0{index + 1}T00:00:00Z"),
                )
                ids.append(patient_id)
        return ids

    return _seed

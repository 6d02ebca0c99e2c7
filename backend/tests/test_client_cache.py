from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from conftest import sqlite_region_env
from meeka_core import BackendClientCache, RegionConfigError, RegionResolver
from meeka_core.regions import Region, RegionConfig, load_region_configs
from meeka_services import RestRecordStore, build_record_store
from records import SQLitePreferenceStore, SQLiteRecordStore


class ClosingStore:
    def __init__(self, region: Region) -> None:
        self.region = region
        self.closed = False

    async def aclose(self) -> None:
        self.closed = True


def _cache(record_db, env: dict[str, str] | None = None):
    built: list[ClosingStore] = []

    def factory(config: RegionConfig) -> ClosingStore:
        store = ClosingStore(config.region)
        built.append(store)
        return store

    resolver = RegionResolver(SQLitePreferenceStore(record_db), timezone_provider=lambda: "America/New_York")
    configs = load_region_configs(env if env is not None else sqlite_region_env(Path(record_db.path)))
    return BackendClientCache(resolver, configs, factory), resolver, built


def test_same_region_returns_same_handle(record_db):
    cache, _, built = _cache(record_db)

    async def scenario():
        return await cache.get_client(), await cache.get_client()

    first, second = asyncio.run(scenario())
    assert first is second
    assert first.region == Region.USA
    assert len(built) == 1


def test_region_change_rebuilds_handle_and_closes_old_one(record_db):
    cache, resolver, built = _cache(record_db)

    async def scenario():
        before = await cache.get_client()
        resolver.set_preference(Region.AU)
        after = await cache.get_client()
        return before, after

    before, after = asyncio.run(scenario())
    assert before is not after
    assert before.handle_id != after.handle_id
    assert after.region == Region.AU
    assert built[0].closed is True
    assert built[1].closed is False


def test_incomplete_region_config_is_fatal(record_db):
    env = sqlite_region_env(Path(record_db.path))
    env["SUPABASE_USA_ANON_KEY"] = ""
    cache, _, built = _cache(record_db, env)

    with pytest.raises(RegionConfigError):
        asyncio.run(cache.get_client())
    assert built == []


def test_endpoint_without_scheme_is_fatal(record_db):
    env = sqlite_region_env(Path(record_db.path))
    env["SUPABASE_USA_URL"] = "myproject.supabase.co"
    cache, _, built = _cache(record_db, env)

    with pytest.raises(RegionConfigError, match="unsupported scheme"):
        asyncio.run(cache.get_client())
    assert built == []


def test_aclose_closes_live_handle(record_db):
    cache, _, built = _cache(record_db)

    async def scenario():
        await cache.get_client()
        await cache.aclose()

    asyncio.run(scenario())
    assert built[0].closed is True


def test_store_factory_picks_backend_from_endpoint(tmp_path):
    sqlite_store = build_record_store(RegionConfig(Region.UK, f"sqlite:///{tmp_path / 'uk.sqlite'}", "key"))
    rest_store = build_record_store(RegionConfig(Region.AU, "https://au.example.supabase.co", "anon"))

    assert isinstance(sqlite_store, SQLiteRecordStore)
    assert isinstance(rest_store, RestRecordStore)
    assert rest_store.base_url == "https://au.example.supabase.co"
    asyncio.run(rest_store.aclose())

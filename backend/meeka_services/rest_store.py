from __future__ import annotations

import logging
from typing import Any

import httpx

from meeka_core.regions import RegionConfig, RegionConfigError
from records import RecordStore, RecordStoreError, SQLiteRecordDB, SQLiteRecordStore, owner_field_for

logger = logging.getLogger(__name__)

SQLITE_PREFIX = "sqlite:///"


def _rest_error(response: httpx.Response) -> RecordStoreError:
    code: str | None = None
    message = response.text.strip()
    try:
        payload = response.json()
    except Exception:
        payload = None
    if isinstance(payload, dict):
        raw_code = payload.get("code")
        code = str(raw_code) if raw_code else None
        msg = payload.get("message") or payload.get("error")
        if isinstance(msg, str) and msg.strip():
            message = msg.strip()
    return RecordStoreError(message or f"HTTP {response.status_code}", code)


def _filter_value(value: Any) -> str:
    if value is None:
        return "is.null"
    if isinstance(value, bool):
        return f"eq.{str(value).lower()}"
    return f"eq.{value}"


class RestRecordStore:
    """Record store speaking the PostgREST dialect of the managed database."""

    def __init__(
        self,
        base_url: str,
        anon_key: str,
        *,
        access_token: str | None = None,
        timeout_seconds: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=f"{self.base_url}/rest/v1",
            headers={
                "apikey": anon_key,
                "Authorization": f"Bearer {access_token or anon_key}",
                "Content-Type": "application/json",
            },
            timeout=httpx.Timeout(timeout_seconds, connect=8.0),
            transport=transport,
        )

    async def _send(self, method: str, table: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, f"/{table}", **kwargs)
        except httpx.HTTPError as exc:
            raise RecordStoreError(f"{table} request failed: {exc}") from exc
        if response.status_code >= 400:
            raise _rest_error(response)
        return response

    @staticmethod
    def _single_row(table: str, response: httpx.Response) -> dict[str, Any]:
        rows = response.json()
        if isinstance(rows, list) and rows and isinstance(rows[0], dict):
            return rows[0]
        if isinstance(rows, dict):
            return rows
        raise RecordStoreError(f"{table} write returned no row")

    async def insert(self, table: str, owner_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        row = dict(fields)
        row[owner_field_for(table)] = owner_id
        response = await self._send("POST", table, json=row, headers={"Prefer": "return=representation"})
        return self._single_row(table, response)

    async def query(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        *,
        order_by: str = "created_at",
        descending: bool = True,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        params: dict[str, str] = {"select": "*", "order": f"{order_by}.{'desc' if descending else 'asc'}"}
        for column, value in (filters or {}).items():
            params[column] = _filter_value(value)
        if limit is not None:
            params["limit"] = str(max(0, int(limit)))
        response = await self._send("GET", table, params=params)
        rows = response.json()
        return [row for row in rows if isinstance(row, dict)] if isinstance(rows, list) else []

    async def update(self, table: str, record_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        response = await self._send(
            "PATCH",
            table,
            params={"id": f"eq.{record_id}"},
            json={key: value for key, value in fields.items() if key != "id"},
            headers={"Prefer": "return=representation"},
        )
        return self._single_row(table, response)

    async def delete(self, table: str, record_id: str) -> None:
        await self._send("DELETE", table, params={"id": f"eq.{record_id}"})

    async def aclose(self) -> None:
        await self._client.aclose()


def build_record_store(config: RegionConfig, *, transport: httpx.AsyncBaseTransport | None = None) -> RecordStore:
    """Pick a store implementation from the region endpoint's scheme."""
    if config.url.startswith(SQLITE_PREFIX):
        path = config.url[len(SQLITE_PREFIX) :]
        logger.debug("using sqlite record store at %s for %s", path, config.region.value)
        return SQLiteRecordStore(SQLiteRecordDB(path))
    if config.url.startswith(("http://", "https://")):
        return RestRecordStore(config.url, config.anon_key, transport=transport)
    raise RegionConfigError(f"Unsupported record store endpoint for {config.region.value}: {config.url}")

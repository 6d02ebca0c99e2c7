from __future__ import annotations

import logging
from typing import Awaitable, Callable

import httpx

logger = logging.getLogger(__name__)

DEFAULT_LOOKUP_URL = "https://ipapi.co/json/"


async def lookup_country_code(
    url: str = DEFAULT_LOOKUP_URL,
    *,
    timeout_seconds: float = 3.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str | None:
    """Ask an IP geolocation service for the caller's ISO country code."""
    async with httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds), transport=transport) as client:
        response = await client.get(url, headers={"Accept": "application/json"})
    if response.status_code != 200:
        logger.debug("ip geolocation returned HTTP %s", response.status_code)
        return None
    payload = response.json()
    if not isinstance(payload, dict):
        return None
    code = payload.get("country_code") or payload.get("countryCode")
    return str(code).strip().upper() if code else None


def country_lookup(
    url: str = DEFAULT_LOOKUP_URL,
    *,
    timeout_seconds: float = 3.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Callable[[], Awaitable[str | None]]:
    async def _lookup() -> str | None:
        return await lookup_country_code(url, timeout_seconds=timeout_seconds, transport=transport)

    return _lookup

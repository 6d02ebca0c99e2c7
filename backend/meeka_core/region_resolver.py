from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

from records import PreferenceStore

from .regions import DEFAULT_REGION, Region

logger = logging.getLogger(__name__)

PREFERENCE_KEY = "mikare_selected_region"

EUROPEAN_COUNTRIES = {"DE", "FR", "IT", "ES", "NL", "BE", "CH", "AT", "SE", "NO", "DK", "FI", "IE"}
COUNTRY_REGIONS = {"AU": Region.AU, "GB": Region.UK, "UK": Region.UK, "US": Region.USA}

TimezoneProvider = Callable[[], str | None]
CountryLookup = Callable[[], Awaitable[str | None]]


def region_for_timezone(timezone_name: str | None) -> Region | None:
    name = (timezone_name or "").strip()
    if not name:
        return None
    if name.startswith("Australia/"):
        return Region.AU
    if name in {"Europe/London", "Europe/Dublin"}:
        return Region.UK
    if name.startswith("America/"):
        return Region.USA
    if name.startswith("Europe/"):
        return Region.UK
    return None


def region_for_country(country_code: str | None) -> Region | None:
    code = (country_code or "").strip().upper()
    if code in COUNTRY_REGIONS:
        return COUNTRY_REGIONS[code]
    if code in EUROPEAN_COUNTRIES:
        return Region.UK
    return None


@dataclass(frozen=True)
class _Resolved:
    region: Region
    resolved_at: float
    timezone_name: str | None = None


class RegionResolver:
    """Works out which regional deployment the current user's records live in.

    Sources are tried in order: stored preference, timezone, IP lookup, then
    the default. A resolved value is reused for ``freshness_seconds``; once it
    goes stale, or the timezone reported for the caller differs from the one it
    was resolved under, the chain runs again. A failed run keeps the previous
    value for the same timezone.
    """

    def __init__(
        self,
        preferences: PreferenceStore,
        *,
        timezone_provider: TimezoneProvider | None = None,
        country_lookup: CountryLookup | None = None,
        freshness_seconds: float = 1.0,
        lookup_timeout_seconds: float = 3.0,
        default: Region = DEFAULT_REGION,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._preferences = preferences
        self._timezone_provider = timezone_provider
        self._country_lookup = country_lookup
        self._freshness_seconds = freshness_seconds
        self._lookup_timeout_seconds = lookup_timeout_seconds
        self._default = default
        self._clock = clock
        self._cached: _Resolved | None = None

    async def resolve(self) -> Region:
        timezone_name = self._current_timezone()
        cached = self._cached
        if cached is not None and cached.timezone_name != timezone_name:
            cached = None
        if cached is not None and self._clock() - cached.resolved_at < self._freshness_seconds:
            return cached.region
        try:
            region = await self._run_chain(timezone_name)
        except Exception as exc:
            logger.warning("region resolution failed: %s", exc)
            return cached.region if cached is not None else self._default
        self._cached = _Resolved(region=region, resolved_at=self._clock(), timezone_name=timezone_name)
        return region

    async def current_region(self) -> Region:
        return await self.resolve()

    def set_preference(self, region: Region) -> None:
        self._preferences.set(PREFERENCE_KEY, region.value)
        self._cached = _Resolved(region=region, resolved_at=self._clock(), timezone_name=self._current_timezone())
        logger.info("region preference set to %s", region.value)

    def clear_preference(self) -> None:
        self._preferences.remove(PREFERENCE_KEY)
        self._cached = None
        logger.info("region preference cleared")

    def stored_preference(self) -> Region | None:
        try:
            return Region.parse(self._preferences.get(PREFERENCE_KEY))
        except Exception as exc:
            logger.warning("could not read stored region preference: %s", exc)
            return None

    async def _run_chain(self, timezone_name: str | None) -> Region:
        stored = self.stored_preference()
        if stored is not None:
            return stored

        by_timezone = region_for_timezone(timezone_name)
        if by_timezone is not None:
            return by_timezone

        by_ip = await self._from_ip_lookup()
        if by_ip is not None:
            return by_ip
        return self._default

    def _current_timezone(self) -> str | None:
        if self._timezone_provider is None:
            return None
        try:
            return self._timezone_provider()
        except Exception as exc:
            logger.debug("timezone lookup failed: %s", exc)
            return None

    async def _from_ip_lookup(self) -> Region | None:
        if self._country_lookup is None:
            return None
        try:
            country = await asyncio.wait_for(self._country_lookup(), timeout=self._lookup_timeout_seconds)
        except asyncio.TimeoutError:
            logger.debug("ip geolocation timed out after %ss", self._lookup_timeout_seconds)
            return None
        except Exception as exc:
            logger.debug("ip geolocation failed: %s", exc)
            return None
        return region_for_country(country)

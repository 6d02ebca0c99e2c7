from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Callable, Mapping

from records import RecordStore

from .region_resolver import RegionResolver
from .regions import Region, RegionConfig, require_complete

logger = logging.getLogger(__name__)

StoreFactory = Callable[[RegionConfig], RecordStore]


@dataclass(frozen=True)
class ClientHandle:
    region: Region
    store: RecordStore
    handle_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])


class BackendClientCache:
    """Keeps one record-store handle per process, rebuilt when the region moves."""

    def __init__(
        self,
        resolver: RegionResolver,
        configs: Mapping[Region, RegionConfig],
        factory: StoreFactory,
    ) -> None:
        self._resolver = resolver
        self._configs = dict(configs)
        self._factory = factory
        self._handle: ClientHandle | None = None

    @property
    def resolver(self) -> RegionResolver:
        return self._resolver

    async def get_client(self) -> ClientHandle:
        region = await self._resolver.resolve()
        current = self._handle
        if current is not None and current.region == region:
            return current

        config = require_complete(self._configs, region)
        handle = ClientHandle(region=region, store=self._factory(config))
        self._handle = handle
        logger.info("record store client built for region %s (%s)", region.value, handle.handle_id)
        if current is not None:
            await self._close_quietly(current)
        return handle

    async def aclose(self) -> None:
        current = self._handle
        self._handle = None
        if current is not None:
            await self._close_quietly(current)

    async def _close_quietly(self, handle: ClientHandle) -> None:
        try:
            await handle.store.aclose()
        except Exception as exc:
            logger.warning("closing record store for %s failed: %s", handle.region.value, exc)

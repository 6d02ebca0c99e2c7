from __future__ import annotations

import logging
from typing import Any

from .client_cache import BackendClientCache
from .models import RecentEvent

logger = logging.getLogger(__name__)

EVENTS_TABLE = "concierge_events"

RESULT_COMPLETED = "completed"
RESULT_FAILED = "failed"
RESULT_OPENED = "opened"


class EventLog:
    """Best-effort log of assistant turns, read back for the recent-actions list."""

    def __init__(self, clients: BackendClientCache) -> None:
        self._clients = clients

    async def record(
        self,
        actor_id: str,
        *,
        intent: str,
        confidence: float,
        route: str,
        result: str,
        meta: dict[str, Any] | None = None,
    ) -> None:
        try:
            handle = await self._clients.get_client()
            await handle.store.insert(
                EVENTS_TABLE,
                actor_id,
                {
                    "intent": intent,
                    "confidence": float(confidence),
                    "route": route,
                    "result": result,
                    "meta": dict(meta or {}),
                },
            )
        except Exception as exc:
            logger.warning("event log write failed for %s/%s: %s", intent, result, exc)

    async def recent(self, actor_id: str, limit: int = 10) -> list[RecentEvent]:
        try:
            handle = await self._clients.get_client()
            rows = await handle.store.query(
                EVENTS_TABLE,
                {"user_id": actor_id},
                order_by="occurred_at",
                descending=True,
                limit=max(1, int(limit)),
            )
        except Exception as exc:
            logger.warning("event log read failed: %s", exc)
            return []
        return [RecentEvent.from_row(row) for row in rows]

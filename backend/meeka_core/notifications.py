from __future__ import annotations

import logging
from typing import Callable

from .models import DataUpdate

logger = logging.getLogger(__name__)

DataUpdateListener = Callable[[DataUpdate], None]


class DataUpdateNotifier:
    """Tells other screens that a table changed so they can refresh."""

    def __init__(self) -> None:
        self._listeners: list[DataUpdateListener] = []

    def add_listener(self, listener: DataUpdateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def notify(self, update: DataUpdate) -> None:
        for listener in list(self._listeners):
            try:
                listener(update)
            except Exception as exc:
                logger.warning("data update listener failed for %s: %s", update.table, exc)

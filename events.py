from __future__ import annotations

import json
import logging
from typing import Any, Callable, List

from schemas import LedgerEvent

logger = logging.getLogger(__name__)

Subscriber = Callable[[LedgerEvent], None]


class EventBus:
    """In-process notification log. Only committed events reach it."""

    def __init__(self) -> None:
        self._history: List[LedgerEvent] = []
        self._subscribers: List[Subscriber] = []

    def subscribe(self, subscriber: Subscriber) -> None:
        self._subscribers.append(subscriber)

    def publish(self, event: LedgerEvent) -> None:
        self._history.append(event)
        logger.info(json.dumps({"event": event.name, "payload": event.payload}, default=str))
        for subscriber in self._subscribers:
            subscriber(event)

    def history(self, name: str | None = None) -> List[LedgerEvent]:
        if name is None:
            return list(self._history)
        return [e for e in self._history if e.name == name]


def make_event(name: str, /, **payload: Any) -> LedgerEvent:
    return LedgerEvent(name=name, payload=dict(payload))

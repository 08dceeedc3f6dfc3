from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List

from .project_constants import (
    EVENT_NEW_GAME_STARTED,
    EVENT_NEW_PARTICIPANT,
    EVENT_WINNER_DECLARED,
)

EVENTS = (EVENT_NEW_PARTICIPANT, EVENT_WINNER_DECLARED, EVENT_NEW_GAME_STARTED)

Subscriber = Callable[[str, Dict[str, Any]], None]

log = logging.getLogger("notify")


class Notifier:
    """
    One-way fan-out of round events to subscribers.
    Nothing is acknowledged; a failing subscriber is logged and skipped.
    """

    def __init__(self) -> None:
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, subscriber: Subscriber) -> None:
        with self._lock:
            self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        with self._lock:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        if event not in EVENTS:
            raise ValueError(f"Unknown event {event!r}")
        with self._lock:
            subscribers = list(self._subscribers)
        for subscriber in subscribers:
            try:
                subscriber(event, payload)
            except Exception:
                log.exception("Subscriber %r failed on %s", subscriber, event)


def log_subscriber(event: str, payload: Dict[str, Any]) -> None:
    log.info("%s %s", event, payload)


class RecordingSubscriber:
    """Keeps every emitted event in memory, in order."""

    def __init__(self) -> None:
        self.events: List[tuple] = []

    def __call__(self, event: str, payload: Dict[str, Any]) -> None:
        self.events.append((event, payload))

    def of(self, event: str) -> List[Dict[str, Any]]:
        return [p for e, p in self.events if e == event]

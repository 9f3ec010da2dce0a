# Overview: In-process notification sink for order and conversion events.

"""
Notification Sink

Events are kept in a bounded ring buffer owned by the Flask app
(app.extensions["notification_sink"]); the oldest event is dropped once
capacity is reached. Nothing is persisted or delivered anywhere: readers
poll GET /api/notifications.

Emit only after the triggering transaction has committed.
"""

from __future__ import annotations

import itertools
import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime

from flask import Flask, current_app

from portal.time_utils import to_utc_z, utcnow


logger = logging.getLogger(__name__)

EXTENSION_KEY = "notification_sink"

ORDER_CREATED = "order_created"
QUOTE_CONVERTED = "quote_converted"
ORDER_STATUS_CHANGED = "order_status_changed"

EVENT_KINDS = (ORDER_CREATED, QUOTE_CONVERTED, ORDER_STATUS_CHANGED)


@dataclass(frozen=True)
class Notification:
    id: int
    kind: str
    payload: dict
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind,
            "payload": self.payload,
            "created_at": to_utc_z(self.created_at),
        }


class NotificationSink:
    """Thread-safe bounded buffer of recent notifications."""

    def __init__(self, capacity: int = 50):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._events: deque[Notification] = deque(maxlen=capacity)
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def emit(self, kind: str, payload: dict) -> Notification:
        if kind not in EVENT_KINDS:
            raise ValueError(f"Unknown notification kind: {kind}")
        with self._lock:
            event = Notification(id=next(self._ids), kind=kind, payload=dict(payload))
            self._events.append(event)
        logger.info("Notification %s #%s %s", kind, event.id, payload)
        return event

    def recent(self, limit: int | None = None) -> list[Notification]:
        """Newest first."""
        with self._lock:
            events = list(reversed(self._events))
        if limit is not None:
            events = events[:max(limit, 0)]
        return events

    def clear(self) -> int:
        with self._lock:
            count = len(self._events)
            self._events.clear()
        return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)


def init_app(app: Flask) -> NotificationSink:
    sink = NotificationSink(capacity=int(app.config.get("NOTIFICATION_CAPACITY", 50)))
    app.extensions[EXTENSION_KEY] = sink
    return sink


def get_sink() -> NotificationSink:
    return current_app.extensions[EXTENSION_KEY]


def emit(kind: str, payload: dict) -> Notification:
    return get_sink().emit(kind, payload)

# Overview: Pytest coverage for the bounded notification buffer.

import pytest

from portal.services.notification_service import (
    ORDER_CREATED,
    ORDER_STATUS_CHANGED,
    QUOTE_CONVERTED,
    NotificationSink,
)


class TestNotificationSink:

    def test_newest_first(self):
        sink = NotificationSink(capacity=5)
        sink.emit(ORDER_CREATED, {"order_id": 1})
        sink.emit(QUOTE_CONVERTED, {"order_id": 1})

        events = sink.recent()
        assert [e.kind for e in events] == [QUOTE_CONVERTED, ORDER_CREATED]
        assert events[0].id > events[1].id

    def test_oldest_dropped_at_capacity(self):
        sink = NotificationSink(capacity=3)
        for order_id in range(1, 6):
            sink.emit(ORDER_STATUS_CHANGED, {"order_id": order_id})

        assert len(sink) == 3
        assert [e.payload["order_id"] for e in sink.recent()] == [5, 4, 3]

    def test_limit(self):
        sink = NotificationSink(capacity=10)
        for order_id in range(4):
            sink.emit(ORDER_CREATED, {"order_id": order_id})
        assert len(sink.recent(2)) == 2
        assert sink.recent(0) == []

    def test_payload_is_copied(self):
        sink = NotificationSink()
        payload = {"order_id": 7}
        event = sink.emit(ORDER_CREATED, payload)
        payload["order_id"] = 8
        assert event.payload == {"order_id": 7}

    def test_clear(self):
        sink = NotificationSink()
        sink.emit(ORDER_CREATED, {})
        sink.emit(ORDER_CREATED, {})
        assert sink.clear() == 2
        assert sink.recent() == []

    def test_to_dict(self):
        event = NotificationSink().emit(ORDER_CREATED, {"order_id": 3})
        data = event.to_dict()
        assert data["kind"] == ORDER_CREATED
        assert data["payload"] == {"order_id": 3}
        assert data["created_at"].endswith("Z")

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            NotificationSink().emit("order_lost", {})

    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            NotificationSink(capacity=0)

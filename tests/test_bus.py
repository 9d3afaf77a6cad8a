"""Unit tests for telemetry_stream.bus."""
from __future__ import annotations

from telemetry_stream.bus import EventBus, EventKind


class TestSubscribe:
    def test_dispatch_in_subscription_order(self):
        bus = EventBus()
        calls: list[tuple[str, object]] = []
        bus.subscribe(EventKind.MODE, lambda p: calls.append(("first", p)))
        bus.subscribe(EventKind.MODE, lambda p: calls.append(("second", p)))

        bus.publish(EventKind.MODE, "FLAP")

        assert calls == [("first", "FLAP"), ("second", "FLAP")]

    def test_only_matching_kind_is_dispatched(self):
        bus = EventBus()
        seen: list[object] = []
        bus.subscribe(EventKind.OPEN, seen.append)

        bus.publish(EventKind.CLOSE)

        assert seen == []

    def test_publish_without_subscribers_is_lost(self):
        bus = EventBus()
        bus.publish(EventKind.SAMPLE, object())
        seen: list[object] = []
        bus.subscribe(EventKind.SAMPLE, seen.append)
        assert seen == []

    def test_payload_defaults_to_none(self):
        bus = EventBus()
        seen: list[object] = []
        bus.subscribe(EventKind.OPEN, seen.append)
        bus.publish(EventKind.OPEN)
        assert seen == [None]


class TestUnsubscribe:
    def test_removes_exactly_that_handler(self):
        bus = EventBus()
        seen: list[str] = []
        handler = lambda p: seen.append(p)  # noqa: E731
        unsubscribe_first = bus.subscribe(EventKind.MODE, handler)
        bus.subscribe(EventKind.MODE, handler)

        unsubscribe_first()
        bus.publish(EventKind.MODE, "x")

        assert seen == ["x"]
        assert bus.subscriber_count(EventKind.MODE) == 1

    def test_is_idempotent(self):
        bus = EventBus()
        keep: list[object] = []
        unsubscribe = bus.subscribe(EventKind.MODE, lambda p: None)
        bus.subscribe(EventKind.MODE, keep.append)

        unsubscribe()
        unsubscribe()

        assert bus.subscriber_count(EventKind.MODE) == 1

    def test_clear(self):
        bus = EventBus()
        bus.subscribe(EventKind.MODE, lambda p: None)
        bus.clear()
        assert bus.subscriber_count(EventKind.MODE) == 0


class TestDispatchSnapshot:
    def test_subscribe_during_dispatch_does_not_affect_current_pass(self):
        bus = EventBus()
        late: list[object] = []

        def first(_payload):
            bus.subscribe(EventKind.MODE, late.append)

        bus.subscribe(EventKind.MODE, first)
        bus.publish(EventKind.MODE, "a")
        assert late == []

        bus.publish(EventKind.MODE, "b")
        assert late == ["b"]

    def test_unsubscribe_during_dispatch_does_not_affect_current_pass(self):
        bus = EventBus()
        seen: list[object] = []
        unsubscribers = []

        def first(_payload):
            unsubscribers[0]()

        bus.subscribe(EventKind.MODE, first)
        unsubscribers.append(bus.subscribe(EventKind.MODE, seen.append))

        bus.publish(EventKind.MODE, "a")
        bus.publish(EventKind.MODE, "b")

        assert seen == ["a"]


class TestHandlerFailure:
    def test_failing_handler_does_not_stop_dispatch(self):
        bus = EventBus()
        seen: list[object] = []

        def broken(_payload):
            raise RuntimeError("boom")

        bus.subscribe(EventKind.SAMPLE, broken)
        bus.subscribe(EventKind.SAMPLE, seen.append)

        bus.publish(EventKind.SAMPLE, 1)

        assert seen == [1]

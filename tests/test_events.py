"""Unit tests for :mod:`parley.events`."""

from __future__ import annotations

import gc
from dataclasses import dataclass

from parley.chat.message_model import Suggestion
from parley.events import (
    ApplyBlocked,
    DiffPreviewRequested,
    Event,
    EventBus,
    MessagesRemoved,
    SessionsChanged,
    StreamAborted,
    StreamChunk,
    StreamFinalized,
    SuggestionOffered,
)


@dataclass(slots=True)
class SampleEvent(Event):
    """A sample event for testing."""

    message: str
    value: int = 0


@dataclass(slots=True)
class AnotherEvent(Event):
    """Another event type for testing isolation."""

    data: str


class TestEventBusSubscription:
    """Tests for EventBus subscription functionality."""

    def test_subscribe_adds_handler(self) -> None:
        bus: EventBus[Event] = EventBus()

        bus.subscribe(SampleEvent, lambda event: None)

        assert bus.handler_count(SampleEvent) == 1

    def test_subscribe_same_handler_twice(self) -> None:
        """Subscribing the same handler twice results in two invocations."""
        bus: EventBus[Event] = EventBus()
        received: list[SampleEvent] = []

        def handler(event: SampleEvent) -> None:
            received.append(event)

        bus.subscribe(SampleEvent, handler)
        bus.subscribe(SampleEvent, handler)
        bus.publish(SampleEvent(message="twice"))

        assert len(received) == 2

    def test_unsubscribe_removes_one_registration(self) -> None:
        bus: EventBus[Event] = EventBus()

        def handler(event: SampleEvent) -> None:
            pass

        bus.subscribe(SampleEvent, handler)
        bus.subscribe(SampleEvent, handler)
        bus.unsubscribe(SampleEvent, handler)

        assert bus.handler_count(SampleEvent) == 1

    def test_unsubscribe_unknown_handler_is_safe(self) -> None:
        bus: EventBus[Event] = EventBus()

        bus.unsubscribe(SampleEvent, lambda event: None)
        bus.unsubscribe(AnotherEvent, lambda event: None)

        assert bus.handler_count() == 0


class TestEventBusPublish:
    """Tests for EventBus publish functionality."""

    def test_publish_invokes_handlers_in_order(self) -> None:
        bus: EventBus[Event] = EventBus()
        order: list[str] = []

        bus.subscribe(SampleEvent, lambda event: order.append("first"))
        bus.subscribe(SampleEvent, lambda event: order.append("second"))
        bus.publish(SampleEvent(message="go"))

        assert order == ["first", "second"]

    def test_publish_only_invokes_matching_handlers(self) -> None:
        bus: EventBus[Event] = EventBus()
        samples: list[SampleEvent] = []
        others: list[AnotherEvent] = []

        bus.subscribe(SampleEvent, samples.append)
        bus.subscribe(AnotherEvent, others.append)
        bus.publish(AnotherEvent(data="x"))

        assert samples == []
        assert others == [AnotherEvent(data="x")]

    def test_publish_continues_after_handler_exception(self) -> None:
        """A failing handler is logged and the remaining handlers still run."""
        bus: EventBus[Event] = EventBus()
        received: list[SampleEvent] = []

        def failing(event: SampleEvent) -> None:
            raise RuntimeError("boom")

        bus.subscribe(SampleEvent, failing)
        bus.subscribe(SampleEvent, received.append)
        bus.publish(SampleEvent(message="still delivered"))

        assert len(received) == 1

    def test_quiet_events_are_still_delivered(self) -> None:
        bus: EventBus[Event] = EventBus()
        chunks: list[StreamChunk] = []

        bus.subscribe(StreamChunk, chunks.append)
        bus.publish(StreamChunk(message_id="msg-1", content="Hal"))

        assert chunks[0].content == "Hal"


class TestEventBusWeakReferences:
    """Tests for EventBus weak reference handling."""

    def test_bound_method_handler_cleaned_up_on_gc(self) -> None:
        bus: EventBus[Event] = EventBus()
        received: list[SampleEvent] = []

        class Subscriber:
            def handle(self, event: SampleEvent) -> None:
                received.append(event)

        subscriber = Subscriber()
        bus.subscribe(SampleEvent, subscriber.handle)
        bus.publish(SampleEvent(message="before gc"))

        del subscriber
        gc.collect()
        bus.publish(SampleEvent(message="after gc"))

        assert len(received) == 1
        assert bus.handler_count(SampleEvent) == 0

    def test_unsubscribe_bound_method(self) -> None:
        bus: EventBus[Event] = EventBus()

        class Subscriber:
            def handle(self, event: SampleEvent) -> None:
                pass

        subscriber = Subscriber()
        bus.subscribe(SampleEvent, subscriber.handle)
        bus.unsubscribe(SampleEvent, subscriber.handle)

        assert bus.handler_count(SampleEvent) == 0

    def test_clear_removes_all_handlers(self) -> None:
        bus: EventBus[Event] = EventBus()
        bus.subscribe(SampleEvent, lambda event: None)
        bus.subscribe(AnotherEvent, lambda event: None)

        bus.clear()

        assert bus.handler_count() == 0


class TestEngineEvents:
    """Field defaults of the engine's own events."""

    def test_stream_events(self) -> None:
        assert StreamFinalized(message_id="msg-1", content="done").content == "done"
        assert StreamAborted(message_id=None).message_id is None

    def test_session_events_default_to_empty_tuples(self) -> None:
        assert SessionsChanged(active_session_id=None).session_ids == ()
        assert MessagesRemoved(session_id="s-1").message_ids == ()

    def test_apply_events(self) -> None:
        preview = DiffPreviewRequested(message_id="m", start_offset=1, end_offset=4, replacement="x")
        blocked = ApplyBlocked(message_id="m", reason="missing")

        assert preview.scope == "selection"
        assert blocked.missing_chips == ()

    def test_suggestion_offered_carries_suggestion(self) -> None:
        bus: EventBus[Event] = EventBus()
        offers: list[SuggestionOffered] = []
        bus.subscribe(SuggestionOffered, offers.append)

        bus.publish(SuggestionOffered(message_id="m", suggestion=Suggestion(rule="Keep API")))

        assert offers[0].suggestion.kind == "rule"

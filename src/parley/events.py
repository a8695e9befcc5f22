"""Typed event bus used by the engine to report state to its host.

Engine components never call into a UI directly. They publish small event
dataclasses on an :class:`EventBus`, and whatever surface embeds the engine
subscribes to the ones it cares about.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Generic, TypeVar
from weakref import WeakMethod, ref

if TYPE_CHECKING:  # pragma: no cover - imports for type checking only
    from typing import DefaultDict

    from .ai.orchestration.commands import EngineState
    from .chat.message_model import Suggestion

logger = logging.getLogger(__name__)

E = TypeVar("E", bound="Event")

Handler = Callable[[E], None]


@dataclass(slots=True)
class Event:
    """Base class for all engine events.

    Subclasses are ``@dataclass(slots=True)`` records::

        @dataclass(slots=True)
        class StreamAborted(Event):
            message_id: str
    """


# Streaming chunks arrive per token; publishing them is not logged.
_QUIET_EVENT_TYPES: set[type] = set()


# =============================================================================
# Engine state
# =============================================================================


@dataclass(slots=True)
class StateChanged(Event):
    """Emitted with a fresh immutable snapshot whenever orchestrator state changes.

    Attributes:
        state: The new :class:`~parley.ai.orchestration.commands.EngineState`.
    """

    state: EngineState


@dataclass(slots=True)
class StatusMessage(Event):
    """Short human-readable progress text (``"Searching glossary..."``)."""

    text: str


# =============================================================================
# Streaming
# =============================================================================


@dataclass(slots=True)
class StreamStarted(Event):
    """Emitted when an assistant placeholder is created and the model call begins.

    Attributes:
        session_id: Session receiving the reply.
        message_id: The assistant placeholder message.
        generation: Generation stamp of the request's cancellation token.
    """

    session_id: str
    message_id: str
    generation: int


@dataclass(slots=True)
class StreamChunk(Event):
    """Emitted for every token with the restored content accumulated so far."""

    message_id: str
    content: str


_QUIET_EVENT_TYPES.add(StreamChunk)


@dataclass(slots=True)
class ToolActivityChanged(Event):
    """Emitted when the set of in-progress tool calls changes."""

    message_id: str
    tools_in_progress: tuple[str, ...] = ()


@dataclass(slots=True)
class StreamFinalized(Event):
    """Emitted once the reply has been committed into the message log."""

    message_id: str
    content: str


@dataclass(slots=True)
class StreamAborted(Event):
    """Emitted when an in-flight request is cancelled; nothing was committed."""

    message_id: str | None


@dataclass(slots=True)
class StreamFailed(Event):
    """Emitted when the model call fails; the error is shown inline in the message."""

    message_id: str | None
    error: str


# =============================================================================
# Sessions
# =============================================================================


@dataclass(slots=True)
class SessionsChanged(Event):
    """Emitted after any session-registry mutation.

    Attributes:
        active_session_id: Currently active session, if any.
        session_ids: Ids of all sessions in display order.
    """

    active_session_id: str | None
    session_ids: tuple[str, ...] = ()


@dataclass(slots=True)
class MessagesRemoved(Event):
    """Emitted when a message log is truncated; listeners drop state tied to these ids."""

    session_id: str
    message_ids: tuple[str, ...] = ()


@dataclass(slots=True)
class ProjectSettingsChanged(Event):
    """Emitted when persona, rules, project context or toggles change."""

    project_id: str | None
    fields: tuple[str, ...] = ()


# =============================================================================
# Apply flow
# =============================================================================


@dataclass(slots=True)
class DiffPreviewRequested(Event):
    """Asks the editor surface to preview replacing ``[start_offset, end_offset)``.

    Attributes:
        message_id: Assistant message holding the proposed text.
        start_offset: Resolved start offset in the live document.
        end_offset: Resolved end offset in the live document.
        replacement: Restored replacement text.
        scope: ``"selection"`` or ``"document"``.
    """

    message_id: str
    start_offset: int
    end_offset: int
    replacement: str
    scope: str = "selection"


@dataclass(slots=True)
class ApplyBlocked(Event):
    """Emitted when an apply response cannot be applied safely."""

    message_id: str
    reason: str
    missing_chips: tuple[str, ...] = field(default_factory=tuple)


@dataclass(slots=True)
class SuggestionOffered(Event):
    """Emitted when a reply carries a rule/context suggestion awaiting confirmation."""

    message_id: str
    suggestion: Suggestion


class EventBus(Generic[E]):
    """A typed publish-subscribe event bus.

    Handlers registered as bound methods are held through weak references so
    that subscribers do not have to unsubscribe before being garbage collected.

    Example::

        bus = EventBus()
        bus.subscribe(StreamFinalized, lambda event: print(event.content))
        bus.publish(StreamFinalized(message_id="msg-1", content="Hallo"))

    The bus is not thread-safe; publish from the event-loop thread only.
    """

    __slots__ = ("_handlers",)

    def __init__(self) -> None:
        self._handlers: DefaultDict[type[Event], list[_HandlerRef]] = defaultdict(list)

    def subscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Register ``handler`` for events of exactly ``event_type``.

        Subscribing the same handler twice results in two invocations per event.
        """
        self._handlers[event_type].append(_HandlerRef.create(handler))
        logger.debug("Subscribed %s to %s", _handler_name(handler), event_type.__name__)

    def unsubscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Remove the first registration of ``handler``; unknown handlers are ignored."""
        handlers = self._handlers.get(event_type)
        if handlers is None:
            return
        for index, handler_ref in enumerate(handlers):
            if handler_ref.matches(handler):
                handlers.pop(index)
                logger.debug("Unsubscribed %s from %s", _handler_name(handler), event_type.__name__)
                return

    def publish(self, event: E) -> None:
        """Deliver ``event`` synchronously to every handler in registration order.

        A handler that raises is logged and the remaining handlers still run.
        """
        event_type = type(event)
        handlers = self._handlers.get(event_type)
        is_quiet = event_type in _QUIET_EVENT_TYPES
        if not handlers:
            return
        if not is_quiet:
            logger.debug("Publishing %s to %d handler(s)", event_type.__name__, len(handlers))

        dead_indices: list[int] = []
        for index, handler_ref in enumerate(list(handlers)):
            handler = handler_ref.resolve()
            if handler is None:
                dead_indices.append(index)
                continue
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Handler %s raised while handling %s",
                    _handler_name(handler),
                    event_type.__name__,
                )

        for index in reversed(dead_indices):
            if index < len(handlers):
                handlers.pop(index)

    def clear(self) -> None:
        """Remove all registered handlers."""
        self._handlers.clear()

    def handler_count(self, event_type: type[E] | None = None) -> int:
        """Return the number of handlers for ``event_type``, or for all types when omitted."""
        if event_type is not None:
            return len(self._handlers.get(event_type, []))
        return sum(len(handlers) for handlers in self._handlers.values())


class _HandlerRef:
    """Weak reference for bound methods, strong reference for plain callables."""

    __slots__ = ("_ref", "_is_weak")

    def __init__(self, handler_ref: WeakMethod | ref | Handler, is_weak: bool) -> None:
        self._ref = handler_ref
        self._is_weak = is_weak

    @classmethod
    def create(cls, handler: Handler) -> _HandlerRef:
        if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
            try:
                return cls(WeakMethod(handler), is_weak=True)  # type: ignore[arg-type]
            except TypeError:
                pass
        return cls(handler, is_weak=False)

    def resolve(self) -> Handler | None:
        if not self._is_weak:
            return self._ref  # type: ignore[return-value]
        return self._ref()  # type: ignore[operator]

    def matches(self, handler: Handler) -> bool:
        resolved = self.resolve()
        return resolved is not None and resolved == handler


def _handler_name(handler: Any) -> str:
    if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
        return f"{type(handler.__self__).__name__}.{handler.__func__.__name__}"
    return getattr(handler, "__name__", repr(handler))


__all__ = [
    "Event",
    "EventBus",
    "Handler",
    "StateChanged",
    "StatusMessage",
    "StreamStarted",
    "StreamChunk",
    "ToolActivityChanged",
    "StreamFinalized",
    "StreamAborted",
    "StreamFailed",
    "SessionsChanged",
    "MessagesRemoved",
    "ProjectSettingsChanged",
    "DiffPreviewRequested",
    "ApplyBlocked",
    "SuggestionOffered",
]

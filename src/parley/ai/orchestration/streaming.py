"""Owner of the single in-flight streamed reply.

Token and tool events only touch transient buffers held here.  The session's
message log is written exactly once per reply, by :meth:`StreamingCoordinator.finalize`.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping

from ...events import EventBus, StreamAborted, StreamChunk, ToolActivityChanged
from .cancellation import CancellationToken, TokenSource
from .commands import Abort, StreamCommand, TokenReceived, ToolEvent, ToolsUsed
from .tool_tracker import ToolCallTracker

LOGGER = logging.getLogger(__name__)

CommitCallback = Callable[[str, str, Mapping[str, Any]], "Awaitable[None] | None"]
ContentTransform = Callable[[str], str]


class StreamState(Enum):
    """Lifecycle of the in-flight reply.

    Values:
        IDLE: Nothing in flight.
        REQUESTING: Request sent, no event received yet.
        STREAMING: Events are arriving.
        FINALIZING: The reply is being committed.
        ABORTED: Cancelled; transient state is being discarded.
    """

    IDLE = "idle"
    REQUESTING = "requesting"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    ABORTED = "aborted"


def _identity(text: str) -> str:
    return text


class StreamingCoordinator:
    """Buffers one streamed reply and commits it into the message log once.

    ``commit`` receives ``(message_id, content, metadata_patch)``; it may be a
    plain function or a coroutine function.  The patch is meant to be merged
    into the message's existing metadata, never to replace it.
    """

    def __init__(
        self,
        commit: CommitCallback,
        *,
        bus: EventBus | None = None,
        tracker: ToolCallTracker | None = None,
        finalize_wait_seconds: float = 1.0,
    ) -> None:
        """Initialize the coordinator.

        Args:
            commit: Callback writing the final content and metadata patch.
            bus: Optional event bus receiving chunk/tool/abort events.
            tracker: Tool tracker; a private one is created when omitted.
            finalize_wait_seconds: How long a concurrent caller waits for an
                executing finalize before force-resetting transient state.
        """
        self._commit = commit
        self._bus = bus
        self._tracker = tracker or ToolCallTracker()
        self._finalize_wait = max(0.0, float(finalize_wait_seconds))
        self._tokens = TokenSource()
        self._state = StreamState.IDLE
        self._message_id: str | None = None
        self._buffer: list[str] = []
        self._metadata: dict[str, Any] = {}
        self._transform: ContentTransform = _identity
        self._finalizing = False
        self._settled = asyncio.Event()
        self._settled.set()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def message_id(self) -> str | None:
        """Id of the assistant message receiving the in-flight reply."""
        return self._message_id

    @property
    def tracker(self) -> ToolCallTracker:
        return self._tracker

    @property
    def raw_content(self) -> str:
        return "".join(self._buffer)

    @property
    def content(self) -> str:
        """Buffered reply with the start-time transform (sentinel restore) applied."""
        return self._transform(self.raw_content)

    @property
    def metadata(self) -> dict[str, Any]:
        return dict(self._metadata)

    @property
    def is_active(self) -> bool:
        return self._state in (StreamState.REQUESTING, StreamState.STREAMING, StreamState.FINALIZING)

    @property
    def is_finalizing(self) -> bool:
        return self._finalizing

    @property
    def current_token(self) -> CancellationToken | None:
        return self._tokens.current

    def is_current(self, token: CancellationToken | None) -> bool:
        return self._tokens.is_current(token)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(
        self,
        message_id: str,
        *,
        model: str | None = None,
        transform: ContentTransform | None = None,
    ) -> CancellationToken:
        """Begin streaming into ``message_id``.

        Any request still in flight is cancelled first; requests are never queued.

        Returns:
            The fresh cancellation token for this request.
        """
        if self.is_active and self._message_id is not None:
            LOGGER.debug("Starting a new stream; aborting %s", self._message_id)
            self.abort()
        token = self._tokens.issue()
        self._clear_buffers()
        self._message_id = message_id
        self._transform = transform or _identity
        self._metadata = {"model": model, "tools_in_progress": ()}
        self._state = StreamState.REQUESTING
        LOGGER.debug("Stream generation %s started for message %s", token.generation, message_id)
        return token

    def handle(self, command: StreamCommand) -> bool:
        """Apply a streaming command to the transient buffers.

        Commands stamped with a stale generation are dropped.

        Returns:
            ``True`` when the command was applied.
        """
        if isinstance(command, Abort):
            return self.abort() is not None
        generation = getattr(command, "generation", None)
        current = self._tokens.current
        if generation is not None and (current is None or generation != current.generation):
            LOGGER.debug("Dropping %s from stale generation %s", type(command).__name__, generation)
            return False
        if self._message_id is None or self._state not in (StreamState.REQUESTING, StreamState.STREAMING):
            return False
        self._state = StreamState.STREAMING

        if isinstance(command, TokenReceived):
            if command.text:
                self._buffer.append(command.text)
                self._publish(StreamChunk(message_id=self._message_id, content=self.content))
            return True
        if isinstance(command, ToolEvent):
            if command.phase == "start":
                self._tracker.on_tool_start(command.name, command.arguments)
            else:
                self._tracker.on_tool_end(command.name)
            self._metadata["tools_in_progress"] = self._tracker.in_progress
            self._publish(
                ToolActivityChanged(message_id=self._message_id, tools_in_progress=self._tracker.in_progress)
            )
            return True
        if isinstance(command, ToolsUsed):
            self._tracker.on_tools_used(command.names)
            self._metadata["tools_used"] = self._tracker.tools_used
            return True
        return False

    async def finalize(
        self,
        *,
        token: CancellationToken | None = None,
        content: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> bool:
        """Commit the buffered reply into the message log exactly once.

        A caller arriving while another finalize is executing waits up to the
        configured timeout and then force-resets transient state; it never
        commits.  Finalizing for a stale token is a no-op.

        Args:
            token: Token of the request being finalized.
            content: Final content; defaults to the transformed buffer.
            metadata: Extra metadata merged into the commit patch.

        Returns:
            ``True`` if this call performed the commit.
        """
        if token is not None and not self.is_current(token):
            LOGGER.debug("Ignoring finalize for stale generation %s", token.generation)
            return False
        if self._finalizing:
            await self.wait_until_settled()
            return False
        message_id = self._message_id
        if message_id is None or self._state not in (StreamState.REQUESTING, StreamState.STREAMING):
            return False

        generation = self._current_generation()
        self._finalizing = True
        self._settled.clear()
        self._state = StreamState.FINALIZING
        try:
            final_content = content if content is not None else self.content
            patch = dict(self._metadata)
            patch["tools_used"] = self._tracker.tools_used
            if metadata:
                patch.update(metadata)
            patch["tools_in_progress"] = ()
            result = self._commit(message_id, final_content, patch)
            if inspect.isawaitable(result):
                await result
            LOGGER.debug("Finalized message %s (%d chars)", message_id, len(final_content))
            return True
        finally:
            self._reset_if_generation(generation)

    def abort(self) -> str | None:
        """Cancel the in-flight request and discard its buffers.

        Returns:
            The id of the message that was streaming, or ``None`` if idle.
        """
        token = self._tokens.cancel_current()
        message_id = self._message_id
        if message_id is None and not self._finalizing:
            return None
        self._state = StreamState.ABORTED
        LOGGER.debug(
            "Aborted stream for message %s (generation %s)",
            message_id,
            token.generation if token else None,
        )
        self._reset()
        self._publish(StreamAborted(message_id=message_id))
        return message_id

    async def fail(self, error: str, *, token: CancellationToken | None = None) -> str | None:
        """Write an inline error into the streaming message and reset.

        Returns:
            The id of the message that received the error, or ``None`` if the
            token is stale or nothing was streaming.
        """
        if token is not None and not self.is_current(token):
            return None
        message_id = self._message_id
        if message_id is None:
            self._reset()
            return None
        generation = self._current_generation()
        patch = {"error": error, "tools_in_progress": (), "model": self._metadata.get("model")}
        try:
            result = self._commit(message_id, f"⚠️ {error}", patch)
            if inspect.isawaitable(result):
                await result
        finally:
            self._reset_if_generation(generation)
        return message_id

    async def wait_until_settled(self) -> None:
        """Wait for an executing finalize; force-reset if it does not finish in time."""
        if not self._finalizing:
            return
        try:
            await asyncio.wait_for(self._settled.wait(), timeout=self._finalize_wait)
        except asyncio.TimeoutError:
            LOGGER.warning(
                "Finalize for %s did not settle within %.1fs; forcing reset",
                self._message_id,
                self._finalize_wait,
            )
            self._reset()

    def release(self, message_ids: set[str] | frozenset[str]) -> bool:
        """Abort the stream if it targets one of ``message_ids`` (e.g. after truncation)."""
        if self._message_id is not None and self._message_id in message_ids:
            return self.abort() is not None
        return False

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _clear_buffers(self) -> None:
        self._buffer = []
        self._metadata = {}
        self._tracker.reset()

    def _reset(self) -> None:
        self._clear_buffers()
        self._message_id = None
        self._transform = _identity
        self._state = StreamState.IDLE
        self._finalizing = False
        self._settled.set()

    def _current_generation(self) -> int | None:
        token = self._tokens.current
        return token.generation if token is not None else None

    def _reset_if_generation(self, generation: int | None) -> None:
        # A newer request may have started while the commit was awaited.
        if self._current_generation() == generation:
            self._reset()

    def _publish(self, event: Any) -> None:
        if self._bus is not None:
            self._bus.publish(event)


__all__ = ["StreamState", "StreamingCoordinator"]

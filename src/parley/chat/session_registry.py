"""Owner of the project's chat sessions and their message logs."""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Mapping, Sequence

from ..events import EventBus, MessagesRemoved, SessionsChanged
from .message_model import ChatMessage, ChatRole, ChatSession, EditHistory, MessageMetadata

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_SESSIONS = 3
DEFAULT_MAX_MESSAGES = 1000
DEFAULT_SUMMARY_THRESHOLD = 30


class SessionRegistry:
    """Domain store for chat sessions.

    All session and message mutations go through this class.  Every mutation
    publishes :class:`~parley.events.SessionsChanged` and calls ``on_change``
    (normally the persistence scheduler's ``notify_dirty``).  Removing
    messages additionally publishes :class:`~parley.events.MessagesRemoved`
    so stream and anchor state tied to those ids can be dropped.

    Events Emitted:
        - SessionsChanged: After any mutation
        - MessagesRemoved: When messages are truncated, evicted or deleted
    """

    def __init__(
        self,
        *,
        bus: EventBus | None = None,
        max_sessions: int = DEFAULT_MAX_SESSIONS,
        max_messages_per_session: int = DEFAULT_MAX_MESSAGES,
        summary_threshold: int = DEFAULT_SUMMARY_THRESHOLD,
        on_change: Callable[[], None] | None = None,
    ) -> None:
        """Initialize the registry.

        Args:
            bus: Event bus receiving registry events.
            max_sessions: Maximum number of sessions per project.
            max_messages_per_session: Per-session cap; the oldest messages
                are dropped first.
            summary_threshold: Message count at which a summary is offered.
            on_change: Called after every persisted mutation.
        """
        self._bus = bus
        self._max_sessions = max(1, int(max_sessions))
        self._max_messages = max(1, int(max_messages_per_session))
        self._summary_threshold = max(1, int(summary_threshold))
        self._on_change = on_change
        self._sessions: list[ChatSession] = []
        self._active_id: str | None = None
        self._summary_dismissed: set[str] = set()

    def set_on_change(self, callback: Callable[[], None] | None) -> None:
        self._on_change = callback

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def sessions(self) -> tuple[ChatSession, ...]:
        return tuple(self._sessions)

    @property
    def session_ids(self) -> tuple[str, ...]:
        return tuple(session.id for session in self._sessions)

    @property
    def active_session_id(self) -> str | None:
        return self._active_id

    @property
    def active_session(self) -> ChatSession | None:
        return self.get(self._active_id) if self._active_id else None

    @property
    def max_sessions(self) -> int:
        return self._max_sessions

    def get(self, session_id: str | None) -> ChatSession | None:
        if not session_id:
            return None
        for session in self._sessions:
            if session.id == session_id:
                return session
        return None

    def is_limit_reached(self) -> bool:
        return len(self._sessions) >= self._max_sessions

    def oldest_session(self) -> ChatSession | None:
        if not self._sessions:
            return None
        return min(self._sessions, key=lambda session: session.created_at)

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def create(self, name: str | None = None) -> str:
        """Create a session and make it active.

        At the session cap nothing is created: the active session id is
        returned, or the first session is activated when none is active.

        Returns:
            The id of the active session after the call.
        """
        if self.is_limit_reached():
            if self._active_id is None or self.get(self._active_id) is None:
                self._active_id = self._sessions[0].id
                self._changed()
            LOGGER.debug("SessionRegistry.create: limit of %d reached", self._max_sessions)
            return self._active_id  # type: ignore[return-value]

        title = (name or "").strip() or f"Chat {len(self._sessions) + 1}"
        session = ChatSession(name=title)
        self._sessions.append(session)
        self._active_id = session.id
        LOGGER.debug("SessionRegistry.create: %s (%s)", session.id, title)
        self._changed()
        return session.id

    def switch(self, session_id: str) -> bool:
        if self.get(session_id) is None:
            LOGGER.debug("SessionRegistry.switch: unknown session %s", session_id)
            return False
        if self._active_id == session_id:
            return True
        self._active_id = session_id
        self._changed()
        return True

    def delete(self, session_id: str) -> bool:
        """Delete a session; the first remaining session becomes active if needed."""
        session = self.get(session_id)
        if session is None:
            return False
        self._sessions.remove(session)
        self._summary_dismissed.discard(session_id)
        if self._active_id == session_id:
            self._active_id = self._sessions[0].id if self._sessions else None
        removed = tuple(message.id for message in session.messages)
        if removed:
            self._publish(MessagesRemoved(session_id=session_id, message_ids=removed))
        LOGGER.debug("SessionRegistry.delete: %s, active=%s", session_id, self._active_id)
        self._changed()
        return True

    def rename(self, session_id: str, name: str) -> bool:
        session = self.get(session_id)
        title = (name or "").strip()
        if session is None or not title:
            return False
        if session.name == title:
            return True
        session.name = title
        self._changed()
        return True

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def append_message(
        self,
        session_id: str,
        role: ChatRole,
        content: str,
        metadata: MessageMetadata | Mapping[str, Any] | None = None,
    ) -> str | None:
        """Append a message to ``session_id``.

        When the session exceeds its message cap the oldest messages are
        dropped and reported through ``MessagesRemoved``.

        Returns:
            The new message id, or ``None`` if the session does not exist.
        """
        session = self.get(session_id)
        if session is None:
            LOGGER.debug("SessionRegistry.append_message: unknown session %s", session_id)
            return None
        if isinstance(metadata, MessageMetadata):
            meta = metadata
        else:
            meta = MessageMetadata().merge(metadata)
        message = ChatMessage(role=role, content=content, metadata=meta)
        session.messages.append(message)

        overflow = len(session.messages) - self._max_messages
        if overflow > 0:
            dropped = session.messages[:overflow]
            del session.messages[:overflow]
            self._publish(
                MessagesRemoved(session_id=session.id, message_ids=tuple(item.id for item in dropped))
            )
        self._changed()
        return message.id

    def update_message(
        self,
        message_id: str,
        *,
        content: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> bool:
        """Replace a message's content and/or merge a metadata patch into it."""
        located = self._locate(message_id)
        if located is None:
            return False
        session, index = located
        message = session.messages[index]
        if content is not None:
            message.content = content
        if metadata:
            message.metadata = message.metadata.merge(metadata)
        self._changed()
        return True

    def find_message(self, message_id: str) -> ChatMessage | None:
        located = self._locate(message_id)
        if located is None:
            return None
        session, index = located
        return session.messages[index]

    def session_of(self, message_id: str) -> ChatSession | None:
        located = self._locate(message_id)
        return located[0] if located is not None else None

    def truncate_from(self, message_id: str) -> list[str]:
        """Remove ``message_id`` and every later message of its session.

        Returns:
            Ids of the removed messages, oldest first.
        """
        located = self._locate(message_id)
        if located is None:
            return []
        session, index = located
        return self._truncate(session, index)

    def truncate_after(self, message_id: str) -> list[str]:
        """Remove every message that follows ``message_id`` in its session."""
        located = self._locate(message_id)
        if located is None:
            return []
        session, index = located
        return self._truncate(session, index + 1)

    def edit_message(self, message_id: str, content: str) -> bool:
        """Replace a message's text, dropping everything that followed it.

        The first original text is kept in :class:`EditHistory` across
        repeated edits.
        """
        text = (content or "").strip()
        located = self._locate(message_id)
        if located is None or not text:
            return False
        session, index = located
        message = session.messages[index]
        self._truncate(session, index + 1, notify=False)
        original = message.metadata.edit.original_content if message.metadata.edit else message.content
        message.content = text
        message.metadata = message.metadata.merge({"edit": EditHistory(original_content=original)})
        LOGGER.debug("SessionRegistry.edit_message: %s", message_id)
        self._changed()
        return True

    def clear_messages(self, session_id: str | None = None) -> list[str]:
        session = self.get(session_id or self._active_id)
        if session is None:
            return []
        self._summary_dismissed.discard(session.id)
        return self._truncate(session, 0)

    # ------------------------------------------------------------------
    # Context blocks and search flags
    # ------------------------------------------------------------------

    def set_context_blocks(self, block_ids: Iterable[str], *, session_id: str | None = None) -> bool:
        session = self.get(session_id or self._active_id)
        if session is None:
            return False
        unique: list[str] = []
        for block_id in block_ids:
            if block_id and block_id not in unique:
                unique.append(block_id)
        session.context_block_ids = unique
        self._changed()
        return True

    def add_context_block(self, block_id: str, *, session_id: str | None = None) -> bool:
        session = self.get(session_id or self._active_id)
        if session is None or not block_id or block_id in session.context_block_ids:
            return False
        session.context_block_ids.append(block_id)
        self._changed()
        return True

    def remove_context_block(self, block_id: str, *, session_id: str | None = None) -> bool:
        session = self.get(session_id or self._active_id)
        if session is None or block_id not in session.context_block_ids:
            return False
        session.context_block_ids.remove(block_id)
        self._changed()
        return True

    def set_confluence_search(self, enabled: bool, *, session_id: str | None = None) -> bool:
        session = self.get(session_id or self._active_id)
        if session is None:
            return False
        session.confluence_search_enabled = bool(enabled)
        self._changed()
        return True

    # ------------------------------------------------------------------
    # Summary suggestion
    # ------------------------------------------------------------------

    def should_show_summary_suggestion(self, session_id: str | None = None) -> bool:
        session = self.get(session_id or self._active_id)
        if session is None or session.id in self._summary_dismissed:
            return False
        return len(session.messages) >= self._summary_threshold

    def dismiss_summary_suggestion(self, session_id: str | None = None) -> None:
        target = session_id or self._active_id
        if target:
            self._summary_dismissed.add(target)

    # ------------------------------------------------------------------
    # Bulk replacement
    # ------------------------------------------------------------------

    def replace_all(self, sessions: Sequence[ChatSession], active_session_id: str | None = None) -> None:
        """Install hydrated sessions without scheduling a write.

        Sessions beyond the cap are dropped and message logs are trimmed to
        the per-session limit.
        """
        kept = list(sessions)[: self._max_sessions]
        if len(sessions) > len(kept):
            LOGGER.warning(
                "SessionRegistry.replace_all: dropping %d session(s) beyond the limit of %d",
                len(sessions) - len(kept),
                self._max_sessions,
            )
        for session in kept:
            if len(session.messages) > self._max_messages:
                session.messages = session.messages[-self._max_messages :]
        self._sessions = kept
        self._summary_dismissed.clear()
        if active_session_id and self.get(active_session_id) is not None:
            self._active_id = active_session_id
        else:
            self._active_id = kept[0].id if kept else None
        LOGGER.debug("SessionRegistry.replace_all: %d session(s), active=%s", len(kept), self._active_id)
        self._changed(persist=False)

    def reset(self) -> None:
        self._sessions = []
        self._active_id = None
        self._summary_dismissed.clear()
        self._changed(persist=False)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _locate(self, message_id: str) -> tuple[ChatSession, int] | None:
        for session in self._sessions:
            index = session.index_of(message_id)
            if index >= 0:
                return session, index
        return None

    def _truncate(self, session: ChatSession, index: int, *, notify: bool = True) -> list[str]:
        removed = [message.id for message in session.messages[index:]]
        if not removed:
            return []
        del session.messages[index:]
        LOGGER.debug("SessionRegistry: removed %d message(s) from %s", len(removed), session.id)
        self._publish(MessagesRemoved(session_id=session.id, message_ids=tuple(removed)))
        if notify:
            self._changed()
        return removed

    def _changed(self, *, persist: bool = True) -> None:
        self._publish(SessionsChanged(active_session_id=self._active_id, session_ids=self.session_ids))
        if persist and self._on_change is not None:
            self._on_change()

    def _publish(self, event: Any) -> None:
        if self._bus is not None:
            self._bus.publish(event)


__all__ = [
    "DEFAULT_MAX_MESSAGES",
    "DEFAULT_MAX_SESSIONS",
    "DEFAULT_SUMMARY_THRESHOLD",
    "SessionRegistry",
]

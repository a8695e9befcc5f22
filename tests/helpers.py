"""Shared test helpers and stub collaborators.

Import from here instead of duplicating these classes in individual test files.
"""

from __future__ import annotations

import asyncio
import re
from typing import Any, AsyncIterator, Callable, Iterable, Mapping, Sequence, Union

from parley.ai.orchestration.cancellation import CancellationToken
from parley.ai.orchestration.model_types import ChatPayload, StreamEvent
from parley.chat.message_model import ChatSession
from parley.core.ranges import TextRange
from parley.editor.anchors import SelectionInfo
from parley.services.glossary import GlossaryEntry
from parley.services.storage import PersistedSettings

SENTINEL_PATTERN = re.compile(r"⟦PARLEY_GHOST:[0-9a-f]+:\d+⟧")


# ----------------------------------------------------------------------
# Model streaming
# ----------------------------------------------------------------------


class Hold:
    """Script step that parks the stream until the test releases it."""

    def __init__(self) -> None:
        self.reached = asyncio.Event()
        self.release = asyncio.Event()

    async def wait(self) -> None:
        self.reached.set()
        await self.release.wait()


ScriptStep = Union[StreamEvent, Hold]
Script = Union[Sequence[ScriptStep], Callable[[ChatPayload], Sequence[ScriptStep]]]


def reply(text: str, *, chunks: int = 2) -> list[StreamEvent]:
    """Split ``text`` into token events followed by ``done``."""
    size = max(1, len(text) // max(1, chunks))
    parts = [text[index : index + size] for index in range(0, len(text), size)] or [""]
    events = [StreamEvent(type="token", text=part) for part in parts if part]
    events.append(StreamEvent(type="done", text=text))
    return events


def sentinels_in(payload: ChatPayload) -> list[str]:
    """Return the sentinels of the last (user) message in ``payload``."""
    return SENTINEL_PATTERN.findall(payload.messages[-1]["content"])


class ScriptedStreamer:
    """Model collaborator that replays one script per call.

    A script is either a list of :class:`StreamEvent`/:class:`Hold` steps or
    a callable building that list from the payload.
    """

    def __init__(self, *scripts: Script) -> None:
        self.scripts: list[Script] = list(scripts)
        self.payloads: list[ChatPayload] = []
        self.tokens: list[CancellationToken] = []

    @property
    def calls(self) -> int:
        return len(self.payloads)

    def queue(self, script: Script) -> None:
        self.scripts.append(script)

    async def invoke(self, payload: ChatPayload, token: CancellationToken) -> AsyncIterator[StreamEvent]:
        self.payloads.append(payload)
        self.tokens.append(token)
        script = self.scripts.pop(0) if self.scripts else [StreamEvent(type="done", text="")]
        steps = script(payload) if callable(script) else script
        for step in steps:
            if isinstance(step, Hold):
                await step.wait()
                continue
            yield step


# ----------------------------------------------------------------------
# Document handle
# ----------------------------------------------------------------------


class FakeDocument:
    """In-memory document handle with optional decoration tracking."""

    def __init__(
        self,
        text: str,
        *,
        selection: tuple[int, int] | None = None,
        blocks: Mapping[str, tuple[int, int]] | None = None,
        track: bool = True,
    ) -> None:
        self.text = text
        self.selection = selection
        self.blocks = {key: TextRange(*value) for key, value in (blocks or {}).items()}
        self.track = track
        self.decorations: dict[int, TextRange] = {}
        self.removed: list[int] = []
        self._next_id = 0

    def get_text(self) -> str:
        return self.text

    def get_selection(self) -> SelectionInfo | None:
        if self.selection is None:
            return None
        start, end = self.selection
        return SelectionInfo(start_offset=start, end_offset=end, text=self.text[start:end])

    def get_block_offsets(self) -> Mapping[str, TextRange]:
        return dict(self.blocks)

    def create_anchor_decoration(self, span: TextRange) -> Any | None:
        if not self.track:
            return None
        self._next_id += 1
        self.decorations[self._next_id] = span
        return self._next_id

    def get_decoration_range(self, decoration: Any) -> TextRange | None:
        return self.decorations.get(decoration)

    def remove_decoration(self, decoration: Any) -> None:
        self.decorations.pop(decoration, None)
        self.removed.append(decoration)

    def insert(self, offset: int, text: str) -> None:
        """Insert ``text`` and shift tracked decorations like an editor would."""
        self.text = self.text[:offset] + text + self.text[offset:]
        shift = len(text)
        for key, span in list(self.decorations.items()):
            if span.start >= offset:
                self.decorations[key] = TextRange(span.start + shift, span.end + shift)
            elif span.end > offset:
                self.decorations[key] = TextRange(span.start, span.end + shift)


# ----------------------------------------------------------------------
# Storage, timer, glossary
# ----------------------------------------------------------------------


class InMemoryStorage:
    """Chat storage keeping copies of every save."""

    def __init__(
        self,
        sessions: Mapping[str, Iterable[ChatSession]] | None = None,
        settings: Mapping[str, PersistedSettings] | None = None,
    ) -> None:
        self.sessions: dict[str, list[ChatSession]] = {
            key: list(value) for key, value in (sessions or {}).items()
        }
        self.settings: dict[str, PersistedSettings] = dict(settings or {})
        self.session_saves: list[tuple[str, list[dict[str, Any]]]] = []
        self.settings_saves: list[tuple[str, dict[str, Any]]] = []
        self.fail_saves = 0
        self.save_gate: asyncio.Event | None = None
        self.load_gates: dict[str, asyncio.Event] = {}

    async def load_sessions(self, project_id: str) -> list[ChatSession]:
        gate = self.load_gates.get(project_id)
        if gate is not None:
            await gate.wait()
        return [ChatSession.from_dict(session.to_dict()) for session in self.sessions.get(project_id, [])]

    async def save_sessions(self, project_id: str, sessions: Sequence[ChatSession]) -> None:
        if self.save_gate is not None:
            await self.save_gate.wait()
        if self.fail_saves:
            self.fail_saves -= 1
            raise OSError("disk full")
        self.session_saves.append((project_id, [session.to_dict() for session in sessions]))
        self.sessions[project_id] = [ChatSession.from_dict(session.to_dict()) for session in sessions]

    async def load_settings(self, project_id: str) -> PersistedSettings | None:
        stored = self.settings.get(project_id)
        return PersistedSettings.from_dict(stored.to_dict()) if stored is not None else None

    async def save_settings(self, project_id: str, settings: PersistedSettings) -> None:
        self.settings_saves.append((project_id, settings.to_dict()))
        self.settings[project_id] = PersistedSettings.from_dict(settings.to_dict())


class _ManualHandle:
    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualTimer:
    """Timer whose callbacks only run when the test fires them."""

    def __init__(self) -> None:
        self.handles: list[_ManualHandle] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> _ManualHandle:
        handle = _ManualHandle(delay, callback)
        self.handles.append(handle)
        return handle

    @property
    def pending(self) -> list[_ManualHandle]:
        return [handle for handle in self.handles if not handle.cancelled]

    def fire(self) -> int:
        """Run every pending callback once; returns how many ran."""
        due = self.pending
        for handle in due:
            handle.cancelled = True
            handle.callback()
        return len(due)


class StaticGlossary:
    """Glossary lookup returning fixed entries, or raising when ``fail`` is set."""

    def __init__(self, entries: Iterable[GlossaryEntry] = (), *, fail: bool = False) -> None:
        self.entries = list(entries)
        self.fail = fail
        self.queries: list[tuple[str, str, str | None, int]] = []

    async def search(self, project_id: str, query: str, domain: str | None, limit: int) -> list[GlossaryEntry]:
        self.queries.append((project_id, query, domain, limit))
        if self.fail:
            raise RuntimeError("glossary offline")
        return self.entries[:limit]


class EventRecorder:
    """Collects published events of the given types, in order."""

    def __init__(self, bus: Any, *event_types: type) -> None:
        self.events: list[Any] = []
        for event_type in event_types:
            bus.subscribe(event_type, self.events.append)

    def of(self, event_type: type) -> list[Any]:
        return [event for event in self.events if isinstance(event, event_type)]

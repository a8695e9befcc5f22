"""Typed commands accepted by the orchestrator and the state snapshots it emits."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal, Mapping, Union

if TYPE_CHECKING:  # pragma: no cover
    from ...editor.anchors import AnchorDescriptor, DocumentHandle
    from ...services.glossary import GlossaryEntry


# ----------------------------------------------------------------------
# Request commands
# ----------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class SendMessage:
    text: str


@dataclass(slots=True, frozen=True)
class ReplayMessage:
    message_id: str


@dataclass(slots=True, frozen=True)
class ApplyRequest:
    """An "apply this edit" request.

    Attributes:
        instruction: What the user wants done to the text.
        scope: ``"selection"`` rewrites the captured selection, ``"document"``
            rewrites the whole document.
        document: Handle of the document to edit; defaults to the
            orchestrator's attached document.
        descriptor: Pre-captured anchor; captured from the live selection
            when omitted.
    """

    instruction: str
    scope: Literal["selection", "document"] = "selection"
    document: DocumentHandle | None = None
    descriptor: AnchorDescriptor | None = None


@dataclass(slots=True, frozen=True)
class SendApplyRequest:
    request: ApplyRequest


# ----------------------------------------------------------------------
# Stream commands
# ----------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class TokenReceived:
    text: str
    generation: int | None = None


@dataclass(slots=True, frozen=True)
class ToolEvent:
    phase: Literal["start", "end"]
    name: str
    arguments: Mapping[str, Any] | None = None
    generation: int | None = None


@dataclass(slots=True, frozen=True)
class ToolsUsed:
    names: tuple[str, ...]
    generation: int | None = None


@dataclass(slots=True, frozen=True)
class Finalize:
    content: str | None = None


@dataclass(slots=True, frozen=True)
class Abort:
    pass


Command = Union[
    SendMessage,
    ReplayMessage,
    SendApplyRequest,
    TokenReceived,
    ToolEvent,
    ToolsUsed,
    Finalize,
    Abort,
]
StreamCommand = Union[TokenReceived, ToolEvent, ToolsUsed, Abort]


@dataclass(slots=True, frozen=True)
class EngineState:
    """Immutable snapshot of orchestrator state published after every change."""

    project_id: str | None = None
    active_session_id: str | None = None
    session_ids: tuple[str, ...] = ()
    is_loading: bool = False
    is_hydrating: bool = False
    is_finalizing: bool = False
    stream_state: str = "idle"
    streaming_message_id: str | None = None
    streaming_content: str = ""
    tools_in_progress: tuple[str, ...] = ()
    status_message: str | None = None
    error: str | None = None
    last_injected_glossary: tuple[GlossaryEntry, ...] = ()


__all__ = [
    "Abort",
    "ApplyRequest",
    "Command",
    "EngineState",
    "Finalize",
    "ReplayMessage",
    "SendApplyRequest",
    "SendMessage",
    "StreamCommand",
    "TokenReceived",
    "ToolEvent",
    "ToolsUsed",
]

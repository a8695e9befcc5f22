"""Request orchestration: cancellation, streaming, payloads and the request façade."""

from .cancellation import CancellationToken, TokenSource
from .commands import (
    Abort,
    ApplyRequest,
    Command,
    EngineState,
    Finalize,
    ReplayMessage,
    SendApplyRequest,
    SendMessage,
    StreamCommand,
    TokenReceived,
    ToolEvent,
    ToolsUsed,
)
from .message_builder import MessageBuilder, extract_replacement, format_glossary
from .model_types import (
    SUGGESTION_TOOLS,
    ChatPayload,
    ModelStreamer,
    StreamEvent,
    SuggestionToolSpec,
)
from .streaming import StreamingCoordinator, StreamState
from .tool_tracker import ToolCallTracker

# Request façade
from .orchestrator import (
    NO_SELECTION_MESSAGE,
    TRANSLATE_REDIRECT_MESSAGE,
    WEB_SEARCH_DISABLED_MESSAGE,
    RequestOrchestrator,
)

__all__ = [
    "Abort",
    "ApplyRequest",
    "CancellationToken",
    "ChatPayload",
    "Command",
    "EngineState",
    "Finalize",
    "MessageBuilder",
    "ModelStreamer",
    "NO_SELECTION_MESSAGE",
    "ReplayMessage",
    "RequestOrchestrator",
    "SUGGESTION_TOOLS",
    "SendApplyRequest",
    "SendMessage",
    "StreamCommand",
    "StreamEvent",
    "StreamState",
    "StreamingCoordinator",
    "SuggestionToolSpec",
    "TRANSLATE_REDIRECT_MESSAGE",
    "TokenReceived",
    "TokenSource",
    "ToolCallTracker",
    "ToolEvent",
    "ToolsUsed",
    "WEB_SEARCH_DISABLED_MESSAGE",
    "extract_replacement",
    "format_glossary",
]

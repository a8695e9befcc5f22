"""Data classes exchanged with the model streaming collaborator."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, AsyncIterator, Dict, Literal, Mapping, Protocol, cast

from openai.types.chat import ChatCompletionToolParam

if TYPE_CHECKING:  # pragma: no cover
    from .cancellation import CancellationToken

StreamEventType = Literal["token", "tool.start", "tool.end", "tools.used", "done", "cancelled", "error"]

SUGGEST_RULE_TOOL = "suggest_translation_rule"
SUGGEST_CONTEXT_TOOL = "suggest_project_context"


@dataclass(slots=True, frozen=True)
class StreamEvent:
    """One event of a streamed model reply.

    Attributes:
        type: Event kind.
        text: Token delta for ``token`` events, full reply for ``done``.
        tool_name: Tool name for ``tool.start``/``tool.end``.
        arguments: Parsed tool arguments for ``tool.start``.
        tools: Tool names for ``tools.used``.
        error: Failure description for ``error``.
    """

    type: StreamEventType
    text: str = ""
    tool_name: str | None = None
    arguments: Mapping[str, Any] | None = None
    tools: tuple[str, ...] = ()
    error: str | None = None


@dataclass(slots=True)
class ChatPayload:
    """Fully assembled request handed to the model collaborator.

    Every piece of user-provided text in ``messages`` has already been masked.
    """

    messages: list[Dict[str, str]]
    request_type: str = "general"
    model: str | None = None
    tools: list[ChatCompletionToolParam] = field(default_factory=list)
    attachments: list[Dict[str, Any]] = field(default_factory=list)
    web_search: bool = False
    metadata: Dict[str, str] = field(default_factory=dict)


class ModelStreamer(Protocol):
    """External collaborator that streams a model reply for a payload."""

    def invoke(self, payload: ChatPayload, token: CancellationToken) -> AsyncIterator[StreamEvent]:
        ...


@dataclass(slots=True, frozen=True)
class SuggestionToolSpec:
    """Function-calling schema for a tool that proposes text to save."""

    name: str
    argument: str
    description: str

    def as_openai_tool(self) -> ChatCompletionToolParam:
        return cast(
            ChatCompletionToolParam,
            {
                "type": "function",
                "function": {
                    "name": self.name,
                    "description": self.description,
                    "parameters": {
                        "type": "object",
                        "properties": {self.argument: {"type": "string"}},
                        "required": [self.argument],
                        "additionalProperties": False,
                    },
                    "strict": True,
                },
            },
        )


SUGGESTION_TOOLS: tuple[SuggestionToolSpec, ...] = (
    SuggestionToolSpec(
        name=SUGGEST_RULE_TOOL,
        argument="rule",
        description="Propose a translation rule the user may save to the project's rules.",
    ),
    SuggestionToolSpec(
        name=SUGGEST_CONTEXT_TOOL,
        argument="context",
        description="Propose background facts the user may save to the project context.",
    ),
)


__all__ = [
    "ChatPayload",
    "ModelStreamer",
    "StreamEvent",
    "StreamEventType",
    "SUGGESTION_TOOLS",
    "SUGGEST_CONTEXT_TOOL",
    "SUGGEST_RULE_TOOL",
    "SuggestionToolSpec",
]

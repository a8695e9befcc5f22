"""Chat session and message data models."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Mapping, Optional

ChatRole = Literal["user", "assistant", "system"]
SuggestionKind = Literal["rule", "context", "both"]
ApplyScope = Literal["selection", "document"]

_ROLES: frozenset[str] = frozenset({"user", "assistant", "system"})


def _utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""

    return datetime.now(timezone.utc)


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        # Millisecond epoch values come from older session files.
        return datetime.fromtimestamp(float(value) / 1000.0, tz=timezone.utc)
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            pass
    return _utcnow()


def _flag(value: Any, *, default: bool) -> bool:
    # Files written before a flag existed carry no value for it.
    return default if value is None else bool(value)


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


@dataclass(slots=True, frozen=True)
class Suggestion:
    """Offer to save part of an assistant reply as a translation rule and/or project context.

    ``rule`` and ``context`` hold the proposed text for each target; the tag
    exposed through :attr:`kind` is derived from which of them is present.
    """

    rule: str = ""
    context: str = ""

    @property
    def kind(self) -> SuggestionKind | None:
        if self.rule and self.context:
            return "both"
        if self.rule:
            return "rule"
        if self.context:
            return "context"
        return None

    @property
    def content(self) -> str:
        """Return the primary suggested text (rule text first)."""

        return self.rule or self.context

    def text_for(self, target: Literal["rule", "context"]) -> str:
        return self.rule if target == "rule" else self.context

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind, "rule": self.rule, "context": self.context}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any] | None) -> Suggestion | None:
        if not isinstance(payload, Mapping):
            return None
        suggestion = cls(rule=str(payload.get("rule") or ""), context=str(payload.get("context") or ""))
        return suggestion if suggestion.kind else None


@dataclass(slots=True, frozen=True)
class ApplyOutcome:
    """Result of validating an apply-class response against the live document."""

    appliable: bool
    scope: ApplyScope = "selection"
    blocked_reason: Optional[str] = None
    start_offset: Optional[int] = None
    end_offset: Optional[int] = None
    replacement: str = ""
    missing_chips: tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "appliable": self.appliable,
            "scope": self.scope,
            "blocked_reason": self.blocked_reason,
            "start_offset": self.start_offset,
            "end_offset": self.end_offset,
            "replacement": self.replacement,
            "missing_chips": list(self.missing_chips),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any] | None) -> ApplyOutcome | None:
        if not isinstance(payload, Mapping):
            return None
        scope = payload.get("scope")
        return cls(
            appliable=bool(payload.get("appliable", False)),
            scope="document" if scope == "document" else "selection",
            blocked_reason=payload.get("blocked_reason"),
            start_offset=payload.get("start_offset"),
            end_offset=payload.get("end_offset"),
            replacement=str(payload.get("replacement") or ""),
            missing_chips=tuple(payload.get("missing_chips") or ()),
        )


@dataclass(slots=True, frozen=True)
class EditHistory:
    """Trace of a user edit applied to a previously sent message."""

    original_content: str
    edited_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {"original_content": self.original_content, "edited_at": self.edited_at.isoformat()}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any] | None) -> EditHistory | None:
        if not isinstance(payload, Mapping) or "original_content" not in payload:
            return None
        return cls(
            original_content=str(payload["original_content"]),
            edited_at=_parse_timestamp(payload.get("edited_at")),
        )


@dataclass(slots=True, frozen=True)
class MessageMetadata:
    """Typed metadata attached to a chat message."""

    model: Optional[str] = None
    request_type: Optional[str] = None
    tools_in_progress: tuple[str, ...] = ()
    tools_used: tuple[str, ...] = ()
    suggestion: Optional[Suggestion] = None
    apply: Optional[ApplyOutcome] = None
    edit: Optional[EditHistory] = None
    error: Optional[str] = None
    cancelled: bool = False
    rules_added: bool = False
    context_added: bool = False

    def merge(self, patch: Mapping[str, Any] | None) -> MessageMetadata:
        """Return a copy with the keys of ``patch`` applied on top of this metadata.

        Raises:
            KeyError: If ``patch`` names a field that does not exist.
        """

        if not patch:
            return self
        unknown = set(patch) - _METADATA_FIELDS
        if unknown:
            raise KeyError(f"Unknown metadata field(s): {sorted(unknown)}")
        updates = dict(patch)
        for key in ("tools_in_progress", "tools_used"):
            if key in updates:
                updates[key] = tuple(updates[key] or ())
        return replace(self, **updates)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        if self.model:
            payload["model"] = self.model
        if self.request_type:
            payload["request_type"] = self.request_type
        if self.tools_used:
            payload["tools_used"] = list(self.tools_used)
        if self.suggestion is not None:
            payload["suggestion"] = self.suggestion.to_dict()
        if self.apply is not None:
            payload["apply"] = self.apply.to_dict()
        if self.edit is not None:
            payload["edit"] = self.edit.to_dict()
        if self.error:
            payload["error"] = self.error
        if self.cancelled:
            payload["cancelled"] = True
        if self.rules_added:
            payload["rules_added"] = True
        if self.context_added:
            payload["context_added"] = True
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any] | None) -> MessageMetadata:
        if not isinstance(payload, Mapping):
            return cls()
        # In-progress tool names are transient and never restored.
        return cls(
            model=payload.get("model"),
            request_type=payload.get("request_type"),
            tools_used=tuple(payload.get("tools_used") or ()),
            suggestion=Suggestion.from_dict(payload.get("suggestion")),
            apply=ApplyOutcome.from_dict(payload.get("apply")),
            edit=EditHistory.from_dict(payload.get("edit")),
            error=payload.get("error"),
            cancelled=bool(payload.get("cancelled", False)),
            rules_added=bool(payload.get("rules_added", False)),
            context_added=bool(payload.get("context_added", False)),
        )


_METADATA_FIELDS: frozenset[str] = frozenset(f.name for f in fields(MessageMetadata))


@dataclass(slots=True)
class ChatMessage:
    """Single entry of a session's message log."""

    role: ChatRole
    content: str
    id: str = field(default_factory=lambda: new_id("msg"))
    timestamp: datetime = field(default_factory=_utcnow)
    metadata: MessageMetadata = field(default_factory=MessageMetadata)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the message for persistence."""

        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> ChatMessage:
        role = payload.get("role")
        if role not in _ROLES:
            raise ValueError(f"Unsupported chat role: {role!r}")
        return cls(
            id=str(payload.get("id") or new_id("msg")),
            role=role,  # type: ignore[arg-type]
            content=str(payload.get("content") or ""),
            timestamp=_parse_timestamp(payload.get("timestamp")),
            metadata=MessageMetadata.from_dict(payload.get("metadata")),
        )


@dataclass(slots=True)
class ChatSession:
    """Named conversation with its own message log and context block references."""

    name: str
    id: str = field(default_factory=lambda: new_id("session"))
    created_at: datetime = field(default_factory=_utcnow)
    messages: list[ChatMessage] = field(default_factory=list)
    context_block_ids: list[str] = field(default_factory=list)
    confluence_search_enabled: bool = True

    def index_of(self, message_id: str) -> int:
        for index, message in enumerate(self.messages):
            if message.id == message_id:
                return index
        return -1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "created_at": self.created_at.isoformat(),
            "messages": [message.to_dict() for message in self.messages],
            "context_block_ids": list(self.context_block_ids),
            "confluence_search_enabled": self.confluence_search_enabled,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> ChatSession:
        messages = []
        for raw in payload.get("messages") or ():
            if not isinstance(raw, Mapping):
                continue
            try:
                messages.append(ChatMessage.from_dict(raw))
            except ValueError:
                continue
        return cls(
            id=str(payload.get("id") or new_id("session")),
            name=str(payload.get("name") or "Chat"),
            created_at=_parse_timestamp(payload.get("created_at")),
            messages=messages,
            context_block_ids=[str(item) for item in payload.get("context_block_ids") or ()],
            confluence_search_enabled=_flag(payload.get("confluence_search_enabled"), default=True),
        )


__all__ = [
    "ApplyOutcome",
    "ApplyScope",
    "ChatMessage",
    "ChatRole",
    "ChatSession",
    "EditHistory",
    "MessageMetadata",
    "Suggestion",
    "SuggestionKind",
    "new_id",
]

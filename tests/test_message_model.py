"""Tests for chat message and session data models."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from parley.chat.message_model import (
    ApplyOutcome,
    ChatMessage,
    ChatSession,
    EditHistory,
    MessageMetadata,
    Suggestion,
)


def test_suggestion_kind_is_derived_from_content() -> None:
    assert Suggestion(rule="a").kind == "rule"
    assert Suggestion(context="b").kind == "context"
    assert Suggestion(rule="a", context="b").kind == "both"
    assert Suggestion().kind is None
    assert Suggestion(context="b").content == "b"


def test_empty_suggestion_payload_is_dropped() -> None:
    assert Suggestion.from_dict({"type": "rule", "rule": ""}) is None
    assert Suggestion.from_dict(None) is None


def test_metadata_merge_applies_patch() -> None:
    metadata = MessageMetadata(model="m", request_type="question")

    merged = metadata.merge({"tools_used": ["glossary"], "cancelled": True})

    assert merged.tools_used == ("glossary",)
    assert merged.cancelled is True
    assert merged.model == "m"
    assert metadata.cancelled is False


def test_metadata_merge_rejects_unknown_fields() -> None:
    with pytest.raises(KeyError):
        MessageMetadata().merge({"colour": "red"})


def test_metadata_serialization_skips_transient_state() -> None:
    metadata = MessageMetadata(
        model="m",
        tools_in_progress=("search",),
        tools_used=("search",),
        suggestion=Suggestion(rule="Keep API"),
        apply=ApplyOutcome(appliable=False, blocked_reason="missing", missing_chips=("{x}",)),
        edit=EditHistory(original_content="before"),
        cancelled=True,
    )

    payload = metadata.to_dict()
    restored = MessageMetadata.from_dict(payload)

    assert "tools_in_progress" not in payload
    assert restored.tools_in_progress == ()
    assert restored.tools_used == ("search",)
    assert restored.suggestion == Suggestion(rule="Keep API")
    assert restored.apply is not None and restored.apply.missing_chips == ("{x}",)
    assert restored.edit is not None and restored.edit.original_content == "before"
    assert restored.cancelled is True


def test_chat_message_rejects_unknown_role() -> None:
    with pytest.raises(ValueError):
        ChatMessage.from_dict({"role": "robot", "content": "beep"})


def test_chat_message_accepts_millisecond_timestamps() -> None:
    message = ChatMessage.from_dict({"role": "user", "content": "hi", "timestamp": 1_700_000_000_000})

    assert message.timestamp == datetime.fromtimestamp(1_700_000_000, tz=timezone.utc)


def test_session_from_dict_skips_malformed_messages() -> None:
    session = ChatSession.from_dict(
        {
            "id": "session-1",
            "name": "Glossary review",
            "messages": [
                {"id": "m1", "role": "user", "content": "hello"},
                {"role": "narrator", "content": "skip"},
                "not a message",
            ],
            "context_block_ids": [1, "b2"],
            "confluence_search_enabled": True,
        }
    )

    assert [message.id for message in session.messages] == ["m1"]
    assert session.context_block_ids == ["1", "b2"]
    assert session.confluence_search_enabled is True
    assert session.index_of("m1") == 0
    assert session.index_of("missing") == -1


def test_session_round_trip_keeps_messages() -> None:
    session = ChatSession(name="Chat 1")
    session.messages.append(ChatMessage(role="user", content="hello"))

    restored = ChatSession.from_dict(session.to_dict())

    assert restored.id == session.id
    assert restored.messages[0].content == "hello"
    assert restored.created_at == session.created_at


def test_session_confluence_search_defaults_on() -> None:
    assert ChatSession(name="Chat 1").confluence_search_enabled is True
    assert ChatSession.from_dict({"id": "s1", "name": "Old"}).confluence_search_enabled is True
    assert ChatSession.from_dict({"id": "s2", "confluence_search_enabled": False}).confluence_search_enabled is False

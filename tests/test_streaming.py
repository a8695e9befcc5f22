"""Tests for :mod:`parley.ai.orchestration.streaming`."""

from __future__ import annotations

import asyncio
from typing import Any, Mapping

import pytest

from parley.ai.orchestration.commands import Abort, TokenReceived, ToolEvent, ToolsUsed
from parley.ai.orchestration.streaming import StreamingCoordinator, StreamState
from parley.events import EventBus, StreamAborted, StreamChunk, ToolActivityChanged

from tests.helpers import EventRecorder


class _CommitLog:
    """Records commits; optionally blocks each commit on a gate."""

    def __init__(self, *, delay: float = 0.0, gate: asyncio.Event | None = None) -> None:
        self.delay = delay
        self.gate = gate
        self.commits: list[tuple[str, str, dict[str, Any]]] = []

    async def __call__(self, message_id: str, content: str, patch: Mapping[str, Any]) -> None:
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        self.commits.append((message_id, content, dict(patch)))


def _coordinator(commit: Any, bus: EventBus | None = None, *, wait: float = 1.0) -> StreamingCoordinator:
    return StreamingCoordinator(commit, bus=bus, finalize_wait_seconds=wait)


@pytest.mark.asyncio
async def test_tokens_accumulate_and_finalize_commits_once() -> None:
    log = _CommitLog()
    coordinator = _coordinator(log)
    token = coordinator.start("msg-1", model="m")

    coordinator.handle(TokenReceived("Hal", generation=token.generation))
    coordinator.handle(TokenReceived("lo", generation=token.generation))
    committed = await coordinator.finalize(token=token)

    assert committed is True
    assert log.commits == [("msg-1", "Hallo", {"model": "m", "tools_in_progress": (), "tools_used": ()})]
    assert coordinator.state is StreamState.IDLE
    assert coordinator.message_id is None


@pytest.mark.asyncio
async def test_concurrent_finalize_commits_exactly_once() -> None:
    log = _CommitLog(delay=0.05)
    coordinator = _coordinator(log)
    token = coordinator.start("msg-1")
    coordinator.handle(TokenReceived("done", generation=token.generation))

    results = await asyncio.gather(coordinator.finalize(token=token), coordinator.finalize(token=token))

    assert sorted(results) == [False, True]
    assert len(log.commits) == 1
    assert not coordinator.is_active


@pytest.mark.asyncio
async def test_finalize_waiter_force_resets_after_timeout() -> None:
    gate = asyncio.Event()
    log = _CommitLog(gate=gate)
    coordinator = _coordinator(log, wait=0.05)
    token = coordinator.start("msg-1")
    first = asyncio.create_task(coordinator.finalize(token=token))
    await asyncio.sleep(0)
    assert coordinator.is_finalizing

    await coordinator.wait_until_settled()

    assert coordinator.state is StreamState.IDLE
    assert not coordinator.is_finalizing
    gate.set()
    assert await first is True
    assert len(log.commits) == 1


@pytest.mark.asyncio
async def test_finalize_after_abort_is_a_no_op() -> None:
    log = _CommitLog()
    coordinator = _coordinator(log)
    token = coordinator.start("msg-1")

    coordinator.abort()

    assert await coordinator.finalize(token=token) is False
    assert log.commits == []


def test_stale_generation_commands_are_dropped() -> None:
    coordinator = _coordinator(_CommitLog())
    first = coordinator.start("msg-1")
    second = coordinator.start("msg-2")

    assert first.cancelled
    assert coordinator.handle(TokenReceived("old", generation=first.generation)) is False
    assert coordinator.handle(TokenReceived("new", generation=second.generation)) is True
    assert coordinator.raw_content == "new"


def test_start_aborts_previous_stream(bus: EventBus) -> None:
    recorder = EventRecorder(bus, StreamAborted)
    coordinator = _coordinator(_CommitLog(), bus)
    coordinator.start("msg-1")

    coordinator.start("msg-2")

    assert [event.message_id for event in recorder.events] == ["msg-1"]
    assert coordinator.message_id == "msg-2"


def test_abort_publishes_and_discards_buffers(bus: EventBus) -> None:
    recorder = EventRecorder(bus, StreamAborted)
    coordinator = _coordinator(_CommitLog(), bus)
    token = coordinator.start("msg-1")
    coordinator.handle(TokenReceived("partial"))

    assert coordinator.handle(Abort()) is True

    assert token.cancelled
    assert recorder.events == [StreamAborted(message_id="msg-1")]
    assert coordinator.raw_content == ""
    assert coordinator.abort() is None


def test_chunks_carry_transformed_content(bus: EventBus) -> None:
    recorder = EventRecorder(bus, StreamChunk)
    coordinator = _coordinator(_CommitLog(), bus)
    coordinator.start("msg-1", transform=str.upper)

    coordinator.handle(TokenReceived("ab"))
    coordinator.handle(TokenReceived("c"))

    assert [event.content for event in recorder.events] == ["AB", "ABC"]
    assert coordinator.content == "ABC"
    assert coordinator.raw_content == "abc"


@pytest.mark.asyncio
async def test_tool_activity_is_tracked_and_cleared_on_commit(bus: EventBus) -> None:
    recorder = EventRecorder(bus, ToolActivityChanged)
    log = _CommitLog()
    coordinator = _coordinator(log, bus)
    token = coordinator.start("msg-1")

    coordinator.handle(ToolEvent("start", "glossary_search"))
    coordinator.handle(ToolEvent("end", "glossary_search"))
    coordinator.handle(ToolsUsed(("glossary_search",)))
    await coordinator.finalize(token=token, metadata={"request_type": "question"})

    assert [event.tools_in_progress for event in recorder.events] == [("glossary_search",), ()]
    _, _, patch = log.commits[0]
    assert patch["tools_used"] == ("glossary_search",)
    assert patch["tools_in_progress"] == ()
    assert patch["request_type"] == "question"


@pytest.mark.asyncio
async def test_fail_writes_inline_error() -> None:
    log = _CommitLog()
    coordinator = _coordinator(log)
    token = coordinator.start("msg-1", model="m")

    message_id = await coordinator.fail("Service unavailable", token=token)

    assert message_id == "msg-1"
    assert log.commits[0][1] == "⚠️ Service unavailable"
    assert log.commits[0][2]["error"] == "Service unavailable"
    assert coordinator.state is StreamState.IDLE


@pytest.mark.asyncio
async def test_fail_with_stale_token_is_ignored() -> None:
    log = _CommitLog()
    coordinator = _coordinator(log)
    stale = coordinator.start("msg-1")
    coordinator.start("msg-2")

    assert await coordinator.fail("late", token=stale) is None
    assert log.commits == []


def test_release_aborts_stream_targeting_removed_message() -> None:
    coordinator = _coordinator(_CommitLog())
    coordinator.start("msg-1")

    assert coordinator.release({"other"}) is False
    assert coordinator.release({"msg-1"}) is True
    assert coordinator.message_id is None

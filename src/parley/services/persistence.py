"""Coalescing, serialized persistence of the active project's chat state."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol, Sequence

from ..chat.message_model import ChatSession
from .storage import ChatStorage, PersistedSettings

LOGGER = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 0.8


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


class Timer(Protocol):
    """Schedules a callback after a delay; the scheduler never sleeps itself."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        ...


class AsyncioTimer:
    """:class:`Timer` backed by the running asyncio loop."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)


@dataclass(slots=True)
class PersistSnapshot:
    """State of one project captured for a durable write."""

    project_id: str
    sessions: Sequence[ChatSession] = field(default_factory=list)
    settings: PersistedSettings = field(default_factory=PersistedSettings)


SnapshotProvider = Callable[[], Optional[PersistSnapshot]]
ProjectProvider = Callable[[], Optional[str]]


class PersistenceScheduler:
    """Debounces dirty notifications into single, never-overlapping writes.

    A burst of :meth:`notify_dirty` calls inside the debounce window produces
    one write.  When the timer fires while a write is still running, the
    request is queued and replayed exactly once after that write settles.
    Nothing is scheduled or written while hydration is in progress.
    """

    def __init__(
        self,
        storage: ChatStorage,
        snapshot: SnapshotProvider,
        current_project: ProjectProvider,
        *,
        timer: Timer | None = None,
        delay: float = DEFAULT_DEBOUNCE_SECONDS,
    ) -> None:
        """Initialize the scheduler.

        Args:
            storage: Durable storage collaborator.
            snapshot: Returns the state to write, or ``None`` if nothing is loaded.
            current_project: Returns the id of the project currently loaded.
            timer: Timer used for debouncing; defaults to the asyncio loop.
            delay: Debounce window in seconds.
        """
        self._storage = storage
        self._snapshot = snapshot
        self._current_project = current_project
        self._timer = timer or AsyncioTimer()
        self._delay = max(0.0, float(delay))
        self._handle: TimerHandle | None = None
        self._scheduled_project: str | None = None
        self._in_flight: asyncio.Task[None] | None = None
        self._queued = False
        self._hydrating = False
        self._write_count = 0

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def is_hydrating(self) -> bool:
        return self._hydrating

    @property
    def has_pending(self) -> bool:
        return self._handle is not None

    @property
    def is_writing(self) -> bool:
        return self._in_flight is not None

    @property
    def is_queued(self) -> bool:
        return self._queued

    @property
    def write_count(self) -> int:
        """Number of completed durable writes."""
        return self._write_count

    # ------------------------------------------------------------------
    # Hydration guard
    # ------------------------------------------------------------------

    def begin_hydration(self) -> None:
        self._hydrating = True
        self.cancel_pending()
        self._queued = False

    def end_hydration(self) -> None:
        self._hydrating = False

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def notify_dirty(self) -> None:
        """(Re)start the debounce timer for the current project."""
        if self._hydrating:
            return
        project_id = self._current_project()
        if not project_id:
            return
        if self._handle is not None:
            self._handle.cancel()
        self._scheduled_project = project_id
        self._handle = self._timer.call_later(self._delay, self._on_timer)

    def cancel_pending(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
        self._handle = None
        self._scheduled_project = None

    async def flush_now(self) -> None:
        """Write the current state immediately.

        Cancels the debounce timer, waits for any running write and then
        performs one write of its own, so writes never interleave.
        """
        self.cancel_pending()
        await self._wait_in_flight()
        self._queued = False
        if self._hydrating:
            return
        task = asyncio.get_running_loop().create_task(self._run_write())
        self._in_flight = task
        await task

    async def drain(self) -> None:
        """Wait until no write is running or queued."""
        await self._wait_in_flight()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _on_timer(self) -> None:
        scheduled = self._scheduled_project
        self._handle = None
        self._scheduled_project = None
        if self._hydrating:
            return
        if scheduled != self._current_project():
            LOGGER.warning(
                "Skipping scheduled chat save: project changed from %s to %s",
                scheduled,
                self._current_project(),
            )
            return
        if self._in_flight is not None:
            self._queued = True
            return
        self._start_write()

    def _start_write(self) -> None:
        self._in_flight = asyncio.get_running_loop().create_task(self._run_write())

    async def _run_write(self) -> None:
        try:
            await self._write_once()
        except Exception:
            LOGGER.exception("Failed to persist chat state; the next save will retry")
        finally:
            self._in_flight = None
            if self._queued and not self._hydrating:
                self._queued = False
                self._start_write()

    async def _write_once(self) -> None:
        if self._hydrating:
            return
        snapshot = self._snapshot()
        if snapshot is None or not snapshot.project_id:
            return
        await self._storage.save_sessions(snapshot.project_id, list(snapshot.sessions))
        await self._storage.save_settings(snapshot.project_id, snapshot.settings)
        self._write_count += 1
        LOGGER.debug(
            "Persisted %d session(s) for project %s", len(snapshot.sessions), snapshot.project_id
        )

    async def _wait_in_flight(self) -> None:
        while self._in_flight is not None:
            await asyncio.shield(self._in_flight)


__all__ = [
    "AsyncioTimer",
    "DEFAULT_DEBOUNCE_SECONDS",
    "PersistSnapshot",
    "PersistenceScheduler",
    "Timer",
    "TimerHandle",
]

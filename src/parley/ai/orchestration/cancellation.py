"""Generation-stamped cooperative cancellation tokens."""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, field

from ..errors import RequestCancelled

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, eq=False)
class CancellationToken:
    """Cooperative cancellation signal for one request.

    Every token carries the generation it was issued for.  Callers compare
    generations to decide whether a late result still belongs to the current
    request instead of relying on object identity.
    """

    generation: int
    _event: asyncio.Event = field(default_factory=asyncio.Event, init=False, repr=False)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        if not self._event.is_set():
            LOGGER.debug("Cancelling request generation %s", self.generation)
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RequestCancelled(self.generation)


class TokenSource:
    """Issues tokens with strictly increasing generations.

    At most one token is live; issuing a new one cancels its predecessor.
    """

    def __init__(self) -> None:
        self._counter = itertools.count(1)
        self._current: CancellationToken | None = None

    @property
    def current(self) -> CancellationToken | None:
        return self._current

    def issue(self) -> CancellationToken:
        previous = self._current
        if previous is not None:
            previous.cancel()
        token = CancellationToken(generation=next(self._counter))
        self._current = token
        return token

    def is_current(self, token: CancellationToken | None) -> bool:
        current = self._current
        return token is not None and current is not None and token.generation == current.generation

    def cancel_current(self) -> CancellationToken | None:
        token = self._current
        if token is not None:
            token.cancel()
        return token


__all__ = ["CancellationToken", "TokenSource"]

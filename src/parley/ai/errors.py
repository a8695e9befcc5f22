"""Exception types raised by the request engine."""

from __future__ import annotations


class ParleyError(RuntimeError):
    """Base class for engine errors."""


class RequestCancelled(ParleyError):
    """Raised when a request observes its cancellation token.

    Cancellation is a normal settlement, never a failure shown to the user.
    """

    def __init__(self, generation: int | None = None) -> None:
        message = "Request cancelled" if generation is None else f"Request {generation} cancelled"
        super().__init__(message)
        self.generation = generation


class ModelStreamError(ParleyError):
    """Raised when the model collaborator fails or reports an error event."""


__all__ = ["ParleyError", "RequestCancelled", "ModelStreamError"]

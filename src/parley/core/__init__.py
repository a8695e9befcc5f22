"""Core value types shared across the engine."""

from .ranges import TextRange

__all__ = ["TextRange"]

"""Offset spans used to describe selections and anchor targets."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any


@dataclass(slots=True, frozen=True)
class TextRange:
    """Half-open ``[start, end)`` character span inside a document."""

    start: int
    end: int

    def __post_init__(self) -> None:
        start = self._coerce_offset(self.start, "start")
        end = self._coerce_offset(self.end, "end")
        if end < start:
            start, end = end, start
        object.__setattr__(self, "start", start)
        object.__setattr__(self, "end", end)

    @staticmethod
    def _coerce_offset(value: Any, label: str) -> int:
        try:
            number = int(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"TextRange {label} must be an integer") from exc
        return max(0, number)

    @property
    def length(self) -> int:
        """Return the width of the span."""

        return self.end - self.start

    @property
    def is_caret(self) -> bool:
        """Return ``True`` when the span has collapsed to a single caret position."""

        return self.start == self.end

    def fits(self, document_length: int) -> bool:
        """Return ``True`` when the span lies inside a document of ``document_length`` characters."""

        return self.end <= document_length

    def slice_of(self, text: str) -> str:
        return text[self.start : self.end]

    def clamp(self, *, lower: int = 0, upper: int | None = None) -> TextRange:
        """Clamp the span to ``[lower, upper]``."""

        start = max(lower, self.start)
        end = max(lower, self.end)
        if upper is not None:
            start = min(start, upper)
            end = min(end, upper)
        return TextRange(start, end)

    def to_tuple(self) -> tuple[int, int]:
        return (self.start, self.end)

    def to_dict(self) -> dict[str, int]:
        return {"start": self.start, "end": self.end}

    @classmethod
    def from_value(cls, value: Any) -> TextRange:
        """Coerce mappings, pairs or ``start``/``end`` objects into a :class:`TextRange`."""

        if isinstance(value, TextRange):
            return value
        if isinstance(value, Mapping):
            start = value.get("start")
            end = value.get("end")
            if start is None or end is None:
                raise ValueError("TextRange mappings require start and end keys")
            return cls(start, end)
        if isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
            items = list(value)
            if len(items) != 2:
                raise ValueError("TextRange sequences must have exactly two entries")
            return cls(items[0], items[1])
        start = getattr(value, "start", None)
        end = getattr(value, "end", None)
        if start is not None and end is not None:
            return cls(start, end)
        raise TypeError("Unsupported TextRange input")


__all__ = ["TextRange"]

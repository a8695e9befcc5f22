"""Ghost chip masking for model round trips.

Ghost chips are placeholder tokens inside translatable text that must come back
from the model byte-for-byte: interpolation variables (``{name}``,
``{{user}}``), inline markup tags (``<b>``, ``</b>``, ``<x-tag/>``) and
line-break markers (literal ``\\n`` or ``<br>``).  Before any text leaves the
process every chip is swapped for an opaque sentinel owned by a
:class:`GhostMaskSession`; after the response arrives the sentinels are swapped
back and the decoded text is checked for chips that went missing.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from typing import Iterable, Literal

GhostChipKind = Literal["variable", "tag", "newline"]

_VARIABLE = r"\{\{[^{}]+\}\}|\{[A-Za-z0-9_.\-]+\}"
_NEWLINE = r"<br\s*/?>|\\n"
_TAG = r"</?[A-Za-z][A-Za-z0-9\-]*(?:\s+[^<>]*?)?\s*/?>"

# Alternation order matters: ``{{x}}`` must win over ``{x}`` and ``<br>`` over generic tags.
_CHIP_PATTERN = re.compile(
    rf"(?P<variable>{_VARIABLE})|(?P<newline>{_NEWLINE})|(?P<tag>{_TAG})",
    re.IGNORECASE,
)
_CHIP_PATTERN_WITH_NEWLINES = re.compile(
    rf"(?P<variable>{_VARIABLE})|(?P<newline>{_NEWLINE}|\r?\n)|(?P<tag>{_TAG})",
    re.IGNORECASE,
)

_SENTINEL_PREFIX = "PARLEY_GHOST"


@dataclass(slots=True, frozen=True)
class GhostChipMatch:
    """A single chip occurrence located in a text."""

    value: str
    kind: GhostChipKind
    start: int
    end: int


@dataclass(slots=True)
class GhostMaskSession:
    """Request-scoped, bidirectional map between chip text and sentinels.

    A session belongs to exactly one request and is never persisted.  The same
    chip text always maps to the same sentinel within a session and distinct
    chip texts always receive distinct sentinels.
    """

    session_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    _value_to_sentinel: dict[str, str] = field(default_factory=dict, init=False, repr=False)
    _sentinel_to_value: dict[str, str] = field(default_factory=dict, init=False, repr=False)
    _counter: int = field(default=0, init=False, repr=False)

    def sentinel_for(self, chip: str) -> str:
        existing = self._value_to_sentinel.get(chip)
        if existing is not None:
            return existing
        self._counter += 1
        sentinel = f"⟦{_SENTINEL_PREFIX}:{self.session_id}:{self._counter}⟧"
        self._value_to_sentinel[chip] = sentinel
        self._sentinel_to_value[sentinel] = chip
        return sentinel

    def value_for(self, sentinel: str) -> str | None:
        return self._sentinel_to_value.get(sentinel)

    @property
    def size(self) -> int:
        return len(self._value_to_sentinel)

    def sentinel_pattern(self) -> re.Pattern[str]:
        return re.compile(
            "⟦" + re.escape(f"{_SENTINEL_PREFIX}:{self.session_id}:") + r"\d+" + "⟧"
        )


def find_ghost_chips(text: str | None, *, include_actual_newlines: bool = False) -> list[GhostChipMatch]:
    """Return every chip occurrence in ``text``, left to right, without overlaps."""

    if not text:
        return []
    pattern = _CHIP_PATTERN_WITH_NEWLINES if include_actual_newlines else _CHIP_PATTERN
    matches: list[GhostChipMatch] = []
    for match in pattern.finditer(text):
        kind = match.lastgroup or "variable"
        matches.append(
            GhostChipMatch(value=match.group(0), kind=kind, start=match.start(), end=match.end())  # type: ignore[arg-type]
        )
    return matches


def mask(text: str | None, session: GhostMaskSession) -> str:
    """Replace every recognized chip in ``text`` with its session sentinel."""

    if not text:
        return text or ""
    return _CHIP_PATTERN.sub(lambda match: session.sentinel_for(match.group(0)), text)


def restore(text: str | None, session: GhostMaskSession) -> str:
    """Swap sentinels issued by ``session`` back to their original chip text.

    Sentinels the session never issued are left untouched.
    """

    if not text:
        return text or ""
    if session.size == 0:
        return text

    def _substitute(match: re.Match[str]) -> str:
        value = session.value_for(match.group(0))
        return match.group(0) if value is None else value

    return session.sentinel_pattern().sub(_substitute, text)


def collect_chips(text: str | None) -> list[str]:
    """Return the distinct chip texts of ``text`` in first-appearance order."""

    seen: dict[str, None] = {}
    for chip in find_ghost_chips(text):
        seen.setdefault(chip.value, None)
    return list(seen)


def collect_chip_set(text: str | None) -> set[str]:
    return set(collect_chips(text))


def diff_missing(required: Iterable[str], decoded_text: str | None) -> list[str]:
    """Return the chips from ``required`` that are not chips of ``decoded_text``.

    The decoded text is re-scanned with the chip grammar, so ``{user}`` is not
    satisfied by the ``{user}`` inside ``{{user}}``.  Ordered inputs keep their
    order; sets are reported sorted.
    """

    ordered = sorted(required) if isinstance(required, (set, frozenset)) else list(required)
    present = collect_chip_set(decoded_text)
    return [chip for chip in ordered if chip and chip not in present]


def describe_missing(missing: Iterable[str]) -> str:
    """Build the human-readable block reason naming every missing chip."""

    chips = [chip for chip in missing if chip]
    if not chips:
        return ""
    listing = ", ".join(chips)
    noun = "token" if len(chips) == 1 else "tokens"
    return f"Response is missing protected {noun}: {listing}"


__all__ = [
    "GhostChipKind",
    "GhostChipMatch",
    "GhostMaskSession",
    "collect_chip_set",
    "collect_chips",
    "describe_missing",
    "diff_missing",
    "find_ghost_chips",
    "mask",
    "restore",
]

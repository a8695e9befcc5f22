"""Single-use anchors that locate where an AI edit should land.

An anchor is captured when an apply request is submitted and resolved against
the live document once the model has answered.  The user may keep typing while
the model streams, so resolution never trusts captured offsets blindly.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Literal, Mapping, Protocol

from ..core.ranges import TextRange
from ..chat.message_model import ApplyScope, new_id

LOGGER = logging.getLogger(__name__)

DEFAULT_CONTEXT_WINDOW = 200

REASON_NO_ANCHOR = "no pending apply anchor"
REASON_CONSUMED = "apply anchor already consumed"
REASON_EMPTY_SELECTION = "selection is empty"
REASON_NOT_PRESENT = "selection no longer present"

ResolutionStrategy = Literal["tracked", "offsets", "search", "document"]


@dataclass(slots=True, frozen=True)
class SelectionInfo:
    """Live selection reported by the document handle."""

    start_offset: int
    end_offset: int
    text: str


class DocumentHandle(Protocol):
    """Primitives the resolver needs from the editor surface that owns the document."""

    def get_text(self) -> str:
        ...

    def get_selection(self) -> SelectionInfo | None:
        ...

    def get_block_offsets(self) -> Mapping[str, TextRange]:
        ...

    def create_anchor_decoration(self, span: TextRange) -> Any | None:
        ...

    def get_decoration_range(self, decoration: Any) -> TextRange | None:
        ...

    def remove_decoration(self, decoration: Any) -> None:
        ...


@dataclass(slots=True, frozen=True)
class AnchorDescriptor:
    """Where an edit should land, as captured at request time."""

    scope: ApplyScope = "selection"
    start_offset: int | None = None
    end_offset: int | None = None
    selection_text: str = ""
    before_text: str = ""
    after_text: str = ""
    block_id: str | None = None

    @classmethod
    def for_document(cls) -> AnchorDescriptor:
        return cls(scope="document")

    @property
    def span(self) -> TextRange | None:
        if self.start_offset is None or self.end_offset is None:
            return None
        return TextRange(self.start_offset, self.end_offset)


@dataclass(slots=True)
class ApplyAnchor:
    """A pending anchor plus the editor decoration tracking it, if any."""

    descriptor: AnchorDescriptor
    anchor_id: str
    decoration: Any | None = None
    consumed: bool = False


@dataclass(slots=True, frozen=True)
class AnchorResolution:
    """Outcome of :meth:`ApplyAnchorResolver.resolve`."""

    success: bool
    start_offset: int | None = None
    end_offset: int | None = None
    reason: str | None = None
    strategy: ResolutionStrategy | None = None

    @classmethod
    def failed(cls, reason: str) -> AnchorResolution:
        return cls(success=False, reason=reason)


def capture_descriptor(
    document: DocumentHandle,
    *,
    window: int = DEFAULT_CONTEXT_WINDOW,
) -> AnchorDescriptor | None:
    """Capture the live selection with ``window`` characters of context on each side.

    Returns ``None`` when nothing is selected.
    """

    selection = document.get_selection()
    if selection is None:
        return None
    text = document.get_text() or ""
    span = TextRange(selection.start_offset, selection.end_offset).clamp(upper=len(text))
    if span.is_caret:
        return None
    window = max(0, int(window))
    return AnchorDescriptor(
        scope="selection",
        start_offset=span.start,
        end_offset=span.end,
        selection_text=selection.text or span.slice_of(text),
        before_text=text[max(0, span.start - window) : span.start],
        after_text=text[span.end : span.end + window],
        block_id=_block_containing(document, span),
    )


def _block_containing(document: DocumentHandle, span: TextRange) -> str | None:
    try:
        blocks = document.get_block_offsets() or {}
    except Exception:  # pragma: no cover - editor handles are external
        LOGGER.debug("Block offsets unavailable", exc_info=True)
        return None
    for block_id, raw in blocks.items():
        block = TextRange.from_value(raw)
        if block.start <= span.start and span.end <= block.end:
            return block_id
    return None


class ApplyAnchorResolver:
    """Holds at most one pending anchor and resolves it against the live document.

    Lifecycle: :meth:`create` -> :meth:`resolve` -> :meth:`clear`.  Creating a
    new anchor discards any previous one, and a resolved anchor can never be
    resolved again.
    """

    def __init__(self, document: DocumentHandle | None = None) -> None:
        """Initialize the resolver.

        Args:
            document: Default document handle used by :meth:`create` and
                :meth:`resolve` when none is passed explicitly.
        """
        self._document = document
        self._anchor: ApplyAnchor | None = None

    @property
    def pending(self) -> ApplyAnchor | None:
        return self._anchor

    def attach(self, document: DocumentHandle | None) -> None:
        """Point the resolver at a different document, dropping any pending anchor."""
        self.clear()
        self._document = document

    def create(self, descriptor: AnchorDescriptor, *, document: DocumentHandle | None = None) -> ApplyAnchor:
        """Store ``descriptor`` as the single pending anchor.

        Args:
            descriptor: Captured location of the edit.
            document: Handle to decorate; defaults to the attached document.

        Returns:
            The new pending anchor.
        """
        self.clear()
        handle = document or self._document
        if document is not None:
            self._document = document
        anchor = ApplyAnchor(descriptor=descriptor, anchor_id=new_id("anchor"))
        span = descriptor.span
        if descriptor.scope == "selection" and handle is not None and span is not None and not span.is_caret:
            try:
                anchor.decoration = handle.create_anchor_decoration(span)
            except Exception:  # pragma: no cover - editor handles are external
                LOGGER.debug("Anchor decoration unavailable; relying on captured offsets", exc_info=True)
                anchor.decoration = None
        self._anchor = anchor
        LOGGER.debug(
            "Created apply anchor %s scope=%s span=%s tracked=%s",
            anchor.anchor_id,
            descriptor.scope,
            span.to_tuple() if span else None,
            anchor.decoration is not None,
        )
        return anchor

    def resolve(self, document: DocumentHandle | None = None) -> AnchorResolution:
        """Locate the pending anchor in the current document.

        Selection anchors are checked in order: the tracked decoration range
        (or the captured offsets when tracking is unavailable) must still be
        non-empty, inside the document and bound the captured selection text;
        otherwise the first verbatim occurrence of that text is used, searching
        the selection's original block before the whole document.  Document
        anchors resolve to the full current text.

        Returns:
            The resolved offsets, or a failed resolution with a reason.
        """
        anchor = self._anchor
        if anchor is None:
            return AnchorResolution.failed(REASON_NO_ANCHOR)
        if anchor.consumed:
            return AnchorResolution.failed(REASON_CONSUMED)
        anchor.consumed = True

        handle = document or self._document
        text = handle.get_text() if handle is not None else ""
        text = text or ""
        descriptor = anchor.descriptor

        if descriptor.scope == "document":
            return AnchorResolution(True, 0, len(text), strategy="document")

        needle = descriptor.selection_text
        if not needle:
            return AnchorResolution.failed(REASON_EMPTY_SELECTION)

        tracked = self._tracked_range(anchor, handle)
        strategy: ResolutionStrategy = "tracked" if anchor.decoration is not None else "offsets"
        if tracked is not None and self._bounds_selection(tracked, text, needle):
            return AnchorResolution(True, tracked.start, tracked.end, strategy=strategy)

        found = self._search(needle, text, handle, descriptor.block_id)
        if found is not None:
            LOGGER.debug(
                "Anchor %s relocated from %s to %s via text search",
                anchor.anchor_id,
                tracked.to_tuple() if tracked else None,
                found.to_tuple(),
            )
            return AnchorResolution(True, found.start, found.end, strategy="search")

        LOGGER.info("Anchor %s could not be resolved: selection text is gone", anchor.anchor_id)
        return AnchorResolution.failed(REASON_NOT_PRESENT)

    def clear(self) -> None:
        """Drop the pending anchor and remove its editor decoration."""
        anchor, self._anchor = self._anchor, None
        if anchor is None or anchor.decoration is None or self._document is None:
            return
        try:
            self._document.remove_decoration(anchor.decoration)
        except Exception:  # pragma: no cover - editor handles are external
            LOGGER.debug("Failed to remove anchor decoration", exc_info=True)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _tracked_range(anchor: ApplyAnchor, handle: DocumentHandle | None) -> TextRange | None:
        if anchor.decoration is not None and handle is not None:
            try:
                raw = handle.get_decoration_range(anchor.decoration)
            except Exception:  # pragma: no cover - editor handles are external
                LOGGER.debug("Decoration lookup failed", exc_info=True)
                raw = None
            return TextRange.from_value(raw) if raw is not None else None
        return anchor.descriptor.span

    @staticmethod
    def _bounds_selection(span: TextRange, text: str, needle: str) -> bool:
        if span.is_caret or not span.fits(len(text)):
            return False
        return span.slice_of(text) == needle

    @staticmethod
    def _search(
        needle: str,
        text: str,
        handle: DocumentHandle | None,
        block_id: str | None,
    ) -> TextRange | None:
        if block_id and handle is not None:
            try:
                block_raw = (handle.get_block_offsets() or {}).get(block_id)
            except Exception:  # pragma: no cover - editor handles are external
                block_raw = None
            if block_raw is not None:
                block = TextRange.from_value(block_raw).clamp(upper=len(text))
                index = text.find(needle, block.start, block.end)
                if index >= 0:
                    return TextRange(index, index + len(needle))
        index = text.find(needle)
        if index < 0:
            return None
        return TextRange(index, index + len(needle))


__all__ = [
    "AnchorDescriptor",
    "AnchorResolution",
    "ApplyAnchor",
    "ApplyAnchorResolver",
    "DEFAULT_CONTEXT_WINDOW",
    "DocumentHandle",
    "REASON_CONSUMED",
    "REASON_EMPTY_SELECTION",
    "REASON_NO_ANCHOR",
    "REASON_NOT_PRESENT",
    "SelectionInfo",
    "capture_descriptor",
]

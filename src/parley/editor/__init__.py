"""Editor-facing helpers: apply anchors and the document handle protocol."""

from .anchors import (
    AnchorDescriptor,
    AnchorResolution,
    ApplyAnchor,
    ApplyAnchorResolver,
    DocumentHandle,
    SelectionInfo,
    capture_descriptor,
)

__all__ = [
    "AnchorDescriptor",
    "AnchorResolution",
    "ApplyAnchor",
    "ApplyAnchorResolver",
    "DocumentHandle",
    "SelectionInfo",
    "capture_descriptor",
]

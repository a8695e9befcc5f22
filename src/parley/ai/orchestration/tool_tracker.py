"""Tracks tool calls of the in-flight reply and collects save suggestions."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from ...chat.message_model import Suggestion
from ...chat.suggestions import clean_suggestion_content, infer_suggestion_from_text
from .model_types import SUGGEST_CONTEXT_TOOL, SUGGEST_RULE_TOOL

LOGGER = logging.getLogger(__name__)

_TOOL_LABELS: Mapping[str, str] = {
    "web_search": "Web search",
    "web_search_preview": "Web search",
    "get_source_document": "Reading source document",
    "get_target_document": "Reading translation",
    "glossary_search": "Glossary lookup",
    SUGGEST_RULE_TOOL: "Drafting translation rule",
    SUGGEST_CONTEXT_TOOL: "Analysing project context",
}
_SUGGESTION_ARGUMENTS: Mapping[str, str] = {
    SUGGEST_RULE_TOOL: "rule",
    SUGGEST_CONTEXT_TOOL: "context",
}
_JOINER = "; "


class ToolCallTracker:
    """Transient tool bookkeeping for one streamed reply.

    The tracker only produces suggestions for the user to confirm; it holds no
    reference to project settings and cannot write them.
    """

    def __init__(self) -> None:
        self._in_progress: list[str] = []
        self._used: list[str] = []
        self._rule_parts: list[str] = []
        self._context_parts: list[str] = []

    def reset(self) -> None:
        self._in_progress.clear()
        self._used.clear()
        self._rule_parts.clear()
        self._context_parts.clear()

    @property
    def in_progress(self) -> tuple[str, ...]:
        return tuple(self._in_progress)

    @property
    def tools_used(self) -> tuple[str, ...]:
        return tuple(self._used)

    def on_tool_start(self, name: str, args: Mapping[str, Any] | None = None) -> None:
        if not name:
            return
        self._in_progress.append(name)
        argument = _SUGGESTION_ARGUMENTS.get(name)
        if argument is None:
            return
        raw = (args or {}).get(argument)
        text = clean_suggestion_content(raw if isinstance(raw, str) else "")
        if not text:
            return
        target = self._rule_parts if name == SUGGEST_RULE_TOOL else self._context_parts
        if text not in target:
            target.append(text)

    def on_tool_end(self, name: str) -> None:
        try:
            self._in_progress.remove(name)
        except ValueError:
            LOGGER.debug("Tool %s ended without a matching start", name)

    def on_tools_used(self, names: Iterable[str]) -> None:
        for name in names:
            if name and name not in self._used:
                self._used.append(name)

    @property
    def suggestion(self) -> Suggestion | None:
        """Suggestion produced by suggestion tools so far, if any."""
        if not (self._rule_parts or self._context_parts):
            return None
        return Suggestion(rule=_JOINER.join(self._rule_parts), context=_JOINER.join(self._context_parts))

    def infer_from_text(self, text: str) -> Suggestion | None:
        """Infer a suggestion from explicit trigger phrasing when no tool produced one."""
        if self.suggestion is not None:
            return None
        try:
            return infer_suggestion_from_text(text)
        except Exception:  # pragma: no cover - inference is a hint only
            LOGGER.debug("Suggestion inference failed; skipping", exc_info=True)
            return None

    def resolve_suggestion(self, final_text: str) -> Suggestion | None:
        """Return the tool suggestion, or one inferred from explicit phrasing in ``final_text``."""
        return self.suggestion or self.infer_from_text(final_text)

    @staticmethod
    def status_label(name: str) -> str:
        return f"{_TOOL_LABELS.get(name, name)}..."


__all__ = ["ToolCallTracker"]

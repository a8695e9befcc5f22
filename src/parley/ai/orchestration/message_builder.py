"""Payload assembly for chat and apply requests."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any, Mapping, Sequence

from ...chat.ghost_mask import GhostMaskSession, mask
from ...chat.message_model import ChatMessage
from .model_types import SUGGESTION_TOOLS, ChatPayload

if TYPE_CHECKING:
    from ...editor.anchors import AnchorDescriptor
    from ...services.glossary import GlossaryEntry

LOGGER = logging.getLogger(__name__)

_CHAT_SYSTEM_PROMPT = (
    "You are a translation assistant embedded in a document translation editor. "
    "Answer questions about the source and translated text, explain terminology and "
    "propose improvements. Tokens of the form ⟦...⟧ are protected placeholders: copy "
    "them exactly and never translate, split or drop them. When you notice a reusable "
    "translation rule or project fact, call the matching suggestion tool instead of "
    "asking the user to copy it."
)
_APPLY_SYSTEM_PROMPT = (
    "You rewrite a passage of a translated document according to the user's instruction. "
    "Reply with the replacement text only: no explanations, no quotes, no code fences. "
    "Tokens of the form ⟦...⟧ are protected placeholders and must all appear in your "
    "reply exactly as given."
)
_FENCE = re.compile(r"^```[\w-]*\s*\n(?P<body>[\s\S]*?)\n?```\s*$")
_QUOTE_PAIRS = (('"', '"'), ("“", "”"), ("'", "'"))


def format_glossary(entries: Sequence[GlossaryEntry]) -> str:
    """Render glossary hits as ``- source = target (notes)`` lines."""

    lines = []
    for entry in entries:
        line = f"- {entry.source} = {entry.target}"
        if entry.notes:
            line += f" ({entry.notes})"
        lines.append(line)
    return "\n".join(lines)


def extract_replacement(text: str, source_text: str = "") -> str:
    """Strip a single code fence or enclosing quote pair from an apply reply.

    A quote pair that also wraps ``source_text`` is part of the document and
    is kept.
    """

    stripped = (text or "").strip()
    fenced = _FENCE.match(stripped)
    if fenced:
        return fenced.group("body")
    source = (source_text or "").strip()
    for opening, closing in _QUOTE_PAIRS:
        if len(stripped) >= 2 and stripped.startswith(opening) and stripped.endswith(closing):
            if _wrapped_in(source, opening, closing):
                return stripped
            inner = stripped[len(opening) : -len(closing)]
            if opening not in inner:
                return inner
    return stripped


def _wrapped_in(text: str, opening: str, closing: str) -> bool:
    return len(text) >= len(opening) + len(closing) and text.startswith(opening) and text.endswith(closing)


class MessageBuilder:
    """Builds masked model payloads from session history and project settings.

    Persona, rules, project context, glossary lines, attached excerpts, history
    and the user text are masked with the request's :class:`GhostMaskSession`.
    Attachments are forwarded as given.
    """

    def __init__(self, *, max_recent_messages: int = 10, model: str | None = None) -> None:
        self._max_recent = max(0, int(max_recent_messages))
        self._model = model

    @property
    def max_recent_messages(self) -> int:
        return self._max_recent

    def recent_history(self, messages: Sequence[ChatMessage]) -> list[ChatMessage]:
        """Return the last ``max_recent_messages`` usable messages.

        Empty, cancelled and failed messages are skipped.
        """
        usable = [
            message
            for message in messages
            if message.role in ("user", "assistant")
            and message.content.strip()
            and not message.metadata.cancelled
            and not message.metadata.error
        ]
        if self._max_recent == 0:
            return []
        return usable[-self._max_recent :]

    def build_chat(
        self,
        *,
        user_text: str,
        history: Sequence[ChatMessage],
        session: GhostMaskSession,
        request_type: str = "general",
        persona: str = "",
        rules: str = "",
        project_context: str = "",
        glossary: Sequence[GlossaryEntry] = (),
        context_text: str = "",
        attachments: Sequence[Mapping[str, Any]] = (),
        web_search: bool = False,
    ) -> ChatPayload:
        """Assemble a chat payload.

        Args:
            user_text: Raw user message; masked here.
            history: Prior messages, oldest first.
            session: Mask session of this request.
            request_type: Classified intent forwarded to the collaborator.
            persona: Translator persona.
            rules: Project translation rules.
            project_context: Project background notes.
            glossary: Glossary hits to inject.
            context_text: Plain text of attached document blocks.
            attachments: One-shot attachment descriptors.
            web_search: Whether the collaborator may use web search.

        Returns:
            The masked payload.
        """
        system = self._system_message(
            _CHAT_SYSTEM_PROMPT,
            session,
            persona=persona,
            rules=rules,
            project_context=project_context,
            glossary=glossary,
            context_text=context_text,
        )
        messages = [system]
        messages.extend(self._history_messages(history, session))
        messages.append({"role": "user", "content": mask(user_text, session)})
        LOGGER.debug(
            "Built %s payload with %d message(s), %d glossary hit(s), %d masked token(s)",
            request_type,
            len(messages),
            len(glossary),
            session.size,
        )
        return ChatPayload(
            messages=messages,
            request_type=request_type,
            model=self._model,
            tools=[spec.as_openai_tool() for spec in SUGGESTION_TOOLS],
            attachments=[dict(item) for item in attachments],
            web_search=web_search,
        )

    def build_apply(
        self,
        *,
        instruction: str,
        descriptor: AnchorDescriptor,
        source_text: str,
        session: GhostMaskSession,
        persona: str = "",
        rules: str = "",
        project_context: str = "",
        glossary: Sequence[GlossaryEntry] = (),
    ) -> ChatPayload:
        """Assemble a payload asking the model for replacement text only."""
        system = self._system_message(
            _APPLY_SYSTEM_PROMPT,
            session,
            persona=persona,
            rules=rules,
            project_context=project_context,
            glossary=glossary,
        )
        parts = [f"Instruction:\n{mask(instruction, session)}"]
        if descriptor.before_text:
            parts.append(f"Text before the passage (do not return it):\n{mask(descriptor.before_text, session)}")
        parts.append(f"Passage to rewrite:\n<<<\n{mask(source_text, session)}\n>>>")
        if descriptor.after_text:
            parts.append(f"Text after the passage (do not return it):\n{mask(descriptor.after_text, session)}")
        return ChatPayload(
            messages=[system, {"role": "user", "content": "\n\n".join(parts)}],
            request_type="translate",
            model=self._model,
        )

    def _history_messages(self, history: Sequence[ChatMessage], session: GhostMaskSession) -> list[dict[str, str]]:
        return [
            {"role": message.role, "content": mask(message.content, session)}
            for message in self.recent_history(history)
        ]

    @staticmethod
    def _system_message(
        base: str,
        session: GhostMaskSession,
        *,
        persona: str = "",
        rules: str = "",
        project_context: str = "",
        glossary: Sequence[GlossaryEntry] = (),
        context_text: str = "",
    ) -> dict[str, str]:
        sections = [base]
        if persona.strip():
            sections.append(f"## Translator persona\n{mask(persona.strip(), session)}")
        if rules.strip():
            sections.append(f"## Translation rules\n{mask(rules.strip(), session)}")
        if project_context.strip():
            sections.append(f"## Project context\n{mask(project_context.strip(), session)}")
        if glossary:
            sections.append(f"## Glossary\n{mask(format_glossary(glossary), session)}")
        if context_text.strip():
            sections.append(f"## Attached document excerpts\n{mask(context_text.strip(), session)}")
        return {"role": "system", "content": "\n\n".join(sections)}


__all__ = ["MessageBuilder", "extract_replacement", "format_glossary"]

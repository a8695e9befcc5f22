"""Best-effort detection of "save as rule/context" offers in assistant replies."""

from __future__ import annotations

import logging
import re

from .message_model import Suggestion

LOGGER = logging.getLogger(__name__)

MAX_SUGGESTION_CHARS = 3000

_RULE_BUTTON = "[Add to Rules]"
_CONTEXT_BUTTON = "[Add to Context]"

# Only explicit offers to press a button trigger inference; plain explanations never do.
_RULE_TRIGGER = re.compile(
    r"(?:원하시면|필요하시면|저장하려면|if you(?:'d)? (?:like|want))\s*.*"
    r"(?:버튼을|button|\[Add to Rules\]).*(?:번역\s*규칙|translation\s*rules?)",
    re.IGNORECASE,
)
_CONTEXT_TRIGGER = re.compile(
    r"(?:원하시면|필요하시면|저장하려면|if you(?:'d)? (?:like|want))\s*.*"
    r"(?:버튼을|button|\[Add to Context\]).*(?:project\s*context|컨텍스트|맥락)",
    re.IGNORECASE,
)

_PREAMBLES = (
    re.compile(r"^(?:프로젝트\s*)?컨텍스트\s*저장\s*제안을?\s*올려\s*두었습니다[:\s]*", re.IGNORECASE),
    re.compile(r"^번역\s*규칙\s*저장\s*제안을?\s*올려\s*두었습니다[:\s]*", re.IGNORECASE),
    re.compile(
        r"^(?:다음|아래)(?:와 같은|의)?\s*(?:번역\s*규칙|컨텍스트|맥락).*?(?:제안합니다|올려두었습니다)[:\s]*",
        re.IGNORECASE,
    ),
    re.compile(r"^(?:번역\s*규칙|컨텍스트|맥락)\s*제안[:\s]*", re.IGNORECASE),
    re.compile(r"^(?:here is|i suggest) (?:a |the )?(?:translation rule|project context)[^:]*:\s*", re.IGNORECASE),
)
_SUFFIXES = (
    re.compile(r"(?:원하시면|필요하시면|저장하려면|추가하려면)\s*\**\s*$", re.IGNORECASE),
    re.compile(r"\s*\*+\s*$"),
)
_BOLD = re.compile(r"\*\*([^*]+)\*\*")
_ITALIC = re.compile(r"\*([^*]+)\*")
_CODE = re.compile(r"`([^`]+)`")


def clean_suggestion_content(text: str | None) -> str:
    """Strip inline markdown emphasis and code markers."""

    cleaned = _BOLD.sub(r"\1", text or "")
    cleaned = _ITALIC.sub(r"\1", cleaned)
    cleaned = _CODE.sub(r"\1", cleaned)
    return cleaned.strip()


def infer_suggestion_from_text(text: str | None) -> Suggestion | None:
    """Infer a suggestion from explicit trigger phrasing in ``text``.

    Returns ``None`` when no trigger is present or nothing usable remains after
    stripping preambles; inference never raises.
    """

    body = (text or "").strip()
    if not body:
        return None
    wants_rule = _RULE_BUTTON in body or bool(_RULE_TRIGGER.search(body))
    wants_context = _CONTEXT_BUTTON in body or bool(_CONTEXT_TRIGGER.search(body))
    if not (wants_rule or wants_context):
        return None
    content = _strip_framing(body)
    if not content:
        LOGGER.debug("Suggestion trigger found but no content remained after cleanup")
        return None
    return Suggestion(rule=content if wants_rule else "", context=content if wants_context else "")


def _strip_framing(body: str) -> str:
    core = body.replace(_RULE_BUTTON, "").replace(_CONTEXT_BUTTON, "").strip()
    for pattern in _PREAMBLES:
        core = pattern.sub("", core).strip()
    for pattern in _SUFFIXES:
        core = pattern.sub("", core).strip()
    core = clean_suggestion_content(core)
    if len(core) > MAX_SUGGESTION_CHARS:
        return f"{core[:MAX_SUGGESTION_CHARS]}..."
    return core


def format_bullets(snippet: str) -> str:
    """Turn a ``"a; b"`` snippet into ``"- a\\n- b"`` bullet lines."""

    items = [item.strip() for item in (snippet or "").split(";")]
    return "\n".join(f"- {item}" for item in items if item)


def append_block(existing: str, snippet: str) -> str:
    """Append ``snippet`` as bullet lines to ``existing``, separated by a blank line."""

    bullets = format_bullets(snippet)
    if not bullets:
        return existing
    base = (existing or "").rstrip()
    return f"{base}\n\n{bullets}" if base else bullets


__all__ = [
    "MAX_SUGGESTION_CHARS",
    "append_block",
    "clean_suggestion_content",
    "format_bullets",
    "infer_suggestion_from_text",
]

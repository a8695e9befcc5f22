"""Lightweight intent classification for chat input."""

from __future__ import annotations

import re
from typing import Literal

RequestType = Literal["translate", "question", "general"]

_QUESTION_MARKS = ("?", "？")
_STRONG_TRANSLATE = ("번역해", "번역 해", "옮겨줘", "옮겨 줘", "바꿔줘", "바꿔 줘", "번역 부탁")
_WEAK_TRANSLATE = re.compile(r"\btranslate\b|변환|다듬어|수정해|고쳐|\brewrite\b|\bpolish\b", re.IGNORECASE)
_QUESTION_WORDS = re.compile(
    r"의미|알려|왜|설명|무슨|어떻게|어떤|\b(?:how|what|why|which|explain)\b",
    re.IGNORECASE,
)
# Short words only count at the start of a word so that e.g. "뭔가" stays general.
_SHORT_QUESTION_WORDS = re.compile(r"(?:^|\s)(?:뭐|맞아|틀려|어때)")

_WEB_SLASH = re.compile(r"^/(?:web|search)\s+(?P<query>[\s\S]+)$", re.IGNORECASE)
_WEB_COLON = re.compile(r"^(?:웹검색|웹 검색|web)\s*:\s*(?P<query>[\s\S]+)$", re.IGNORECASE)


def detect_request_type(text: str | None) -> RequestType:
    """Classify ``text`` as a translate, question or general request.

    Precedence: question marks, strong translation verbs, question words,
    weak translation verbs, then ``general``.
    """

    stripped = (text or "").strip()
    if not stripped:
        return "general"
    if any(mark in stripped for mark in _QUESTION_MARKS):
        return "question"
    if any(keyword in stripped for keyword in _STRONG_TRANSLATE):
        return "translate"
    if _QUESTION_WORDS.search(stripped) or _SHORT_QUESTION_WORDS.search(stripped):
        return "question"
    if _WEAK_TRANSLATE.search(stripped):
        return "translate"
    return "general"


def extract_web_search_query(text: str | None) -> str | None:
    """Return the query of an explicit ``/web``, ``/search`` or ``web:`` request."""

    stripped = (text or "").strip()
    if not stripped:
        return None
    for pattern in (_WEB_SLASH, _WEB_COLON):
        match = pattern.match(stripped)
        if match:
            query = match.group("query").strip()
            return query or None
    return None


__all__ = ["RequestType", "detect_request_type", "extract_web_search_query"]

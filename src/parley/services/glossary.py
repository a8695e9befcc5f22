"""Glossary lookup collaborator and best-effort query helpers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol, Sequence

LOGGER = logging.getLogger(__name__)

DEFAULT_GLOSSARY_LIMIT = 12
CONTEXT_QUERY_CHARS = 1200
TOTAL_QUERY_CHARS = 2000


@dataclass(slots=True, frozen=True)
class GlossaryEntry:
    """A single term pair returned by the glossary."""

    source: str
    target: str
    notes: str = ""
    domain: str | None = None


class GlossaryLookup(Protocol):
    """Read-only glossary search provided by the host application."""

    async def search(
        self,
        project_id: str,
        query: str,
        domain: str | None,
        limit: int,
    ) -> Sequence[GlossaryEntry]:
        ...


def build_glossary_query(
    text: str,
    context_text: str = "",
    *,
    context_chars: int = CONTEXT_QUERY_CHARS,
    total_chars: int = TOTAL_QUERY_CHARS,
) -> str:
    """Combine the user text with a bounded slice of attached context."""

    parts = [(text or "").strip()]
    context = (context_text or "").strip()
    if context:
        parts.append(context[:context_chars])
    return "\n".join(part for part in parts if part)[:total_chars]


async def search_glossary(
    lookup: GlossaryLookup | None,
    project_id: str | None,
    query: str,
    *,
    domain: str | None = None,
    limit: int = DEFAULT_GLOSSARY_LIMIT,
) -> list[GlossaryEntry]:
    """Query ``lookup`` and return its hits, or an empty list on any failure."""

    if lookup is None or not project_id or not query.strip():
        return []
    try:
        hits = await lookup.search(project_id, query, domain, limit)
    except Exception:
        LOGGER.debug("Glossary lookup failed for project %s", project_id, exc_info=True)
        return []
    return list(hits or ())[:limit]


__all__ = [
    "CONTEXT_QUERY_CHARS",
    "DEFAULT_GLOSSARY_LIMIT",
    "GlossaryEntry",
    "GlossaryLookup",
    "TOTAL_QUERY_CHARS",
    "build_glossary_query",
    "search_glossary",
]

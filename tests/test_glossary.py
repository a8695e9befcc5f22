"""Tests for glossary query helpers."""

from __future__ import annotations

import pytest

from parley.services.glossary import GlossaryEntry, build_glossary_query, search_glossary

from tests.helpers import StaticGlossary


def test_query_combines_text_and_bounded_context() -> None:
    query = build_glossary_query("release notes", "x" * 50, context_chars=10, total_chars=100)

    assert query == "release notes\n" + "x" * 10


def test_query_is_capped() -> None:
    assert len(build_glossary_query("a" * 50, "b" * 50, total_chars=20)) == 20
    assert build_glossary_query("  ", "") == ""


@pytest.mark.asyncio
async def test_search_returns_hits_up_to_limit() -> None:
    glossary = StaticGlossary([GlossaryEntry("release", "출시"), GlossaryEntry("build", "빌드")])

    hits = await search_glossary(glossary, "proj-1", "release", domain="ui", limit=1)

    assert hits == [GlossaryEntry("release", "출시")]
    assert glossary.queries == [("proj-1", "release", "ui", 1)]


@pytest.mark.asyncio
async def test_search_swallows_failures() -> None:
    assert await search_glossary(StaticGlossary(fail=True), "proj-1", "release") == []


@pytest.mark.asyncio
async def test_search_skips_without_project_or_query() -> None:
    glossary = StaticGlossary([GlossaryEntry("a", "b")])

    assert await search_glossary(glossary, None, "release") == []
    assert await search_glossary(glossary, "proj-1", "   ") == []
    assert await search_glossary(None, "proj-1", "release") == []
    assert glossary.queries == []

"""Tests for ghost chip masking and integrity checks."""

from __future__ import annotations

import pytest

from parley.chat.ghost_mask import (
    GhostMaskSession,
    collect_chip_set,
    collect_chips,
    describe_missing,
    diff_missing,
    find_ghost_chips,
    mask,
    restore,
)


@pytest.mark.parametrize(
    "text",
    [
        "",
        "plain text without chips",
        "Hello {{user}}, you have {count} new messages",
        "<b>Bold</b> and <span class=\"x\">styled</span><br/>next line",
        "Line one\\nLine two <br> Line three <custom-tag/>",
        "{0} of {1} files, {user.name} and {user-name}",
        "Repeat {{user}} and {{user}} again",
    ],
)
def test_restore_inverts_mask(text: str) -> None:
    session = GhostMaskSession()

    masked = mask(text, session)

    assert restore(masked, session) == text


def test_mask_hides_every_chip_from_the_model() -> None:
    session = GhostMaskSession()

    masked = mask("Hi {{user}} <b>now</b>", session)

    assert "{{user}}" not in masked
    assert "<b>" not in masked and "</b>" not in masked
    assert masked.count("⟦PARLEY_GHOST:") == 3


def test_repeated_chip_reuses_its_sentinel() -> None:
    session = GhostMaskSession()

    masked = mask("{{user}} greets {{user}}", session)

    first = session.sentinel_for("{{user}}")
    assert masked == f"{first} greets {first}"
    assert session.size == 1


def test_distinct_chips_never_share_a_sentinel() -> None:
    session = GhostMaskSession()

    sentinels = {session.sentinel_for(chip) for chip in ("{a}", "{b}", "<b>", "</b>")}

    assert len(sentinels) == 4


def test_restore_leaves_foreign_sentinels_untouched() -> None:
    ours = GhostMaskSession()
    theirs = GhostMaskSession()
    mask("{x}", ours)
    foreign = theirs.sentinel_for("{y}")

    assert restore(f"keep {foreign}", ours) == f"keep {foreign}"


def test_double_brace_placeholder_is_one_chip() -> None:
    chips = find_ghost_chips("Hello {{user}}!")

    assert [(chip.value, chip.kind, chip.start, chip.end) for chip in chips] == [("{{user}}", "variable", 6, 14)]


def test_chip_kinds_are_reported() -> None:
    kinds = [chip.kind for chip in find_ghost_chips("{name} <i>x</i> <br/> \\n")]

    assert kinds == ["variable", "tag", "tag", "newline", "newline"]


def test_actual_newlines_are_only_chips_on_request() -> None:
    assert find_ghost_chips("a\nb") == []
    chips = find_ghost_chips("a\nb", include_actual_newlines=True)
    assert [chip.kind for chip in chips] == ["newline"]


def test_collect_chips_keeps_first_appearance_order() -> None:
    assert collect_chips("<b>{x}</b> {x} <b>") == ["<b>", "{x}", "</b>"]
    assert collect_chip_set("<b>{x}</b>") == {"<b>", "{x}", "</b>"}


def test_diff_missing_reports_dropped_chips() -> None:
    required = collect_chips("Hello {{user}}, see <b>this</b>")

    missing = diff_missing(required, "Bonjour, voir <b>ceci</b>")

    assert missing == ["{{user}}"]


def test_diff_missing_rescans_chips_instead_of_substrings() -> None:
    required = collect_chips("Hi {{user}} and {user}!")

    assert diff_missing(required, "Salut {{user}} !") == ["{user}"]
    assert diff_missing(["{name}"], "Bonjour {{name}}") == ["{name}"]
    assert diff_missing(["{user}"], "Salut {user} et {{user}}") == []


def test_diff_missing_sorts_sets() -> None:
    assert diff_missing({"{b}", "{a}"}, "") == ["{a}", "{b}"]


def test_nothing_to_protect_means_nothing_missing() -> None:
    assert diff_missing(collect_chips("plain"), "") == []


def test_describe_missing_names_every_chip() -> None:
    reason = describe_missing(["{{user}}", "<b>"])

    assert "{{user}}" in reason
    assert "<b>" in reason
    assert describe_missing([]) == ""

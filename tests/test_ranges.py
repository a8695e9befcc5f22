"""Tests for the TextRange value type."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from parley.core.ranges import TextRange


def test_text_range_normalizes_inverted_and_negative_offsets() -> None:
    assert TextRange(7, 3).to_tuple() == (3, 7)
    assert TextRange(-4, 2).to_tuple() == (0, 2)


def test_text_range_rejects_non_integer_offsets() -> None:
    with pytest.raises(ValueError):
        TextRange("a", 2)  # type: ignore[arg-type]


def test_text_range_helpers() -> None:
    span = TextRange(2, 5)

    assert span.length == 3
    assert not span.is_caret
    assert TextRange(4, 4).is_caret
    assert span.slice_of("abcdefg") == "cde"
    assert span.fits(5) and not span.fits(4)
    assert span.clamp(upper=3).to_tuple() == (2, 3)
    assert span.to_dict() == {"start": 2, "end": 5}


@pytest.mark.parametrize(
    "value",
    [
        TextRange(1, 4),
        {"start": 1, "end": 4},
        (1, 4),
        [4, 1],
        SimpleNamespace(start=1, end=4),
    ],
)
def test_from_value_accepts_common_shapes(value: object) -> None:
    assert TextRange.from_value(value) == TextRange(1, 4)


def test_from_value_rejects_unknown_shapes() -> None:
    with pytest.raises(ValueError):
        TextRange.from_value({"start": 1})
    with pytest.raises(ValueError):
        TextRange.from_value((1, 2, 3))
    with pytest.raises(TypeError):
        TextRange.from_value(object())

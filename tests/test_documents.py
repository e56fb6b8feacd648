from __future__ import annotations

import pytest
from lsprotocol.types import Position, Range

from lfortran_lsp.documents import (
    extract_range_text,
    find_word_ranges,
    prefix_at,
    source_suffix,
    word_at,
)


@pytest.mark.parametrize(
    "uri,suffix",
    [
        ("file:///src/legacy.f", ".f"),
        ("file:///src/my%20file.F90", ".F90"),
        ("file:///src/notes.txt", ".f90"),
        ("untitled:Untitled-1", ".f90"),
    ],
)
def test_source_suffix(uri: str, suffix: str) -> None:
    assert source_suffix(uri) == suffix


def test_word_at(function_call1: str) -> None:
    assert word_at(function_call1, 17, 21) == "eval_1d"
    assert word_at(function_call1, 17, 12) == "self"
    assert word_at(function_call1, 17, 24) == "eval_1d"
    assert word_at(function_call1, 6, 1) is None
    assert word_at(function_call1, 99, 0) is None


def test_prefix_at() -> None:
    assert prefix_at("  x = eva", 0, 9) == "eva"
    assert prefix_at("  x = eva", 0, 7) == "e"
    assert prefix_at("  x = eva", 0, 0) == ""
    assert prefix_at("x\n", 5, 0) == ""


def test_extract_range_text_runs_to_end_of_last_line(function_call1: str) -> None:
    target = Range(start=Position(line=7, character=4), end=Position(line=11, character=24))
    assert extract_range_text(function_call1, target).splitlines() == [
        "pure function eval_1d(self, x) result(res)",
        "      class(softmax), intent(in) :: self",
        "      real, intent(in) :: x(:)",
        "      real :: res(size(x))",
        "    end function eval_1d",
    ]


def test_extract_range_text_out_of_bounds(function_call1: str) -> None:
    past_end = Range(start=Position(line=50, character=0), end=Position(line=51, character=0))
    assert extract_range_text(function_call1, past_end) == ""
    clipped = Range(start=Position(line=19, character=0), end=Position(line=80, character=0))
    assert extract_range_text(function_call1, clipped) == "end module module_function_call1"


def test_find_word_ranges_is_case_insensitive_and_whole_word(function_call1: str) -> None:
    ranges = find_word_ranges(function_call1, "EVAL_1D")
    assert [(r.start.line, r.start.character, r.end.character) for r in ranges] == [
        (3, 19, 26),
        (7, 18, 25),
        (11, 17, 24),
        (17, 17, 24),
    ]

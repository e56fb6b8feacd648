from __future__ import annotations

import re
from pathlib import PurePosixPath
from urllib.parse import unquote, urlparse

from lsprotocol.types import Position, Range

from lfortran_lsp.resources import DEFAULT_SUFFIX

IDENTIFIER = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_TRAILING_IDENTIFIER = re.compile(r"[A-Za-z0-9_]*$")
_FORTRAN_SUFFIXES = {
    ".f", ".for", ".ftn", ".f77", ".f90", ".f95", ".f03", ".f08", ".f18",
    ".F", ".FOR", ".F90", ".F95", ".F03", ".F08",
}


def source_suffix(uri: str) -> str:
    """Suffix for the transient copy, so lfortran picks fixed or free form."""
    suffix = PurePosixPath(unquote(urlparse(uri).path)).suffix
    return suffix if suffix in _FORTRAN_SUFFIXES else DEFAULT_SUFFIX


def _line(text: str, line: int) -> str | None:
    lines = text.splitlines()
    if line < 0 or line >= len(lines):
        return None
    return lines[line]


def word_at(text: str, line: int, character: int) -> str | None:
    line_text = _line(text, line)
    if line_text is None:
        return None
    for match in IDENTIFIER.finditer(line_text):
        if match.start() <= character <= match.end():
            return match.group()
    return None


def prefix_at(text: str, line: int, character: int) -> str:
    line_text = _line(text, line)
    if line_text is None:
        return ""
    match = _TRAILING_IDENTIFIER.search(line_text[: max(0, character)])
    return match.group() if match else ""


def extract_range_text(text: str, target: Range) -> str:
    """Source of a definition: from its start through the end of its last line."""
    lines = text.splitlines()
    start = target.start
    if start.line >= len(lines):
        return ""
    end_line = min(max(target.end.line, start.line), len(lines) - 1)
    chunk = [lines[start.line][start.character :]]
    chunk.extend(lines[start.line + 1 : end_line + 1])
    return "\n".join(chunk).rstrip()


def find_word_ranges(text: str, word: str) -> list[Range]:
    # Fortran identifiers are case-insensitive.
    pattern = re.compile(
        rf"(?<![A-Za-z0-9_]){re.escape(word)}(?![A-Za-z0-9_])", re.IGNORECASE
    )
    ranges: list[Range] = []
    for line_number, line_text in enumerate(text.splitlines()):
        for match in pattern.finditer(line_text):
            ranges.append(
                Range(
                    start=Position(line=line_number, character=match.start()),
                    end=Position(line=line_number, character=match.end()),
                )
            )
    return ranges

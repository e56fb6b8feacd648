"""Translation between LFortran's CLI coordinates and LSP coordinates.

LFortran reports columns 1-based and expects 1-based ``--line``/``--column``
arguments. LSP characters are 0-based. Lines in the compiler's JSON output
already match the protocol's numbering and pass through unchanged.

Every location read from compiler output must go through
``to_protocol_range`` exactly once.
"""

from __future__ import annotations

from collections.abc import Mapping

from lsprotocol.types import Location, Position, Range

from lfortran_lsp.invariants import require_non_negative

TOOL_COLUMN_OFFSET = 1
TOOL_LINE_ARG_OFFSET = 1


def _tool_int(payload: Mapping[str, object], key: str) -> int:
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"expected a number for {key!r}, got {type(value).__name__}")
    return int(value)


def to_protocol_position(tool_position: Mapping[str, object]) -> Position:
    line = _tool_int(tool_position, "line")
    character = _tool_int(tool_position, "character") - TOOL_COLUMN_OFFSET
    return Position(line=max(0, line), character=max(0, character))


def to_protocol_range(tool_range: Mapping[str, object]) -> Range:
    start = tool_range["start"]
    end = tool_range["end"]
    if not isinstance(start, Mapping) or not isinstance(end, Mapping):
        raise TypeError("range endpoints must be objects")
    return Range(start=to_protocol_position(start), end=to_protocol_position(end))


def to_protocol_location(uri: str, tool_location: Mapping[str, object]) -> Location:
    tool_range = tool_location["range"]
    if not isinstance(tool_range, Mapping):
        raise TypeError("location range must be an object")
    # The compiler only sees the transient copy; report the editor's URI.
    return Location(uri=uri, range=to_protocol_range(tool_range))


def to_tool_args(line: int, character: int) -> tuple[int, int]:
    require_non_negative(line, reason="negative protocol line", axis="line")
    require_non_negative(character, reason="negative protocol character", axis="character")
    return line + TOOL_LINE_ARG_OFFSET, character + TOOL_COLUMN_OFFSET


def tool_position_flags(line: int, character: int) -> list[str]:
    tool_line, tool_column = to_tool_args(line, character)
    return [f"--line={tool_line}", f"--column={tool_column}"]

"""JSON-like value types for the compiler's textual output.

The compiler speaks JSON on stdout; these aliases keep the decoded value
space explicit at the boundary where raw output becomes protocol objects.
"""

from __future__ import annotations

from typing import TypeAlias


JSONScalar: TypeAlias = str | int | float | bool | None
JSONValue: TypeAlias = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

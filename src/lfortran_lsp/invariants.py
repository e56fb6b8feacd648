"""Invariant markers for the lfortran-lsp adapter."""

from __future__ import annotations

from typing import NoReturn

from lfortran_lsp.exceptions import NeverThrown


def never(reason: str = "", **env: object) -> NoReturn:
    """Mark a code path as intentionally unreachable.

    The optional env payload is metadata only; it is attached to the raised
    ``NeverThrown`` for logging.
    """
    raise NeverThrown(reason or "never() marker reached", env=env)


def require_non_negative(value: int, *, reason: str, **env: object) -> int:
    if value < 0:
        never(reason, value=value, **env)
    return value

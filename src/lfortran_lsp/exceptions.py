"""Exception types raised inside the lfortran-lsp adapter core."""

from __future__ import annotations


class LFortranLspError(RuntimeError):
    """Base class for adapter errors that never cross the protocol boundary."""


class CompilerNotFoundError(LFortranLspError):
    """The configured compiler path could not be resolved to an executable."""

    def __init__(self, configured_path: str):
        super().__init__(
            f"Failed to locate lfortran at {configured_path!r}, "
            "please specify its path in the configuration."
        )
        self.configured_path = configured_path


class NeverThrown(LFortranLspError):
    """Sentinel raised by ``never()`` when an unreachable path is reached.

    The ``env`` payload is diagnostic metadata recorded alongside the reason.
    """

    def __init__(self, reason: str, *, env: dict[str, object] | None = None):
        super().__init__(reason)
        self.reason = reason
        self.env = dict(env or {})

"""lfortran-lsp package root."""

from lfortran_lsp.exceptions import CompilerNotFoundError, LFortranLspError, NeverThrown
from lfortran_lsp.invariants import never

__all__ = [
    "__version__",
    "CompilerNotFoundError",
    "LFortranLspError",
    "NeverThrown",
    "never",
]

__version__ = "0.1.0"

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Sequence

from lsprotocol.types import Diagnostic, LocationLink, SymbolInformation, WorkspaceEdit

from lfortran_lsp.coordinates import tool_position_flags
from lfortran_lsp.decoder import (
    decode_definitions,
    decode_diagnostics,
    decode_document_symbols,
    decode_rename,
)
from lfortran_lsp.documents import source_suffix
from lfortran_lsp.invoker import run_compiler
from lfortran_lsp.resources import TransientWorkspace
from lfortran_lsp.schema import Settings

logger = logging.getLogger(__name__)

SHOW_DOCUMENT_SYMBOLS = "--show-document-symbols"
LOOKUP_NAME = "--lookup-name"
SHOW_ERRORS = "--show-errors"
RENAME_SYMBOL = "--rename-symbol"

EMPTY_LIST_OUTPUT = "[]"


class LFortranAccessor(ABC):
    """Operations the language server needs from LFortran.

    Implementations must not raise; failures come back as empty results.
    ``line`` and ``column`` are LSP (0-based) coordinates.
    """

    @abstractmethod
    def show_document_symbols(
        self, uri: str, text: str, settings: Settings
    ) -> list[SymbolInformation]:
        """Look up all the symbols in the given document."""

    @abstractmethod
    def lookup_name(
        self, uri: str, text: str, line: int, column: int, settings: Settings
    ) -> list[LocationLink]:
        """Locate the definition of the symbol at the given position."""

    @abstractmethod
    def show_errors(self, uri: str, text: str, settings: Settings) -> list[Diagnostic]:
        """Report the errors and warnings for the given document."""

    @abstractmethod
    def rename_symbol(
        self,
        uri: str,
        text: str,
        line: int,
        column: int,
        new_name: str,
        settings: Settings,
    ) -> WorkspaceEdit | None:
        """Edits renaming every occurrence of the symbol at the given position."""

    def close(self) -> None:
        return


class LFortranCLIAccessor(LFortranAccessor):
    """Talks to LFortran through its command-line interface."""

    def __init__(self, workspace: TransientWorkspace | None = None) -> None:
        self.workspace = workspace if workspace is not None else TransientWorkspace()
        self.workspace.acquire()

    def close(self) -> None:
        self.workspace.release()

    def run_compiler(
        self,
        uri: str,
        settings: Settings,
        flags: Sequence[str],
        text: str,
        *,
        default_output: str = EMPTY_LIST_OUTPUT,
        empty_output_is_success: bool = False,
    ) -> str:
        return run_compiler(
            settings,
            flags,
            text,
            workspace=self.workspace,
            default_output=default_output,
            empty_output_is_success=empty_output_is_success,
            suffix=source_suffix(uri),
        )

    def show_document_symbols(
        self, uri: str, text: str, settings: Settings
    ) -> list[SymbolInformation]:
        stdout = self.run_compiler(uri, settings, [SHOW_DOCUMENT_SYMBOLS], text)
        return decode_document_symbols(uri, stdout)

    def lookup_name(
        self, uri: str, text: str, line: int, column: int, settings: Settings
    ) -> list[LocationLink]:
        flags = [LOOKUP_NAME, *tool_position_flags(line, column)]
        stdout = self.run_compiler(uri, settings, flags, text)
        definitions = decode_definitions(uri, stdout)
        if not definitions:
            logger.debug("No definition at line=%d, column=%d", line, column)
        return definitions

    def show_errors(self, uri: str, text: str, settings: Settings) -> list[Diagnostic]:
        stdout = self.run_compiler(
            uri,
            settings,
            [SHOW_ERRORS],
            text,
            default_output="",
            empty_output_is_success=True,
        )
        return decode_diagnostics(stdout, settings.max_number_of_problems)

    def rename_symbol(
        self,
        uri: str,
        text: str,
        line: int,
        column: int,
        new_name: str,
        settings: Settings,
    ) -> WorkspaceEdit | None:
        flags = [RENAME_SYMBOL, *tool_position_flags(line, column)]
        stdout = self.run_compiler(uri, settings, flags, text)
        return decode_rename(uri, stdout, new_name)

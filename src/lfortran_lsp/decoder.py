"""Decoding of lfortran's JSON output into LSP objects.

Each ``decode_*`` function accepts the raw text captured by the invoker and
returns an empty result instead of raising when the text is unusable. All
tool ranges are translated through ``lfortran_lsp.coordinates``.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping

from lsprotocol.types import (
    Diagnostic,
    DiagnosticSeverity,
    LocationLink,
    SymbolInformation,
    SymbolKind,
    TextEdit,
    WorkspaceEdit,
)

from lfortran_lsp.coordinates import to_protocol_location, to_protocol_range
from lfortran_lsp.json_types import JSONValue

logger = logging.getLogger(__name__)

DIAGNOSTIC_SOURCE = "lfortran-lsp"
DEFAULT_SEVERITY = DiagnosticSeverity.Warning
DEFAULT_SYMBOL_KIND = SymbolKind.Function

# lfortran --show-errors can drop the opening brace of the first record.
REPAIR_OFFSET = 2
REPAIR_TEXT = "{"

_MALFORMED = (KeyError, TypeError, ValueError)


def parse_output(output: str, *, operation: str) -> JSONValue | None:
    if not output.strip():
        logger.debug("Empty %s response", operation)
        return None
    try:
        return json.loads(output)
    except json.JSONDecodeError as exc:
        logger.warning("Failed to parse %s response: %s", operation, output)
        logger.warning("%s", exc)
        return None


def parse_diagnostics_output(output: str) -> JSONValue | None:
    if not output.strip():
        return None
    try:
        return json.loads(output)
    except json.JSONDecodeError as error:
        logger.warning("Failed to parse response, attempting to repair and reparse it.")
        repaired = output[:REPAIR_OFFSET] + REPAIR_TEXT + output[REPAIR_OFFSET:]
        try:
            results = json.loads(repaired)
        except json.JSONDecodeError:
            logger.error("Failed to repair response: %s", output)
            logger.error("%s", error)
            return None
        logger.info("Repair succeeded")
        return results


def _records(payload: JSONValue | None) -> list[Mapping[str, object]]:
    if not isinstance(payload, list):
        return []
    return [record for record in payload if isinstance(record, Mapping)]


def _symbol_kind(raw: object) -> SymbolKind:
    if isinstance(raw, int) and not isinstance(raw, bool):
        try:
            return SymbolKind(raw)
        except ValueError:
            pass
    return DEFAULT_SYMBOL_KIND


def _severity(raw: object) -> DiagnosticSeverity:
    if isinstance(raw, int) and not isinstance(raw, bool):
        try:
            return DiagnosticSeverity(raw)
        except ValueError:
            pass
    return DEFAULT_SEVERITY


def decode_document_symbols(uri: str, output: str) -> list[SymbolInformation]:
    symbols: list[SymbolInformation] = []
    for record in _records(parse_output(output, operation="--show-document-symbols")):
        location = record.get("location")
        if not isinstance(location, Mapping):
            continue
        try:
            symbols.append(
                SymbolInformation(
                    name=str(record["name"]),
                    kind=_symbol_kind(record.get("kind")),
                    location=to_protocol_location(uri, location),
                )
            )
        except _MALFORMED as exc:
            logger.warning("Skipping malformed symbol %r: %s", record, exc)
    return symbols


def _candidate_ranges(records: Iterable[Mapping[str, object]]):
    for record in records:
        location = record.get("location")
        if not isinstance(location, Mapping):
            continue
        try:
            tool_range = location["range"]
            if not isinstance(tool_range, Mapping):
                raise TypeError("location range must be an object")
            yield to_protocol_range(tool_range)
        except _MALFORMED as exc:
            logger.warning("Skipping malformed location %r: %s", location, exc)


def decode_definitions(uri: str, output: str) -> list[LocationLink]:
    records = _records(parse_output(output, operation="--lookup-name"))
    for target in _candidate_ranges(records):
        return [
            LocationLink(
                target_uri=uri,
                target_range=target,
                target_selection_range=target,
            )
        ]
    return []


def decode_rename(uri: str, output: str, new_name: str) -> WorkspaceEdit | None:
    records = _records(parse_output(output, operation="--rename-symbol"))
    edits = [
        TextEdit(range=target, new_text=new_name) for target in _candidate_ranges(records)
    ]
    if not edits:
        return None
    return WorkspaceEdit(changes={uri: edits})


def _decode_diagnostic(record: Mapping[str, object]) -> Diagnostic:
    tool_range = record["range"]
    if not isinstance(tool_range, Mapping):
        raise TypeError("diagnostic range must be an object")
    return Diagnostic(
        range=to_protocol_range(tool_range),
        message=str(record.get("message", "")),
        severity=_severity(record.get("severity")),
        source=DIAGNOSTIC_SOURCE,
    )


def decode_diagnostics(output: str, max_diagnostics: int) -> list[Diagnostic]:
    payload = parse_diagnostics_output(output)
    if isinstance(payload, Mapping):
        payload = payload.get("diagnostics")
    diagnostics: list[Diagnostic] = []
    for record in _records(payload):
        if len(diagnostics) >= max_diagnostics:
            break
        try:
            diagnostics.append(_decode_diagnostic(record))
        except _MALFORMED as exc:
            logger.warning("Skipping malformed diagnostic %r: %s", record, exc)
    return diagnostics

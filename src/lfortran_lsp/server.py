from __future__ import annotations

import asyncio
import itertools
import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from functools import partial, wraps
from pathlib import Path
from typing import Any, Awaitable, Callable, TypeVar
from urllib.parse import unquote, urlparse

from pygls.lsp.server import LanguageServer
from lsprotocol.types import (
    COMPLETION_ITEM_RESOLVE,
    INITIALIZE,
    INITIALIZED,
    SHUTDOWN,
    TEXT_DOCUMENT_COMPLETION,
    TEXT_DOCUMENT_DEFINITION,
    TEXT_DOCUMENT_DID_CHANGE,
    TEXT_DOCUMENT_DID_CLOSE,
    TEXT_DOCUMENT_DID_OPEN,
    TEXT_DOCUMENT_DOCUMENT_HIGHLIGHT,
    TEXT_DOCUMENT_DOCUMENT_SYMBOL,
    TEXT_DOCUMENT_HOVER,
    TEXT_DOCUMENT_RENAME,
    WORKSPACE_DID_CHANGE_CONFIGURATION,
    WORKSPACE_DID_CHANGE_WORKSPACE_FOLDERS,
    CompletionItem,
    CompletionItemKind,
    CompletionOptions,
    CompletionParams,
    ConfigurationItem,
    ConfigurationParams,
    DefinitionParams,
    DidChangeConfigurationParams,
    DidChangeTextDocumentParams,
    DidChangeWorkspaceFoldersParams,
    DidCloseTextDocumentParams,
    DidOpenTextDocumentParams,
    DocumentHighlight,
    DocumentHighlightKind,
    DocumentHighlightParams,
    DocumentSymbolParams,
    Hover,
    HoverParams,
    InitializeParams,
    InitializedParams,
    LocationLink,
    MarkupContent,
    MarkupKind,
    PublishDiagnosticsParams,
    Registration,
    RegistrationParams,
    RenameParams,
    SymbolInformation,
    SymbolKind,
    TextDocumentSyncKind,
    WorkspaceEdit,
)

from lfortran_lsp import __version__
from lfortran_lsp.accessors import LFortranAccessor, LFortranCLIAccessor
from lfortran_lsp.config import CONFIG_SECTION, settings_defaults
from lfortran_lsp.documents import (
    extract_range_text,
    find_word_ranges,
    prefix_at,
    word_at,
)
from lfortran_lsp.scheduler import ValidationScheduler
from lfortran_lsp.schema import DocumentSnapshot, Settings
from lfortran_lsp.settings import SettingsResolver

logger = logging.getLogger(__name__)

SERVER_NAME = "lfortran-lsp"
MAX_WORKERS = 4

_validation_tokens = itertools.count(1)

T = TypeVar("T")
HandlerT = TypeVar("HandlerT", bound=Callable[..., Awaitable[Any]])

_COMPLETION_KINDS: dict[SymbolKind, CompletionItemKind] = {
    SymbolKind.Function: CompletionItemKind.Function,
    SymbolKind.Method: CompletionItemKind.Method,
    SymbolKind.Module: CompletionItemKind.Module,
    SymbolKind.Namespace: CompletionItemKind.Module,
    SymbolKind.Class: CompletionItemKind.Class,
    SymbolKind.Struct: CompletionItemKind.Struct,
    SymbolKind.Interface: CompletionItemKind.Interface,
    SymbolKind.Variable: CompletionItemKind.Variable,
    SymbolKind.Constant: CompletionItemKind.Constant,
    SymbolKind.Field: CompletionItemKind.Field,
    SymbolKind.Property: CompletionItemKind.Property,
    SymbolKind.Enum: CompletionItemKind.Enum,
    SymbolKind.EnumMember: CompletionItemKind.EnumMember,
}


@dataclass(frozen=True)
class ClientFlags:
    configuration: bool = False
    workspace_folders: bool = False
    diagnostic_related_information: bool = False


@dataclass
class SymbolIndex:
    version: int | None
    symbols: list[SymbolInformation] = field(default_factory=list)
    by_name: dict[str, SymbolInformation] = field(default_factory=dict)

    @classmethod
    def build(cls, version: int | None, symbols: list[SymbolInformation]) -> SymbolIndex:
        index = cls(version=version, symbols=list(symbols))
        for symbol in symbols:
            index.by_name.setdefault(symbol.name, symbol)
        return index


class LFortranLanguageServer(LanguageServer):
    def __init__(
        self,
        *args: Any,
        accessor: LFortranAccessor | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(*args, **kwargs)
        self._accessor = accessor
        self.client_flags = ClientFlags()
        self.settings_resolver = SettingsResolver(self._pull_configuration)
        self.scheduler: ValidationScheduler[DocumentSnapshot] = ValidationScheduler(
            self._schedule_validation, key=_snapshot_uri
        )
        self.symbol_index: dict[str, SymbolIndex] = {}
        self.compiler_executor = ThreadPoolExecutor(
            max_workers=MAX_WORKERS, thread_name_prefix="lfortran-lsp"
        )
        self.validation_tasks: set[asyncio.Task[None]] = set()
        self.latest_validation: dict[str, int] = {}

    @property
    def accessor(self) -> LFortranAccessor:
        if self._accessor is None:
            self._accessor = LFortranCLIAccessor()
        return self._accessor

    async def _pull_configuration(self, uri: str) -> object:
        return await pull_configuration(self, uri)

    def _schedule_validation(self, snapshot: DocumentSnapshot) -> None:
        schedule_validation(self, snapshot)


def _degrades_to(default: Callable[[Any], T]) -> Callable[[HandlerT], HandlerT]:
    """Turn any handler failure into ``default(params)`` instead of an error."""

    def decorate(handler: HandlerT) -> HandlerT:
        @wraps(handler)
        async def wrapper(ls: Any, params: Any) -> Any:
            try:
                return await handler(ls, params)
            except Exception:
                logger.exception("%s failed", handler.__name__)
                return default(params)

        return wrapper  # type: ignore[return-value]

    return decorate


def _nothing(_params: object) -> None:
    return None


def _empty_list(_params: object) -> list[Any]:
    return []


def _uri_to_path(uri: str) -> Path:
    parsed = urlparse(uri)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    return Path(uri)


def _snapshot_uri(snapshot: DocumentSnapshot) -> str:
    return snapshot.uri


def _snapshot(ls: Any, uri: str) -> DocumentSnapshot | None:
    document = ls.workspace.text_documents.get(uri)
    if document is None:
        logger.debug("No open document for %s", uri)
        return None
    return DocumentSnapshot(uri=uri, version=document.version, text=document.source)


def _open_snapshots(ls: Any) -> list[DocumentSnapshot]:
    snapshots = []
    for uri in list(ls.workspace.text_documents):
        snapshot = _snapshot(ls, uri)
        if snapshot is not None:
            snapshots.append(snapshot)
    return snapshots


async def _run_accessor(ls: Any, operation: Callable[..., T], *args: Any) -> T:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(ls.compiler_executor, partial(operation, *args))


def _apply_log_level(raw: object) -> None:
    if not isinstance(raw, str) or not raw:
        return
    level = getattr(logging, raw.upper(), None)
    if isinstance(level, int):
        logging.getLogger().setLevel(level)


def _workspace_root(params: InitializeParams) -> Path | None:
    if params.workspace_folders:
        return _uri_to_path(params.workspace_folders[0].uri)
    if params.root_uri:
        return _uri_to_path(params.root_uri)
    if params.root_path:
        return Path(params.root_path)
    return None


async def pull_configuration(ls: Any, uri: str) -> object:
    return await ls.workspace_configuration_async(
        ConfigurationParams(
            items=[ConfigurationItem(scope_uri=uri, section=CONFIG_SECTION)]
        )
    )


async def _settings(ls: Any, uri: str) -> Settings:
    return await ls.settings_resolver.get_settings(uri)


async def _symbols(ls: Any, snapshot: DocumentSnapshot, *, refresh: bool) -> SymbolIndex:
    index = ls.symbol_index.get(snapshot.uri)
    if not refresh and index is not None and index.version == snapshot.version:
        return index
    settings = await _settings(ls, snapshot.uri)
    symbols = await _run_accessor(
        ls, ls.accessor.show_document_symbols, snapshot.uri, snapshot.text, settings
    )
    index = SymbolIndex.build(snapshot.version, symbols)
    ls.symbol_index[snapshot.uri] = index
    return index


server = LFortranLanguageServer(
    SERVER_NAME,
    __version__,
    text_document_sync_kind=TextDocumentSyncKind.Incremental,
)


# Lifecycle


@server.feature(INITIALIZE)
def on_initialize(ls: LFortranLanguageServer, params: InitializeParams) -> None:
    capabilities = params.capabilities
    workspace = capabilities.workspace
    text_document = capabilities.text_document
    publish = text_document.publish_diagnostics if text_document else None
    ls.client_flags = ClientFlags(
        configuration=bool(workspace and workspace.configuration),
        workspace_folders=bool(workspace and workspace.workspace_folders),
        diagnostic_related_information=bool(publish and publish.related_information),
    )
    options = params.initialization_options
    if isinstance(options, dict):
        _apply_log_level(options.get("logLevel"))
    root = _workspace_root(params)
    ls.settings_resolver.configure(
        pull_supported=ls.client_flags.configuration,
        defaults=settings_defaults(root=root) if root is not None else None,
    )
    logger.info(
        "Initialized %s %s (configuration pull: %s, workspace folders: %s)",
        SERVER_NAME,
        __version__,
        ls.client_flags.configuration,
        ls.client_flags.workspace_folders,
    )


@server.feature(INITIALIZED)
async def on_initialized(ls: LFortranLanguageServer, params: InitializedParams) -> None:
    if not ls.client_flags.configuration:
        return
    try:
        await ls.client_register_capability_async(
            RegistrationParams(
                registrations=[
                    Registration(
                        id=str(uuid.uuid4()),
                        method=WORKSPACE_DID_CHANGE_CONFIGURATION,
                    )
                ]
            )
        )
    except Exception:
        logger.exception("Failed to register for configuration changes")


@server.feature(SHUTDOWN)
def on_shutdown(ls: LFortranLanguageServer, params: object = None) -> None:
    ls.scheduler.cancel_all()
    for task in list(ls.validation_tasks):
        task.cancel()
    if ls._accessor is not None:
        ls._accessor.close()
    ls.compiler_executor.shutdown(wait=False, cancel_futures=True)


@server.feature(WORKSPACE_DID_CHANGE_WORKSPACE_FOLDERS)
def did_change_workspace_folders(
    ls: LFortranLanguageServer, params: DidChangeWorkspaceFoldersParams
) -> None:
    event = params.event
    logger.debug(
        "Workspace folders changed: +%d -%d", len(event.added), len(event.removed)
    )


@server.feature(WORKSPACE_DID_CHANGE_CONFIGURATION)
def did_change_configuration(
    ls: LFortranLanguageServer, params: DidChangeConfigurationParams
) -> None:
    ls.settings_resolver.on_configuration_changed(params.settings)
    for snapshot in _open_snapshots(ls):
        schedule_validation(ls, snapshot)


# Document synchronization and diagnostics


def schedule_validation(ls: Any, snapshot: DocumentSnapshot) -> None:
    token = next(_validation_tokens)
    ls.latest_validation[snapshot.uri] = token
    task = asyncio.ensure_future(validate_document(ls, snapshot, token))
    ls.validation_tasks.add(task)
    task.add_done_callback(ls.validation_tasks.discard)


def _is_stale(ls: Any, current: DocumentSnapshot, token: int | None) -> bool:
    document = ls.workspace.text_documents.get(current.uri)
    if document is None or document.version != current.version:
        return True
    return token is not None and ls.latest_validation.get(current.uri) != token


async def validate_document(
    ls: Any, snapshot: DocumentSnapshot, token: int | None = None
) -> None:
    """Publish diagnostics for the open text of ``snapshot.uri``.

    Runs overlap in the compiler pool, so a result is dropped when the
    document moved on or a newer run was scheduled while it was computed.
    """
    try:
        current = _snapshot(ls, snapshot.uri)
        if current is None:
            return
        settings = await _settings(ls, current.uri)
        diagnostics = await _run_accessor(
            ls, ls.accessor.show_errors, current.uri, current.text, settings
        )
        if _is_stale(ls, current, token):
            logger.debug(
                "Dropping stale diagnostics for %s version %s", current.uri, current.version
            )
            return
        ls.text_document_publish_diagnostics(
            PublishDiagnosticsParams(
                uri=current.uri, version=current.version, diagnostics=diagnostics
            )
        )
    except Exception:
        logger.exception("Failed to validate %s", snapshot.uri)


def _on_content_change(ls: Any, uri: str) -> None:
    snapshot = _snapshot(ls, uri)
    if snapshot is not None:
        ls.scheduler.on_edit(snapshot)


@server.feature(TEXT_DOCUMENT_DID_OPEN)
def did_open(ls: LFortranLanguageServer, params: DidOpenTextDocumentParams) -> None:
    _on_content_change(ls, params.text_document.uri)


@server.feature(TEXT_DOCUMENT_DID_CHANGE)
def did_change(ls: LFortranLanguageServer, params: DidChangeTextDocumentParams) -> None:
    _on_content_change(ls, params.text_document.uri)


@server.feature(TEXT_DOCUMENT_DID_CLOSE)
def did_close(ls: LFortranLanguageServer, params: DidCloseTextDocumentParams) -> None:
    uri = params.text_document.uri
    ls.scheduler.cancel(uri)
    ls.settings_resolver.on_document_closed(uri)
    ls.symbol_index.pop(uri, None)
    ls.latest_validation.pop(uri, None)
    ls.text_document_publish_diagnostics(
        PublishDiagnosticsParams(uri=uri, diagnostics=[])
    )


# Language features


@server.feature(TEXT_DOCUMENT_DOCUMENT_SYMBOL)
@_degrades_to(_empty_list)
async def document_symbol(
    ls: LFortranLanguageServer, params: DocumentSymbolParams
) -> list[SymbolInformation]:
    snapshot = _snapshot(ls, params.text_document.uri)
    if snapshot is None:
        return []
    index = await _symbols(ls, snapshot, refresh=True)
    return list(index.symbols)


@server.feature(TEXT_DOCUMENT_DEFINITION)
@_degrades_to(_empty_list)
async def definition(
    ls: LFortranLanguageServer, params: DefinitionParams
) -> list[LocationLink]:
    snapshot = _snapshot(ls, params.text_document.uri)
    if snapshot is None:
        return []
    settings = await _settings(ls, snapshot.uri)
    position = params.position
    return await _run_accessor(
        ls,
        ls.accessor.lookup_name,
        snapshot.uri,
        snapshot.text,
        position.line,
        position.character,
        settings,
    )


@server.feature(TEXT_DOCUMENT_HOVER)
@_degrades_to(_nothing)
async def hover(ls: LFortranLanguageServer, params: HoverParams) -> Hover | None:
    snapshot = _snapshot(ls, params.text_document.uri)
    if snapshot is None:
        return None
    settings = await _settings(ls, snapshot.uri)
    position = params.position
    definitions = await _run_accessor(
        ls,
        ls.accessor.lookup_name,
        snapshot.uri,
        snapshot.text,
        position.line,
        position.character,
        settings,
    )
    if not definitions:
        return None
    preview = extract_range_text(snapshot.text, definitions[0].target_range)
    if not preview:
        return None
    return Hover(
        contents=MarkupContent(
            kind=MarkupKind.Markdown, value=f"```fortran\n{preview}\n```"
        )
    )


@server.feature(TEXT_DOCUMENT_COMPLETION, CompletionOptions(resolve_provider=True))
@_degrades_to(_empty_list)
async def completion(
    ls: LFortranLanguageServer, params: CompletionParams
) -> list[CompletionItem]:
    snapshot = _snapshot(ls, params.text_document.uri)
    if snapshot is None:
        return []
    position = params.position
    query = prefix_at(snapshot.text, position.line, position.character).lower()
    index = await _symbols(ls, snapshot, refresh=False)
    return [
        CompletionItem(
            label=name,
            kind=_COMPLETION_KINDS.get(symbol.kind, CompletionItemKind.Text),
            data={"uri": snapshot.uri},
        )
        for name, symbol in index.by_name.items()
        if name.lower().startswith(query)
    ]


def _item_uri(item: CompletionItem) -> str | None:
    data = item.data
    if isinstance(data, dict):
        uri = data.get("uri")
        return uri if isinstance(uri, str) else None
    return None


def _unchanged_item(item: CompletionItem) -> CompletionItem:
    return item


@server.feature(COMPLETION_ITEM_RESOLVE)
@_degrades_to(_unchanged_item)
async def completion_resolve(
    ls: LFortranLanguageServer, item: CompletionItem
) -> CompletionItem:
    # Only the entry highlighted in the editor is resolved, one at a time.
    uri = _item_uri(item)
    if uri is None:
        return item
    snapshot = _snapshot(ls, uri)
    index = ls.symbol_index.get(uri)
    if snapshot is None or index is None:
        return item
    symbol = index.by_name.get(item.label)
    if symbol is None:
        return item
    detail = extract_range_text(snapshot.text, symbol.location.range)
    if detail:
        item.detail = detail
    return item


@server.feature(TEXT_DOCUMENT_RENAME)
@_degrades_to(_nothing)
async def rename(ls: LFortranLanguageServer, params: RenameParams) -> WorkspaceEdit | None:
    snapshot = _snapshot(ls, params.text_document.uri)
    if snapshot is None:
        return None
    settings = await _settings(ls, snapshot.uri)
    position = params.position
    return await _run_accessor(
        ls,
        ls.accessor.rename_symbol,
        snapshot.uri,
        snapshot.text,
        position.line,
        position.character,
        params.new_name,
        settings,
    )


@server.feature(TEXT_DOCUMENT_DOCUMENT_HIGHLIGHT)
@_degrades_to(_empty_list)
async def document_highlight(
    ls: LFortranLanguageServer, params: DocumentHighlightParams
) -> list[DocumentHighlight]:
    snapshot = _snapshot(ls, params.text_document.uri)
    if snapshot is None:
        return []
    position = params.position
    word = word_at(snapshot.text, position.line, position.character)
    if word is None:
        return []
    return [
        DocumentHighlight(range=target, kind=DocumentHighlightKind.Text)
        for target in find_word_ranges(snapshot.text, word)
    ]


def start(start_fn: Callable[[], None] | None = None) -> None:
    """Serve over stdio unless another start function is given."""
    (start_fn or server.start_io)()


if __name__ == "__main__":  # pragma: no cover
    start()  # pragma: no cover

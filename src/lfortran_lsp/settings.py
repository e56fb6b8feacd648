from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from pydantic import ValidationError

from lfortran_lsp.config import DEFAULT_CONFIG_NAME, TomlTable, merge_payload, section_from_client
from lfortran_lsp.invariants import never
from lfortran_lsp.schema import Settings

logger = logging.getLogger(__name__)

ConfigurationPull = Callable[[str], Awaitable[object]]


def _canonical(table: TomlTable) -> TomlTable:
    # Alias spellings collapse to field names so a client key always lands on
    # the same slot as the workspace default it overrides.
    return Settings.model_validate(table).model_dump(exclude_unset=True)


def settings_from_payload(payload: object, defaults: TomlTable | None = None) -> Settings:
    try:
        base = _canonical(dict(defaults or {}))
    except ValidationError as exc:
        logger.warning("Invalid [settings] in %s, using built-in defaults: %s", DEFAULT_CONFIG_NAME, exc)
        base = {}
    if isinstance(payload, list):
        payload = payload[0] if payload else None
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        logger.warning(
            "Ignoring malformed settings payload of type %s", type(payload).__name__
        )
        payload = {}
    try:
        return Settings.model_validate(merge_payload(_canonical(payload), base))
    except ValidationError as exc:
        logger.warning("Invalid settings, falling back to defaults: %s", exc)
    return Settings.model_validate(base)


class SettingsResolver:
    """Per-document settings cache.

    Without client support for ``workspace/configuration`` every document
    sees the single global settings object pushed through
    ``workspace/didChangeConfiguration``. With it, settings are pulled per
    URI on first use and cached as a shared pending task, so concurrent
    callers for one URI wait on the same round-trip.
    """

    def __init__(
        self,
        pull: ConfigurationPull | None = None,
        *,
        pull_supported: bool = False,
        defaults: TomlTable | None = None,
    ) -> None:
        self._pull = pull
        self.pull_supported = pull_supported
        self._defaults: TomlTable = dict(defaults or {})
        self.global_settings = settings_from_payload(None, self._defaults)
        self._document_settings: dict[str, asyncio.Future[Settings]] = {}

    def configure(self, *, pull_supported: bool, defaults: TomlTable | None = None) -> None:
        self.pull_supported = pull_supported
        if defaults is not None:
            self._defaults = dict(defaults)
            self.global_settings = settings_from_payload(None, self._defaults)
        self._document_settings.clear()

    @property
    def cached_uris(self) -> list[str]:
        return list(self._document_settings)

    async def get_settings(self, uri: str) -> Settings:
        if not self.pull_supported or self._pull is None:
            return self.global_settings
        pending = self._document_settings.get(uri)
        if pending is None:
            pending = asyncio.ensure_future(self._fetch(uri))
            self._document_settings[uri] = pending
        # One waiter being cancelled must not cancel the shared pull.
        return await asyncio.shield(pending)

    async def _fetch(self, uri: str) -> Settings:
        if self._pull is None:
            never("configuration pull without a pull callback", uri=uri)
        try:
            payload = await self._pull(uri)
        except Exception:
            logger.exception("Failed to pull configuration for %s", uri)
            return self.global_settings
        return settings_from_payload(payload, self._defaults)

    def on_configuration_changed(self, settings_payload: object) -> None:
        if self.pull_supported:
            self._document_settings.clear()
            return
        section = section_from_client(settings_payload)
        if section is None:
            logger.debug("No usable configuration section in change; restoring defaults")
        self.global_settings = settings_from_payload(section, self._defaults)

    def on_document_closed(self, uri: str) -> None:
        self._document_settings.pop(uri, None)

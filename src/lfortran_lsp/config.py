from __future__ import annotations

import logging
import tomllib
from datetime import date, datetime, time
from pathlib import Path
from typing import TypeAlias

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "lfortran-lsp.toml"
CONFIG_SECTION = "LFortranLanguageServer"

TomlScalar: TypeAlias = str | int | float | bool | None | date | datetime | time
TomlValue: TypeAlias = TomlScalar | list["TomlValue"] | dict[str, "TomlValue"]
TomlTable: TypeAlias = dict[str, TomlValue]


def _load_toml(path: Path) -> TomlTable:
    if not path.is_file():
        logger.debug("No workspace config at %s", path)
        return {}
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except OSError as exc:
        logger.warning("Cannot read %s: %s", path, exc)
    except tomllib.TOMLDecodeError as exc:
        logger.warning("Ignoring invalid %s: %s", path, exc)
    return {}


def load_config(root: Path | None = None, config_path: Path | None = None) -> TomlTable:
    if config_path is None:
        base = root if root is not None else Path.cwd()
        config_path = base / DEFAULT_CONFIG_NAME
    return _load_toml(config_path)


def settings_defaults(
    root: Path | None = None, config_path: Path | None = None
) -> TomlTable:
    data = load_config(root=root, config_path=config_path)
    section = data.get("settings", {})
    return section if isinstance(section, dict) else {}


def merge_payload(payload: TomlTable, defaults: TomlTable) -> TomlTable:
    """Overlay ``payload`` on ``defaults``; nested tables merge key by key."""
    merged = dict(defaults)
    for key, value in payload.items():
        if value is None:
            continue
        base = merged.get(key)
        if isinstance(value, dict) and isinstance(base, dict):
            merged[key] = merge_payload(value, base)
        else:
            merged[key] = value
    return merged


def section_from_client(settings: object) -> TomlTable | None:
    """Extract this server's section from a ``didChangeConfiguration`` payload."""
    if not isinstance(settings, dict):
        return None
    section = settings.get(CONFIG_SECTION)
    return section if isinstance(section, dict) else None

"""
Loading, writing and per-document resolution of sync settings.
"""

import logging
from io import StringIO
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError
from ruamel.yaml import YAML

from .exceptions import SettingsError
from .models import Document, SchemaRegistry
from .settings_models import FileData, ParsedSettings, SyncSettings

logger = logging.getLogger(__name__)

_writer = YAML()
_writer.indent(mapping=2, sequence=4, offset=2)
_writer.preserve_quotes = True


def load_settings(path: Optional[Path]) -> SyncSettings:
    """
    Read and validate a settings file.

    Parameters:
        path (Optional[Path]): Settings file to read. A missing path or file yields the default settings.

    Returns:
        SyncSettings: The validated settings.

    Raises:
        SettingsError: If the file cannot be read, is not valid YAML, is not a mapping, or fails validation (the message names the offending field).
    """
    if path is None or not path.exists():
        logger.info("No settings file found, using defaults.")
        return SyncSettings()

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except IOError as e:
        raise SettingsError(
            f"Could not read settings file {path}: {e}", original_exception=e
        ) from e
    except yaml.YAMLError as e:
        raise SettingsError(
            f"Invalid YAML syntax in {path}: {e}", original_exception=e
        ) from e

    if raw is None:
        return SyncSettings()
    if not isinstance(raw, dict):
        raise SettingsError(
            f"Top level of {path.name} must be a mapping of settings."
        )

    try:
        return SyncSettings.model_validate(raw)
    except ValidationError as e:
        error_details = e.errors()[0]
        field = ".".join(map(str, error_details["loc"]))
        raise SettingsError(
            f"Validation error in field '{field}': {error_details['msg']}",
            original_exception=e,
        ) from e


def settings_to_string(settings: SyncSettings) -> str:
    string_stream = StringIO()
    _writer.dump(settings.model_dump(mode="json"), string_stream)
    return string_stream.getvalue()


def default_settings(registry: Optional[SchemaRegistry] = None) -> SyncSettings:
    """Default settings, with one empty custom regexp and a file link field
    per known note type."""
    data: Dict[str, Any] = {}
    if registry:
        data["custom_regexps"] = {name: "" for name in registry}
        data["file_link_fields"] = {
            name: fields[0] for name, fields in registry.items() if fields
        }
    return SyncSettings.model_validate(data)


def write_default_settings(
    path: Path, registry: Optional[SchemaRegistry] = None
) -> SyncSettings:
    settings = default_settings(registry)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(settings_to_string(settings), encoding="utf-8")
    logger.info(f"Wrote default settings to {path}")
    return settings


def folder_path_list(folder_path: str) -> List[str]:
    """Enclosing folders of a document, innermost first, vault root
    excluded."""
    parts = [p for p in folder_path.strip("/").split("/") if p]
    return ["/".join(parts[:i]) for i in range(len(parts), 0, -1)]


def default_deck_for(settings: SyncSettings, folders: List[str]) -> str:
    for folder in folders:
        if settings.folder_decks.get(folder):
            return settings.folder_decks[folder]
    return settings.defaults.deck


def default_tags_for(settings: SyncSettings, folders: List[str]) -> List[str]:
    tags: List[str] = []
    for folder in folders:
        if settings.folder_tags.get(folder):
            tags.extend(settings.folder_tags[folder].split())
    if settings.defaults.tag:
        tags.extend(settings.defaults.tag.split())
    return tags


def file_data_for(
    parsed: ParsedSettings, document: Document, url: str = ""
) -> FileData:
    """Resolve the folder-dependent defaults of one document."""
    folders = folder_path_list(document.folder_path)
    return FileData(
        parsed=parsed,
        default_deck=default_deck_for(parsed.settings, folders),
        default_tags=default_tags_for(parsed.settings, folders),
        url=url if parsed.defaults.add_file_link else "",
    )

"""
Defines the Pydantic models and dataclasses for sync settings.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Pattern

from pydantic import (
    BaseModel as PydanticBaseModel,
    ConfigDict,
    Field,
    field_validator,
)

from .constants import DEFAULT_ANKI_URL
from .models import SchemaRegistry


# --- Raw settings file models ---


class SyntaxSettings(PydanticBaseModel):
    begin_note: str = Field(default="START", min_length=1)
    end_note: str = Field(default="END", min_length=1)
    begin_inline_note: str = Field(default="STARTI", min_length=1)
    end_inline_note: str = Field(default="ENDI", min_length=1)
    target_deck_line: str = Field(default="TARGET DECK", min_length=1)
    file_tags_line: str = Field(default="FILE TAGS", min_length=1)
    delete_note_line: str = Field(default="DELETE", min_length=1)
    frozen_fields_line: str = Field(default="FROZEN", min_length=1)

    model_config = ConfigDict(extra="forbid")


class DefaultSettings(PydanticBaseModel):
    tag: str = Field(default="Obsidian_to_Anki")
    deck: str = Field(default="Default", min_length=1)
    add_file_link: bool = False
    add_context: bool = False
    curly_cloze: bool = False
    highlights_to_cloze: bool = False
    id_comments: bool = True
    add_obsidian_tags: bool = False

    model_config = ConfigDict(extra="forbid")


class SyncSettings(PydanticBaseModel):
    """Top-level layout of ``flashsync.yaml``."""

    vault_name: Optional[str] = Field(default=None)
    anki_url: str = Field(default=DEFAULT_ANKI_URL, min_length=1)
    syntax: SyntaxSettings = Field(default_factory=SyntaxSettings)
    defaults: DefaultSettings = Field(default_factory=DefaultSettings)
    custom_regexps: Dict[str, str] = Field(default_factory=dict)
    file_link_fields: Dict[str, str] = Field(default_factory=dict)
    context_fields: Dict[str, str] = Field(default_factory=dict)
    folder_decks: Dict[str, str] = Field(default_factory=dict)
    folder_tags: Dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")

    @field_validator("custom_regexps")
    @classmethod
    def validate_custom_regexps(cls, v: Dict[str, str]) -> Dict[str, str]:
        """Reject expressions that Python's ``re`` cannot compile."""
        for note_type, expression in v.items():
            if not expression:
                continue
            try:
                re.compile(expression, re.MULTILINE)
            except re.error as e:
                raise ValueError(
                    f"Invalid custom regexp for note type '{note_type}': {e}"
                ) from e
        return v

    @field_validator("folder_decks", "folder_tags", mode="before")
    @classmethod
    def normalize_folder_keys(cls, v):
        """Folder keys are vault-relative POSIX paths without slashes at
        either end."""
        if isinstance(v, dict):
            return {
                str(k).strip("/"): val
                for k, val in v.items()
                if val is not None
            }
        return v


# --- Compiled settings and per-document data ---


@dataclass
class ParsedSettings:
    """Settings with the syntax tokens compiled into regexps, plus the
    remote schema registry the parsers validate against."""

    settings: SyncSettings
    fields_dict: SchemaRegistry
    note_regexp: Pattern[str]
    inline_regexp: Pattern[str]
    deck_regexp: Pattern[str]
    tag_regexp: Pattern[str]
    delete_regexp: Pattern[str]
    frozen_regexp: Pattern[str]
    @property
    def defaults(self) -> DefaultSettings:
        return self.settings.defaults

    @property
    def custom_regexps(self) -> Dict[str, str]:
        return {
            note_type: expression
            for note_type, expression in self.settings.custom_regexps.items()
            if expression
        }


@dataclass
class FileData:
    """Holds the per-document view of the settings.

    The default deck and tags depend on the folder the document lives in.
    """

    parsed: ParsedSettings
    default_deck: str
    default_tags: List[str]
    url: str = ""
    frozen_fields: Dict[str, Dict[str, str]] = field(default_factory=dict)

    @property
    def fields_dict(self) -> SchemaRegistry:
        return self.parsed.fields_dict

    @property
    def defaults(self) -> DefaultSettings:
        return self.parsed.defaults


def _escape(token: str) -> str:
    return re.escape(token)


def compile_settings(
    settings: SyncSettings,
    fields_dict: SchemaRegistry,
) -> ParsedSettings:
    """Compile the configured syntax tokens into the scanner's regexps."""
    syntax = settings.syntax
    return ParsedSettings(
        settings=settings,
        fields_dict=fields_dict,
        note_regexp=re.compile(
            r"^"
            + _escape(syntax.begin_note)
            + r"\n([\s\S]*?\n)"
            + _escape(syntax.end_note),
            re.MULTILINE,
        ),
        inline_regexp=re.compile(
            _escape(syntax.begin_inline_note)
            + r"(.*?)"
            + _escape(syntax.end_inline_note)
        ),
        deck_regexp=re.compile(
            r"^" + _escape(syntax.target_deck_line) + r"(?:\n|: )(.*)",
            re.MULTILINE,
        ),
        tag_regexp=re.compile(
            r"^" + _escape(syntax.file_tags_line) + r"(?:\n|: )(.*)",
            re.MULTILINE,
        ),
        # Accepts "DELETE: 45", "DELETE 45", "DELETE\nID: 45" and "DELETE <!--ID: 45-->".
        delete_regexp=re.compile(
            r"^"
            + _escape(syntax.delete_note_line)
            + r"(?:\n|:? )?(?:<!--)?(?:ID: )?(\d+).*",
            re.MULTILINE,
        ),
        frozen_regexp=re.compile(
            _escape(syntax.frozen_fields_line)
            + r" - (.*?):\n((?:[^\n][\n]?)+)"
        ),
    )

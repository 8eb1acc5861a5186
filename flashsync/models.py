"""
Pydantic models shared by the parsers, the scanner and the reconciler.
"""

from __future__ import annotations

import hashlib
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field

from .constants import DEFAULT_NOTE_OPTIONS, SENTINEL_IDENTIFIERS

# Schema name -> ordered field names, as reported by Anki.
SchemaRegistry = Dict[str, List[str]]


def fingerprint(text: str) -> str:
    """Return the deterministic content hash used for change detection."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class NoteKind(str, Enum):
    """
    The construct a note was parsed from.
    """

    BLOCK = "block"
    INLINE = "inline"
    REGEX = "regex"
    DELETE = "delete"


class SourceSpan(BaseModel):
    """Exact substring of a document that a construct was parsed from."""

    model_config = ConfigDict(frozen=True)

    start: int = Field(..., ge=0)
    end: int = Field(..., ge=0)
    text: str


class ParsedNote(BaseModel):
    """
    One flashcard record extracted from document text.

    A note is either new (``identifier`` is None) or existing. Notes whose
    identifier is one of the sentinel values failed validation and are never
    sent to Anki.
    """

    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    kind: NoteKind
    schema_name: str = Field(
        ..., description="Anki note type, e.g. 'Basic' or 'Cloze'."
    )
    fields: Dict[str, str] = Field(
        default_factory=dict,
        description="One entry per schema field; missing text is ''.",
    )
    tags: List[str] = Field(default_factory=list)
    deck_name: str = Field(default="Default")
    identifier: Optional[int] = Field(
        default=None,
        description="Anki note id; None means not yet created.",
    )
    delete: bool = Field(
        default=False,
        description="Whether the source text marks the note for removal.",
    )
    span: SourceSpan
    id_position: Optional[int] = Field(
        default=None,
        description="Document offset where a new identifier is written.",
    )

    @property
    def is_valid(self) -> bool:
        return self.identifier not in SENTINEL_IDENTIFIERS

    @property
    def is_new(self) -> bool:
        return self.identifier is None

    def to_anki_note(self) -> Dict[str, Any]:
        """Build the note payload expected by AnkiConnect's addNote."""
        return {
            "deckName": self.deck_name,
            "modelName": self.schema_name,
            "fields": dict(self.fields),
            "tags": list(self.tags),
            "options": dict(DEFAULT_NOTE_OPTIONS),
        }


class Document(BaseModel):
    """A Markdown file of the vault, as read at the start of a pass."""

    model_config = ConfigDict(frozen=True)

    path: str = Field(..., min_length=1, description="Vault-relative path.")
    text: str
    folder_path: str = Field(
        default="", description="Vault-relative folder, '' for the root."
    )

    @property
    def fingerprint(self) -> str:
        return fingerprint(self.text)


class SyncStateDelta(BaseModel):
    """Changes produced by one pass, applied only once the pass completes."""

    fingerprints: Dict[str, str] = Field(default_factory=dict)
    media_added: Set[str] = Field(default_factory=set)

    @property
    def is_empty(self) -> bool:
        return not self.fingerprints and not self.media_added


class SyncState(BaseModel):
    """Persisted between passes: last synced fingerprints and uploaded
    media."""

    fingerprints: Dict[str, str] = Field(default_factory=dict)
    uploaded_media: Set[str] = Field(default_factory=set)

    def apply(self, delta: SyncStateDelta) -> "SyncState":
        return SyncState(
            fingerprints={**self.fingerprints, **delta.fingerprints},
            uploaded_media=self.uploaded_media | delta.media_added,
        )


class SyncReport(BaseModel):
    """Summary of a completed pass."""

    scanned: List[str] = Field(default_factory=list)
    written: List[str] = Field(default_factory=list)
    failed_documents: List[str] = Field(default_factory=list)
    created: int = 0
    updated: int = 0
    deleted: int = 0
    failed: int = 0
    media_uploaded: int = 0
    warnings: List[str] = Field(default_factory=list)

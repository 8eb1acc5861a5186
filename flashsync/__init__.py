"""Flashsync - Synchronize Markdown flashcards with Anki."""

from .models import Document, NoteKind, ParsedNote, SyncReport, SyncState
from .db import SyncStateStore
from .engine import SyncEngine
from .scanner import DocumentScanner
from .settings_models import SyncSettings
from .vault import Vault

__all__ = [
    "Document",
    "NoteKind",
    "ParsedNote",
    "SyncReport",
    "SyncState",
    "SyncStateStore",
    "SyncEngine",
    "DocumentScanner",
    "SyncSettings",
    "Vault",
]

"""
Contracts of the collaborators the sync engine depends on.

The engine only uses these methods, so tests can substitute in-memory fakes
for the vault, AnkiConnect and the state store.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Set

from .models import Document, SchemaRegistry, SyncState


class DocumentSource(Protocol):
    def list_documents(self) -> List[Document]:
        ...

    def read_text(self, path: str) -> str:
        ...

    def write_text(self, path: str, text: str) -> None:
        ...

    def resolve_media(self, link: str, from_path: str) -> Optional[Path]:
        ...

    def url_for(self, path: str) -> str:
        ...


class AnkiTransport(Protocol):
    def invoke(self, action: str, **params: Any) -> Any:
        ...


class FormatConverter(Protocol):
    detected_media: Set[str]

    def format(
        self, text: str, curly_cloze: bool, highlights_to_cloze: bool
    ) -> str:
        ...

    def inject_url(
        self, fields: Dict[str, str], url: str, field_name: Optional[str]
    ) -> None:
        ...

    def inject_frozen_fields(
        self, fields: Dict[str, str], frozen: Dict[str, str]
    ) -> None:
        ...


class StateStore(Protocol):
    def load(self) -> SyncState:
        ...

    def save(self, state: SyncState) -> None:
        ...

    def load_registry(self) -> SchemaRegistry:
        ...

    def save_registry(self, registry: SchemaRegistry) -> None:
        ...

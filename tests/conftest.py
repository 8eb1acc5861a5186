import pytest
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional

from flashsync.db import SyncStateStore
from flashsync.exceptions import AnkiConnectError, AnkiConnectionError
from flashsync.formatter import FieldFormatter
from flashsync.notes import NoteContext
from flashsync.scanner import DocumentScanner
from flashsync.settings import file_data_for
from flashsync.settings_models import ParsedSettings, SyncSettings, compile_settings
from flashsync.models import Document
from flashsync.vault import Vault


class FakeAnki:
    """
    In-process stand-in for AnkiConnect.

    Implements the actions the sync engine uses, including nested ``multi``
    batches, with the same ``{result, error}`` envelopes. Individual actions
    can be made to fail through ``fail``, and ``reachable=False`` simulates
    Anki not running.
    """

    def __init__(self, registry: Dict[str, List[str]]):
        self.registry = registry
        self.notes: Dict[int, Dict[str, Any]] = {}
        self.media: Dict[str, str] = {}
        self.fail: Dict[str, str] = {}
        self.reachable = True
        self.legacy = False
        self.calls: List[str] = []
        self.sub_calls: List[Dict[str, Any]] = []
        self._next_id = 1

    def add_existing(self, identifier: int, fields: Dict[str, str], tags=None) -> None:
        self.notes[identifier] = {
            "modelName": "Basic",
            "deckName": "Default",
            "fields": dict(fields),
            "tags": list(tags or []),
            "cards": [identifier * 10],
        }
        self._next_id = max(self._next_id, identifier + 1)

    def actions_named(self, action: str) -> List[Dict[str, Any]]:
        return [c for c in self.sub_calls if c["action"] == action]

    # --- transport ---

    def invoke(self, action: str, **params: Any) -> Any:
        if not self.reachable:
            raise AnkiConnectionError("Cannot connect to AnkiConnect.")
        self.calls.append(action)
        if action == "multi":
            return [self._wrapped(a) for a in params["actions"]]
        if action in self.fail:
            raise AnkiConnectError(f"{action}: {self.fail[action]}")
        return self._dispatch(action, params)

    def _wrapped(self, request: Dict[str, Any]) -> Any:
        action = request["action"]
        params = request.get("params", {})
        if action == "multi":
            result: Any = [self._wrapped(a) for a in params["actions"]]
            return result if self.legacy else {"result": result, "error": None}
        self.sub_calls.append(request)
        if action in self.fail:
            return {"result": None, "error": self.fail[action]}
        try:
            result = self._dispatch(action, params)
        except KeyError as e:
            return {"result": None, "error": f"note was not found: {e}"}
        return result if self.legacy else {"result": result, "error": None}

    def _dispatch(self, action: str, params: Dict[str, Any]) -> Any:
        if action == "version":
            return 6
        if action == "modelNames":
            return list(self.registry)
        if action == "modelFieldNames":
            return self.registry[params["modelName"]]
        if action == "findNotes":
            return sorted(self.notes)
        if action == "addNote":
            note = params["note"]
            identifier = self._next_id
            self._next_id += 1
            self.notes[identifier] = {
                "modelName": note["modelName"],
                "deckName": note["deckName"],
                "fields": dict(note["fields"]),
                "tags": list(note["tags"]),
                "cards": [identifier * 10],
            }
            return identifier
        if action == "notesInfo":
            return [
                {"noteId": i, **self.notes[i]} for i in params["notes"]
            ]
        if action == "getTags":
            return sorted({t for n in self.notes.values() for t in n["tags"]})
        if action == "updateNoteFields":
            note = params["note"]
            self.notes[note["id"]]["fields"].update(note["fields"])
            return None
        if action == "deleteNotes":
            for identifier in params["notes"]:
                self.notes.pop(identifier, None)
            return None
        if action == "storeMediaFile":
            self.media[params["filename"]] = params["path"]
            return params["filename"]
        if action == "changeDeck":
            for note in self.notes.values():
                if set(note["cards"]) & set(params["cards"]):
                    note["deckName"] = params["deck"]
            return None
        if action == "removeTags":
            removed = set(params["tags"].split())
            for identifier in params["notes"]:
                note = self.notes[identifier]
                note["tags"] = [t for t in note["tags"] if t not in removed]
            return None
        if action == "addTags":
            for identifier in params["notes"]:
                note = self.notes[identifier]
                for tag in params["tags"].split():
                    if tag not in note["tags"]:
                        note["tags"].append(tag)
            return None
        raise AssertionError(f"FakeAnki does not implement '{action}'")


# --- Settings Fixtures ---


@pytest.fixture
def registry() -> Dict[str, List[str]]:
    return {
        "Basic": ["Front", "Back"],
        "Cloze": ["Text", "Back Extra"],
        "Basic (and reversed card)": ["Front", "Back"],
    }


@pytest.fixture
def settings() -> SyncSettings:
    return SyncSettings()


@pytest.fixture
def parsed_settings(settings: SyncSettings, registry) -> ParsedSettings:
    return compile_settings(settings, registry)


@pytest.fixture
def make_ctx(parsed_settings: ParsedSettings):
    """Build a NoteContext for a document path under the given settings."""

    def _make(
        path: str = "a.md",
        parsed: Optional[ParsedSettings] = None,
        deck_name: Optional[str] = None,
        url: str = "",
    ) -> NoteContext:
        parsed = parsed or parsed_settings
        folder = path.rpartition("/")[0]
        file_data = file_data_for(
            parsed, Document(path=path, text="", folder_path=folder), url
        )
        return NoteContext(
            file_data=file_data,
            formatter=FieldFormatter(),
            deck_name=deck_name or file_data.default_deck,
            path=path,
        )

    return _make


@pytest.fixture
def scanner(parsed_settings: ParsedSettings) -> DocumentScanner:
    return DocumentScanner(parsed_settings)


# --- Remote and storage Fixtures ---


@pytest.fixture
def fake_anki(registry) -> FakeAnki:
    return FakeAnki(registry)


@pytest.fixture
def vault_dir(tmp_path: Path) -> Path:
    root = tmp_path / "vault"
    root.mkdir()
    return root


@pytest.fixture
def vault(vault_dir: Path) -> Vault:
    return Vault(vault_dir, "Test Vault")


@pytest.fixture
def state_store() -> Generator[SyncStateStore, None, None]:
    """An initialized in-memory state store, closed on teardown."""
    store = SyncStateStore(":memory:")
    with store:
        yield store

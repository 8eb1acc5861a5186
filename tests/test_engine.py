import pytest

from flashsync.engine import SyncEngine
from flashsync.exceptions import AnkiConnectionError
from flashsync.models import SyncState, fingerprint
from flashsync.settings_models import SyncSettings


@pytest.fixture
def engine(fake_anki, vault, state_store) -> SyncEngine:
    return SyncEngine(fake_anki, vault, state_store, SyncSettings())


def _write(vault, name: str, text: str) -> None:
    path = vault.root / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def _read(vault, name: str) -> str:
    return (vault.root / name).read_text(encoding="utf-8")


def test_new_basic_note_end_to_end(engine, vault, fake_anki, state_store):
    _write(vault, "a.md", "START\nBasic\nFront: Q\nBack: A\nEND")

    report, state = engine.run()

    adds = fake_anki.actions_named("addNote")
    assert len(adds) == 1
    assert adds[0]["params"]["note"]["fields"] == {"Front": "Q", "Back": "A"}
    text = _read(vault, "a.md")
    assert "ID: 1" in text
    assert text.endswith("<!--ID: 1-->\nEND")
    assert state.fingerprints["a.md"] == fingerprint(text)
    assert state_store.load() == state
    assert report.created == 1


def test_second_run_is_a_no_op(engine, vault, fake_anki):
    _write(vault, "a.md", "START\nBasic\nFront: Q\nBack: A\nEND\n")
    engine.run()
    after_first = _read(vault, "a.md")
    fake_anki.sub_calls.clear()

    report, _ = engine.run()

    assert fake_anki.sub_calls == []
    assert report.scanned == []
    assert _read(vault, "a.md") == after_first


def test_edited_note_is_updated_not_recreated(engine, vault, fake_anki):
    _write(vault, "a.md", "START\nBasic\nFront: Q\nBack: A\nEND\n")
    engine.run()
    _write(vault, "a.md", _read(vault, "a.md").replace("Back: A", "Back: B"))

    report, _ = engine.run()

    assert report.created == 0
    assert report.updated == 1
    assert fake_anki.notes[1]["fields"] == {"Front": "Q", "Back": "B"}
    assert len(fake_anki.notes) == 1


def test_only_changed_documents_are_scanned(engine, vault):
    _write(vault, "a.md", "START\nBasic\nFront: Q\nEND\n")
    _write(vault, "b.md", "prose\n")
    engine.run()
    _write(vault, "b.md", "more prose\n")

    report, _ = engine.run()

    assert report.scanned == ["b.md"]


def test_cloze_note_without_cloze_is_not_sent(engine, vault, fake_anki):
    _write(vault, "a.md", "START\nCloze\nText: plain text\nEND\n")

    report, state = engine.run()

    assert fake_anki.actions_named("addNote") == []
    assert _read(vault, "a.md") == "START\nCloze\nText: plain text\nEND\n"
    assert any("cloze" in w for w in report.warnings)


def test_unknown_schema_leaves_document_unchanged(engine, vault, fake_anki):
    original = "START\nMystery\nFront: Q\nEND\nSTART\nBasic\nFront: ok\nEND\n"
    _write(vault, "a.md", original)

    report, _ = engine.run()

    assert report.created == 1
    text = _read(vault, "a.md")
    assert text.startswith("START\nMystery\nFront: Q\nEND\n")
    assert text.count("ID:") == 1


def test_delete_directive_removes_note(engine, vault, fake_anki):
    fake_anki.add_existing(45, {"Front": "a", "Back": "b"})
    _write(vault, "a.md", "intro\nDELETE\nID: 45\n")

    report, _ = engine.run()

    assert report.deleted == 1
    assert 45 not in fake_anki.notes
    assert _read(vault, "a.md") == "intro\n"


def test_folder_deck_is_used(fake_anki, vault, state_store):
    settings = SyncSettings.model_validate({"folder_decks": {"spanish": "Spanish"}})
    engine = SyncEngine(fake_anki, vault, state_store, settings)
    _write(vault, "spanish/words.md", "START\nBasic\nFront: hola\nBack: hello\nEND\n")

    engine.run()

    assert fake_anki.notes[1]["deckName"] == "Spanish"


def test_unreachable_anki_changes_nothing(engine, vault, fake_anki, state_store):
    fake_anki.reachable = False
    _write(vault, "a.md", "START\nBasic\nFront: Q\nEND\n")

    with pytest.raises(AnkiConnectionError):
        engine.run()

    assert _read(vault, "a.md") == "START\nBasic\nFront: Q\nEND\n"
    assert state_store.load() == SyncState()


def test_registry_is_cached(engine, fake_anki, state_store, registry):
    assert engine.load_registry() == registry
    fake_anki.calls.clear()

    assert engine.load_registry() == registry
    assert "modelNames" not in fake_anki.calls
    assert state_store.load_registry() == registry


def test_registry_refresh_refetches(engine, fake_anki, registry):
    engine.load_registry()
    fake_anki.registry = {"Basic": ["Front", "Back"]}

    assert engine.load_registry(refresh=True) == {"Basic": ["Front", "Back"]}


def test_failed_document_is_retried(engine, vault, fake_anki):
    _write(vault, "a.md", "START\nBasic\nFront: Q\nEND\n")
    fake_anki.fail["addNote"] = "temporarily unavailable"
    report, state = engine.run()
    assert "a.md" not in state.fingerprints

    del fake_anki.fail["addNote"]
    report, state = engine.run(state)

    assert report.created == 1
    assert "a.md" in state.fingerprints

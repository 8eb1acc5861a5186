from flashsync.change_detector import filter_changed, fingerprint, should_scan
from flashsync.models import Document, SyncState, SyncStateDelta


def test_fingerprint_is_deterministic():
    assert fingerprint("abc") == fingerprint("abc")
    assert fingerprint("abc") != fingerprint("abd")


def test_should_scan_new_document():
    doc = Document(path="a.md", text="x")

    assert should_scan(doc, SyncState())


def test_should_scan_unchanged_document():
    doc = Document(path="a.md", text="x")
    state = SyncState(fingerprints={"a.md": fingerprint("x")})

    assert not should_scan(doc, state)


def test_should_scan_modified_document():
    doc = Document(path="a.md", text="x changed")
    state = SyncState(fingerprints={"a.md": fingerprint("x")})

    assert should_scan(doc, state)


def test_filter_changed_keeps_order():
    docs = [
        Document(path="a.md", text="1"),
        Document(path="b.md", text="2"),
        Document(path="c.md", text="3"),
    ]
    state = SyncState(fingerprints={"b.md": fingerprint("2")})

    assert [d.path for d in filter_changed(docs, state)] == ["a.md", "c.md"]


def test_state_apply_returns_new_state():
    state = SyncState(fingerprints={"a.md": "old"}, uploaded_media={"x.png"})
    delta = SyncStateDelta(fingerprints={"a.md": "new"}, media_added={"y.png"})

    new_state = state.apply(delta)

    assert new_state.fingerprints == {"a.md": "new"}
    assert new_state.uploaded_media == {"x.png", "y.png"}
    assert state.fingerprints == {"a.md": "old"}
    assert state.uploaded_media == {"x.png"}

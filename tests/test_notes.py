import pytest

from flashsync.constants import CLOZE_ERROR, NOTE_TYPE_ERROR
from flashsync.models import NoteKind, SourceSpan
from flashsync.notes import block_fields, delete_note, parse_frozen_fields, parse_note
from flashsync.settings_models import SyncSettings, compile_settings


def _span(text: str) -> SourceSpan:
    return SourceSpan(start=0, end=len(text), text=text)


def _block(body: str, ctx, **kwargs):
    return parse_note(NoteKind.BLOCK, _span(body), ctx, body=body, **kwargs)


def _inline(body: str, ctx, **kwargs):
    return parse_note(NoteKind.INLINE, _span(body), ctx, body=body, **kwargs)


class TestBlockNotes:
    def test_block_note_fields_and_defaults(self, make_ctx):
        note = _block("Basic\nFront: Q\nBack: A\n", make_ctx())

        assert note.kind is NoteKind.BLOCK
        assert note.schema_name == "Basic"
        assert note.fields == {"Front": "Q", "Back": "A"}
        assert note.identifier is None
        assert note.is_new and note.is_valid
        assert note.tags == ["Obsidian_to_Anki"]
        assert note.deck_name == "Default"

    def test_block_note_missing_field_is_empty_string(self, make_ctx):
        note = _block("Basic\nFront: Only a question\n", make_ctx())

        assert note.fields == {"Front": "Only a question", "Back": ""}

    def test_block_note_pops_identifier_then_tags(self, make_ctx):
        body = "Basic\nFront: Q\nBack: A\nTags: one two\n<!--ID: 1234-->\n"
        note = _block(body, make_ctx())

        assert note.identifier == 1234
        assert note.tags == ["Obsidian_to_Anki", "one", "two"]
        assert note.fields == {"Front": "Q", "Back": "A"}

    def test_block_note_plain_identifier_line(self, make_ctx):
        note = _block("Basic\nFront: Q\nBack: A\nID: 77\n", make_ctx())

        assert note.identifier == 77
        assert not note.is_new

    def test_block_note_multiline_field_continues_current_field(self, make_ctx):
        body = "Basic\nFront: Line one\nline two\nBack: A\nmore answer\n"
        note = _block(body, make_ctx())

        assert note.fields["Front"] == "Line one<br>line two"
        assert note.fields["Back"] == "A<br>more answer"

    def test_block_note_first_lines_go_to_first_field(self, make_ctx):
        note = _block("Basic\nWhat is it?\nBack: This\n", make_ctx())

        assert note.fields == {"Front": "What is it?", "Back": "This"}

    def test_block_fields_longest_prefix_wins(self):
        fields = block_fields(
            ["Back: b", "Back Extra: extra"], ["Text", "Back", "Back Extra"]
        )

        assert fields == {"Text": "", "Back": "b", "Back Extra": "extra"}

    def test_block_note_unknown_schema_is_flagged(self, make_ctx):
        note = _block("Nonexistent\nFront: Q\n", make_ctx())

        assert note.identifier == NOTE_TYPE_ERROR
        assert not note.is_valid
        assert note.fields == {}

    def test_block_note_with_delete_keyword_is_deletion(self, make_ctx):
        note = _block("DELETE\nID: 45\n", make_ctx())

        assert note.delete
        assert note.identifier == 45


class TestInlineNotes:
    def test_inline_note_fields(self, make_ctx):
        note = _inline(" [Basic] What is 2+2? Back: 4 ", make_ctx())

        assert note.kind is NoteKind.INLINE
        assert note.fields == {"Front": "What is 2+2?", "Back": "4"}
        assert note.identifier is None

    def test_inline_note_strips_identifier_and_tags(self, make_ctx):
        note = _inline(
            " [Basic] Q Back: A Tags: x y <!--ID: 99--> ", make_ctx()
        )

        assert note.identifier == 99
        assert note.tags == ["Obsidian_to_Anki", "x", "y"]
        assert note.fields == {"Front": "Q", "Back": "A"}

    def test_inline_note_field_marker_must_be_exact_token(self, make_ctx):
        note = _inline(" [Basic] Front:Q is Back:not a marker ", make_ctx())

        assert note.fields == {"Front": "Front:Q is Back:not a marker", "Back": ""}

    def test_inline_note_without_type_is_flagged(self, make_ctx):
        note = _inline(" no type here ", make_ctx())

        assert note.identifier == NOTE_TYPE_ERROR


class TestRegexNotes:
    def test_regex_note_positional_groups(self, make_ctx):
        note = parse_note(
            NoteKind.REGEX,
            _span("Q: x\nA: y"),
            make_ctx(),
            groups=["x", "y"],
            schema_name="Basic",
        )

        assert note.fields == {"Front": "x", "Back": "y"}
        assert note.identifier is None

    def test_regex_note_pops_identifier_before_tags(self, make_ctx):
        note = parse_note(
            NoteKind.REGEX,
            _span("Q: x\nA: y Tags: t1\nID: 5"),
            make_ctx(),
            groups=["x", "y ", "Tags: t1", "5"],
            schema_name="Basic",
            has_id=True,
            has_tags=True,
        )

        assert note.identifier == 5
        assert note.tags == ["Obsidian_to_Anki", "t1"]
        assert note.fields == {"Front": "x", "Back": "y"}

    def test_regex_note_missing_group_is_empty(self, make_ctx):
        note = parse_note(
            NoteKind.REGEX,
            _span("x"),
            make_ctx(),
            groups=["x"],
            schema_name="Basic",
        )

        assert note.fields == {"Front": "x", "Back": ""}

    def test_parse_note_rejects_delete_kind(self, make_ctx):
        with pytest.raises(ValueError):
            parse_note(NoteKind.DELETE, _span("DELETE: 1"), make_ctx())


class TestNoteFinishing:
    def test_cloze_note_without_cloze_is_flagged(self, make_ctx):
        note = _block("Cloze\nText: nothing to hide\n", make_ctx())

        assert note.identifier == CLOZE_ERROR
        assert not note.is_valid

    def test_cloze_note_with_cloze_is_valid(self, make_ctx):
        note = _block("Cloze\nText: The {{c1::sun}} is hot\n", make_ctx())

        assert note.is_valid
        assert note.fields["Text"] == "The {{c1::sun}} is hot"

    def test_curly_cloze_is_converted_when_enabled(self, registry, make_ctx):
        settings = SyncSettings.model_validate({"defaults": {"curly_cloze": True}})
        ctx = make_ctx(parsed=compile_settings(settings, registry))

        note = _block("Cloze\nText: {Paris} is in {France}\n", ctx)

        assert note.is_valid
        assert note.fields["Text"] == "{{c1::Paris}} is in {{c2::France}}"

    def test_obsidian_tags_are_extracted_when_enabled(self, registry, make_ctx):
        settings = SyncSettings.model_validate(
            {"defaults": {"add_obsidian_tags": True}}
        )
        ctx = make_ctx(parsed=compile_settings(settings, registry))

        note = _block("Basic\nFront: Q #biology\nBack: A\n", ctx)

        assert "biology" in note.tags
        assert "#biology" not in note.fields["Front"]

    def test_file_link_is_injected_into_configured_field(self, registry, make_ctx):
        settings = SyncSettings.model_validate(
            {"defaults": {"add_file_link": True}, "file_link_fields": {"Basic": "Back"}}
        )
        ctx = make_ctx(
            parsed=compile_settings(settings, registry), url="obsidian://open?x"
        )

        note = _block("Basic\nFront: Q\nBack: A\n", ctx)

        assert note.fields["Front"] == "Q"
        assert note.fields["Back"].startswith("A<br><a href=")
        assert "obsidian://open?x" in note.fields["Back"]

    def test_heading_context_is_appended_to_context_field(self, registry, make_ctx):
        settings = SyncSettings.model_validate(
            {"defaults": {"add_context": True}, "context_fields": {"Basic": "Back"}}
        )
        ctx = make_ctx(parsed=compile_settings(settings, registry))

        note = _block(
            "Basic\nFront: Q\nBack: A\n", ctx, heading_context="a.md > Chapter"
        )

        assert note.fields["Back"] == "Aa.md > Chapter"

    def test_frozen_fields_are_appended(self, make_ctx):
        ctx = make_ctx()
        frozen = parse_frozen_fields("Basic", "Back: (frozen)\n", ctx)
        ctx.file_data.frozen_fields["Basic"] = frozen

        note = _block("Basic\nFront: Q\nBack: A\n", ctx)

        assert frozen == {"Front": "", "Back": "(frozen)"}
        assert note.fields == {"Front": "Q", "Back": "A(frozen)"}

    def test_frozen_fields_for_unknown_schema(self, make_ctx):
        assert parse_frozen_fields("Nope", "Front: x", make_ctx()) is None

    def test_file_tags_follow_note_tags(self, make_ctx):
        ctx = make_ctx()
        ctx.file_tags = ["from_file"]

        note = _block("Basic\nFront: Q\nTags: own\n", ctx)

        assert note.tags == ["Obsidian_to_Anki", "own", "from_file"]

    def test_delete_note_record(self, make_ctx):
        note = delete_note(45, _span("DELETE: 45"), make_ctx())

        assert note.kind is NoteKind.DELETE
        assert note.delete
        assert note.identifier == 45

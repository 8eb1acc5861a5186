import pytest
import yaml

from flashsync.exceptions import SettingsError
from flashsync.models import Document
from flashsync.settings import (
    default_deck_for,
    default_settings,
    default_tags_for,
    file_data_for,
    folder_path_list,
    load_settings,
    write_default_settings,
)
from flashsync.settings_models import SyncSettings, compile_settings


def test_missing_file_gives_defaults(tmp_path):
    settings = load_settings(tmp_path / "nope.yaml")

    assert settings == SyncSettings()
    assert settings.defaults.tag == "Obsidian_to_Anki"
    assert settings.defaults.id_comments is True
    assert settings.syntax.begin_note == "START"


def test_load_partial_settings(tmp_path):
    path = tmp_path / "flashsync.yaml"
    path.write_text(
        "syntax:\n  begin_note: BEGIN\n"
        "defaults:\n  deck: Main\n  curly_cloze: true\n"
        "folder_decks:\n  /langs/es/: Spanish\n",
        encoding="utf-8",
    )

    settings = load_settings(path)

    assert settings.syntax.begin_note == "BEGIN"
    assert settings.syntax.end_note == "END"
    assert settings.defaults.deck == "Main"
    assert settings.defaults.curly_cloze
    assert settings.folder_decks == {"langs/es": "Spanish"}


def test_empty_file_gives_defaults(tmp_path):
    path = tmp_path / "flashsync.yaml"
    path.write_text("", encoding="utf-8")

    assert load_settings(path) == SyncSettings()


def test_unknown_key_is_rejected(tmp_path):
    path = tmp_path / "flashsync.yaml"
    path.write_text("defaults:\n  colour: red\n", encoding="utf-8")

    with pytest.raises(SettingsError, match="defaults.colour"):
        load_settings(path)


def test_invalid_yaml_is_rejected(tmp_path):
    path = tmp_path / "flashsync.yaml"
    path.write_text("defaults: [unclosed\n", encoding="utf-8")

    with pytest.raises(SettingsError, match="Invalid YAML"):
        load_settings(path)


def test_non_mapping_is_rejected(tmp_path):
    path = tmp_path / "flashsync.yaml"
    path.write_text("- a\n- b\n", encoding="utf-8")

    with pytest.raises(SettingsError, match="mapping"):
        load_settings(path)


def test_invalid_custom_regexp_is_rejected(tmp_path):
    path = tmp_path / "flashsync.yaml"
    path.write_text("custom_regexps:\n  Basic: '(unclosed'\n", encoding="utf-8")

    with pytest.raises(SettingsError, match="custom_regexps"):
        load_settings(path)


def test_write_default_settings_round_trips(tmp_path, registry):
    path = tmp_path / "sub" / "flashsync.yaml"

    written = write_default_settings(path, registry)

    assert path.exists()
    raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    assert set(raw["custom_regexps"]) == set(registry)
    assert raw["file_link_fields"]["Cloze"] == "Text"
    assert load_settings(path) == written


def test_default_settings_without_registry():
    settings = default_settings()

    assert settings.custom_regexps == {}
    assert settings.file_link_fields == {}


def test_folder_path_list_innermost_first():
    assert folder_path_list("a/b/c") == ["a/b/c", "a/b", "a"]
    assert folder_path_list("") == []


def test_nearest_folder_deck_wins():
    settings = SyncSettings.model_validate(
        {"folder_decks": {"a": "Outer", "a/b": "Inner"}}
    )

    assert default_deck_for(settings, folder_path_list("a/b/c")) == "Inner"
    assert default_deck_for(settings, folder_path_list("a")) == "Outer"
    assert default_deck_for(settings, folder_path_list("z")) == "Default"


def test_folder_tags_accumulate():
    settings = SyncSettings.model_validate(
        {"folder_tags": {"a": "outer", "a/b": "inner more"}}
    )

    assert default_tags_for(settings, folder_path_list("a/b")) == [
        "inner",
        "more",
        "outer",
        "Obsidian_to_Anki",
    ]


def test_file_link_only_when_enabled(registry):
    doc = Document(path="a.md", text="")
    off = compile_settings(SyncSettings(), registry)
    on = compile_settings(
        SyncSettings.model_validate({"defaults": {"add_file_link": True}}), registry
    )

    assert file_data_for(off, doc, "obsidian://x").url == ""
    assert file_data_for(on, doc, "obsidian://x").url == "obsidian://x"


def test_custom_syntax_tokens_are_escaped(registry):
    settings = SyncSettings.model_validate(
        {"syntax": {"begin_note": "+++", "end_note": "---"}}
    )
    parsed = compile_settings(settings, registry)

    match = parsed.note_regexp.search("+++\nBasic\nFront: Q\n---")

    assert match is not None
    assert match.group(1) == "Basic\nFront: Q\n"

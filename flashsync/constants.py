"""
Syntax and protocol constants for flashsync.

Pure constants only: the configurable syntax tokens live in the settings models,
these are the fixed patterns and sentinels every parser shares.
"""
import re
from typing import Dict

# Sentinel identifiers. A parsed note carrying one of these is never sent
# to Anki; real Anki note ids are millisecond timestamps and cannot collide.
CLOZE_ERROR: int = 42
NOTE_TYPE_ERROR: int = 69
SENTINEL_IDENTIFIERS = frozenset({CLOZE_ERROR, NOTE_TYPE_ERROR})

CLOZE_SCHEMA = "Cloze"

TAG_PREFIX = "Tags: "
TAG_SEP = " "

# Appended to custom regexps when searching for an identifier / tags group.
ID_REGEXP_STR = r"\n?(?:<!--)?(?:ID: (\d+).*)"
TAG_REGEXP_STR = r"(Tags: .*)"

ID_REGEXP = re.compile(r"(?:<!--)?ID: (\d+)")
INLINE_TAG_REGEXP = re.compile(r"Tags: (.*)")
INLINE_TYPE_REGEXP = re.compile(r"\[(.*?)\]")

ANKI_CLOZE_REGEXP = re.compile(r"\{\{c\d+::[\s\S]+?\}\}")
OBS_TAG_REGEXP = re.compile(r"(?<![&\w])#(\w+)")

HEADING_REGEXP = re.compile(r"^(#{1,6})[ \t]+(.+?)[ \t#]*$", re.MULTILINE)

# Spans reserved before custom regexps are matched.
OBS_INLINE_MATH_REGEXP = re.compile(r"(?<!\$)\$(?=[\S])(?=[^$])[\s\S]*?\S\$")
OBS_DISPLAY_MATH_REGEXP = re.compile(r"\$\$[\s\S]*?\$\$")
OBS_CODE_REGEXP = re.compile(r"(?<!`)`(?=[^`])[\s\S]*?`")
OBS_DISPLAY_CODE_REGEXP = re.compile(r"```[\s\S]*?```")

# AnkiConnect
ANKICONNECT_VERSION = 6
DEFAULT_ANKI_URL = "http://127.0.0.1:8765"
DEFAULT_NOTE_OPTIONS: Dict[str, object] = {
    "allowDuplicate": False,
    "duplicateScope": "deck",
}

DEFAULT_SETTINGS_FILENAME = "flashsync.yaml"
DEFAULT_STATE_DIRNAME = ".flashsync"
DEFAULT_STATE_FILENAME = "state.db"

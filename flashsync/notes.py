"""
Parsing of note text into ParsedNote records.

Input is the text of a single construct; finding the construct in the
document is the scanner's job. Every kind goes through ``parse_note`` and
shares the same finishing step.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .constants import (
    ANKI_CLOZE_REGEXP,
    CLOZE_ERROR,
    CLOZE_SCHEMA,
    ID_REGEXP,
    INLINE_TAG_REGEXP,
    INLINE_TYPE_REGEXP,
    NOTE_TYPE_ERROR,
    OBS_TAG_REGEXP,
    TAG_PREFIX,
    TAG_SEP,
)
from .interfaces import FormatConverter
from .models import NoteKind, ParsedNote, SourceSpan
from .settings_models import FileData

logger = logging.getLogger(__name__)


@dataclass
class NoteContext:
    """Per-document state the parsers need."""

    file_data: FileData
    formatter: FormatConverter
    deck_name: str
    file_tags: List[str] = field(default_factory=list)
    path: str = ""


@dataclass
class _RawNote:
    """What a kind-specific splitter extracts before formatting.

    ``fields`` is None when the schema is not in the registry.
    """

    schema_name: str
    identifier: Optional[int]
    tags: List[str]
    fields: Optional[Dict[str, str]]
    delete: bool = False


def _split_tags(text: str) -> List[str]:
    return [tag for tag in text.split(TAG_SEP) if tag]


def _empty_fields(field_names: List[str]) -> Dict[str, List[str]]:
    return {name: [] for name in field_names}


def block_fields(lines: List[str], field_names: List[str]) -> Dict[str, str]:
    """Assign lines to fields by their ``<field>:`` prefix.

    The longest matching prefix wins; a line without one continues the
    current field.
    """
    if not field_names:
        return {}
    values = _empty_fields(field_names)
    by_length = sorted(field_names, key=len, reverse=True)
    current = field_names[0]
    for line in lines:
        for name in by_length:
            prefix = name + ":"
            if line.startswith(prefix):
                line = line[len(prefix):]
                current = name
                break
        values[current].append(line)
    return {name: "\n".join(parts).strip() for name, parts in values.items()}


def _split_block(text: str, ctx: NoteContext) -> _RawNote:
    lines = text.strip().split("\n")
    identifier = None
    tags: List[str] = []
    if lines and ID_REGEXP.search(lines[-1]):
        identifier = int(ID_REGEXP.search(lines.pop()).group(1))
    if lines and lines[-1].startswith(TAG_PREFIX):
        tags = _split_tags(lines.pop()[len(TAG_PREFIX):])
    schema_name = lines[0].strip() if lines else ""

    delete_keyword = ctx.file_data.parsed.settings.syntax.delete_note_line
    if schema_name == delete_keyword:
        return _RawNote(schema_name, identifier, tags, {}, delete=True)

    field_names = ctx.file_data.fields_dict.get(schema_name)
    if field_names is None:
        return _RawNote(schema_name, identifier, tags, None)
    return _RawNote(
        schema_name, identifier, tags, block_fields(lines[1:], field_names)
    )


def _split_inline(text: str, ctx: NoteContext) -> _RawNote:
    text = text.strip()
    identifier = None
    tags: List[str] = []

    id_match = ID_REGEXP.search(text)
    if id_match:
        identifier = int(id_match.group(1))
        text = text[: id_match.start()].strip()

    tag_match = INLINE_TAG_REGEXP.search(text)
    if tag_match:
        tags = _split_tags(tag_match.group(1).strip())
        text = text[: tag_match.start()].strip()

    type_match = INLINE_TYPE_REGEXP.search(text)
    if not type_match:
        return _RawNote("", identifier, tags, None)
    schema_name = type_match.group(1)
    text = text[type_match.end():]

    field_names = ctx.file_data.fields_dict.get(schema_name)
    if field_names is None:
        return _RawNote(schema_name, identifier, tags, None)
    if not field_names:
        return _RawNote(schema_name, identifier, tags, {})

    values = _empty_fields(field_names)
    current = field_names[0]
    for word in text.split():
        if word.endswith(":") and word[:-1] in values:
            current = word[:-1]
            continue
        values[current].append(word)
    fields = {name: " ".join(words) for name, words in values.items()}
    return _RawNote(schema_name, identifier, tags, fields)


def _split_regex(
    groups: List[Optional[str]],
    schema_name: str,
    has_id: bool,
    has_tags: bool,
    ctx: NoteContext,
) -> _RawNote:
    groups = list(groups)
    identifier = None
    tags: List[str] = []
    # The identifier group is last, the tags group just before it.
    if has_id:
        identifier = int(groups.pop())
    if has_tags:
        tags = _split_tags((groups.pop() or "")[len(TAG_PREFIX):].strip())

    field_names = ctx.file_data.fields_dict.get(schema_name)
    if field_names is None:
        return _RawNote(schema_name, identifier, tags, None)
    fields = {
        name: (groups[i] or "") if i < len(groups) else ""
        for i, name in enumerate(field_names)
    }
    return _RawNote(schema_name, identifier, tags, fields)


def _merge_tags(*tag_lists: List[str]) -> List[str]:
    merged: List[str] = []
    for tags in tag_lists:
        for tag in tags:
            if tag and tag not in merged:
                merged.append(tag)
    return merged


def _format_fields(
    fields: Dict[str, str], schema_name: str, ctx: NoteContext
) -> Dict[str, str]:
    defaults = ctx.file_data.defaults
    curly = CLOZE_SCHEMA in schema_name and defaults.curly_cloze
    return {
        name: ctx.formatter.format(
            value.strip(), curly, defaults.highlights_to_cloze
        ).strip()
        for name, value in fields.items()
    }


def parse_frozen_fields(
    schema_name: str, body: str, ctx: NoteContext
) -> Optional[Dict[str, str]]:
    """Parse the body of a frozen-fields directive like a block note's
    field lines. Returns None for an unknown schema."""
    field_names = ctx.file_data.fields_dict.get(schema_name)
    if field_names is None:
        return None
    fields = block_fields(body.strip().split("\n"), field_names)
    return _format_fields(fields, schema_name, ctx)


def _finish_note(
    raw: _RawNote,
    kind: NoteKind,
    ctx: NoteContext,
    span: SourceSpan,
    id_position: Optional[int],
    heading_context: str,
) -> ParsedNote:
    """Formatting and validation shared by all note kinds."""
    base = dict(
        kind=kind,
        schema_name=raw.schema_name,
        deck_name=ctx.deck_name,
        span=span,
        id_position=id_position,
    )
    if raw.delete:
        return ParsedNote(identifier=raw.identifier, delete=True, **base)
    if raw.fields is None:
        return ParsedNote(identifier=NOTE_TYPE_ERROR, tags=raw.tags, **base)

    settings = ctx.file_data.parsed.settings
    fields = _format_fields(raw.fields, raw.schema_name, ctx)
    if ctx.file_data.url:
        ctx.formatter.inject_url(
            fields,
            ctx.file_data.url,
            settings.file_link_fields.get(raw.schema_name),
        )
    frozen = ctx.file_data.frozen_fields.get(raw.schema_name)
    if frozen:
        ctx.formatter.inject_frozen_fields(fields, frozen)
    context_field = settings.context_fields.get(raw.schema_name)
    if heading_context and context_field in fields:
        fields[context_field] += heading_context

    inline_tags: List[str] = []
    if settings.defaults.add_obsidian_tags:
        for name, value in fields.items():
            inline_tags.extend(OBS_TAG_REGEXP.findall(value))
            fields[name] = OBS_TAG_REGEXP.sub("", value)

    identifier = raw.identifier
    if raw.schema_name == CLOZE_SCHEMA and not any(
        ANKI_CLOZE_REGEXP.search(value) for value in fields.values()
    ):
        logger.warning(
            f"Non-clozed 'Cloze' note in '{ctx.deck_name}' deck "
            f"({ctx.path}): {fields}"
        )
        identifier = CLOZE_ERROR

    return ParsedNote(
        fields=fields,
        tags=_merge_tags(
            ctx.file_data.default_tags, raw.tags, inline_tags, ctx.file_tags
        ),
        identifier=identifier,
        **base,
    )


def parse_note(
    kind: NoteKind,
    span: SourceSpan,
    ctx: NoteContext,
    *,
    body: Optional[str] = None,
    groups: Optional[List[Optional[str]]] = None,
    schema_name: str = "",
    has_id: bool = False,
    has_tags: bool = False,
    id_position: Optional[int] = None,
    heading_context: str = "",
) -> ParsedNote:
    """
    Parse one construct into a ParsedNote.

    Parameters:
        kind (NoteKind): Which syntax the construct uses.
        span (SourceSpan): Where the construct sits in its document.
        ctx (NoteContext): Per-document settings, formatter and deck.
        body (Optional[str]): Text between the delimiters for block and inline notes; defaults to ``span.text``.
        groups (Optional[List[Optional[str]]]): Capture groups of a regex note match.
        schema_name (str): Note type a regex note was configured for.
        has_id (bool): Whether the regex match ends with an identifier group.
        has_tags (bool): Whether the regex match has a tags group before the identifier group.
        id_position (Optional[int]): Offset where a new identifier would be written back.
        heading_context (str): Heading trail to append to the context field.

    Returns:
        ParsedNote: The parsed note. Invalid notes carry ``NOTE_TYPE_ERROR`` or ``CLOZE_ERROR`` as identifier.
    """
    text = span.text if body is None else body
    if kind is NoteKind.BLOCK:
        raw = _split_block(text, ctx)
    elif kind is NoteKind.INLINE:
        raw = _split_inline(text, ctx)
    elif kind is NoteKind.REGEX:
        raw = _split_regex(groups or [], schema_name, has_id, has_tags, ctx)
    else:
        raise ValueError(f"parse_note cannot parse notes of kind {kind!r}")
    return _finish_note(raw, kind, ctx, span, id_position, heading_context)


def delete_note(identifier: int, span: SourceSpan, ctx: NoteContext) -> ParsedNote:
    """Record for a delete directive line."""
    return ParsedNote(
        kind=NoteKind.DELETE,
        schema_name="",
        deck_name=ctx.deck_name,
        identifier=identifier,
        delete=True,
        span=span,
    )

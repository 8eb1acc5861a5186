"""
Finds note constructs and directives in a document and writes identifiers
back into its text.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from .constants import (
    HEADING_REGEXP,
    ID_REGEXP_STR,
    OBS_CODE_REGEXP,
    OBS_DISPLAY_CODE_REGEXP,
    OBS_DISPLAY_MATH_REGEXP,
    OBS_INLINE_MATH_REGEXP,
    TAG_REGEXP_STR,
)
from .formatter import FieldFormatter
from .interfaces import FormatConverter
from .models import Document, NoteKind, ParsedNote, SourceSpan
from .notes import NoteContext, delete_note, parse_frozen_fields, parse_note
from .settings import file_data_for
from .settings_models import FileData, ParsedSettings

logger = logging.getLogger(__name__)

Span = Tuple[int, int]

# (search for identifier, search for tags), most specific first.
REGEX_SEARCH_ORDER = [(True, True), (True, False), (False, True), (False, False)]


def id_to_str(identifier: int, inline: bool = False, comment: bool = False) -> str:
    result = f"ID: {identifier}"
    if comment:
        result = f"<!--{result}-->"
    return result + (" " if inline else "\n")


def _overlaps(start: int, end: int, spans: Iterable[Span]) -> bool:
    return any(start < s_end and s_start < end for s_start, s_end in spans)


@dataclass
class ScannedDocument:
    """A document together with everything the scanner found in it."""

    document: Document
    file_data: FileData
    formatter: FormatConverter
    notes: List[ParsedNote] = field(default_factory=list)
    target_deck: Optional[str] = None
    file_tags: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def path(self) -> str:
        return self.document.path

    @property
    def deck_name(self) -> str:
        return self.target_deck or self.file_data.default_deck

    @property
    def detected_media(self) -> Set[str]:
        return self.formatter.detected_media

    def new_notes(self) -> List[Tuple[int, ParsedNote]]:
        return [
            (i, n)
            for i, n in enumerate(self.notes)
            if n.is_valid and n.is_new and not n.delete
        ]

    def existing_notes(self) -> List[Tuple[int, ParsedNote]]:
        return [
            (i, n)
            for i, n in enumerate(self.notes)
            if n.is_valid and not n.is_new and not n.delete
        ]

    def delete_notes(self) -> List[Tuple[int, ParsedNote]]:
        return [
            (i, n)
            for i, n in enumerate(self.notes)
            if n.delete and not n.is_new
        ]


@dataclass
class RewriteResult:
    text: str
    changed: bool


class DocumentScanner:
    """
    Scans documents with one set of compiled settings.

    Constructs are claimed in priority order (block notes, inline notes,
    custom-regex notes, target deck, file tags, delete lines) and a later
    construct never claims text overlapping an earlier one.

    Parameters:
        parsed (ParsedSettings): Compiled settings and the schema registry.
        url_for (Optional[Callable[[str], str]]): Builds the file link injected into notes; no link when omitted.
        formatter_factory (Callable[[], FormatConverter]): Creates the per-document field formatter.
    """

    def __init__(
        self,
        parsed: ParsedSettings,
        url_for: Optional[Callable[[str], str]] = None,
        formatter_factory: Callable[[], FormatConverter] = FieldFormatter,
    ):
        self.parsed = parsed
        self.url_for = url_for
        self.formatter_factory = formatter_factory
        self._custom_regexps: List[Tuple[str, bool, bool, "re.Pattern[str]"]] = [
            (
                schema_name,
                has_id,
                has_tags,
                re.compile(
                    expression
                    + (TAG_REGEXP_STR if has_tags else "")
                    + (ID_REGEXP_STR if has_id else ""),
                    re.MULTILINE,
                ),
            )
            for schema_name, expression in parsed.custom_regexps.items()
            for has_id, has_tags in REGEX_SEARCH_ORDER
        ]

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    def scan(self, document: Document) -> ScannedDocument:
        text = document.text
        url = self.url_for(document.path) if self.url_for else ""
        file_data = file_data_for(self.parsed, document, url)
        scanned = ScannedDocument(
            document=document,
            file_data=file_data,
            formatter=self.formatter_factory(),
        )

        block_matches = list(self.parsed.note_regexp.finditer(text))
        claimed: List[Span] = [m.span() for m in block_matches]
        inline_matches = []
        for m in self.parsed.inline_regexp.finditer(text):
            if not _overlaps(m.start(), m.end(), claimed):
                inline_matches.append(m)
                claimed.append(m.span())

        ctx = NoteContext(
            file_data=file_data,
            formatter=scanned.formatter,
            deck_name=file_data.default_deck,
            path=document.path,
        )
        reserved = self._reserve_spans(text, claimed, ctx, scanned)

        regex_matches = self._claim_regex_matches(text, claimed, reserved, ctx)

        deck_match = self._first_free(self.parsed.deck_regexp, text, claimed)
        if deck_match:
            scanned.target_deck = deck_match.group(1).strip()
            claimed.append(deck_match.span())
        tags_match = self._first_free(self.parsed.tag_regexp, text, claimed)
        if tags_match:
            scanned.file_tags = tags_match.group(1).split()
            claimed.append(tags_match.span())
        ctx.deck_name = scanned.deck_name
        ctx.file_tags = scanned.file_tags

        headings = self._headings(text) if file_data.defaults.add_context else None
        notes: List[ParsedNote] = []
        for m in block_matches:
            span = SourceSpan(start=m.start(), end=m.end(), text=m.group(0))
            notes.append(
                parse_note(
                    NoteKind.BLOCK,
                    span,
                    ctx,
                    body=m.group(1),
                    id_position=m.end(1),
                    heading_context=self._context(document, headings, m.start()),
                )
            )
        for m in inline_matches:
            span = SourceSpan(start=m.start(), end=m.end(), text=m.group(0))
            notes.append(
                parse_note(
                    NoteKind.INLINE,
                    span,
                    ctx,
                    body=m.group(1),
                    id_position=m.end(1),
                    heading_context=self._context(document, headings, m.start()),
                )
            )
        for schema_name, has_id, has_tags, m in regex_matches:
            span = SourceSpan(start=m.start(), end=m.end(), text=m.group(0))
            notes.append(
                parse_note(
                    NoteKind.REGEX,
                    span,
                    ctx,
                    groups=list(m.groups()),
                    schema_name=schema_name,
                    has_id=has_id,
                    has_tags=has_tags,
                    id_position=None if has_id else m.end(),
                    heading_context=self._context(document, headings, m.start()),
                )
            )
        for m in self.parsed.delete_regexp.finditer(text):
            if _overlaps(m.start(), m.end(), claimed):
                continue
            claimed.append(m.span())
            span = SourceSpan(start=m.start(), end=m.end(), text=m.group(0))
            notes.append(delete_note(int(m.group(1)), span, ctx))

        notes.sort(key=lambda n: n.span.start)
        for note in notes:
            if note.kind is not NoteKind.DELETE and not note.is_valid:
                self._warn_invalid(scanned, note)
        scanned.notes = notes
        logger.debug(f"Scanned {document.path}: {len(notes)} notes")
        return scanned

    def _reserve_spans(
        self,
        text: str,
        claimed: List[Span],
        ctx: NoteContext,
        scanned: ScannedDocument,
    ) -> List[Span]:
        """Collect frozen-field blocks, code and math that custom regexps
        must not match inside. Frozen fields are parsed on the way."""
        reserved: List[Span] = []
        for m in self.parsed.frozen_regexp.finditer(text):
            if _overlaps(m.start(), m.end(), claimed):
                continue
            reserved.append(m.span())
            schema_name = m.group(1)
            fields = parse_frozen_fields(schema_name, m.group(2), ctx)
            if fields is None:
                message = (
                    f"{scanned.path}: frozen fields for unknown note type "
                    f"'{schema_name}' ignored"
                )
                logger.warning(message)
                scanned.warnings.append(message)
                continue
            scanned.file_data.frozen_fields[schema_name] = fields
        for regexp in (
            OBS_DISPLAY_CODE_REGEXP,
            OBS_DISPLAY_MATH_REGEXP,
            OBS_CODE_REGEXP,
            OBS_INLINE_MATH_REGEXP,
        ):
            for m in regexp.finditer(text):
                if not _overlaps(m.start(), m.end(), reserved):
                    reserved.append(m.span())
        return reserved

    def _claim_regex_matches(
        self,
        text: str,
        claimed: List[Span],
        reserved: List[Span],
        ctx: NoteContext,
    ) -> List[Tuple[str, bool, bool, "re.Match[str]"]]:
        # Cloze validation needs the formatted fields, so each candidate is
        # parsed once with a scratch formatter to keep media detection clean.
        scratch_ctx = NoteContext(
            file_data=ctx.file_data,
            formatter=self.formatter_factory(),
            deck_name=ctx.deck_name,
            path=ctx.path,
        )
        matches = []
        for schema_name, has_id, has_tags, regexp in self._custom_regexps:
            for m in regexp.finditer(text):
                if m.start() == m.end():
                    continue
                if _overlaps(m.start(), m.end(), claimed) or _overlaps(
                    m.start(), m.end(), reserved
                ):
                    continue
                candidate = parse_note(
                    NoteKind.REGEX,
                    SourceSpan(start=m.start(), end=m.end(), text=m.group(0)),
                    scratch_ctx,
                    groups=list(m.groups()),
                    schema_name=schema_name,
                    has_id=has_id,
                    has_tags=has_tags,
                )
                if not candidate.is_valid:
                    # Not a note after all; leave the text to other constructs.
                    continue
                claimed.append(m.span())
                matches.append((schema_name, has_id, has_tags, m))
        return matches

    @staticmethod
    def _first_free(
        regexp: "re.Pattern[str]", text: str, claimed: List[Span]
    ) -> Optional["re.Match[str]"]:
        for m in regexp.finditer(text):
            if not _overlaps(m.start(), m.end(), claimed):
                return m
        return None

    @staticmethod
    def _headings(text: str) -> List[Tuple[int, int, str]]:
        """(offset, level, title) of every ATX heading outside code fences."""
        fences = [m.span() for m in OBS_DISPLAY_CODE_REGEXP.finditer(text)]
        return [
            (m.start(), len(m.group(1)), m.group(2).strip())
            for m in HEADING_REGEXP.finditer(text)
            if not _overlaps(m.start(), m.end(), fences)
        ]

    @staticmethod
    def _context(
        document: Document,
        headings: Optional[List[Tuple[int, int, str]]],
        position: int,
    ) -> str:
        if headings is None:
            return ""
        trail: List[Tuple[int, str]] = []
        for offset, level, title in headings:
            if offset >= position:
                break
            while trail and trail[-1][0] >= level:
                trail.pop()
            trail.append((level, title))
        return " > ".join([document.path] + [title for _, title in trail])

    @staticmethod
    def _warn_invalid(scanned: ScannedDocument, note: ParsedNote) -> None:
        if note.schema_name in scanned.file_data.fields_dict:
            message = (
                f"{scanned.path}: '{note.schema_name}' note has no cloze "
                f"deletion and was skipped"
            )
        else:
            message = (
                f"{scanned.path}: unknown note type '{note.schema_name}' "
                f"at offset {note.span.start} was skipped"
            )
        logger.warning(message)
        scanned.warnings.append(message)

    # ------------------------------------------------------------------
    # Rewriting
    # ------------------------------------------------------------------

    def rewrite(
        self,
        scanned: ScannedDocument,
        identifiers: Dict[int, int],
        deleted: Iterable[int] = (),
    ) -> RewriteResult:
        """
        Write new identifiers into the document and drop processed delete
        directives.

        Parameters:
            scanned (ScannedDocument): Result of ``scan`` for the document.
            identifiers (Dict[int, int]): Note index -> identifier assigned by Anki, for new notes only.
            deleted (Iterable[int]): Indexes of delete notes whose deletion succeeded.

        Returns:
            RewriteResult: The new text, and whether it differs from the scanned text.
        """
        text = scanned.document.text
        comment = scanned.file_data.defaults.id_comments
        edits: List[Tuple[int, int, str]] = []

        for index, identifier in identifiers.items():
            note = scanned.notes[index]
            if not note.is_new or note.id_position is None:
                continue
            position = note.id_position
            if note.kind is NoteKind.INLINE:
                insert = id_to_str(identifier, inline=True, comment=comment)
            elif note.kind is NoteKind.REGEX:
                id_line = id_to_str(identifier, comment=comment).rstrip("\n")
                if position > 0 and text[position - 1] == "\n":
                    insert = id_line + "\n"
                else:
                    insert = "\n" + id_line
            else:
                insert = id_to_str(identifier, comment=comment)
            edits.append((position, position, insert))

        for index in deleted:
            note = scanned.notes[index]
            if not note.delete:
                continue
            end = note.span.end
            if text[end:end + 1] == "\n":
                end += 1
            edits.append((note.span.start, end, ""))

        if not edits:
            return RewriteResult(text=text, changed=False)

        for start, end, replacement in sorted(edits, key=lambda e: e[0], reverse=True):
            text = text[:start] + replacement + text[end:]
        return RewriteResult(text=text, changed=text != scanned.document.text)

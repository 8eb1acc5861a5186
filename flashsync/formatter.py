"""
Field formatting: cloze conversion, media embeds and HTML sanitizing.

Markdown rendering is deliberately left to Anki; this converter only performs
the rewrites the synchronizer depends on.
"""

import logging
import posixpath
import re
from typing import Dict, Optional, Set

import bleach
from bleach.css_sanitizer import CSSSanitizer

logger = logging.getLogger(__name__)

ALLOWED_HTML_TAGS = [
    "p", "br", "strong", "em", "b", "i", "u", "s", "del", "sub", "sup",
    "ul", "ol", "li", "blockquote", "pre", "code", "hr",
    "h1", "h2", "h3", "h4", "h5", "h6",
    "table", "thead", "tbody", "tr", "th", "td",
    "img", "a", "span", "div",
]
ALLOWED_HTML_ATTRIBUTES = {
    "*": ["class", "id", "style"],
    "a": ["href", "title", "target", "rel", "class"],
    "img": ["src", "alt", "title", "width", "height", "style"],
    "span": ["style", "class"],
}
CSS_SANITIZER = CSSSanitizer()

IMAGE_EXTS = {".png", ".jpg", ".jpeg", ".gif", ".bmp", ".svg", ".tiff", ".webp"}
AUDIO_EXTS = {".wav", ".m4a", ".flac", ".mp3", ".wma", ".aac", ".webm", ".ogg"}

# ![[image.png]] or ![[image.png|200]]
WIKI_EMBED_REGEXP = re.compile(r"!\[\[(.+?)(?:\|.*?)?\]\]")
# ![alt](image.png)
MARKDOWN_EMBED_REGEXP = re.compile(r"!\[(.*?)\]\(([^)\s]+)\)")
HIGHLIGHT_REGEXP = re.compile(r"==(.+?)==")
CURLY_CLOZE_REGEXP = re.compile(
    r"(?:(?<!\{)\{(?:c?(\d+)[:|])?(?!\{))"
    r"((?:[^\n][\n]?)+?)"
    r"(?:(?<!\})\}(?!\}))"
)


class FieldFormatter:
    """
    Converts raw field text captured by the parsers into final field content.

    One instance is used per document: ``detected_media`` accumulates every
    media link embedded in that document's fields.
    """

    def __init__(self):
        self.detected_media: Set[str] = set()

    def format(
        self, text: str, curly_cloze: bool, highlights_to_cloze: bool
    ) -> str:
        if curly_cloze:
            if highlights_to_cloze:
                text = HIGHLIGHT_REGEXP.sub(r"{\1}", text)
            text = self.curly_to_cloze(text)
        text = self.convert_media(text)
        text = text.replace("\n", "<br>")
        return bleach.clean(
            text,
            tags=ALLOWED_HTML_TAGS,
            attributes=ALLOWED_HTML_ATTRIBUTES,
            css_sanitizer=CSS_SANITIZER,
            strip=True,
        )

    @staticmethod
    def curly_to_cloze(text: str) -> str:
        """Change text in single curly brackets to Anki cloze syntax.

        ``{a}`` takes the next free number, ``{2:a}`` / ``{c2|a}`` pins it.
        """
        counter = 0

        def _replace(match: "re.Match[str]") -> str:
            nonlocal counter
            if match.group(1):
                number = int(match.group(1))
            else:
                counter += 1
                number = counter
            return "{{c%d::%s}}" % (number, match.group(2))

        return CURLY_CLOZE_REGEXP.sub(_replace, text)

    def convert_media(self, text: str) -> str:
        def _embed(link: str, alt: str = "") -> Optional[str]:
            link = link.strip()
            filename = posixpath.basename(link)
            ext = posixpath.splitext(filename)[1].lower()
            if ext in IMAGE_EXTS:
                self.detected_media.add(link)
                if alt:
                    return f'<img src="{filename}" alt="{alt}">'
                return f'<img src="{filename}">'
            if ext in AUDIO_EXTS:
                self.detected_media.add(link)
                return f"[sound:{filename}]"
            return None

        def _wiki(match: "re.Match[str]") -> str:
            return _embed(match.group(1)) or match.group(0)

        def _markdown(match: "re.Match[str]") -> str:
            if "://" in match.group(2):
                return match.group(0)
            return _embed(match.group(2), match.group(1)) or match.group(0)

        text = WIKI_EMBED_REGEXP.sub(_wiki, text)
        return MARKDOWN_EMBED_REGEXP.sub(_markdown, text)

    @staticmethod
    def inject_url(
        fields: Dict[str, str], url: str, field_name: Optional[str]
    ) -> None:
        """Append a link back to the source document to one field."""
        if not fields:
            return
        if field_name not in fields:
            field_name = next(iter(fields))
        fields[field_name] += (
            f'<br><a href="{url}" class="obsidian-link">Obsidian</a>'
        )

    @staticmethod
    def inject_frozen_fields(
        fields: Dict[str, str], frozen: Dict[str, str]
    ) -> None:
        for name in fields:
            fields[name] += frozen.get(name, "")

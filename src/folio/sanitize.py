from __future__ import annotations

import codecs
import re

# Tags whose content is dropped entirely.
IGNORED_OPEN_TAGS = ("<style", "<script", "<head")
IGNORED_CLOSE_TAGS = ("</style>", "</script>", "</head>")

# Tags that start or end a block and therefore imply a line break.
BLOCK_BREAK_TAGS = ("<p>", "<p ", "<div", "<br", "</p>", "</div>")

ENTITY_TABLE: tuple[tuple[str, str], ...] = (
    ("&nbsp;", " "),
    ("&amp;", "&"),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&#39;", "'"),
    ("&#8217;", "'"),
    ("&#8220;", '"'),
    ("&#8221;", '"'),
)

_WHITESPACE_TO_SPACE = {"\r", "\t", "\n"}
_MULTI_SPACE_RE = re.compile(r" {2,}")
_SPACE_AROUND_NEWLINE_RE = re.compile(r" ?\n ?")
_EXCESS_NEWLINES_RE = re.compile(r"\n{3,}")


def _matches_at(html: str, index: int, prefixes: tuple[str, ...]) -> bool:
    for prefix in prefixes:
        if html[index : index + len(prefix)].lower() == prefix:
            return True
    return False


def decode_document(data: bytes) -> str:
    """Decode raw chapter bytes into text."""
    if data.startswith((codecs.BOM_UTF16_LE, codecs.BOM_UTF16_BE)):
        try:
            return data.decode("utf-16")
        except UnicodeDecodeError:
            pass
    for enc in ("utf-8-sig", "cp1252"):
        try:
            return data.decode(enc)
        except UnicodeDecodeError:
            continue
    return data.decode("utf-8", errors="replace")


def decode_entities(text: str) -> str:
    for entity, replacement in ENTITY_TABLE:
        text = text.replace(entity, replacement)
    return text


def normalize_breaks(text: str) -> str:
    """Collapse spaces, trim them around newlines and cap blank lines at one."""
    text = _MULTI_SPACE_RE.sub(" ", text)
    text = _SPACE_AROUND_NEWLINE_RE.sub("\n", text)
    return _EXCESS_NEWLINES_RE.sub("\n\n", text)


def strip_markup(html: str) -> str:
    """Reduce one chapter's HTML to plain text for pagination.

    A single scan drops everything between ``<`` and ``>`` as well as the
    content of ``style``, ``script`` and ``head`` elements. ``p``, ``div`` and
    ``br`` tags (opening or closing) emit one newline unless the output
    already ends with one. Raw whitespace in text runs becomes a space; the
    entity table is then decoded and whitespace normalized.
    """
    out: list[str] = []
    inside_tag = False
    ignore_content = False

    for index, ch in enumerate(html):
        if ch == "<":
            inside_tag = True
            if _matches_at(html, index, IGNORED_OPEN_TAGS):
                ignore_content = True
            if _matches_at(html, index, BLOCK_BREAK_TAGS):
                if out and out[-1] != "\n":
                    out.append("\n")
            if _matches_at(html, index, IGNORED_CLOSE_TAGS):
                ignore_content = False
            continue
        if ch == ">":
            inside_tag = False
            continue
        if inside_tag or ignore_content:
            continue
        out.append(" " if ch in _WHITESPACE_TO_SPACE else ch)

    return normalize_breaks(decode_entities("".join(out)))


__all__ = [
    "BLOCK_BREAK_TAGS",
    "ENTITY_TABLE",
    "decode_document",
    "decode_entities",
    "normalize_breaks",
    "strip_markup",
]

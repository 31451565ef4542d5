"""Greedy word-wrap layout shared by pagination and page drawing.

Both passes consume :func:`iter_layout`, so a span produced by
:func:`paginate` is laid out identically when it is later drawn.
"""

from __future__ import annotations

import unicodedata
from bisect import bisect_right
from dataclasses import dataclass
from typing import Callable, Iterator, Protocol, Sequence, Union

_WORD_BREAKS = (" ", "\n")


class TextMetrics(Protocol):
    def measure_width(self, word: str) -> float: ...

    def line_height(self) -> float: ...


@dataclass(frozen=True)
class Viewport:
    width: float
    height: float


@dataclass(frozen=True)
class PageSpan:
    start: int
    length: int

    @property
    def end(self) -> int:
        return self.start + self.length


@dataclass(frozen=True)
class Placement:
    x: float
    y: float
    word: str
    offset: int


@dataclass(frozen=True)
class PageBreak:
    offset: int


LayoutStep = Union[Placement, PageBreak]
PlacementSink = Callable[[float, float, str], None]


@dataclass(frozen=True)
class MonospaceMetrics:
    """Fixed-pitch metrics; East Asian wide and fullwidth characters take two cells."""

    char_width: float = 1
    row_height: float = 1

    def measure_width(self, word: str) -> float:
        cells = 0
        for ch in word:
            cells += 2 if unicodedata.east_asian_width(ch) in ("W", "F") else 1
        return cells * self.char_width

    def line_height(self) -> float:
        return self.row_height

    def scaled(self, text_size: float) -> "MonospaceMetrics":
        return MonospaceMetrics(self.char_width * text_size, self.row_height * text_size)


def iter_layout(
    text: str,
    viewport: Viewport,
    metrics: TextMetrics,
    start: int = 0,
    end: int | None = None,
) -> Iterator[LayoutStep]:
    """Pack ``text[start:end]`` into lines, yielding placements and page breaks.

    The cursor starts at the top-left. A newline moves to the next line; a
    word that does not fit wraps unless the cursor is already at line start,
    so words wider than the viewport overflow instead of being split. When
    the next line would not fit vertically a ``PageBreak`` is yielded with the
    offset the next page starts at, and the cursor returns to the top.
    Every iteration consumes at least one character.
    """
    limit = len(text) if end is None else min(end, len(text))
    space_width = metrics.measure_width(" ")
    line_height = metrics.line_height()
    x: float = 0
    y: float = 0
    index = max(start, 0)

    while index < limit:
        if text[index] == "\n":
            x = 0
            y += line_height
            index += 1
            if y + line_height > viewport.height:
                yield PageBreak(index)
                y = 0
            continue

        word_end = index
        while word_end < limit and text[word_end] not in _WORD_BREAKS:
            word_end += 1
        word = text[index:word_end]
        width = metrics.measure_width(word)

        if x + width > viewport.width and x > 0:
            x = 0
            y += line_height
            if y + line_height > viewport.height:
                yield PageBreak(index)
                y = 0

        if word:
            yield Placement(x, y, word, index)
        x += width

        if word_end < limit and text[word_end] == " ":
            x += space_width
            word_end += 1
        index = word_end


def paginate(text: str, viewport: Viewport, metrics: TextMetrics) -> list[PageSpan]:
    """Split ``text`` into gapless page spans covering ``[0, len(text))``."""
    spans: list[PageSpan] = []
    page_start = 0
    for step in iter_layout(text, viewport, metrics):
        if isinstance(step, PageBreak) and step.offset > page_start:
            spans.append(PageSpan(page_start, step.offset - page_start))
            page_start = step.offset
    if page_start < len(text):
        spans.append(PageSpan(page_start, len(text) - page_start))
    return spans


def layout_span(
    text: str,
    span: PageSpan,
    viewport: Viewport,
    metrics: TextMetrics,
) -> list[Placement]:
    """Replay the layout of one page. Nothing past ``span.end`` is read."""
    placements: list[Placement] = []
    for step in iter_layout(text, viewport, metrics, span.start, span.end):
        if isinstance(step, PageBreak):
            break
        placements.append(step)
    return placements


def draw_span(
    text: str,
    span: PageSpan,
    viewport: Viewport,
    metrics: TextMetrics,
    sink: PlacementSink,
) -> int:
    """Send each word of the page to ``sink(x, y, word)``; returns the word count."""
    placements = layout_span(text, span, viewport, metrics)
    for placement in placements:
        sink(placement.x, placement.y, placement.word)
    return len(placements)


def page_index_for_offset(spans: Sequence[PageSpan], offset: int) -> int:
    """Index of the page containing ``offset`` (clamped to the last page)."""
    if not spans:
        return 0
    starts = [span.start for span in spans]
    return max(0, min(bisect_right(starts, offset) - 1, len(spans) - 1))


__all__ = [
    "LayoutStep",
    "MonospaceMetrics",
    "PageBreak",
    "PageSpan",
    "Placement",
    "PlacementSink",
    "TextMetrics",
    "Viewport",
    "draw_span",
    "iter_layout",
    "layout_span",
    "page_index_for_offset",
    "paginate",
]

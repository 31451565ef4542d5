from __future__ import annotations

import os
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass

from .epub import Book, open_book
from .layout import PageSpan, TextMetrics, Viewport, paginate
from .logging_utils import debug_log


class LoaderBusyError(RuntimeError):
    """Raised when a load is submitted while another is still running."""


@dataclass
class LoadedChapter:
    book: Book
    chapter_index: int
    text: str
    spans: list[PageSpan]

    @property
    def page_count(self) -> int:
        return len(self.spans)


def _load_chapter(book: Book, index: int, viewport: Viewport, metrics: TextMetrics) -> LoadedChapter:
    text = book.chapter_text(index)
    spans = paginate(text, viewport, metrics)
    debug_log(f"Chapter {index}: {len(text)} chars, {len(spans)} pages")
    return LoadedChapter(book=book, chapter_index=index, text=text, spans=spans)


def _open_and_load(
    path: str | os.PathLike[str],
    chapter_index: int,
    viewport: Viewport,
    metrics: TextMetrics,
    buffered: bool,
) -> LoadedChapter:
    book = open_book(path, buffered=buffered)
    try:
        index = max(0, min(chapter_index, len(book.chapters) - 1))
        return _load_chapter(book, index, viewport, metrics)
    except BaseException:
        book.close()
        raise


class BookLoader:
    """Runs book opening and chapter loading off the interactive thread.

    One operation may be in flight; its ``Future`` hands the result (or the
    exception) to the caller. Operations are not cancellable.
    """

    def __init__(self) -> None:
        self.executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="folio-loader")
        self._current: Future[LoadedChapter] | None = None

    @property
    def busy(self) -> bool:
        return self._current is not None and not self._current.done()

    def open(
        self,
        path: str | os.PathLike[str],
        viewport: Viewport,
        metrics: TextMetrics,
        *,
        chapter_index: int = 0,
        buffered: bool = False,
    ) -> Future[LoadedChapter]:
        debug_log(f"Loader: open {path}")
        return self._submit(_open_and_load, path, chapter_index, viewport, metrics, buffered)

    def load_chapter(
        self,
        book: Book,
        index: int,
        viewport: Viewport,
        metrics: TextMetrics,
    ) -> Future[LoadedChapter]:
        debug_log(f"Loader: chapter {index} of {book.source.name}")
        return self._submit(_load_chapter, book, index, viewport, metrics)

    def shutdown(self) -> None:
        self.executor.shutdown(wait=True)

    def _submit(self, fn, *args) -> Future[LoadedChapter]:
        if self.busy:
            raise LoaderBusyError("A load operation is already running.")
        future = self.executor.submit(fn, *args)
        self._current = future
        return future

    def __enter__(self) -> "BookLoader":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()


__all__ = ["BookLoader", "LoadedChapter", "LoaderBusyError"]

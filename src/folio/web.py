from __future__ import annotations

import threading
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path

from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse

from .archive import ArchiveError, ArchiveNotFoundError
from .bookmarks import DEFAULT_TEXT_SIZE, clamp_page_index
from .epub import Book, StructureError, open_book
from .layout import MonospaceMetrics, PageSpan, Viewport, layout_span, paginate
from .library import EPUB_SUFFIX, list_epub_files
from .logging_utils import debug_log


@dataclass(slots=True)
class WebConfig:
    root: Path
    columns: int = 40
    rows: int = 20
    text_size: float = DEFAULT_TEXT_SIZE
    buffered: bool = False
    max_open_books: int = 8


def _span_payload(span: PageSpan) -> dict[str, int]:
    return {"start": span.start, "length": span.length}


def _viewport_and_metrics(columns: int, rows: int, text_size: float) -> tuple[Viewport, MonospaceMetrics]:
    if columns <= 0 or rows <= 0:
        raise HTTPException(status_code=400, detail="columns and rows must be positive.")
    if text_size <= 0:
        raise HTTPException(status_code=400, detail="text_size must be positive.")
    return Viewport(columns, rows), MonospaceMetrics().scaled(text_size)


def create_app(config: WebConfig) -> FastAPI:
    root = config.root.expanduser().resolve()
    if not root.exists():
        raise FileNotFoundError(f"Books root not found: {root}")

    app = FastAPI(title="folio")
    app.state.config = config
    app.state.root = root

    book_lock = threading.Lock()
    # Least recently used first; evicting a book closes it and drops its chapters.
    open_books: OrderedDict[str, Book] = OrderedDict()
    chapter_texts: dict[tuple[str, int], str] = {}

    def _resolve_book_path(book_id: str) -> Path:
        candidate = (root / book_id).resolve()
        if (
            candidate.parent != root
            or candidate.suffix.lower() != EPUB_SUFFIX
            or not candidate.is_file()
        ):
            raise HTTPException(status_code=404, detail="Book not found")
        return candidate

    def _cached_book(book_id: str, path: Path) -> Book:
        book = open_books.get(book_id)
        if book is not None and not book.closed:
            open_books.move_to_end(book_id)
            return book
        try:
            book = open_book(path, buffered=config.buffered)
        except ArchiveNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except (ArchiveError, StructureError) as exc:
            raise HTTPException(status_code=422, detail=f"{exc.__class__.__name__}: {exc}") from exc
        debug_log(f"web: opened {book_id} ({len(book.chapters)} chapters)")
        open_books[book_id] = book
        while len(open_books) > max(1, config.max_open_books):
            evicted_id, evicted = open_books.popitem(last=False)
            evicted.close()
            for key in [key for key in chapter_texts if key[0] == evicted_id]:
                del chapter_texts[key]
            debug_log(f"web: closed {evicted_id}")
        return book

    def _get_book(book_id: str) -> Book:
        path = _resolve_book_path(book_id)
        with book_lock:
            return _cached_book(book_id, path)

    def _get_chapter_text(book_id: str, chapter_index: int) -> str:
        path = _resolve_book_path(book_id)
        with book_lock:
            book = _cached_book(book_id, path)
            if not 0 <= chapter_index < len(book.chapters):
                raise HTTPException(status_code=404, detail="Chapter not found")
            key = (book_id, chapter_index)
            text = chapter_texts.get(key)
            if text is None:
                text = book.chapter_text(chapter_index)
                chapter_texts[key] = text
            return text

    def close_books() -> None:
        with book_lock:
            for book in open_books.values():
                book.close()
            open_books.clear()
            chapter_texts.clear()

    app.state.close_books = close_books

    @app.get("/api/books")
    def api_books() -> JSONResponse:
        books = [
            {"id": listing.name, "size": listing.size, "modified": listing.modified}
            for listing in list_epub_files(root)
        ]
        return JSONResponse({"books": books})

    @app.get("/api/books/{book_id}/chapters")
    def api_chapters(book_id: str) -> JSONResponse:
        book = _get_book(book_id)
        chapters = [
            {"index": idx, "id": chapter.id, "path": chapter.path, "title": chapter.title}
            for idx, chapter in enumerate(book.chapters)
        ]
        return JSONResponse(
            {
                "id": book_id,
                "title": book.display_title,
                "package": book.package_path,
                "chapters": chapters,
            }
        )

    @app.get("/api/books/{book_id}/chapters/{chapter_index}/pages")
    def api_pages(
        book_id: str,
        chapter_index: int,
        columns: int = Query(config.columns),
        rows: int = Query(config.rows),
        text_size: float = Query(config.text_size),
    ) -> JSONResponse:
        viewport, metrics = _viewport_and_metrics(columns, rows, text_size)
        text = _get_chapter_text(book_id, chapter_index)
        spans = paginate(text, viewport, metrics)
        return JSONResponse(
            {
                "chapter_index": chapter_index,
                "length": len(text),
                "page_count": len(spans),
                "pages": [_span_payload(span) for span in spans],
            }
        )

    @app.get("/api/books/{book_id}/chapters/{chapter_index}/pages/{page_index}")
    def api_page(
        book_id: str,
        chapter_index: int,
        page_index: int,
        columns: int = Query(config.columns),
        rows: int = Query(config.rows),
        text_size: float = Query(config.text_size),
    ) -> JSONResponse:
        viewport, metrics = _viewport_and_metrics(columns, rows, text_size)
        text = _get_chapter_text(book_id, chapter_index)
        spans = paginate(text, viewport, metrics)
        effective = clamp_page_index(page_index, len(spans))
        payload: dict[str, object] = {
            "chapter_index": chapter_index,
            "requested_page": page_index,
            "page_index": effective,
            "page_count": len(spans),
            "placements": [],
        }
        if spans:
            span = spans[effective]
            payload.update(_span_payload(span))
            payload["placements"] = [
                {"x": placement.x, "y": placement.y, "word": placement.word}
                for placement in layout_span(text, span, viewport, metrics)
            ]
        return JSONResponse(payload)

    return app


__all__ = ["WebConfig", "create_app"]

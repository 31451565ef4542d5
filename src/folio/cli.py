from __future__ import annotations

import argparse
import sys
from collections import deque
from importlib import metadata
from pathlib import Path

import tomllib
import uvicorn
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .archive import ArchiveError
from .bookmarks import DEFAULT_TEXT_SIZE, clamp_page_index
from .epub import Book, StructureError, open_book
from .layout import (
    MonospaceMetrics,
    Placement,
    Viewport,
    layout_span,
    page_index_for_offset,
    paginate,
)
from .library import EPUB_SUFFIX, list_epub_files
from .loader import BookLoader, LoadedChapter
from .logging_utils import build_uvicorn_log_config, debug_enabled, set_debug_logging
from .session import (
    CloseBook,
    DismissError,
    Effect,
    Event,
    GoHome,
    LoadFailed,
    LoadSucceeded,
    Mode,
    NextPage,
    PrevPage,
    ReaderState,
    RenderHome,
    RenderPage,
    Repaginated,
    SelectBook,
    ShowError,
    StartLoadChapter,
    StartOpen,
    transition,
)
from .web import WebConfig, create_app

DEFAULT_COLUMNS = 60
DEFAULT_ROWS = 20
SUBCOMMANDS = ("info", "text", "pages", "read", "web")
TEXT_SIZE_STEP = 0.25
MIN_TEXT_SIZE = 0.5
MAX_TEXT_SIZE = 4.0


def _read_local_version() -> str | None:
    try:
        pyproject_path = Path(__file__).resolve().parents[2] / "pyproject.toml"
    except IndexError:  # pragma: no cover - installed without a source tree
        return None
    try:
        with pyproject_path.open("rb") as fh:
            data = tomllib.load(fh)
    except (FileNotFoundError, tomllib.TOMLDecodeError):
        return None
    return data.get("project", {}).get("version")


try:
    __version__ = metadata.version("folio")
except metadata.PackageNotFoundError:
    __version__ = _read_local_version() or "0.0.0+unknown"


def _add_common_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"folio {__version__}",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Print debug logging (archive access, spine parsing, pagination).",
    )


def _add_layout_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--columns",
        type=int,
        default=DEFAULT_COLUMNS,
        help=f"Page width in character cells (default: {DEFAULT_COLUMNS}).",
    )
    parser.add_argument(
        "--rows",
        type=int,
        default=DEFAULT_ROWS,
        help=f"Page height in lines (default: {DEFAULT_ROWS}).",
    )
    parser.add_argument(
        "--text-size",
        type=float,
        default=DEFAULT_TEXT_SIZE,
        help="Glyph scale; larger sizes fit fewer words per page (default: 1).",
    )
    parser.add_argument(
        "--buffered",
        action="store_true",
        help="Read the whole archive into memory instead of random access.",
    )


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="folio",
        description="Paginate EPUB chapters into fixed-size pages.",
        epilog="Subcommands: " + ", ".join(SUBCOMMANDS) + ". Use `folio <cmd> --help` for details.",
    )
    _add_common_flags(ap)
    return ap


def build_info_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="folio info", description="List the chapters of an EPUB in spine order.")
    _add_common_flags(ap)
    ap.add_argument("input_path", help="Path to the .epub file")
    ap.add_argument("--buffered", action="store_true", help="Read the whole archive into memory.")
    return ap


def build_text_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="folio text", description="Print one chapter as plain text.")
    _add_common_flags(ap)
    ap.add_argument("input_path", help="Path to the .epub file")
    ap.add_argument("-c", "--chapter", type=int, default=1, help="1-based chapter number (default: 1)")
    ap.add_argument("--buffered", action="store_true", help="Read the whole archive into memory.")
    return ap


def build_pages_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="folio pages", description="Paginate a chapter and print one page.")
    _add_common_flags(ap)
    ap.add_argument("input_path", help="Path to the .epub file")
    ap.add_argument("-c", "--chapter", type=int, default=1, help="1-based chapter number (default: 1)")
    ap.add_argument(
        "-p",
        "--page",
        type=int,
        default=1,
        help="1-based page number; values past the end show the last page (default: 1)",
    )
    ap.add_argument("--spans", action="store_true", help="List every page span instead of rendering one page.")
    _add_layout_flags(ap)
    return ap


def build_read_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="folio read", description="Read EPUBs page by page in the terminal.")
    _add_common_flags(ap)
    ap.add_argument("input_path", help="An .epub file or a directory containing .epub files")
    _add_layout_flags(ap)
    return ap


def build_web_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="folio web", description="Serve paginated EPUBs over a JSON API.")
    _add_common_flags(ap)
    ap.add_argument("root", help="Directory containing .epub files")
    ap.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    ap.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")
    ap.add_argument("--columns", type=int, default=DEFAULT_COLUMNS, help="Default page width in cells.")
    ap.add_argument("--rows", type=int, default=DEFAULT_ROWS, help="Default page height in lines.")
    ap.add_argument(
        "--max-open-books",
        type=int,
        default=8,
        help="Books kept open between requests; the least recently used is closed first (default: 8).",
    )
    ap.add_argument("--buffered", action="store_true", help="Read archives into memory.")
    return ap


def _layout_from_args(args: argparse.Namespace) -> tuple[Viewport, MonospaceMetrics]:
    if args.columns <= 0 or args.rows <= 0:
        raise SystemExit("--columns and --rows must be positive.")
    if args.text_size <= 0:
        raise SystemExit("--text-size must be positive.")
    return Viewport(args.columns, args.rows), MonospaceMetrics().scaled(args.text_size)


def _open_or_exit(path: str, buffered: bool) -> Book:
    try:
        return open_book(path, buffered=buffered)
    except (ArchiveError, StructureError) as exc:
        raise SystemExit(f"{exc.__class__.__name__}: {exc}") from exc


def _chapter_index_or_exit(book: Book, chapter: int) -> int:
    if not 1 <= chapter <= len(book.chapters):
        raise SystemExit(f"--chapter {chapter} is out of range (book has {len(book.chapters)} chapters).")
    return chapter - 1


def render_page_lines(placements: list[Placement], metrics: MonospaceMetrics) -> list[str]:
    """Rasterize placements onto a character grid, snapping to the nearest cell."""
    rows: dict[int, list[str]] = {}
    for placement in placements:
        row = round(placement.y / metrics.row_height)
        col = round(placement.x / metrics.char_width)
        cells = rows.setdefault(row, [])
        if len(cells) < col:
            cells.extend(" " * (col - len(cells)))
        for ch in placement.word:
            cells.append(ch)
            if metrics.measure_width(ch) > metrics.char_width:
                cells.append("")
    if not rows:
        return []
    return ["".join(rows.get(row, [])).rstrip() for row in range(max(rows) + 1)]


def _run_info(args: argparse.Namespace) -> int:
    console = Console()
    with _open_or_exit(args.input_path, args.buffered) as book:
        table = Table(title=book.display_title)
        table.add_column("#", justify="right")
        table.add_column("Id")
        table.add_column("Path")
        for idx, chapter in enumerate(book.chapters, start=1):
            table.add_row(str(idx), chapter.id, chapter.path)
        console.print(table)
        console.print(
            f"Package: {book.package_path} ({len(book.archive.names())} archive entries)",
            markup=False,
            highlight=False,
        )
    return 0


def _run_text(args: argparse.Namespace) -> int:
    with _open_or_exit(args.input_path, args.buffered) as book:
        index = _chapter_index_or_exit(book, args.chapter)
        print(book.chapter_text(index))
    return 0


def _run_pages(args: argparse.Namespace) -> int:
    console = Console()
    viewport, metrics = _layout_from_args(args)
    with _open_or_exit(args.input_path, args.buffered) as book:
        index = _chapter_index_or_exit(book, args.chapter)
        text = book.chapter_text(index)
        spans = paginate(text, viewport, metrics)
        if args.spans:
            table = Table(title=f"Chapter {args.chapter}: {len(spans)} pages")
            table.add_column("Page", justify="right")
            table.add_column("Start", justify="right")
            table.add_column("Length", justify="right")
            for page_no, span in enumerate(spans, start=1):
                table.add_row(str(page_no), str(span.start), str(span.length))
            console.print(table)
            return 0
        if not spans:
            console.print(f"Chapter {args.chapter} is empty.")
            return 0
        page_index = clamp_page_index(args.page - 1, len(spans))
        console.rule(f"Chapter {args.chapter} · Page {page_index + 1}/{len(spans)}")
        for line in render_page_lines(layout_span(text, spans[page_index], viewport, metrics), metrics):
            console.print(line, markup=False, highlight=False)
        console.rule()
    return 0


class TerminalReader:
    """Drives the session state machine from keyboard commands."""

    def __init__(
        self,
        books: list[Path],
        viewport: Viewport,
        metrics: MonospaceMetrics,
        *,
        text_size: float = DEFAULT_TEXT_SIZE,
        console: Console | None = None,
        buffered: bool = False,
    ) -> None:
        self.books = books
        self.viewport = viewport
        self.base_metrics = metrics
        self.text_size = text_size
        self.metrics = metrics.scaled(text_size)
        self.console = console or Console()
        self.buffered = buffered
        self.loader = BookLoader()
        self.state = ReaderState()
        self.loaded: LoadedChapter | None = None

    def dispatch(self, event: Event) -> None:
        pending: deque[Event] = deque([event])
        while pending:
            self.state, effects = transition(self.state, pending.popleft())
            for effect in effects:
                follow_up = self._perform(effect)
                if follow_up is not None:
                    pending.append(follow_up)

    def _await_load(self, label: str, future) -> Event:
        with self.console.status(label):
            try:
                loaded = future.result()
            except (ArchiveError, StructureError, OSError) as exc:
                return LoadFailed(f"{exc.__class__.__name__}: {exc}")
        self.loaded = loaded
        return LoadSucceeded(
            chapter_index=loaded.chapter_index,
            chapter_count=len(loaded.book.chapters),
            page_count=loaded.page_count,
        )

    def _perform(self, effect: Effect) -> Event | None:
        if isinstance(effect, StartOpen):
            future = self.loader.open(
                effect.path,
                self.viewport,
                self.metrics,
                chapter_index=effect.chapter_index,
                buffered=self.buffered,
            )
            return self._await_load("Opening…", future)
        if isinstance(effect, StartLoadChapter):
            if self.loaded is None:
                return LoadFailed("No book is open.")
            future = self.loader.load_chapter(
                self.loaded.book, effect.chapter_index, self.viewport, self.metrics
            )
            return self._await_load("Loading…", future)
        if isinstance(effect, RenderPage):
            self._render_page(effect)
        elif isinstance(effect, RenderHome):
            self.render_home()
        elif isinstance(effect, ShowError):
            self.console.print(f"[red]Failed:[/red] {escape(effect.message)}", highlight=False)
        elif isinstance(effect, CloseBook):
            if self.loaded is not None:
                self.loaded.book.close()
                self.loaded = None
        return None

    def render_home(self) -> None:
        self.console.rule("Library")
        if not self.books:
            self.console.print("No .epub files found.")
            return
        for idx, path in enumerate(self.books, start=1):
            self.console.print(f"{idx:>3}. {path.name}", markup=False, highlight=False)

    def _render_page(self, effect: RenderPage) -> None:
        loaded = self.loaded
        if loaded is None:
            return
        chapter_label = f"Ch {effect.chapter_index + 1}/{len(loaded.book.chapters)}"
        page_label = f"Pg {effect.page_index + 1}/{max(loaded.page_count, 1)}"
        self.console.rule(f"{chapter_label} | {page_label}")
        if not loaded.spans:
            self.console.print("(Empty chapter)")
            return
        span = loaded.spans[effect.page_index]
        placements = layout_span(loaded.text, span, self.viewport, self.metrics)
        for line in render_page_lines(placements, self.metrics):
            self.console.print(line, markup=False, highlight=False)

    def change_text_size(self, delta: float) -> None:
        """Rescale the text and repaginate, keeping the current page's first word in view."""
        size = min(MAX_TEXT_SIZE, max(MIN_TEXT_SIZE, self.text_size + delta))
        if size == self.text_size:
            return
        self.text_size = size
        self.metrics = self.base_metrics.scaled(size)
        loaded = self.loaded
        if loaded is None:
            return
        anchor = loaded.spans[self.state.page_index].start if loaded.spans else 0
        loaded.spans = paginate(loaded.text, self.viewport, self.metrics)
        self.dispatch(Repaginated(len(loaded.spans), page_index_for_offset(loaded.spans, anchor)))

    def handle_command(self, command: str) -> bool:
        """Apply one typed command. Returns False when the reader should exit."""
        command = command.strip().lower()
        if command in {"q", "quit"}:
            return False
        mode = self.state.mode
        if mode is Mode.HOME:
            if command.isdigit() and 1 <= int(command) <= len(self.books):
                self.dispatch(SelectBook(str(self.books[int(command) - 1])))
            else:
                self.console.print("Enter a book number or q to quit.")
        elif mode is Mode.READING:
            if command in {"", "n", "next"}:
                self.dispatch(NextPage())
            elif command in {"p", "prev"}:
                self.dispatch(PrevPage())
            elif command in {"h", "home"}:
                self.dispatch(GoHome())
            elif command in {"+", "bigger"}:
                self.change_text_size(TEXT_SIZE_STEP)
            elif command in {"-", "smaller"}:
                self.change_text_size(-TEXT_SIZE_STEP)
        elif mode is Mode.ERROR:
            self.dispatch(DismissError())
        return True

    def prompt(self) -> str:
        if self.state.mode is Mode.READING:
            return "[n]ext / [p]rev / [+/-] size / [h]ome / [q]uit > "
        if self.state.mode is Mode.ERROR:
            return "Press Enter to return to the library > "
        return "Book number / [q]uit > "

    def close(self) -> None:
        if self.loaded is not None:
            self.loaded.book.close()
            self.loaded = None
        self.loader.shutdown()


def _run_read(args: argparse.Namespace) -> int:
    viewport, _ = _layout_from_args(args)
    target = Path(args.input_path).expanduser()
    if target.is_dir():
        books = [listing.path for listing in list_epub_files(target)]
    elif target.suffix.lower() == EPUB_SUFFIX and target.exists():
        books = [target]
    else:
        raise SystemExit(f"Input must be an .epub file or directory: {target}")

    reader = TerminalReader(
        books,
        viewport,
        MonospaceMetrics(),
        text_size=args.text_size,
        buffered=args.buffered,
    )
    try:
        if len(books) == 1:
            reader.dispatch(SelectBook(str(books[0])))
        else:
            reader.render_home()
        while True:
            try:
                command = input(reader.prompt())
            except EOFError:
                break
            if not reader.handle_command(command):
                break
    except KeyboardInterrupt:
        pass
    finally:
        reader.close()
    return 0


def _run_web(args: argparse.Namespace) -> int:
    root = Path(args.root).expanduser().resolve()
    if not root.is_dir():
        raise SystemExit(f"Books root not found: {root}")
    config = WebConfig(
        root=root,
        columns=args.columns,
        rows=args.rows,
        buffered=args.buffered,
        max_open_books=args.max_open_books,
    )
    app = create_app(config)
    print(f"Serving folio from {root}")
    print(f"API: http://{args.host}:{args.port}/api/books")
    print("Press Ctrl+C to stop.\n")
    try:
        uvicorn.run(
            app,
            host=args.host,
            port=args.port,
            log_level="debug" if debug_enabled() else "info",
            log_config=build_uvicorn_log_config(),
        )
    finally:
        app.state.close_books()
    return 0


_RUNNERS = {
    "info": (build_info_parser, _run_info),
    "text": (build_text_parser, _run_text),
    "pages": (build_pages_parser, _run_pages),
    "read": (build_read_parser, _run_read),
    "web": (build_web_parser, _run_web),
}


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    if argv and argv[0] in _RUNNERS:
        build, run = _RUNNERS[argv[0]]
        args = build().parse_args(argv[1:])
        if args.debug:
            set_debug_logging(True)
        return run(args)

    parser = build_parser()
    if not argv:
        parser.print_help()
        return 0
    parser.parse_args(argv)
    parser.error(f"unknown command {argv[0]!r}; choose from {', '.join(SUBCOMMANDS)}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())

from .archive import (
    Archive,
    ArchiveError,
    ArchiveNotFoundError,
    ArchiveOpenError,
    CorruptEntryError,
    EntryNotFoundError,
    IncompleteReadError,
    open_archive,
)
from .bookmarks import ReadingPosition, clamp_page_index
from .epub import (
    Book,
    BookClosedError,
    Chapter,
    EmptyBookError,
    MalformedContainerError,
    MalformedXMLError,
    MissingContainerError,
    MissingPackageError,
    StructureError,
    open_book,
)
from .layout import (
    MonospaceMetrics,
    PageSpan,
    Placement,
    TextMetrics,
    Viewport,
    draw_span,
    layout_span,
    paginate,
)
from .loader import BookLoader, LoadedChapter, LoaderBusyError
from .sanitize import strip_markup

__all__ = [
    "Archive",
    "ArchiveError",
    "ArchiveNotFoundError",
    "ArchiveOpenError",
    "CorruptEntryError",
    "EntryNotFoundError",
    "IncompleteReadError",
    "open_archive",
    "Book",
    "BookClosedError",
    "Chapter",
    "StructureError",
    "MissingContainerError",
    "MissingPackageError",
    "MalformedXMLError",
    "MalformedContainerError",
    "EmptyBookError",
    "open_book",
    "strip_markup",
    "MonospaceMetrics",
    "PageSpan",
    "Placement",
    "TextMetrics",
    "Viewport",
    "paginate",
    "layout_span",
    "draw_span",
    "BookLoader",
    "LoadedChapter",
    "LoaderBusyError",
    "ReadingPosition",
    "clamp_page_index",
]

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

EPUB_SUFFIX = ".epub"


@dataclass(slots=True)
class BookListing:
    path: Path
    name: str
    size: int
    modified: float


def list_epub_files(root: Path) -> list[BookListing]:
    """List ``.epub`` files directly inside ``root``, sorted by name."""
    entries: list[tuple[tuple[str, str], BookListing]] = []
    for entry in root.iterdir():
        if not entry.is_file() or entry.suffix.lower() != EPUB_SUFFIX:
            continue
        try:
            stat = entry.stat()
            size = stat.st_size
            modified = stat.st_mtime
        except OSError:
            size = 0
            modified = 0.0
        listing = BookListing(path=entry, name=entry.name, size=size, modified=modified)
        entries.append(((entry.name.casefold(), entry.name), listing))
    entries.sort(key=lambda item: item[0])
    return [listing for _, listing in entries]


__all__ = ["BookListing", "EPUB_SUFFIX", "list_epub_files"]

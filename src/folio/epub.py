from __future__ import annotations

import os
import posixpath
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from pathlib import Path

from .archive import Archive, CorruptEntryError, EntryNotFoundError, open_archive
from .logging_utils import debug_log
from .sanitize import decode_document, strip_markup

CONTAINER_PATH = "META-INF/container.xml"
UNREADABLE_CHAPTER_TEXT = "Error reading chapter."


class StructureError(ValueError):
    """Base class for EPUB structure failures that abort opening a book."""


class MissingContainerError(StructureError):
    """Raised when META-INF/container.xml is absent."""


class MissingPackageError(StructureError):
    """Raised when the package document named by the container is absent."""


class MalformedXMLError(StructureError):
    """Raised when a structural XML document cannot be parsed."""


class MalformedContainerError(MalformedXMLError):
    """Raised when the container lacks rootfiles/rootfile/full-path."""


class EmptyBookError(StructureError):
    """Raised when no spine entry resolves to a manifest item."""


class BookClosedError(RuntimeError):
    """Raised when chapter text is requested from a closed book."""


@dataclass(frozen=True)
class ManifestEntry:
    id: str
    href: str


@dataclass(frozen=True)
class Chapter:
    id: str
    path: str
    title: str


@dataclass
class PackageDocument:
    manifest: dict[str, ManifestEntry]
    chapters: list[Chapter]
    title: str | None = None


def _strip_tag(tag: str) -> str:
    return tag.split("}", 1)[-1] if "}" in tag else tag


def _get_attr(elem: ET.Element, name: str) -> str | None:
    for attr, value in elem.attrib.items():
        if _strip_tag(attr) == name:
            return value
    return None


def _first_child(elem: ET.Element, name: str) -> ET.Element | None:
    for child in elem:
        if isinstance(child.tag, str) and _strip_tag(child.tag) == name:
            return child
    return None


def _children(elem: ET.Element, name: str) -> list[ET.Element]:
    return [child for child in elem if isinstance(child.tag, str) and _strip_tag(child.tag) == name]


def _parse_xml(data: bytes, label: str) -> ET.Element:
    try:
        return ET.fromstring(data)
    except ET.ParseError as exc:
        raise MalformedXMLError(f"Malformed XML in {label}: {exc}") from exc


def resolve_chapter_path(package_path: str, href: str) -> str:
    base = posixpath.dirname(package_path)
    combined = f"{base}/{href}" if base else href
    if "./" in combined:
        combined = posixpath.normpath(combined)
    return combined


def resolve_package_path(archive: Archive) -> str:
    """Return the first rootfile path declared by the container descriptor."""
    try:
        data = archive.extract(CONTAINER_PATH)
    except EntryNotFoundError as exc:
        raise MissingContainerError(f"{CONTAINER_PATH} not found") from exc
    root = _parse_xml(data, CONTAINER_PATH)
    rootfiles = _first_child(root, "rootfiles")
    if rootfiles is None:
        raise MalformedContainerError("container.xml has no <rootfiles> element")
    rootfile = _first_child(rootfiles, "rootfile")
    if rootfile is None:
        raise MalformedContainerError("container.xml has no <rootfile> element")
    full_path = _get_attr(rootfile, "full-path")
    if not full_path:
        raise MalformedContainerError("<rootfile> is missing its full-path attribute")
    debug_log(f"Package document: {full_path}")
    return full_path


def _package_title(package: ET.Element) -> str | None:
    metadata = _first_child(package, "metadata")
    if metadata is None:
        return None
    title = _first_child(metadata, "title")
    if title is None or not title.text:
        return None
    return title.text.strip() or None


def parse_package(archive: Archive, package_path: str) -> PackageDocument:
    """Parse the package document into a manifest and spine-ordered chapters.

    Manifest items missing ``id`` or ``href`` are skipped; when an id repeats,
    the first declaration wins. Spine itemrefs that do not resolve to a
    manifest item are dropped. A book with no chapters is an error.
    """
    try:
        data = archive.extract(package_path)
    except EntryNotFoundError as exc:
        raise MissingPackageError(f"Package document not found: {package_path}") from exc
    package = _parse_xml(data, package_path)

    manifest: dict[str, ManifestEntry] = {}
    manifest_el = _first_child(package, "manifest")
    if manifest_el is not None:
        for item in _children(manifest_el, "item"):
            item_id = _get_attr(item, "id")
            href = _get_attr(item, "href")
            if not item_id or not href:
                continue
            if item_id in manifest:
                debug_log(f"Duplicate manifest id ignored: {item_id}")
                continue
            manifest[item_id] = ManifestEntry(id=item_id, href=href)

    spine_el = _first_child(package, "spine")
    if spine_el is None:
        raise EmptyBookError(f"No <spine> in {package_path}")

    chapters: list[Chapter] = []
    for itemref in _children(spine_el, "itemref"):
        idref = _get_attr(itemref, "idref")
        entry = manifest.get(idref) if idref else None
        if entry is None:
            debug_log(f"Dropping unresolved spine itemref: {idref!r}")
            continue
        chapters.append(
            Chapter(
                id=entry.id,
                path=resolve_chapter_path(package_path, entry.href),
                title=entry.id,
            )
        )

    if not chapters:
        raise EmptyBookError(f"No readable chapters in {package_path}")
    debug_log(f"Parsed {len(chapters)} chapters from {package_path}")
    return PackageDocument(manifest=manifest, chapters=chapters, title=_package_title(package))


@dataclass
class Book:
    """An opened EPUB. Owns its archive; closing the book closes both."""

    archive: Archive
    package_path: str
    chapters: list[Chapter]
    title: str | None = None
    manifest: dict[str, ManifestEntry] = field(default_factory=dict)

    @property
    def source(self) -> Path:
        return self.archive.path

    @property
    def display_title(self) -> str:
        return self.title or self.source.stem

    @property
    def closed(self) -> bool:
        return self.archive.closed

    def chapter_text(self, index: int) -> str:
        """Return the sanitized text of chapter ``index``.

        An entry that is missing or fails to decompress yields
        ``UNREADABLE_CHAPTER_TEXT`` so the rest of the book stays readable.
        """
        if self.archive.closed:
            raise BookClosedError(f"Book is closed: {self.source}")
        if not 0 <= index < len(self.chapters):
            raise IndexError(f"Chapter index {index} out of range (0-{len(self.chapters) - 1})")
        chapter = self.chapters[index]
        try:
            raw = self.archive.extract(chapter.path)
        except (EntryNotFoundError, CorruptEntryError) as exc:
            debug_log(f"Chapter {index} ({chapter.path}) unreadable: {exc}")
            return UNREADABLE_CHAPTER_TEXT
        return strip_markup(decode_document(raw))

    def close(self) -> None:
        self.archive.close()

    def __enter__(self) -> "Book":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def open_book(path: str | os.PathLike[str], *, buffered: bool = False) -> Book:
    """Open an EPUB and resolve its spine. Either returns a full Book or raises."""
    archive = open_archive(path, buffered=buffered)
    try:
        package_path = resolve_package_path(archive)
        package = parse_package(archive, package_path)
    except BaseException:
        archive.close()
        raise
    return Book(
        archive=archive,
        package_path=package_path,
        chapters=package.chapters,
        title=package.title,
        manifest=package.manifest,
    )


__all__ = [
    "Book",
    "BookClosedError",
    "Chapter",
    "EmptyBookError",
    "MalformedContainerError",
    "MalformedXMLError",
    "ManifestEntry",
    "MissingContainerError",
    "MissingPackageError",
    "PackageDocument",
    "StructureError",
    "UNREADABLE_CHAPTER_TEXT",
    "open_book",
    "parse_package",
    "resolve_chapter_path",
    "resolve_package_path",
]

from __future__ import annotations

import zlib
from pathlib import Path

import pytest

from conftest import CONTAINER_XML, build_opf, chapter_html

import folio.epub as epub_module
from folio.archive import ArchiveOpenError
from folio.epub import (
    UNREADABLE_CHAPTER_TEXT,
    BookClosedError,
    EmptyBookError,
    MalformedContainerError,
    MalformedXMLError,
    MissingContainerError,
    MissingPackageError,
    StructureError,
    open_book,
    resolve_chapter_path,
)


def _container(opf_path: str = "OEBPS/content.opf") -> str:
    return CONTAINER_XML.format(opf_path=opf_path)


def test_open_book_lists_chapters_in_spine_order(simple_epub: Path) -> None:
    with open_book(simple_epub) as book:
        assert book.package_path == "OEBPS/content.opf"
        assert [ch.id for ch in book.chapters] == ["ch1", "ch2", "ch3"]
        assert [ch.path for ch in book.chapters] == [
            "OEBPS/ch1.xhtml",
            "OEBPS/text/ch2.xhtml",
            "OEBPS/ch3.xhtml",
        ]
        assert all(ch.title == ch.id for ch in book.chapters)
        assert book.display_title == "Sample Book"


def test_spine_order_wins_over_manifest_order(make_epub) -> None:
    opf = build_opf(manifest=[("a", "a.xhtml"), ("b", "b.xhtml")], spine=["b", "a"])
    path = make_epub(
        {
            "META-INF/container.xml": _container(),
            "OEBPS/content.opf": opf,
            "OEBPS/a.xhtml": chapter_html("A", "a"),
            "OEBPS/b.xhtml": chapter_html("B", "b"),
        }
    )
    with open_book(path) as book:
        assert [ch.id for ch in book.chapters] == ["b", "a"]


def test_unresolvable_itemrefs_are_dropped(make_epub) -> None:
    opf = build_opf(
        manifest=[("ch1", "ch1.xhtml"), ("ch2", "ch2.xhtml")],
        spine=["ch1", "ghost", "ch2", "missing"],
    )
    path = make_epub(
        {
            "META-INF/container.xml": _container(),
            "OEBPS/content.opf": opf,
            "OEBPS/ch1.xhtml": chapter_html("1", "one"),
            "OEBPS/ch2.xhtml": chapter_html("2", "two"),
        }
    )
    with open_book(path) as book:
        assert [ch.id for ch in book.chapters] == ["ch1", "ch2"]


def test_manifest_items_without_href_are_skipped(make_epub) -> None:
    opf = """<?xml version="1.0"?>
<package xmlns="http://www.idpf.org/2007/opf">
  <manifest>
    <item id="nohref"/>
    <item href="noid.xhtml"/>
    <item id="ok" href="ok.xhtml"/>
  </manifest>
  <spine><itemref idref="nohref"/><itemref idref="ok"/><itemref/></spine>
</package>
"""
    path = make_epub({"META-INF/container.xml": _container(), "OEBPS/content.opf": opf})
    with open_book(path) as book:
        assert [ch.id for ch in book.chapters] == ["ok"]
        assert set(book.manifest) == {"ok"}


def test_duplicate_manifest_ids_keep_first_declaration(make_epub) -> None:
    opf = build_opf(manifest=[("dup", "first.xhtml"), ("dup", "second.xhtml")], spine=["dup"])
    path = make_epub({"META-INF/container.xml": _container(), "OEBPS/content.opf": opf})
    with open_book(path) as book:
        assert [ch.path for ch in book.chapters] == ["OEBPS/first.xhtml"]


def test_package_at_archive_root_uses_bare_hrefs(make_epub) -> None:
    opf = build_opf(manifest=[("c", "chapter.xhtml")], spine=["c"])
    path = make_epub({"META-INF/container.xml": _container("content.opf"), "content.opf": opf})
    with open_book(path) as book:
        assert book.chapters[0].path == "chapter.xhtml"


def test_resolve_chapter_path_normalizes_parent_segments() -> None:
    assert resolve_chapter_path("OPS/package/content.opf", "../text/c1.xhtml") == "OPS/text/c1.xhtml"
    assert resolve_chapter_path("OPS/content.opf", "./c1.xhtml") == "OPS/c1.xhtml"
    assert resolve_chapter_path("OPS/content.opf", "c1.xhtml") == "OPS/c1.xhtml"


def test_container_lookup_ignores_namespaces(make_epub) -> None:
    container = """<container><rootfiles><rootfile full-path="book.opf"/></rootfiles></container>"""
    opf = """<package><manifest><item id="x" href="x.html"/></manifest><spine><itemref idref="x"/></spine></package>"""
    path = make_epub({"META-INF/container.xml": container, "book.opf": opf})
    with open_book(path) as book:
        assert book.package_path == "book.opf"
        assert book.chapters[0].path == "x.html"
        assert book.display_title == "book"


def test_first_rootfile_is_used(make_epub) -> None:
    container = """<container><rootfiles>
<rootfile full-path="first.opf"/><rootfile full-path="second.opf"/>
</rootfiles></container>"""
    opf = build_opf(manifest=[("x", "x.xhtml")], spine=["x"])
    path = make_epub({"META-INF/container.xml": container, "first.opf": opf, "second.opf": "<broken"})
    with open_book(path) as book:
        assert book.package_path == "first.opf"


@pytest.mark.parametrize(
    ("entries", "error"),
    [
        ({}, MissingContainerError),
        ({"META-INF/container.xml": "<container><rootfiles>"}, MalformedXMLError),
        ({"META-INF/container.xml": "<container/>"}, MalformedContainerError),
        ({"META-INF/container.xml": "<container><rootfiles/></container>"}, MalformedContainerError),
        (
            {"META-INF/container.xml": "<container><rootfiles><rootfile/></rootfiles></container>"},
            MalformedContainerError,
        ),
        ({"META-INF/container.xml": CONTAINER_XML.format(opf_path="OEBPS/content.opf")}, MissingPackageError),
        (
            {
                "META-INF/container.xml": CONTAINER_XML.format(opf_path="OEBPS/content.opf"),
                "OEBPS/content.opf": "<package><manifest>",
            },
            MalformedXMLError,
        ),
        (
            {
                "META-INF/container.xml": CONTAINER_XML.format(opf_path="OEBPS/content.opf"),
                "OEBPS/content.opf": '<package><manifest><item id="a" href="a.xhtml"/></manifest></package>',
            },
            EmptyBookError,
        ),
        (
            {
                "META-INF/container.xml": CONTAINER_XML.format(opf_path="OEBPS/content.opf"),
                "OEBPS/content.opf": build_opf(manifest=[], spine=["a", "b"]),
            },
            EmptyBookError,
        ),
    ],
)
def test_structural_failures_abort_open(make_epub, entries, error) -> None:
    path = make_epub(entries)
    with pytest.raises(error) as excinfo:
        open_book(path)
    assert isinstance(excinfo.value, StructureError)


def test_failed_open_closes_archive(make_epub, monkeypatch: pytest.MonkeyPatch) -> None:
    opened = []
    real_open_archive = epub_module.open_archive

    def _tracking_open(path, **kwargs):
        archive = real_open_archive(path, **kwargs)
        opened.append(archive)
        return archive

    monkeypatch.setattr(epub_module, "open_archive", _tracking_open)
    path = make_epub({"META-INF/container.xml": "<container/>"})
    with pytest.raises(MalformedContainerError):
        open_book(path)
    assert len(opened) == 1
    assert opened[0].closed


def test_non_zip_book_raises_archive_error(tmp_path: Path) -> None:
    path = tmp_path / "plain.epub"
    path.write_text("not a zip", encoding="utf-8")
    with pytest.raises(ArchiveOpenError):
        open_book(path)


def test_chapter_text_is_sanitized(simple_epub: Path) -> None:
    with open_book(simple_epub) as book:
        first = book.chapter_text(0)
        assert first.strip().split("\n\n") == ["This is the first chapter.", "It has two paragraphs."]
        assert "<" not in first
        assert "margin" not in first
        assert "One" not in first
        assert book.chapter_text(1).strip() == "Second chapter & more."


def test_missing_chapter_entry_yields_placeholder(make_epub) -> None:
    opf = build_opf(manifest=[("gone", "gone.xhtml"), ("here", "here.xhtml")], spine=["gone", "here"])
    path = make_epub(
        {
            "META-INF/container.xml": _container(),
            "OEBPS/content.opf": opf,
            "OEBPS/here.xhtml": chapter_html("Here", "Still readable."),
        }
    )
    with open_book(path) as book:
        assert len(book.chapters) == 2
        assert book.chapter_text(0) == UNREADABLE_CHAPTER_TEXT
        assert book.chapter_text(1).strip() == "Still readable."


def test_corrupt_chapter_entry_yields_placeholder(make_epub) -> None:
    chapter = chapter_html("Broken", "This chapter will not inflate.").encode("utf-8")
    compressor = zlib.compressobj(zlib.Z_DEFAULT_COMPRESSION, zlib.DEFLATED, -15)
    deflated = compressor.compress(chapter) + compressor.flush()
    opf = build_opf(manifest=[("bad", "bad.xhtml"), ("good", "good.xhtml")], spine=["bad", "good"])
    path = make_epub(
        {
            "META-INF/container.xml": _container(),
            "OEBPS/content.opf": opf,
            "OEBPS/bad.xhtml": chapter,
            "OEBPS/good.xhtml": chapter_html("Good", "Still fine."),
        }
    )
    raw = path.read_bytes()
    assert raw.count(deflated) == 1
    # 0xff starts a deflate block of reserved type, which zlib rejects.
    path.write_bytes(raw.replace(deflated, b"\xff" * len(deflated)))

    with open_book(path) as book:
        assert book.chapter_text(0) == UNREADABLE_CHAPTER_TEXT
        assert book.chapter_text(1).strip() == "Still fine."


def test_chapter_text_index_bounds(simple_epub: Path) -> None:
    with open_book(simple_epub) as book:
        with pytest.raises(IndexError):
            book.chapter_text(3)
        with pytest.raises(IndexError):
            book.chapter_text(-1)


def test_closed_book_invalidates_chapter_access(simple_epub: Path) -> None:
    book = open_book(simple_epub, buffered=True)
    assert book.chapter_text(1)
    book.close()
    assert book.closed
    with pytest.raises(BookClosedError):
        book.chapter_text(1)

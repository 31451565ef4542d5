from __future__ import annotations

import zipfile
from pathlib import Path
from typing import Callable, Mapping

import pytest

CONTAINER_XML = """<?xml version="1.0" encoding="UTF-8"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
  <rootfiles>
    <rootfile full-path="{opf_path}" media-type="application/oebps-package+xml"/>
  </rootfiles>
</container>
"""

OPF_TEMPLATE = """<?xml version="1.0" encoding="UTF-8"?>
<package version="3.0" unique-identifier="BookId" xmlns="http://www.idpf.org/2007/opf">
  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/">
    <dc:title>{title}</dc:title>
  </metadata>
  <manifest>
{items}
  </manifest>
  <spine>
{itemrefs}
  </spine>
</package>
"""

CHAPTER_TEMPLATE = """<?xml version="1.0" encoding="utf-8"?>
<html xmlns="http://www.w3.org/1999/xhtml">
  <head><title>{title}</title><style>p {{ margin: 0; }}</style></head>
  <body>
{body}
  </body>
</html>
"""


def build_opf(
    manifest: list[tuple[str, str]],
    spine: list[str],
    title: str = "Sample Book",
) -> str:
    items = "\n".join(
        f'    <item id="{item_id}" href="{href}" media-type="application/xhtml+xml"/>'
        for item_id, href in manifest
    )
    itemrefs = "\n".join(f'    <itemref idref="{idref}"/>' for idref in spine)
    return OPF_TEMPLATE.format(title=title, items=items, itemrefs=itemrefs)


def chapter_html(title: str, *paragraphs: str) -> str:
    body = "\n".join(f"    <p>{para}</p>" for para in paragraphs)
    return CHAPTER_TEMPLATE.format(title=title, body=body)


def write_epub(path: Path, entries: Mapping[str, str | bytes]) -> Path:
    with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr("mimetype", "application/epub+zip", compress_type=zipfile.ZIP_STORED)
        for name, data in entries.items():
            zf.writestr(name, data)
    return path


def build_simple_epub(target: Path, name: str = "sample.epub") -> Path:
    opf = build_opf(
        manifest=[("ch1", "ch1.xhtml"), ("ch2", "text/ch2.xhtml"), ("ch3", "ch3.xhtml")],
        spine=["ch1", "ch2", "ch3"],
    )
    return write_epub(
        target / name,
        {
            "META-INF/container.xml": CONTAINER_XML.format(opf_path="OEBPS/content.opf"),
            "OEBPS/content.opf": opf,
            "OEBPS/ch1.xhtml": chapter_html("One", "This is the first chapter.", "It has two paragraphs."),
            "OEBPS/text/ch2.xhtml": chapter_html("Two", "Second chapter &amp; more."),
            "OEBPS/ch3.xhtml": chapter_html(
                "Three",
                *[f"Paragraph {idx} of the closing chapter with several words." for idx in range(1, 13)],
            ),
        },
    )


@pytest.fixture
def simple_epub(tmp_path: Path) -> Path:
    return build_simple_epub(tmp_path)


@pytest.fixture
def make_epub(tmp_path: Path) -> Callable[..., Path]:
    def _make(entries: Mapping[str, str | bytes], name: str = "book.epub") -> Path:
        return write_epub(tmp_path / name, entries)

    return _make

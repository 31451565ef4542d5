from __future__ import annotations

import io
import os
import zipfile
import zlib
from pathlib import Path

from .logging_utils import debug_log


class ArchiveError(RuntimeError):
    """Base class for failures reading the zip container."""


class ArchiveNotFoundError(ArchiveError, FileNotFoundError):
    """Raised when the archive file does not exist."""


class EntryNotFoundError(ArchiveError):
    """Raised when a named entry is absent from the archive."""


class ArchiveOpenError(ArchiveError):
    """Raised when the file cannot be opened as a zip archive."""


class IncompleteReadError(ArchiveError):
    """Raised when the buffered fallback reads fewer bytes than the file reports."""


class CorruptEntryError(ArchiveError):
    """Raised when an entry fails to decompress or verify."""


_ENTRY_DECODE_ERRORS = (
    zipfile.BadZipFile,
    zlib.error,
    EOFError,
    NotImplementedError,  # unsupported compression method
    RuntimeError,  # encrypted entry
)


def read_exact(handle: io.BufferedIOBase, size: int) -> bytes:
    """Read ``size`` bytes from ``handle`` or raise IncompleteReadError."""
    data = handle.read(size)
    if data is None:
        data = b""
    if len(data) != size:
        raise IncompleteReadError(f"Read {len(data)} of {size} bytes")
    return data


class Archive:
    """Path-addressable view of a zip container.

    The archive owns its ``ZipFile`` and, when opened in buffered mode, the
    whole-file buffer behind it. Both are released by :meth:`close`.
    """

    def __init__(self, path: Path, zf: zipfile.ZipFile, buffer: bytes | None = None) -> None:
        self.path = path
        self._zf: zipfile.ZipFile | None = zf
        self._buffer = buffer

    @property
    def buffered(self) -> bool:
        return self._buffer is not None

    @property
    def closed(self) -> bool:
        return self._zf is None

    def names(self) -> list[str]:
        return self._require_open().namelist()

    def extract(self, name: str) -> bytes:
        zf = self._require_open()
        try:
            info = zf.getinfo(name)
        except KeyError as exc:
            raise EntryNotFoundError(f"Entry not found in {self.path.name}: {name}") from exc
        try:
            with zf.open(info, "r") as handle:
                return handle.read()
        except _ENTRY_DECODE_ERRORS as exc:
            raise CorruptEntryError(f"Failed to decompress {name}: {exc}") from exc

    def close(self) -> None:
        if self._zf is not None:
            self._zf.close()
            self._zf = None
        self._buffer = None

    def _require_open(self) -> zipfile.ZipFile:
        if self._zf is None:
            raise ArchiveError(f"Archive is closed: {self.path}")
        return self._zf

    def __enter__(self) -> "Archive":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def _open_buffered(path: Path) -> Archive:
    try:
        with path.open("rb") as handle:
            size = os.fstat(handle.fileno()).st_size
            debug_log(f"Loading {path} into memory ({size} bytes)")
            buffer = read_exact(handle, size)
    except FileNotFoundError as exc:
        raise ArchiveNotFoundError(f"Archive not found: {path}") from exc
    except OSError as exc:
        raise ArchiveOpenError(f"Failed to read {path}: {exc}") from exc
    try:
        zf = zipfile.ZipFile(io.BytesIO(buffer))
    except zipfile.BadZipFile as exc:
        raise ArchiveOpenError(f"Not a zip archive: {path}") from exc
    return Archive(path, zf, buffer)


def open_archive(path: str | os.PathLike[str], *, buffered: bool = False) -> Archive:
    """Open ``path`` with random access, falling back to a whole-file buffer."""
    archive_path = Path(path)
    if not archive_path.exists():
        raise ArchiveNotFoundError(f"Archive not found: {archive_path}")
    if buffered:
        return _open_buffered(archive_path)
    try:
        zf = zipfile.ZipFile(archive_path)
    except FileNotFoundError as exc:
        raise ArchiveNotFoundError(f"Archive not found: {archive_path}") from exc
    except (OSError, zipfile.BadZipFile) as exc:
        debug_log(f"Direct open failed for {archive_path} ({exc}); trying buffered read")
        return _open_buffered(archive_path)
    return Archive(archive_path, zf)


__all__ = [
    "Archive",
    "ArchiveError",
    "ArchiveNotFoundError",
    "ArchiveOpenError",
    "CorruptEntryError",
    "EntryNotFoundError",
    "IncompleteReadError",
    "open_archive",
    "read_exact",
]

"""
Sequential read access to bundle archives.

Bundle archives (``.nar`` files) are zip files laid out like a jar:

    META-INF/MANIFEST.MF            bundle identity and dependency attributes
    META-INF/services/<type>        extension classes provided per service type
    META-INF/bundled-dependencies/  libraries shipped with the bundle

Example:
    from bundlekit.nar.archive import ArchiveReader

    with ArchiveReader(Path("lib/dummy-one.nar")) as reader:
        manifest_bytes = reader.manifest_bytes()
        for entry, stream in reader.entries():
            print(entry.path, entry.size)
"""

from __future__ import annotations

import logging
import time
import zipfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import IO, Iterator

from bundlekit.nar.errors import CorruptArchive, IOFailure

logger = logging.getLogger(__name__)

MANIFEST_PATH = "META-INF/MANIFEST.MF"
SERVICES_PREFIX = "META-INF/services/"

# Errors zipfile raises for structurally broken archives
_CORRUPTION_ERRORS = (zipfile.BadZipFile, zipfile.LargeZipFile, NotImplementedError, EOFError)


@dataclass(frozen=True)
class ArchiveEntry:
    """One member of an archive.

    Attributes:
        path: Relative POSIX path inside the archive.
        size: Uncompressed size in bytes.
        last_modified: Entry timestamp as epoch seconds (local time).
        is_dir: Whether the entry is a directory.
    """

    path: str
    size: int
    last_modified: float
    is_dir: bool = False

    @property
    def parts(self) -> tuple[str, ...]:
        return PurePosixPath(self.path).parts


def validate_member_path(archive_path: Path, member_name: str) -> str:
    """Reject member names that would escape the extraction directory.

    Returns:
        The normalized relative path.

    Raises:
        CorruptArchive: If the name is absolute, empty or contains ``..``.
    """
    normalized = member_name.replace("\\", "/")
    relative = PurePosixPath(normalized)
    if relative.is_absolute() or normalized.startswith("/"):
        raise CorruptArchive(archive_path, f"absolute entry path: {member_name}")
    parts = [part for part in relative.parts if part not in ("", ".")]
    if not parts:
        raise CorruptArchive(archive_path, f"empty entry path: {member_name!r}")
    if ".." in parts or ":" in parts[0]:
        raise CorruptArchive(archive_path, f"unsafe entry path: {member_name}")
    return "/".join(parts)


class EntryStream:
    """Read-only byte stream over one archive entry.

    Read errors are reported as CorruptArchive / IOFailure so callers never
    see zipfile's own exception types.
    """

    def __init__(self, archive_path: Path, entry: ArchiveEntry, raw: IO[bytes]):
        self.archive_path = archive_path
        self.entry = entry
        self._raw = raw

    def read(self, size: int = -1) -> bytes:
        try:
            return self._raw.read(size)
        except _CORRUPTION_ERRORS as e:
            raise CorruptArchive(
                self.archive_path, f"cannot read entry {self.entry.path}: {e}", e
            )
        except OSError as e:
            raise IOFailure(
                self.archive_path, f"cannot read entry {self.entry.path}: {e}", e
            )

    def readable(self) -> bool:
        return True

    @property
    def closed(self) -> bool:
        return self._raw.closed

    def close(self) -> None:
        self._raw.close()

    def __enter__(self) -> EntryStream:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def _entry_timestamp(info: zipfile.ZipInfo) -> float:
    try:
        return time.mktime(info.date_time + (0, 0, -1))
    except (OverflowError, ValueError):
        return 0.0


class ArchiveReader:
    """Reads entries and metadata from a single bundle archive.

    The reader holds one open handle on the archive between ``open()`` and
    ``close()``; use it as a context manager to release the handle
    deterministically.

    Attributes:
        path: The archive file.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._zip: zipfile.ZipFile | None = None

    def open(self) -> ArchiveReader:
        """Open the archive and read its central directory.

        Raises:
            CorruptArchive: If the file is not a readable zip archive.
            IOFailure: If the file cannot be read.
        """
        if self._zip is not None:
            return self
        try:
            self._zip = zipfile.ZipFile(self.path, "r")
        except _CORRUPTION_ERRORS as e:
            raise CorruptArchive(self.path, f"cannot read archive structure: {e}", e)
        except OSError as e:
            raise IOFailure(self.path, f"cannot open archive: {e}", e)
        logger.debug(f"Opened archive {self.path} ({len(self._zip.infolist())} entries)")
        return self

    def close(self) -> None:
        """Release the archive handle."""
        if self._zip is not None:
            self._zip.close()
            self._zip = None

    def __enter__(self) -> ArchiveReader:
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def _archive(self) -> zipfile.ZipFile:
        if self._zip is None:
            self.open()
        assert self._zip is not None
        return self._zip

    def list_entries(self) -> list[ArchiveEntry]:
        """List all entries without reading their contents."""
        return [self._describe(info) for info in self._archive.infolist()]

    def _describe(self, info: zipfile.ZipInfo) -> ArchiveEntry:
        return ArchiveEntry(
            path=validate_member_path(self.path, info.filename),
            size=info.file_size,
            last_modified=_entry_timestamp(info),
            is_dir=info.is_dir(),
        )

    def entries(self) -> Iterator[tuple[ArchiveEntry, EntryStream]]:
        """Iterate over entries with a stream scoped to each one.

        The stream yielded with an entry is closed as soon as iteration
        advances. Directory entries come with an empty stream.

        Raises:
            CorruptArchive: On unsafe paths, CRC errors or unsupported
                compression.
            IOFailure: On underlying read errors.
        """
        for info in self._archive.infolist():
            entry = self._describe(info)
            try:
                raw = self._archive.open(info, "r")
            except _CORRUPTION_ERRORS as e:
                raise CorruptArchive(self.path, f"cannot read entry {entry.path}: {e}", e)
            except OSError as e:
                raise IOFailure(self.path, f"cannot read entry {entry.path}: {e}", e)
            with EntryStream(self.path, entry, raw) as stream:
                yield entry, stream

    def read_entry(self, name: str) -> bytes | None:
        """Read one entry fully.

        Returns:
            The entry bytes, or None if the archive has no such entry.
        """
        try:
            info = self._archive.getinfo(name)
        except KeyError:
            return None
        try:
            return self._archive.read(info)
        except _CORRUPTION_ERRORS as e:
            raise CorruptArchive(self.path, f"cannot read entry {name}: {e}", e)
        except OSError as e:
            raise IOFailure(self.path, f"cannot read entry {name}: {e}", e)

    def manifest_bytes(self) -> bytes | None:
        """Return the raw manifest, or None if the bundle has none."""
        return self.read_entry(MANIFEST_PATH)

    def service_declarations(self) -> dict[str, bytes]:
        """Return raw ``META-INF/services/*`` files keyed by service type."""
        declarations: dict[str, bytes] = {}
        for info in self._archive.infolist():
            if info.is_dir() or not info.filename.startswith(SERVICES_PREFIX):
                continue
            service_type = info.filename[len(SERVICES_PREFIX):]
            if not service_type or "/" in service_type:
                continue
            data = self.read_entry(info.filename)
            if data is not None:
                declarations[service_type] = data
        return declarations

    def __repr__(self) -> str:
        state = "open" if self._zip is not None else "closed"
        return f"<ArchiveReader {self.path.name} {state}>"

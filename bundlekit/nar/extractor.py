"""
Incremental extraction of bundle archives into working directories.

Each archive ``<root>/<name>.nar`` is mirrored into
``<working base>/<name>.nar-unpacked``. A sentinel file is written as the
very last step of a successful extraction; a working directory without a
sentinel is treated as the leftover of an interrupted run and extracted
again.

Staleness Rules:
    An archive is (re-)extracted when any of these hold:
    - the working directory does not exist
    - the sentinel is missing or unreadable
    - the archive is strictly newer than the sentinel's timestamp
    - the archive's size, timestamp or location differ from the sentinel's
    - checksum verification is on and the archive digest changed

Otherwise the existing copy is reused and its manifest is re-read from the
unpacked files rather than from the archive.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from bundlekit.nar.archive import MANIFEST_PATH, SERVICES_PREFIX, ArchiveReader
from bundlekit.nar.errors import ExtractionFailure, IOFailure
from bundlekit.nar.manifest import BundleManifest, ManifestParser

logger = logging.getLogger(__name__)

SENTINEL_NAME = ".bundle-unpacked"
WORKING_DIRECTORY_SUFFIX = "-unpacked"

_CHUNK_SIZE = 1024 * 1024


@dataclass
class UnpackedBundle:
    """A bundle available on disk in its working directory.

    Attributes:
        bundle_id: Identifier from the manifest (or synthesized).
        working_directory: Directory holding the mirrored archive contents.
        manifest: The parsed manifest.
        source_archive: Archive the directory was produced from.
        source_last_modified: Archive mtime when it was processed.
        extracted: True if extracted during this run, False if reused.
    """

    bundle_id: str
    working_directory: Path
    manifest: BundleManifest
    source_archive: Path
    source_last_modified: float
    extracted: bool = False

    @property
    def dependency_id(self) -> str | None:
        return self.manifest.dependency_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "bundle_id": self.bundle_id,
            "working_directory": str(self.working_directory),
            "source_archive": str(self.source_archive),
            "source_last_modified": self.source_last_modified,
            "extracted": self.extracted,
            "manifest": self.manifest.to_dict(),
        }


@dataclass
class ExtractionRecord:
    """Contents of the sentinel file left by a completed extraction."""

    source_archive: str
    archive_last_modified: float
    archive_size: int
    extracted_at: float
    checksum: str | None = None

    @property
    def timestamp(self) -> float:
        """Point in time the unpacked copy is considered current as of."""
        return max(self.extracted_at, self.archive_last_modified)

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_archive": self.source_archive,
            "archive_last_modified": self.archive_last_modified,
            "archive_size": self.archive_size,
            "extracted_at": self.extracted_at,
            "checksum": self.checksum,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExtractionRecord:
        return cls(
            source_archive=str(data["source_archive"]),
            archive_last_modified=float(data["archive_last_modified"]),
            archive_size=int(data["archive_size"]),
            extracted_at=float(data["extracted_at"]),
            checksum=data.get("checksum"),
        )


def sha256_file(path: Path) -> str:
    """Return the SHA-256 hex digest of a file."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def resolve_working_base(root: Path, working_base: Path) -> Path:
    """Resolve the working base for a root; relative bases hang off the root's parent."""
    working_base = Path(working_base)
    if working_base.is_absolute():
        return working_base
    return Path(root).parent / working_base


class IncrementalExtractor:
    """Extracts archives only when their unpacked copy is stale.

    Args:
        working_base: Directory under which ``-unpacked`` directories are
            created. Relative paths are resolved per root directory.
        verify_checksum: Also compare SHA-256 digests when deciding
            staleness.

    Example:
        extractor = IncrementalExtractor(Path("work/extensions"))
        bundle = extractor.process(Path("lib"), Path("lib/dummy-one.nar"))
        print(bundle.working_directory, bundle.extracted)
    """

    def __init__(self, working_base: Path, verify_checksum: bool = False):
        self.working_base = Path(working_base)
        self.verify_checksum = verify_checksum

    def working_directory_for(self, root: Path, archive: Path) -> Path:
        """Working directory an archive found in ``root`` is unpacked into."""
        base = resolve_working_base(root, self.working_base)
        return base / f"{archive.name}{WORKING_DIRECTORY_SUFFIX}"

    # -- staleness -----------------------------------------------------------

    def read_record(self, working_directory: Path) -> ExtractionRecord | None:
        """Read the sentinel of a working directory, None if absent or unreadable."""
        sentinel = working_directory / SENTINEL_NAME
        try:
            data = json.loads(sentinel.read_text(encoding="utf-8"))
            return ExtractionRecord.from_dict(data)
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.debug(f"Unreadable sentinel {sentinel}: {e}")
            return None

    def staleness_reason(self, archive: Path, working_directory: Path) -> str | None:
        """Explain why an archive must be extracted, or None if its copy is fresh.

        Raises:
            IOFailure: If the archive cannot be inspected.
        """
        if not working_directory.is_dir():
            return "not yet unpacked"

        record = self.read_record(working_directory)
        if record is None:
            return "no completed extraction recorded"

        stat = self._stat(archive)
        if stat.st_mtime > record.timestamp:
            return "archive is newer than the unpacked copy"
        if stat.st_mtime != record.archive_last_modified or stat.st_size != record.archive_size:
            return "archive changed since it was unpacked"
        if record.source_archive != str(archive.resolve()):
            return "unpacked copy came from a different archive"
        if self.verify_checksum and record.checksum != self._checksum(archive):
            return "archive checksum changed"
        return None

    def needs_extraction(self, archive: Path, working_directory: Path) -> bool:
        return self.staleness_reason(archive, working_directory) is not None

    # -- processing ----------------------------------------------------------

    def process(self, root: Path, archive: Path) -> UnpackedBundle:
        """Make one archive available on disk and return its bundle.

        Raises:
            CorruptArchive: If the archive cannot be parsed.
            IOFailure: If the archive or its unpacked copy cannot be read.
            InvalidManifest: If the manifest is malformed.
            ExtractionFailure: If mirroring the archive onto disk fails.
        """
        archive = Path(archive)
        working_directory = self.working_directory_for(root, archive)
        reason = self.staleness_reason(archive, working_directory)

        if reason is None:
            logger.debug(f"Reusing unpacked copy of {archive.name} at {working_directory}")
            manifest = self.load_unpacked_manifest(archive, working_directory)
            extracted = False
        else:
            logger.info(f"Unpacking {archive.name} to {working_directory} ({reason})")
            manifest = self.extract(archive, working_directory)
            extracted = True

        return UnpackedBundle(
            bundle_id=manifest.bundle_id,
            working_directory=working_directory,
            manifest=manifest,
            source_archive=archive,
            source_last_modified=self._stat(archive).st_mtime,
            extracted=extracted,
        )

    def extract(self, archive: Path, working_directory: Path) -> BundleManifest:
        """Mirror an archive into its working directory, sentinel last.

        The manifest is parsed before anything is written so an archive with
        an invalid manifest leaves no trace on disk.
        """
        stat = self._stat(archive)
        checksum = self._checksum(archive) if self.verify_checksum else None

        with ArchiveReader(archive) as reader:
            manifest = ManifestParser(archive).parse(
                reader.manifest_bytes(), reader.service_declarations()
            )

            try:
                self._clear(working_directory)
                working_directory.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise ExtractionFailure(
                    archive, f"cannot prepare {working_directory}: {e}", e
                )

            count = 0
            for entry, stream in reader.entries():
                target = working_directory.joinpath(*entry.parts)
                try:
                    if entry.is_dir:
                        target.mkdir(parents=True, exist_ok=True)
                        continue
                    target.parent.mkdir(parents=True, exist_ok=True)
                    with open(target, "wb") as out:
                        shutil.copyfileobj(stream, out, _CHUNK_SIZE)
                    if entry.last_modified > 0:
                        os.utime(target, (entry.last_modified, entry.last_modified))
                except OSError as e:
                    raise ExtractionFailure(archive, f"cannot write {entry.path}: {e}", e)
                count += 1

        record = ExtractionRecord(
            source_archive=str(archive.resolve()),
            archive_last_modified=stat.st_mtime,
            archive_size=stat.st_size,
            extracted_at=time.time(),
            checksum=checksum,
        )
        self._write_record(archive, working_directory, record)
        logger.info(f"Unpacked {count} entries from {archive.name} (bundle '{manifest.bundle_id}')")
        return manifest

    def load_unpacked_manifest(self, archive: Path, working_directory: Path) -> BundleManifest:
        """Re-parse the manifest from an existing unpacked copy."""
        manifest_file = working_directory.joinpath(*MANIFEST_PATH.split("/"))
        services_dir = working_directory.joinpath(*SERVICES_PREFIX.strip("/").split("/"))
        try:
            data = manifest_file.read_bytes() if manifest_file.is_file() else None
            declarations: dict[str, bytes] = {}
            if services_dir.is_dir():
                for service_file in sorted(services_dir.iterdir()):
                    if service_file.is_file():
                        declarations[service_file.name] = service_file.read_bytes()
        except OSError as e:
            raise IOFailure(archive, f"cannot read unpacked copy {working_directory}: {e}", e)
        return ManifestParser(archive).parse(data, declarations)

    # -- helpers -------------------------------------------------------------

    def _stat(self, archive: Path) -> os.stat_result:
        try:
            return archive.stat()
        except OSError as e:
            raise IOFailure(archive, f"cannot stat archive: {e}", e)

    def _checksum(self, archive: Path) -> str:
        try:
            return sha256_file(archive)
        except OSError as e:
            raise IOFailure(archive, f"cannot checksum archive: {e}", e)

    def _clear(self, working_directory: Path) -> None:
        if working_directory.is_dir() and not working_directory.is_symlink():
            shutil.rmtree(working_directory)
        elif working_directory.exists() or working_directory.is_symlink():
            working_directory.unlink()

    def _write_record(
        self, archive: Path, working_directory: Path, record: ExtractionRecord
    ) -> None:
        sentinel = working_directory / SENTINEL_NAME
        tmp = sentinel.with_name(SENTINEL_NAME + ".tmp")
        try:
            tmp.write_text(json.dumps(record.to_dict(), indent=2) + "\n", encoding="utf-8")
            tmp.replace(sentinel)
        except OSError as e:
            raise ExtractionFailure(archive, f"cannot record extraction: {e}", e)

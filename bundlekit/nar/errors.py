"""
Error taxonomy for bundle unpacking.

Exceptions are raised by the archive, manifest and extractor layers and
caught by the unpacker at the boundary of a single unit of work (one root
directory or one archive). Only ConfigurationFailure aborts a whole run;
everything else is turned into an UnpackWarning attached to the result.

Exception Hierarchy:
    BundleError
    ├── ConfigurationFailure     primary library directory unusable
    ├── AlternateRootUnusable    alternate library directory unusable
    └── ArchiveError             one archive could not be processed
        ├── CorruptArchive
        ├── IOFailure
        ├── InvalidManifest
        └── ExtractionFailure
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any


class BundleError(Exception):
    """Base class for all bundle unpacking errors."""


class ConfigurationFailure(BundleError):
    """Raised when the primary library directory cannot be used.

    Attributes:
        path: The configured primary directory.
        reason: Why it was rejected.
    """

    def __init__(self, path: Path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid library directory '{path}': {reason}")


class AlternateRootUnusable(BundleError):
    """Raised when an alternate library directory is missing or not a directory."""

    def __init__(self, path: Path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Skipping alternate library directory '{path}': {reason}")


class ArchiveError(BundleError):
    """Raised when a single archive fails to process.

    Attributes:
        archive_path: Path of the archive that failed.
        reason: Reason for the failure.
        original: Original exception if any.
    """

    def __init__(
        self,
        archive_path: Path,
        reason: str,
        original: Exception | None = None,
    ):
        self.archive_path = Path(archive_path)
        self.reason = reason
        self.original = original
        super().__init__(f"{self.archive_path.name}: {reason}")


class CorruptArchive(ArchiveError):
    """The archive's structure could not be parsed."""


class IOFailure(ArchiveError):
    """An underlying read error occurred while accessing the archive."""


class InvalidManifest(ArchiveError):
    """The bundle manifest is present but malformed."""


class ExtractionFailure(ArchiveError):
    """Mirroring the archive onto disk failed."""


class WarningKind(str, Enum):
    """Non-fatal problems recorded on an unpack result."""

    ALTERNATE_ROOT_UNUSABLE = "alternate_root_unusable"
    CORRUPT_ARCHIVE = "corrupt_archive"
    IO_FAILURE = "io_failure"
    INVALID_MANIFEST = "invalid_manifest"
    EXTRACTION_FAILURE = "extraction_failure"
    DUPLICATE_BUNDLE_ID = "duplicate_bundle_id"
    DEPENDENCY_UNRESOLVED = "dependency_unresolved"
    DEPENDENCY_CYCLE = "dependency_cycle"
    EXTENSION_NAME_CONFLICT = "extension_name_conflict"
    WORKING_DIRECTORY_CONFLICT = "working_directory_conflict"


# Per-archive exceptions and the warning each one becomes
ARCHIVE_ERROR_KINDS: dict[type[ArchiveError], WarningKind] = {
    CorruptArchive: WarningKind.CORRUPT_ARCHIVE,
    IOFailure: WarningKind.IO_FAILURE,
    InvalidManifest: WarningKind.INVALID_MANIFEST,
    ExtractionFailure: WarningKind.EXTRACTION_FAILURE,
}


@dataclass(frozen=True)
class UnpackWarning:
    """A non-fatal problem surfaced to the caller.

    Attributes:
        kind: Category of the problem.
        message: Human-readable description.
        archive_path: Archive involved, if any.
        bundle_id: Bundle involved, if any.
        details: Extra structured context (conflicting bundles, cycle members).
    """

    kind: WarningKind
    message: str
    archive_path: Path | None = None
    bundle_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_archive_error(cls, error: ArchiveError) -> UnpackWarning:
        """Build the warning recorded for a failed archive."""
        kind = WarningKind.EXTRACTION_FAILURE
        for error_type, error_kind in ARCHIVE_ERROR_KINDS.items():
            if isinstance(error, error_type):
                kind = error_kind
                break
        return cls(kind=kind, message=str(error), archive_path=error.archive_path)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary.

        Returns:
            Dictionary representation.
        """
        return {
            "kind": self.kind.value,
            "message": self.message,
            "archive_path": str(self.archive_path) if self.archive_path else None,
            "bundle_id": self.bundle_id,
            "details": dict(self.details),
        }

"""
Top-level driver for unpacking bundle archives.

The unpacker walks the configured library directories (one primary, any
number of alternates), hands every archive it finds to the
IncrementalExtractor, then aggregates the resulting bundles into a
dependency graph and an extension mapping.

Unpack States:
    - INIT: Nothing done yet.
    - VALIDATING_PRIMARY: Checking the primary library directory.
    - SCANNING_ROOTS: Listing library directories and processing archives.
    - AGGREGATING: Building the dependency graph and extension mapping.
    - DONE: Result available.
    - ABORTED: The primary library directory was unusable; no result.

Failure Isolation:
    Only an unusable primary library directory aborts a run, and
    ``unpack()`` then returns None. Unusable alternates, broken archives and
    structural conflicts are recorded as warnings on the result, so callers
    can tell "could not run" (None) from "ran with N extensions and M
    warnings".

Example:
    from bundlekit.config import Settings
    from bundlekit.nar import unpack_bundles

    result = unpack_bundles(Settings(NAR_LIBRARY_DIRECTORY="./lib"))
    if result is None:
        raise SystemExit("invalid library directory")
    for name in sorted(result.all_extension_names()):
        print(name, result.mapping.get_bundle_id(name))
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from bundlekit.config.settings import Settings
from bundlekit.nar.errors import (
    AlternateRootUnusable,
    ArchiveError,
    ConfigurationFailure,
    UnpackWarning,
    WarningKind,
)
from bundlekit.nar.extractor import IncrementalExtractor, UnpackedBundle
from bundlekit.nar.graph import BundleDependencyGraph, BundleGraphBuilder
from bundlekit.nar.mapping import ExtensionMapper, ExtensionMapping

logger = logging.getLogger(__name__)


class UnpackState(str, Enum):
    """States an unpack run moves through."""

    INIT = "init"
    VALIDATING_PRIMARY = "validating_primary"
    SCANNING_ROOTS = "scanning_roots"
    AGGREGATING = "aggregating"
    DONE = "done"
    ABORTED = "aborted"


@dataclass(frozen=True)
class RootDirectorySpec:
    """A library directory to scan for archives."""

    path: Path
    is_primary: bool = False


@dataclass
class UnpackResult:
    """Outcome of a completed unpack run.

    Attributes:
        mapping: Extension class name to bundle id.
        graph: Dependency graph of every accepted bundle.
        warnings: Every non-fatal problem, in the order it was found.
        cancelled: True if the run stopped early; unprocessed archives
            contribute nothing.
    """

    mapping: ExtensionMapping
    graph: BundleDependencyGraph
    warnings: list[UnpackWarning] = field(default_factory=list)
    cancelled: bool = False

    @property
    def bundles(self) -> list[UnpackedBundle]:
        """Accepted bundles, dependencies first."""
        return list(self.graph)

    @property
    def extracted(self) -> list[UnpackedBundle]:
        return [bundle for bundle in self.bundles if bundle.extracted]

    @property
    def reused(self) -> list[UnpackedBundle]:
        return [bundle for bundle in self.bundles if not bundle.extracted]

    def all_extension_names(self) -> frozenset[str]:
        return self.mapping.all_extension_names()

    def bundle_for(self, extension_name: str) -> UnpackedBundle | None:
        """Bundle providing an extension, None if unknown."""
        bundle_id = self.mapping.get_bundle_id(extension_name)
        return self.graph.get(bundle_id) if bundle_id is not None else None

    def warnings_of(self, kind: WarningKind) -> list[UnpackWarning]:
        return [warning for warning in self.warnings if warning.kind == kind]

    def to_dict(self) -> dict[str, Any]:
        return {
            "extensions": self.mapping.to_dict(),
            "bundles": [bundle.to_dict() for bundle in self.bundles],
            "graph": self.graph.to_dict(),
            "warnings": [warning.to_dict() for warning in self.warnings],
            "cancelled": self.cancelled,
        }


@dataclass
class _ArchiveOutcome:
    archive: Path
    bundle: UnpackedBundle | None = None
    warning: UnpackWarning | None = None
    skipped: bool = False


class BundleUnpacker:
    """Unpacks every archive in the configured library directories.

    Args:
        settings: Library, working directory and extraction settings.
        cancel_event: Optional event that stops the run between archives.
        extractor: Extractor to use; built from ``settings`` by default.

    Attributes:
        settings: The settings the unpacker was created with.
        extractor: The IncrementalExtractor doing the per-archive work.
    """

    def __init__(
        self,
        settings: Settings,
        cancel_event: threading.Event | None = None,
        extractor: IncrementalExtractor | None = None,
    ):
        self.settings = settings
        self.extractor = extractor or IncrementalExtractor(
            settings.NAR_WORKING_DIRECTORY,
            verify_checksum=settings.NAR_VERIFY_CHECKSUM,
        )
        self._cancel_event = cancel_event or threading.Event()
        self._state = UnpackState.INIT

    @property
    def state(self) -> UnpackState:
        return self._state

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        """Stop the run before the next archive is started."""
        self._cancel_event.set()

    def root_directories(self) -> list[RootDirectorySpec]:
        """Primary library directory first, then alternates in declaration order."""
        roots = [RootDirectorySpec(Path(self.settings.NAR_LIBRARY_DIRECTORY), is_primary=True)]
        roots.extend(
            RootDirectorySpec(Path(path)) for path in self.settings.NAR_LIBRARY_DIRECTORY_ALT
        )
        return roots

    # -- run -----------------------------------------------------------------

    def unpack(self) -> UnpackResult | None:
        """Run a full unpack.

        Returns:
            The UnpackResult, or None if the primary library directory is
            missing, not a directory or not readable.
        """
        self._state = UnpackState.INIT
        warnings: list[UnpackWarning] = []
        roots = self.root_directories()

        try:
            self._state = UnpackState.VALIDATING_PRIMARY
            self._validate_primary(roots[0].path)

            self._state = UnpackState.SCANNING_ROOTS
            jobs = self._collect_archives(roots, warnings)
        except ConfigurationFailure as e:
            logger.error(f"Unable to unpack bundles: {e}")
            self._state = UnpackState.ABORTED
            return None

        outcomes = self._process_all(jobs)

        self._state = UnpackState.AGGREGATING
        result = self._aggregate(outcomes, warnings)

        self._state = UnpackState.DONE
        logger.info(
            f"Unpacked {len(result.graph)} bundles providing {len(result.mapping)} "
            f"extensions ({len(result.warnings)} warnings)"
        )
        return result

    # -- validation ----------------------------------------------------------

    def _validate_primary(self, path: Path) -> None:
        if not path.exists():
            raise ConfigurationFailure(path, "directory does not exist")
        if not path.is_dir():
            raise ConfigurationFailure(path, "not a directory")

    def _validate_alternate(self, path: Path) -> None:
        if not path.exists():
            raise AlternateRootUnusable(path, "directory does not exist")
        if not path.is_dir():
            raise AlternateRootUnusable(path, "not a directory")

    def _list_archives(self, root: Path) -> list[Path]:
        extensions = set(self.settings.NAR_ARCHIVE_EXTENSIONS)
        return sorted(
            (path for path in root.iterdir() if path.suffix.lower() in extensions and path.is_file()),
            key=lambda path: path.name,
        )

    def _collect_archives(
        self, roots: list[RootDirectorySpec], warnings: list[UnpackWarning]
    ) -> list[tuple[Path, Path]]:
        jobs: list[tuple[Path, Path]] = []
        claimed: dict[Path, Path] = {}
        for spec in roots:
            try:
                if not spec.is_primary:
                    self._validate_alternate(spec.path)
                archives = self._list_archives(spec.path)
            except AlternateRootUnusable as e:
                self._skip_root(spec.path, e.reason, warnings)
                continue
            except OSError as e:
                if spec.is_primary:
                    raise ConfigurationFailure(spec.path, f"cannot list directory: {e}")
                self._skip_root(spec.path, f"cannot list directory: {e}", warnings)
                continue

            logger.info(f"Found {len(archives)} archives in {spec.path}")
            for archive in archives:
                working_directory = self.extractor.working_directory_for(spec.path, archive)
                key = working_directory.resolve()
                owner = claimed.get(key)
                if owner is not None:
                    self._skip_conflicting_archive(archive, owner, working_directory, warnings)
                    continue
                claimed[key] = archive
                jobs.append((spec.path, archive))
        return jobs

    def _skip_root(self, path: Path, reason: str, warnings: list[UnpackWarning]) -> None:
        message = f"Skipping alternate library directory {path}: {reason}"
        logger.warning(message)
        warnings.append(
            UnpackWarning(
                kind=WarningKind.ALTERNATE_ROOT_UNUSABLE,
                message=message,
                details={"path": str(path)},
            )
        )

    def _skip_conflicting_archive(
        self,
        archive: Path,
        owner: Path,
        working_directory: Path,
        warnings: list[UnpackWarning],
    ) -> None:
        message = (
            f"Skipping archive {archive}: {working_directory} already belongs to {owner}"
        )
        logger.warning(message)
        warnings.append(
            UnpackWarning(
                kind=WarningKind.WORKING_DIRECTORY_CONFLICT,
                message=message,
                archive_path=archive,
                details={"working_directory": str(working_directory), "kept": str(owner)},
            )
        )

    # -- per-archive work ----------------------------------------------------

    def _process_all(self, jobs: list[tuple[Path, Path]]) -> list[_ArchiveOutcome]:
        workers = self.settings.NAR_UNPACK_WORKERS
        if workers <= 1 or len(jobs) <= 1:
            return [self._process_one(root, archive) for root, archive in jobs]

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="bundle-unpack") as pool:
            futures = [pool.submit(self._process_one, root, archive) for root, archive in jobs]
            # Submission order keeps aggregation deterministic
            return [future.result() for future in futures]

    def _process_one(self, root: Path, archive: Path) -> _ArchiveOutcome:
        if self.cancelled:
            logger.debug(f"Cancelled before {archive.name}")
            return _ArchiveOutcome(archive=archive, skipped=True)

        try:
            bundle = self.extractor.process(root, archive)
        except ArchiveError as e:
            logger.warning(f"Skipping archive {archive}: {e.reason}")
            return _ArchiveOutcome(archive=archive, warning=UnpackWarning.from_archive_error(e))
        return _ArchiveOutcome(archive=archive, bundle=bundle)

    # -- aggregation ---------------------------------------------------------

    def _aggregate(
        self, outcomes: list[_ArchiveOutcome], warnings: list[UnpackWarning]
    ) -> UnpackResult:
        builder = BundleGraphBuilder()
        mapper = ExtensionMapper()
        cancelled = False

        for outcome in outcomes:
            if outcome.skipped:
                cancelled = True
            if outcome.warning is not None:
                warnings.append(outcome.warning)
            if outcome.bundle is not None and builder.add(outcome.bundle):
                mapper.add_bundle(outcome.bundle)

        graph = builder.build()
        warnings.extend(graph.warnings)
        warnings.extend(mapper.warnings)

        return UnpackResult(
            mapping=mapper.build(),
            graph=graph,
            warnings=warnings,
            cancelled=cancelled,
        )

    def __repr__(self) -> str:
        return f"<BundleUnpacker roots={len(self.root_directories())} state={self._state.value}>"


def unpack_bundles(
    settings: Settings | None = None,
    cancel_event: threading.Event | None = None,
) -> UnpackResult | None:
    """Unpack all bundles described by ``settings``.

    Returns:
        The UnpackResult, or None when the primary library directory is
        unusable.
    """
    if settings is None:
        from bundlekit.config.settings import settings as default_settings

        settings = default_settings
    return BundleUnpacker(settings, cancel_event=cancel_event).unpack()

"""
Bundle archive unpacking for bundlekit.

This package turns a set of library directories full of bundle archives
(``.nar`` files) into unpacked working directories plus the lookups the
host needs to load extensions from them:

- ArchiveReader: Streams entries and metadata out of one archive
- ManifestParser: Reads bundle identity, dependency and extensions
- IncrementalExtractor: Extracts an archive only when its copy is stale
- BundleGraphBuilder: Resolves bundle dependencies into an acyclic graph
- ExtensionMapper: Maps extension class names to owning bundles
- BundleUnpacker: Drives a whole run across all library directories

Example:
    from bundlekit.config import Settings
    from bundlekit.nar import BundleUnpacker

    unpacker = BundleUnpacker(Settings(NAR_LIBRARY_DIRECTORY="./lib"))
    result = unpacker.unpack()
    if result is not None:
        print(sorted(result.all_extension_names()))
        for warning in result.warnings:
            print(warning.kind.value, warning.message)
"""

from bundlekit.nar.errors import (
    AlternateRootUnusable,
    ArchiveError,
    BundleError,
    ConfigurationFailure,
    CorruptArchive,
    ExtractionFailure,
    InvalidManifest,
    IOFailure,
    UnpackWarning,
    WarningKind,
)
from bundlekit.nar.archive import ArchiveEntry, ArchiveReader
from bundlekit.nar.manifest import BundleManifest, ManifestParser
from bundlekit.nar.extractor import IncrementalExtractor, UnpackedBundle
from bundlekit.nar.graph import BundleDependencyGraph, BundleGraphBuilder
from bundlekit.nar.mapping import ExtensionMapper, ExtensionMapping
from bundlekit.nar.unpacker import (
    BundleUnpacker,
    RootDirectorySpec,
    UnpackResult,
    UnpackState,
    unpack_bundles,
)

__all__ = [
    # Errors
    "AlternateRootUnusable",
    "ArchiveError",
    "BundleError",
    "ConfigurationFailure",
    "CorruptArchive",
    "ExtractionFailure",
    "InvalidManifest",
    "IOFailure",
    "UnpackWarning",
    "WarningKind",
    # Archive access
    "ArchiveEntry",
    "ArchiveReader",
    "BundleManifest",
    "ManifestParser",
    # Extraction
    "IncrementalExtractor",
    "UnpackedBundle",
    # Aggregation
    "BundleDependencyGraph",
    "BundleGraphBuilder",
    "ExtensionMapper",
    "ExtensionMapping",
    # Driver
    "BundleUnpacker",
    "RootDirectorySpec",
    "UnpackResult",
    "UnpackState",
    "unpack_bundles",
]

"""
bundlekit CLI - Bundle Commands

Commands:
    unpack  - Unpack all archives and list the extensions they provide
    inspect - Show the manifest of a single archive without unpacking it
    graph   - Show the bundle dependency tree
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

import typer
from pydantic import ValidationError

from bundlekit.cli import app, console
from bundlekit.cli.output import (
    print_dependency_tree,
    print_error,
    print_json,
    print_table,
    print_unpack_summary,
    print_unpack_warnings,
)
from bundlekit.config import Settings, settings_from_properties
from bundlekit.nar import (
    ArchiveError,
    ArchiveReader,
    ManifestParser,
    UnpackResult,
    unpack_bundles,
)

OUTPUT_FORMATS = ("table", "json", "simple")


def _build_settings(
    config: Optional[Path],
    lib: Optional[Path],
    alt: Optional[list[Path]],
    work: Optional[Path],
    workers: Optional[int],
    verify_checksum: bool,
) -> Settings:
    overrides: dict[str, Any] = {}
    if lib is not None:
        overrides["NAR_LIBRARY_DIRECTORY"] = lib
    if alt:
        overrides["NAR_LIBRARY_DIRECTORY_ALT"] = list(alt)
    if work is not None:
        overrides["NAR_WORKING_DIRECTORY"] = work
    if workers is not None:
        overrides["NAR_UNPACK_WORKERS"] = workers
    if verify_checksum:
        overrides["NAR_VERIFY_CHECKSUM"] = True

    try:
        if config is not None:
            return settings_from_properties(config, **overrides)
        return Settings(**overrides)
    except FileNotFoundError as e:
        print_error(str(e))
        raise typer.Exit(code=2)
    except ValidationError as e:
        print_error("Invalid configuration", details=str(e))
        raise typer.Exit(code=2)


def _run(settings: Settings) -> UnpackResult:
    result = unpack_bundles(settings)
    if result is None:
        print_error(
            f"Library directory {settings.NAR_LIBRARY_DIRECTORY} is missing or not a directory",
            hint="Check nar.library.directory / NAR_LIBRARY_DIRECTORY",
        )
        raise typer.Exit(code=1)
    return result


def _check_format(format: str) -> None:
    if format not in OUTPUT_FORMATS:
        print_error(
            f"Unknown format '{format}'",
            hint=f"Use one of: {', '.join(OUTPUT_FORMATS)}",
        )
        raise typer.Exit(code=2)


# Shared options
CONFIG_OPTION = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to a .properties file with nar.* settings.",
    envvar="BUNDLEKIT_CONFIG",
)
LIB_OPTION = typer.Option(None, "--lib", "-l", help="Primary library directory.")
ALT_OPTION = typer.Option(
    None, "--alt", "-a", help="Alternate library directory (repeatable)."
)
WORK_OPTION = typer.Option(None, "--work", "-w", help="Working directory base.")
WORKERS_OPTION = typer.Option(None, "--workers", min=1, help="Parallel extraction workers.")
CHECKSUM_OPTION = typer.Option(
    False, "--verify-checksum", help="Also compare archive checksums."
)
FORMAT_OPTION = typer.Option(
    "table", "--format", "-f", help="Output format: table, json, simple."
)


@app.command()
def unpack(
    config: Optional[Path] = CONFIG_OPTION,
    lib: Optional[Path] = LIB_OPTION,
    alt: Optional[list[Path]] = ALT_OPTION,
    work: Optional[Path] = WORK_OPTION,
    workers: Optional[int] = WORKERS_OPTION,
    verify_checksum: bool = CHECKSUM_OPTION,
    format: str = FORMAT_OPTION,
) -> None:
    """
    Unpack bundle archives.

    Extracts every archive whose unpacked copy is missing or out of date
    and lists the extensions each bundle provides.
    """
    _check_format(format)
    settings = _build_settings(config, lib, alt, work, workers, verify_checksum)
    result = _run(settings)

    if format == "json":
        print_json(result.to_dict())
        return

    if format == "simple":
        for name, bundle_id in result.mapping.items():
            console.print(f"{name} -> {bundle_id}", highlight=False)
    else:
        rows = [
            [name, bundle_id, result.mapping.get_service_type(name) or ""]
            for name, bundle_id in result.mapping.items()
        ]
        print_table(
            "Extensions",
            ["Extension", "Bundle", "Service type"],
            rows,
            styles=["cyan", "green", "dim"],
        )

    print_unpack_warnings(result.warnings)
    print_unpack_summary(result)


@app.command()
def inspect(
    archive: Path = typer.Argument(..., help="Bundle archive to inspect."),
    format: str = FORMAT_OPTION,
) -> None:
    """
    Show an archive's manifest without unpacking it.
    """
    _check_format(format)
    try:
        with ArchiveReader(archive) as reader:
            manifest = ManifestParser(archive).parse(
                reader.manifest_bytes(), reader.service_declarations()
            )
            entries = reader.list_entries()
    except ArchiveError as e:
        print_error(f"Cannot inspect {archive}", details=e.reason)
        raise typer.Exit(code=1)

    if format == "json":
        data = manifest.to_dict()
        data["entries"] = len(entries)
        print_json(data)
        return

    rows = [
        ["Bundle id", manifest.bundle_id + (" (synthesized)" if manifest.synthesized else "")],
        ["Coordinate", manifest.coordinate],
        ["Dependency", manifest.dependency_id or "-"],
        ["Entries", str(len(entries))],
    ]
    for service_type, class_names in sorted(manifest.services.items()):
        for class_name in sorted(class_names):
            rows.append([service_type, class_name])
    print_table(archive.name, ["Attribute", "Value"], rows, styles=["cyan", None])


@app.command()
def graph(
    config: Optional[Path] = CONFIG_OPTION,
    lib: Optional[Path] = LIB_OPTION,
    alt: Optional[list[Path]] = ALT_OPTION,
    work: Optional[Path] = WORK_OPTION,
    workers: Optional[int] = WORKERS_OPTION,
    verify_checksum: bool = CHECKSUM_OPTION,
    format: str = FORMAT_OPTION,
) -> None:
    """
    Show the bundle dependency tree.

    Each bundle is listed under the bundle whose classes it can see.
    """
    _check_format(format)
    settings = _build_settings(config, lib, alt, work, workers, verify_checksum)
    result = _run(settings)

    if format == "json":
        print_json(result.graph.to_dict())
        return

    if format == "simple":
        for bundle_id in result.graph.order:
            chain = [bundle_id, *result.graph.ancestors(bundle_id)]
            console.print(" <- ".join(chain), highlight=False)
    else:
        print_dependency_tree(result.graph)

    print_unpack_warnings(result.warnings)

"""Shared fixtures: real bundle archives built in tmp_path."""

from __future__ import annotations

import zipfile
from pathlib import Path
from typing import Callable, Optional

import pytest

from bundlekit.config import Settings

PROCESSOR_SERVICE = "org.apache.nifi.processor.Processor"

DUMMY_ONE = "org.apache.nifi.processors.dummy.one"
DUMMY_TWO = "org.apache.nifi.processors.dummy.two"


def manifest_text(
    bundle_id: str,
    dependency: Optional[str] = None,
    extensions: tuple[str, ...] = (),
    group: str = "org.apache.nifi",
    version: str = "1.0.0",
) -> str:
    lines = [
        "Manifest-Version: 1.0",
        f"Nar-Group: {group}",
        f"Nar-Id: {bundle_id}",
        f"Nar-Version: {version}",
    ]
    if dependency:
        lines.append(f"Nar-Dependency-Id: {dependency}")
    if extensions:
        lines.append("Nar-Extensions: " + ",".join(extensions))
    return "\r\n".join(lines) + "\r\n\r\n"


def build_nar(
    directory: Path,
    name: str,
    bundle_id: Optional[str] = None,
    extensions: tuple[str, ...] = (),
    dependency: Optional[str] = None,
    service_type: str = PROCESSOR_SERVICE,
    manifest: Optional[str] = None,
    with_manifest: bool = True,
    extra: Optional[dict[str, bytes]] = None,
) -> Path:
    """Write a bundle archive to ``directory/name``.

    Extensions are declared in ``META-INF/services/<service_type>``. Pass
    ``manifest`` to use raw manifest text instead of a generated one.
    """
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    bundle_id = bundle_id or Path(name).stem

    with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        if with_manifest:
            text = manifest if manifest is not None else manifest_text(bundle_id, dependency)
            zf.writestr("META-INF/MANIFEST.MF", text)
        if extensions:
            zf.writestr(
                f"META-INF/services/{service_type}",
                "# provided extensions\n" + "\n".join(extensions) + "\n",
            )
        zf.writestr(
            "META-INF/bundled-dependencies/README.txt",
            f"dependencies of {bundle_id}\n",
        )
        for entry_name, data in (extra or {}).items():
            zf.writestr(entry_name, data)
    return path


@pytest.fixture
def make_nar() -> Callable[..., Path]:
    """Factory writing real bundle archives; see ``build_nar``."""
    return build_nar


@pytest.fixture
def layout(tmp_path: Path) -> dict[str, Path]:
    """Primary ``lib``, alternate ``lib2`` and working base ``work/extensions``."""
    lib = tmp_path / "lib"
    lib2 = tmp_path / "lib2"
    lib.mkdir()
    lib2.mkdir()
    return {
        "root": tmp_path,
        "lib": lib,
        "lib2": lib2,
        "work": tmp_path / "work" / "extensions",
    }


@pytest.fixture
def dummy_bundles(layout: dict[str, Path]) -> dict[str, Path]:
    """dummy-one in the primary library, dummy-two in the alternate."""
    return {
        "one": build_nar(layout["lib"], "dummy-one.nar", extensions=(DUMMY_ONE,)),
        "two": build_nar(layout["lib2"], "dummy-two.nar", extensions=(DUMMY_TWO,)),
    }


@pytest.fixture
def make_settings(layout: dict[str, Path]) -> Callable[..., Settings]:
    """Build Settings pointing at the tmp layout; kwargs override."""

    def _make(**overrides) -> Settings:
        kwargs = {
            "NAR_LIBRARY_DIRECTORY": layout["lib"],
            "NAR_LIBRARY_DIRECTORY_ALT": [layout["lib2"]],
            "NAR_WORKING_DIRECTORY": layout["work"],
            "NAR_ARCHIVE_EXTENSIONS": [".nar"],
            "NAR_UNPACK_WORKERS": 1,
            "NAR_VERIFY_CHECKSUM": False,
        }
        kwargs.update(overrides)
        return Settings(**kwargs)

    return _make

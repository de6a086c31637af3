"""
Bundle manifest parsing.

A bundle declares its identity in ``META-INF/MANIFEST.MF`` using the jar
manifest syntax::

    Manifest-Version: 1.0
    Nar-Group: org.apache.nifi
    Nar-Id: dummy-one
    Nar-Version: 1.0.0
    Nar-Dependency-Id: standard-services-api
    Nar-Extensions: org.apache.nifi.processors.dummy.one,
      org.apache.nifi.processors.dummy.OneAndAHalf

Lines starting with a single space continue the previous attribute and
blank lines separate sections; bundle attributes live in the main (first)
section. Extensions may also be declared per service type in
``META-INF/services/<service type>`` files, one class name per line.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from bundlekit.nar.errors import InvalidManifest

logger = logging.getLogger(__name__)

# Main-section attribute names
NAR_ID = "Nar-Id"
NAR_GROUP = "Nar-Group"
NAR_VERSION = "Nar-Version"
NAR_DEPENDENCY_ID = "Nar-Dependency-Id"
NAR_DEPENDENCY_GROUP = "Nar-Dependency-Group"
NAR_DEPENDENCY_VERSION = "Nar-Dependency-Version"
NAR_EXTENSIONS = "Nar-Extensions"

# Service type used for classes listed in Nar-Extensions
MANIFEST_SERVICE = "manifest"

_ATTRIBUTE_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]*$")
_CLASS_NAME = re.compile(r"^[A-Za-z_$][\w$]*(\.[A-Za-z_$][\w$]*)*$")
_LIST_SEPARATOR = re.compile(r"[\s,]+")


@dataclass
class BundleManifest:
    """Identity, dependency and extensions declared by one bundle.

    Attributes:
        bundle_id: Identifier unique among the bundles of one run.
        dependency_id: Identifier of the bundle whose classes this one sees.
        extension_class_names: Every extension class the bundle provides.
        group: Optional bundle group.
        version: Optional bundle version.
        dependency_group: Optional group of the dependency bundle.
        dependency_version: Optional version of the dependency bundle.
        services: Extension classes keyed by service type.
        attributes: Raw main-section attributes.
        synthesized: True when the id was derived from the archive file name
            because the bundle has no manifest.
    """

    bundle_id: str
    dependency_id: str | None = None
    extension_class_names: frozenset[str] = frozenset()
    group: str | None = None
    version: str | None = None
    dependency_group: str | None = None
    dependency_version: str | None = None
    services: dict[str, frozenset[str]] = field(default_factory=dict)
    attributes: dict[str, str] = field(default_factory=dict)
    synthesized: bool = False

    @property
    def coordinate(self) -> str:
        """``group:id:version`` with unknown parts left empty."""
        return f"{self.group or ''}:{self.bundle_id}:{self.version or ''}"

    def service_type_of(self, class_name: str) -> str | None:
        """Return the service type a class was declared under."""
        for service_type, class_names in self.services.items():
            if class_name in class_names:
                return service_type
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "bundle_id": self.bundle_id,
            "group": self.group,
            "version": self.version,
            "dependency_id": self.dependency_id,
            "dependency_group": self.dependency_group,
            "dependency_version": self.dependency_version,
            "extensions": sorted(self.extension_class_names),
            "services": {k: sorted(v) for k, v in sorted(self.services.items())},
            "synthesized": self.synthesized,
        }


def synthesize_bundle_id(archive_path: Path) -> str:
    """Bundle id used for an archive without a manifest: its name minus extension."""
    return Path(archive_path).stem


class ManifestParser:
    """Parses manifests and service declarations for one archive.

    Args:
        source: Archive (or unpacked directory) the bytes came from; only
            used in error messages.

    Example:
        parser = ManifestParser(archive_path)
        manifest = parser.parse(reader.manifest_bytes(), reader.service_declarations())
    """

    def __init__(self, source: Path):
        self.source = Path(source)

    def parse_sections(self, data: bytes) -> list[dict[str, str]]:
        """Split manifest bytes into attribute sections.

        Raises:
            InvalidManifest: On undecodable bytes or malformed lines.
        """
        try:
            text = data.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise InvalidManifest(self.source, f"manifest is not valid UTF-8: {e}", e)

        sections: list[dict[str, str]] = []
        current: dict[str, str] = {}
        last_name: str | None = None

        for number, line in enumerate(text.splitlines(), start=1):
            if not line.strip():
                if current:
                    sections.append(current)
                current = {}
                last_name = None
                continue

            if line.startswith(" "):
                if last_name is None:
                    raise InvalidManifest(
                        self.source, f"line {number}: continuation without an attribute"
                    )
                current[last_name] += line[1:]
                continue

            name, sep, value = line.partition(":")
            name = name.strip()
            if not sep:
                raise InvalidManifest(self.source, f"line {number}: missing ':' separator")
            if not _ATTRIBUTE_NAME.match(name):
                raise InvalidManifest(self.source, f"line {number}: invalid attribute name {name!r}")
            if any(existing.lower() == name.lower() for existing in current):
                raise InvalidManifest(self.source, f"line {number}: duplicate attribute {name}")

            current[name] = value[1:] if value.startswith(" ") else value
            last_name = name

        if current:
            sections.append(current)
        return sections

    def parse_services(self, declarations: Mapping[str, bytes]) -> dict[str, frozenset[str]]:
        """Parse ``META-INF/services/*`` contents keyed by service type."""
        services: dict[str, frozenset[str]] = {}
        for service_type, data in declarations.items():
            try:
                text = data.decode("utf-8-sig")
            except UnicodeDecodeError as e:
                raise InvalidManifest(
                    self.source, f"service file {service_type} is not valid UTF-8: {e}", e
                )
            names = set()
            for line in text.splitlines():
                name = line.split("#", 1)[0].strip()
                if not name:
                    continue
                self._check_class_name(name, f"service file {service_type}")
                names.add(name)
            if names:
                services[service_type] = frozenset(names)
        return services

    def parse(
        self,
        data: bytes | None,
        service_declarations: Mapping[str, bytes] | None = None,
    ) -> BundleManifest:
        """Build the BundleManifest for one bundle.

        Args:
            data: Raw manifest bytes, or None when the bundle has no manifest.
            service_declarations: Raw service files keyed by service type.

        Returns:
            The parsed manifest. A missing manifest yields an identity-less
            bundle whose id is synthesized from the archive name.

        Raises:
            InvalidManifest: If the manifest or a service file is malformed.
        """
        if data is None:
            bundle_id = synthesize_bundle_id(self.source)
            logger.info(
                f"No manifest in {self.source.name}; using synthesized bundle id '{bundle_id}'"
            )
            return BundleManifest(
                bundle_id=bundle_id,
                extension_class_names=frozenset(),
                synthesized=True,
            )

        services = self.parse_services(service_declarations or {})
        sections = self.parse_sections(data)
        main = sections[0] if sections else {}
        lookup = {name.lower(): value.strip() for name, value in main.items()}

        bundle_id = lookup.get(NAR_ID.lower())
        if not bundle_id:
            raise InvalidManifest(self.source, f"manifest has no {NAR_ID} attribute")

        declared: set[str] = set()
        listed = lookup.get(NAR_EXTENSIONS.lower(), "")
        for name in _LIST_SEPARATOR.split(listed):
            if name:
                self._check_class_name(name, NAR_EXTENSIONS)
                declared.add(name)
        if declared:
            services.setdefault(MANIFEST_SERVICE, frozenset())
            services[MANIFEST_SERVICE] = services[MANIFEST_SERVICE] | declared

        extension_names = frozenset().union(*services.values()) if services else frozenset()

        return BundleManifest(
            bundle_id=bundle_id,
            dependency_id=lookup.get(NAR_DEPENDENCY_ID.lower()) or None,
            extension_class_names=extension_names,
            group=lookup.get(NAR_GROUP.lower()) or None,
            version=lookup.get(NAR_VERSION.lower()) or None,
            dependency_group=lookup.get(NAR_DEPENDENCY_GROUP.lower()) or None,
            dependency_version=lookup.get(NAR_DEPENDENCY_VERSION.lower()) or None,
            services=services,
            attributes=dict(main),
        )

    def _check_class_name(self, name: str, origin: str) -> None:
        if not _CLASS_NAME.match(name):
            raise InvalidManifest(self.source, f"invalid class name {name!r} in {origin}")

"""
Extension name to bundle mapping.

The host's class-loading subsystem looks extensions up by class name to
find the bundle (and so the working directory and class visibility) that
provides them. When two bundles declare the same extension class the first
registration is kept and the collision is reported as an
EXTENSION_NAME_CONFLICT warning.
"""

from __future__ import annotations

import logging
from typing import Iterator

from bundlekit.nar.errors import UnpackWarning, WarningKind
from bundlekit.nar.extractor import UnpackedBundle

logger = logging.getLogger(__name__)


class ExtensionMapping:
    """Immutable lookup from extension class name to owning bundle id."""

    def __init__(
        self,
        extensions: dict[str, str] | None = None,
        service_types: dict[str, str] | None = None,
    ):
        self._extensions: dict[str, str] = dict(extensions or {})
        self._service_types: dict[str, str] = dict(service_types or {})

    def all_extension_names(self) -> frozenset[str]:
        """Every extension class name discovered."""
        return frozenset(self._extensions)

    def get_bundle_id(self, extension_name: str) -> str | None:
        """Bundle providing an extension, None if unknown."""
        return self._extensions.get(extension_name)

    def get_service_type(self, extension_name: str) -> str | None:
        """Service type the extension was declared under."""
        return self._service_types.get(extension_name)

    def extensions_for(self, bundle_id: str) -> list[str]:
        """Extension names owned by one bundle, sorted."""
        return sorted(name for name, owner in self._extensions.items() if owner == bundle_id)

    def extensions_of_type(self, service_type: str) -> list[str]:
        """Extension names declared under one service type, sorted."""
        return sorted(
            name for name, declared in self._service_types.items() if declared == service_type
        )

    @property
    def service_types(self) -> list[str]:
        return sorted(set(self._service_types.values()))

    def items(self) -> list[tuple[str, str]]:
        return sorted(self._extensions.items())

    def to_dict(self) -> dict[str, str]:
        return dict(sorted(self._extensions.items()))

    def __contains__(self, extension_name: object) -> bool:
        return extension_name in self._extensions

    def __len__(self) -> int:
        return len(self._extensions)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._extensions))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ExtensionMapping):
            return NotImplemented
        return self._extensions == other._extensions

    def __repr__(self) -> str:
        bundles = len(set(self._extensions.values()))
        return f"<ExtensionMapping extensions={len(self._extensions)} bundles={bundles}>"


class ExtensionMapper:
    """Aggregates extension declarations from many bundles.

    Attributes:
        warnings: One EXTENSION_NAME_CONFLICT per rejected registration.
    """

    def __init__(self) -> None:
        self._extensions: dict[str, str] = {}
        self._service_types: dict[str, str] = {}
        self.warnings: list[UnpackWarning] = []

    def add_bundle(self, bundle: UnpackedBundle) -> int:
        """Register every extension a bundle declares.

        Returns:
            Number of extensions registered to this bundle.
        """
        manifest = bundle.manifest
        registered = 0
        for name in sorted(manifest.extension_class_names):
            owner = self._extensions.get(name)
            if owner is None:
                self._extensions[name] = bundle.bundle_id
                service_type = manifest.service_type_of(name)
                if service_type is not None:
                    self._service_types[name] = service_type
                registered += 1
            elif owner != bundle.bundle_id:
                message = (
                    f"Extension '{name}' from bundle '{bundle.bundle_id}' is already "
                    f"provided by bundle '{owner}'; keeping '{owner}'"
                )
                logger.warning(message)
                self.warnings.append(
                    UnpackWarning(
                        kind=WarningKind.EXTENSION_NAME_CONFLICT,
                        message=message,
                        archive_path=bundle.source_archive,
                        bundle_id=bundle.bundle_id,
                        details={"extension": name, "kept_bundle_id": owner},
                    )
                )
        logger.debug(f"Registered {registered} extensions from bundle '{bundle.bundle_id}'")
        return registered

    def build(self) -> ExtensionMapping:
        return ExtensionMapping(self._extensions, self._service_types)

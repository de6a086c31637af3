"""
Dependency graph of unpacked bundles.

A bundle may name one other bundle (``Nar-Dependency-Id``) whose classes it
must be able to see. Bundles are stored in a flat table keyed by bundle id
and edges are kept as ``dependent -> dependency`` id pairs, so the graph
never holds references between bundle objects.

Resolution Rules:
    - A dependency id with no matching bundle leaves the dependent as a
      root-level bundle and records DEPENDENCY_UNRESOLVED.
    - Bundles whose dependency edges form a cycle are reported together as
      one DEPENDENCY_CYCLE group; every edge inside the cycle is severed so
      each member becomes root-level. Bundles that only depend on a cycle
      member keep their edge.
    - ``order`` lists dependencies before their dependents, ties broken by
      the order bundles were added.

Example:
    builder = BundleGraphBuilder()
    for bundle in bundles:
        builder.add(bundle)
    graph = builder.build()
    for bundle_id in graph.order:
        print(bundle_id, graph.ancestors(bundle_id))
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterator

from bundlekit.nar.errors import UnpackWarning, WarningKind
from bundlekit.nar.extractor import UnpackedBundle

logger = logging.getLogger(__name__)


@dataclass
class BundleDependencyGraph:
    """Resolved, acyclic dependency graph over bundle ids.

    Attributes:
        bundles: Bundles keyed by id, in the order they were added.
        edges: Resolved ``dependent -> dependency`` pairs.
        order: Bundle ids with dependencies before dependents.
        unresolved: Bundle ids whose declared dependency was not found.
        cycles: Groups of bundle ids whose dependency cycle was broken.
        warnings: Structural problems found while building the graph.
    """

    bundles: dict[str, UnpackedBundle] = field(default_factory=dict)
    edges: dict[str, str] = field(default_factory=dict)
    order: list[str] = field(default_factory=list)
    unresolved: set[str] = field(default_factory=set)
    cycles: list[tuple[str, ...]] = field(default_factory=list)
    warnings: list[UnpackWarning] = field(default_factory=list)

    def __contains__(self, bundle_id: object) -> bool:
        return bundle_id in self.bundles

    def __len__(self) -> int:
        return len(self.bundles)

    def __iter__(self) -> Iterator[UnpackedBundle]:
        """Iterate bundles in dependency order."""
        return (self.bundles[bundle_id] for bundle_id in self.order)

    def get(self, bundle_id: str) -> UnpackedBundle | None:
        return self.bundles.get(bundle_id)

    def dependency_of(self, bundle_id: str) -> str | None:
        """Resolved dependency of a bundle, None for root-level bundles."""
        return self.edges.get(bundle_id)

    def dependents_of(self, bundle_id: str) -> list[str]:
        """Bundles that directly depend on ``bundle_id``."""
        return [
            dependent
            for dependent in self.order
            if self.edges.get(dependent) == bundle_id
        ]

    def ancestors(self, bundle_id: str) -> list[str]:
        """Dependency chain whose classes ``bundle_id`` can see, nearest first."""
        chain = []
        current = self.edges.get(bundle_id)
        while current is not None:
            chain.append(current)
            current = self.edges.get(current)
        return chain

    def is_root(self, bundle_id: str) -> bool:
        return bundle_id in self.bundles and bundle_id not in self.edges

    @property
    def roots(self) -> list[str]:
        """Root-level bundle ids in dependency order."""
        return [bundle_id for bundle_id in self.order if bundle_id not in self.edges]

    @property
    def in_cycle(self) -> set[str]:
        return {bundle_id for group in self.cycles for bundle_id in group}

    def to_dict(self) -> dict[str, object]:
        return {
            "order": list(self.order),
            "edges": dict(self.edges),
            "unresolved": sorted(self.unresolved),
            "cycles": [list(group) for group in self.cycles],
        }


class BundleGraphBuilder:
    """Collects bundles and resolves their dependencies.

    Attributes:
        warnings: Problems found while adding bundles (duplicate ids).
    """

    def __init__(self) -> None:
        self._bundles: dict[str, UnpackedBundle] = {}
        self.warnings: list[UnpackWarning] = []

    def add(self, bundle: UnpackedBundle) -> bool:
        """Add a bundle; the first bundle registered under an id wins.

        Returns:
            True if the bundle was added, False if its id was already taken.
        """
        existing = self._bundles.get(bundle.bundle_id)
        if existing is not None:
            message = (
                f"Bundle id '{bundle.bundle_id}' from {bundle.source_archive} is already "
                f"provided by {existing.source_archive}; keeping the first"
            )
            logger.warning(message)
            self.warnings.append(
                UnpackWarning(
                    kind=WarningKind.DUPLICATE_BUNDLE_ID,
                    message=message,
                    archive_path=bundle.source_archive,
                    bundle_id=bundle.bundle_id,
                    details={"kept": str(existing.source_archive)},
                )
            )
            return False
        self._bundles[bundle.bundle_id] = bundle
        return True

    def __len__(self) -> int:
        return len(self._bundles)

    def build(self) -> BundleDependencyGraph:
        """Resolve dependencies, break cycles and order the bundles."""
        graph = BundleDependencyGraph(bundles=dict(self._bundles))
        graph.warnings.extend(self.warnings)

        for bundle_id, bundle in self._bundles.items():
            dependency_id = bundle.dependency_id
            if dependency_id is None:
                continue
            if dependency_id not in self._bundles:
                message = (
                    f"Bundle '{bundle_id}' depends on unknown bundle '{dependency_id}'; "
                    "treating it as root-level"
                )
                logger.warning(message)
                graph.unresolved.add(bundle_id)
                graph.warnings.append(
                    UnpackWarning(
                        kind=WarningKind.DEPENDENCY_UNRESOLVED,
                        message=message,
                        archive_path=bundle.source_archive,
                        bundle_id=bundle_id,
                        details={"dependency_id": dependency_id},
                    )
                )
                continue
            graph.edges[bundle_id] = dependency_id

        self._break_cycles(graph)
        graph.order = self._order(graph)
        return graph

    def _break_cycles(self, graph: BundleDependencyGraph) -> None:
        # Each bundle has at most one outgoing edge, so every walk either
        # ends at a root or runs into exactly one cycle.
        done: set[str] = set()
        for start in self._bundles:
            if start in done:
                continue
            path: list[str] = []
            position: dict[str, int] = {}
            current: str | None = start
            while current is not None and current not in done and current not in position:
                position[current] = len(path)
                path.append(current)
                current = graph.edges.get(current)

            if current is not None and current in position:
                group = tuple(path[position[current]:])
                graph.cycles.append(group)
                for member in group:
                    graph.edges.pop(member, None)
                message = (
                    f"Dependency cycle between bundles {', '.join(group)}; "
                    "all members treated as root-level"
                )
                logger.warning(message)
                graph.warnings.append(
                    UnpackWarning(
                        kind=WarningKind.DEPENDENCY_CYCLE,
                        message=message,
                        bundle_id=group[0],
                        details={"members": list(group)},
                    )
                )
            done.update(path)

    def _order(self, graph: BundleDependencyGraph) -> list[str]:
        order: list[str] = []
        placed: set[str] = set()
        for bundle_id in self._bundles:
            chain = [bundle_id, *graph.ancestors(bundle_id)]
            for member in reversed(chain):
                if member not in placed:
                    placed.add(member)
                    order.append(member)
        return order

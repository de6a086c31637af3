"""Tests for bundlekit.nar.graph."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from bundlekit.nar.errors import WarningKind
from bundlekit.nar.extractor import UnpackedBundle
from bundlekit.nar.graph import BundleDependencyGraph, BundleGraphBuilder
from bundlekit.nar.manifest import BundleManifest


def _bundle(
    bundle_id: str,
    dependency: Optional[str] = None,
    archive: Optional[str] = None,
) -> UnpackedBundle:
    archive_path = Path("lib") / (archive or f"{bundle_id}.nar")
    return UnpackedBundle(
        bundle_id=bundle_id,
        working_directory=Path("work") / f"{archive_path.name}-unpacked",
        manifest=BundleManifest(bundle_id=bundle_id, dependency_id=dependency),
        source_archive=archive_path,
        source_last_modified=0.0,
    )


def _build(*bundles: UnpackedBundle) -> BundleDependencyGraph:
    builder = BundleGraphBuilder()
    for bundle in bundles:
        builder.add(bundle)
    return builder.build()


# ===========================================================================
# Resolution
# ===========================================================================


class TestResolution:
    def test_empty(self):
        graph = _build()
        assert len(graph) == 0
        assert graph.order == []
        assert graph.warnings == []

    def test_independent_bundles(self):
        graph = _build(_bundle("a"), _bundle("b"))
        assert graph.roots == ["a", "b"]
        assert graph.edges == {}
        assert graph.is_root("a")

    def test_resolved_dependency(self):
        graph = _build(_bundle("child", "parent"), _bundle("parent"))
        assert graph.dependency_of("child") == "parent"
        assert graph.dependency_of("parent") is None
        assert graph.dependents_of("parent") == ["child"]
        assert graph.roots == ["parent"]
        assert not graph.is_root("child")

    def test_unresolved_dependency_is_root_level(self):
        graph = _build(_bundle("child", "missing"))
        assert graph.is_root("child")
        assert graph.unresolved == {"child"}
        assert [w.kind for w in graph.warnings] == [WarningKind.DEPENDENCY_UNRESOLVED]
        assert graph.warnings[0].details == {"dependency_id": "missing"}
        assert graph.warnings[0].bundle_id == "child"

    def test_ancestors_chain(self):
        graph = _build(_bundle("c", "b"), _bundle("b", "a"), _bundle("a"))
        assert graph.ancestors("c") == ["b", "a"]
        assert graph.ancestors("a") == []

    def test_contains_and_get(self):
        graph = _build(_bundle("a"))
        assert "a" in graph
        assert "z" not in graph
        assert graph.get("a").bundle_id == "a"
        assert graph.get("z") is None


# ===========================================================================
# Ordering
# ===========================================================================


class TestOrdering:
    def test_dependencies_before_dependents(self):
        graph = _build(_bundle("c", "b"), _bundle("b", "a"), _bundle("a"), _bundle("x"))
        assert graph.order == ["a", "b", "c", "x"]

    def test_ties_follow_insertion_order(self):
        graph = _build(_bundle("z"), _bundle("y"), _bundle("m", "y"))
        assert graph.order == ["z", "y", "m"]

    def test_iteration_yields_bundles_in_order(self):
        graph = _build(_bundle("child", "parent"), _bundle("parent"))
        assert [bundle.bundle_id for bundle in graph] == ["parent", "child"]

    def test_every_bundle_ordered_once(self):
        graph = _build(
            _bundle("d", "b"), _bundle("c", "b"), _bundle("b", "a"), _bundle("a")
        )
        assert sorted(graph.order) == ["a", "b", "c", "d"]
        for bundle_id in graph.order:
            dependency = graph.dependency_of(bundle_id)
            if dependency is not None:
                assert graph.order.index(dependency) < graph.order.index(bundle_id)


# ===========================================================================
# Cycles
# ===========================================================================


class TestCycles:
    def test_two_bundle_cycle_broken(self):
        graph = _build(_bundle("a", "b"), _bundle("b", "a"))
        assert graph.edges == {}
        assert graph.cycles == [("a", "b")]
        assert graph.in_cycle == {"a", "b"}
        assert graph.is_root("a") and graph.is_root("b")

        cycle_warnings = [w for w in graph.warnings if w.kind == WarningKind.DEPENDENCY_CYCLE]
        assert len(cycle_warnings) == 1
        assert cycle_warnings[0].details == {"members": ["a", "b"]}

    def test_self_dependency(self):
        graph = _build(_bundle("a", "a"))
        assert graph.cycles == [("a",)]
        assert graph.is_root("a")

    def test_dependent_of_cycle_keeps_edge(self):
        graph = _build(_bundle("x", "a"), _bundle("a", "b"), _bundle("b", "c"), _bundle("c", "a"))
        assert graph.dependency_of("x") == "a"
        assert graph.in_cycle == {"a", "b", "c"}
        assert len(graph.cycles) == 1
        assert graph.order.index("a") < graph.order.index("x")

    def test_cycle_group_reported_once(self):
        graph = _build(_bundle("a", "b"), _bundle("b", "c"), _bundle("c", "a"))
        assert len(graph.cycles) == 1
        assert set(graph.cycles[0]) == {"a", "b", "c"}

    def test_independent_cycles(self):
        graph = _build(_bundle("a", "b"), _bundle("b", "a"), _bundle("c", "d"), _bundle("d", "c"))
        assert graph.cycles == [("a", "b"), ("c", "d")]
        assert graph.edges == {}

    def test_graph_is_acyclic_after_build(self):
        graph = _build(
            _bundle("a", "b"), _bundle("b", "c"), _bundle("c", "b"), _bundle("d", "a")
        )
        for bundle_id in graph.bundles:
            seen = {bundle_id}
            for ancestor in graph.ancestors(bundle_id):
                assert ancestor not in seen
                seen.add(ancestor)
        assert graph.in_cycle == {"b", "c"}
        assert graph.dependency_of("a") == "b"


# ===========================================================================
# Duplicates
# ===========================================================================


class TestDuplicates:
    def test_first_registration_wins(self):
        builder = BundleGraphBuilder()
        first = _bundle("dup", archive="first.nar")
        second = _bundle("dup", archive="second.nar")
        assert builder.add(first) is True
        assert builder.add(second) is False
        assert len(builder) == 1

        graph = builder.build()
        assert graph.get("dup") is first
        assert [w.kind for w in graph.warnings] == [WarningKind.DUPLICATE_BUNDLE_ID]
        assert graph.warnings[0].archive_path == Path("lib/second.nar")
        assert graph.warnings[0].details == {"kept": str(Path("lib/first.nar"))}

    def test_to_dict(self):
        graph = _build(_bundle("child", "parent"), _bundle("parent"), _bundle("lost", "gone"))
        assert graph.to_dict() == {
            "order": ["parent", "child", "lost"],
            "edges": {"child": "parent"},
            "unresolved": ["lost"],
            "cycles": [],
        }

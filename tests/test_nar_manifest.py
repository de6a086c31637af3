"""Tests for bundlekit.nar.manifest."""

from __future__ import annotations

from pathlib import Path

import pytest

from bundlekit.nar.errors import InvalidManifest
from bundlekit.nar.manifest import (
    MANIFEST_SERVICE,
    BundleManifest,
    ManifestParser,
    synthesize_bundle_id,
)

from conftest import DUMMY_ONE, PROCESSOR_SERVICE, manifest_text


@pytest.fixture
def parser() -> ManifestParser:
    return ManifestParser(Path("lib/dummy-one.nar"))


# ===========================================================================
# Sections
# ===========================================================================


class TestParseSections:
    def test_main_section(self, parser):
        sections = parser.parse_sections(b"Manifest-Version: 1.0\nNar-Id: one\n")
        assert sections == [{"Manifest-Version": "1.0", "Nar-Id": "one"}]

    def test_continuation_lines(self, parser):
        data = b"Nar-Extensions: org.example.A,\n  org.example.B\nNar-Id: one\n"
        sections = parser.parse_sections(data)
        assert sections[0]["Nar-Extensions"] == "org.example.A, org.example.B"

    def test_continuation_joins_without_space(self, parser):
        data = b"Nar-Id: very-long-\n bundle-id\n"
        assert parser.parse_sections(data)[0]["Nar-Id"] == "very-long-bundle-id"

    def test_blank_lines_separate_sections(self, parser):
        data = b"Nar-Id: one\n\nName: org/example/\nSealed: true\n\n\n"
        sections = parser.parse_sections(data)
        assert len(sections) == 2
        assert sections[1] == {"Name": "org/example/", "Sealed": "true"}

    def test_crlf_and_bom(self, parser):
        data = "\ufeffNar-Id: one\r\nNar-Version: 2.0\r\n".encode("utf-8")
        assert parser.parse_sections(data) == [{"Nar-Id": "one", "Nar-Version": "2.0"}]

    def test_empty_value(self, parser):
        assert parser.parse_sections(b"Nar-Id:\n") == [{"Nar-Id": ""}]

    @pytest.mark.parametrize(
        "data,match",
        [
            (b"Nar-Id one\n", "missing ':'"),
            (b" leading continuation\n", "continuation without an attribute"),
            (b": value\n", "invalid attribute name"),
            (b"Nar Id: one\n", "invalid attribute name"),
            (b"Nar-Id: one\nnar-id: two\n", "duplicate attribute"),
            (b"Nar-Id: \xff\xfe\n", "not valid UTF-8"),
        ],
    )
    def test_malformed(self, parser, data, match):
        with pytest.raises(InvalidManifest, match=match):
            parser.parse_sections(data)


# ===========================================================================
# Service declarations
# ===========================================================================


class TestParseServices:
    def test_comments_and_blank_lines(self, parser):
        services = parser.parse_services(
            {PROCESSOR_SERVICE: b"# header\n\norg.example.A  # trailing\norg.example.B\n"}
        )
        assert services == {PROCESSOR_SERVICE: frozenset({"org.example.A", "org.example.B"})}

    def test_empty_service_file_dropped(self, parser):
        assert parser.parse_services({PROCESSOR_SERVICE: b"# nothing here\n"}) == {}

    def test_invalid_class_name(self, parser):
        with pytest.raises(InvalidManifest, match="invalid class name"):
            parser.parse_services({PROCESSOR_SERVICE: b"org.example.Not-A-Class\n"})

    def test_inner_and_dollar_names_allowed(self, parser):
        services = parser.parse_services({PROCESSOR_SERVICE: b"org.example.Outer$Inner\n"})
        assert services[PROCESSOR_SERVICE] == frozenset({"org.example.Outer$Inner"})


# ===========================================================================
# parse
# ===========================================================================


class TestParse:
    def test_full_manifest(self, parser):
        data = manifest_text("dummy-one", dependency="standard-services-api").encode()
        manifest = parser.parse(data, {PROCESSOR_SERVICE: f"{DUMMY_ONE}\n".encode()})

        assert isinstance(manifest, BundleManifest)
        assert manifest.bundle_id == "dummy-one"
        assert manifest.dependency_id == "standard-services-api"
        assert manifest.group == "org.apache.nifi"
        assert manifest.version == "1.0.0"
        assert manifest.extension_class_names == frozenset({DUMMY_ONE})
        assert manifest.service_type_of(DUMMY_ONE) == PROCESSOR_SERVICE
        assert manifest.coordinate == "org.apache.nifi:dummy-one:1.0.0"
        assert manifest.synthesized is False

    def test_nar_extensions_attribute(self, parser):
        data = manifest_text(
            "dummy-one", extensions=("org.example.A", "org.example.B")
        ).encode()
        manifest = parser.parse(data)
        assert manifest.extension_class_names == frozenset({"org.example.A", "org.example.B"})
        assert manifest.service_type_of("org.example.A") == MANIFEST_SERVICE

    def test_extensions_union_of_attribute_and_services(self, parser):
        data = manifest_text("dummy-one", extensions=("org.example.A",)).encode()
        manifest = parser.parse(data, {PROCESSOR_SERVICE: b"org.example.B\n"})
        assert manifest.extension_class_names == frozenset({"org.example.A", "org.example.B"})

    def test_attribute_names_case_insensitive(self, parser):
        manifest = parser.parse(b"nar-id: one\nNAR-DEPENDENCY-ID: base\n")
        assert manifest.bundle_id == "one"
        assert manifest.dependency_id == "base"

    def test_no_dependency(self, parser):
        manifest = parser.parse(manifest_text("dummy-one").encode())
        assert manifest.dependency_id is None
        assert manifest.extension_class_names == frozenset()

    def test_missing_manifest_synthesizes_id(self, parser):
        manifest = parser.parse(None, {PROCESSOR_SERVICE: f"{DUMMY_ONE}\n".encode()})
        assert manifest.bundle_id == "dummy-one"
        assert manifest.synthesized is True
        assert manifest.dependency_id is None
        assert manifest.extension_class_names == frozenset()

    def test_missing_nar_id(self, parser):
        with pytest.raises(InvalidManifest, match="Nar-Id"):
            parser.parse(b"Manifest-Version: 1.0\nNar-Group: org.example\n")

    def test_empty_manifest(self, parser):
        with pytest.raises(InvalidManifest):
            parser.parse(b"")

    def test_invalid_extension_name(self, parser):
        data = b"Nar-Id: one\nNar-Extensions: org.example.A, 1bad\n"
        with pytest.raises(InvalidManifest, match="1bad"):
            parser.parse(data)

    def test_error_names_source(self, parser):
        with pytest.raises(InvalidManifest) as exc_info:
            parser.parse(b"garbage")
        assert exc_info.value.archive_path == Path("lib/dummy-one.nar")

    def test_to_dict(self, parser):
        data = manifest_text("dummy-one", extensions=("org.example.B", "org.example.A")).encode()
        d = parser.parse(data).to_dict()
        assert d["bundle_id"] == "dummy-one"
        assert d["extensions"] == ["org.example.A", "org.example.B"]
        assert d["services"] == {MANIFEST_SERVICE: ["org.example.A", "org.example.B"]}


class TestSynthesizeBundleId:
    @pytest.mark.parametrize(
        "name,expected",
        [
            ("dummy-one.nar", "dummy-one"),
            ("nifi-standard-nar-1.2.0.nar", "nifi-standard-nar-1.2.0"),
            ("plain", "plain"),
        ],
    )
    def test_strips_extension(self, name, expected):
        assert synthesize_bundle_id(Path("lib") / name) == expected

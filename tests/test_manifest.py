"""
Tests for the manifest model and loader: parsing, aliases, invariants.
"""

from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from binstall.core.config.loader import load_manifest, parse, validate
from binstall.core.errors import MalformedManifest, ValidationError
from binstall.core.models.manifest import BinaryEntry, Integrity, check_package_name, manifest_problems

SHA = "a" * 64


def _fields(**overrides) -> dict:
    data = {
        "name": "unitrack",
        "version": "0.2.2",
        "description": "Linear time tracker.",
        "homepage": "https://example.com/unitrack/",
        "url_template": "https://example.com/releases/download/v{version}/unitrack",
        "integrity": "unchecked",
        "binaries": ["unitrack"],
    }
    data.update(overrides)
    return data


class TestIntegrity:
    """Tests for integrity policy parsing."""

    @pytest.mark.parametrize("marker", ["unchecked", "no_check", ":no_check", "UNCHECKED"])
    def test_unchecked_markers(self, marker):
        integrity = Integrity.from_string(marker)
        assert not integrity.checked
        assert str(integrity) == "unchecked"

    def test_algo_prefixed_digest(self):
        integrity = Integrity.from_string(f"sha256:{SHA.upper()}")
        assert integrity.checked
        assert integrity.algorithm == "sha256"
        assert str(integrity) == f"sha256:{SHA}"

    def test_bare_digest_is_sha256(self):
        assert Integrity.from_string(SHA).algorithm == "sha256"

    def test_sha512(self):
        assert Integrity.from_string("sha512:" + "b" * 128).algorithm == "sha512"

    def test_wrong_length(self):
        with pytest.raises(ValueError, match="not a valid sha256"):
            Integrity.from_string("sha256:abc")

    def test_unknown_algorithm(self):
        with pytest.raises(ValueError, match="unsupported"):
            Integrity.from_string("crc32:" + "0" * 8)


class TestBinaryEntry:
    """Tests for binary entry coercion."""

    def test_string_uses_basename(self):
        assert BinaryEntry.coerce("dist/bin/tool") == {"path": "dist/bin/tool", "name": "tool"}

    def test_pair(self):
        assert BinaryEntry.coerce(["dist/tool-linux", "tool"]) == {"path": "dist/tool-linux", "name": "tool"}

    def test_mapping_without_name(self):
        assert BinaryEntry.coerce({"path": "a/b"}) == {"path": "a/b", "name": "b"}

    def test_bad_pair(self):
        with pytest.raises(ValueError):
            BinaryEntry.coerce(["a", "b", "c"])


class TestParse:
    """Tests for parse(): YAML text and mappings."""

    def test_minimal(self):
        manifest = parse(_fields())
        assert manifest.name == "unitrack"
        assert manifest.version == "0.2.2"
        assert manifest.binaries == (BinaryEntry(path="unitrack", name="unitrack"),)
        assert manifest.artifact == "auto"
        assert manifest.title == "unitrack"

    def test_cask_spelling(self):
        source = textwrap.dedent("""\
            cask:
              name: unitrack
              version: "0.2.2"
              sha256: ":no_check"
              url: https://example.com/download/v{version}/unitrack
              desc: Linear time tracker Bubble Tea TUI.
              homepage: https://example.com/unitrack/
              binary: unitrack
        """)
        manifest = parse(source)
        assert manifest.description == "Linear time tracker Bubble Tea TUI."
        assert not manifest.integrity.checked
        assert manifest.installed_names == ["unitrack"]

    def test_numeric_version_becomes_text(self):
        assert parse(_fields(version=2)).version == "2"

    def test_pairs_and_display_name(self):
        manifest = parse(_fields(
            binaries=[["bin/a", "a"], {"path": "bin/b", "name": "bee"}],
            display_name="Uni Track",
        ))
        assert manifest.installed_names == ["a", "bee"]
        assert manifest.title == "Uni Track"

    def test_manifest_is_immutable(self):
        manifest = parse(_fields())
        with pytest.raises(Exception):
            manifest.version = "9.9.9"

    @pytest.mark.parametrize("missing", ["name", "version", "integrity", "url_template", "binaries"])
    def test_missing_field(self, missing):
        data = _fields()
        del data[missing]
        with pytest.raises(MalformedManifest):
            parse(data)

    @pytest.mark.parametrize(
        "overrides, message",
        [
            ({"url_template": "https://example.com/unitrack"}, "placeholder"),
            ({"url_template": "https://example.com/{version}/{version}"}, "placeholders"),
            ({"url_template": "https://example.com/{version}/{arch}"}, "malformed"),
            ({"url_template": "example/{version}"}, "absolute URL"),
            ({"name": "../evil"}, "valid package token"),
            ({"version": "  "}, "version"),
            ({"binaries": []}, "at least one"),
            ({"binaries": ["../escape"]}, "inside the artifact"),
            ({"binaries": [["a", "x"], ["b", "x"]]}, "listed twice"),
            ({"binaries": [["a", "sub/x"]]}, "plain file name"),
            ({"artifact": "raw", "binaries": ["a", "b"]}, "raw artifact"),
        ],
    )
    def test_invariants(self, overrides, message):
        with pytest.raises(MalformedManifest, match=message):
            parse(_fields(**overrides))

    def test_bad_digest_is_malformed(self):
        with pytest.raises(MalformedManifest, match="integrity"):
            parse(_fields(integrity="sha256:1234"))

    def test_not_a_mapping(self):
        with pytest.raises(MalformedManifest, match="mapping"):
            parse("- just\n- a list\n")

    def test_invalid_yaml(self):
        with pytest.raises(MalformedManifest, match="Invalid YAML"):
            parse("name: [unterminated")


class TestValidate:
    """Tests for validate() on already-built instances."""

    def test_valid(self):
        validate(parse(_fields()))

    def test_reports_every_problem(self):
        broken = parse(_fields()).model_copy(update={"url_template": "nope", "homepage": ""})
        with pytest.raises(ValidationError) as exc_info:
            validate(broken)
        assert len(exc_info.value.reasons) == 2
        assert exc_info.value.exit_code == 11

    def test_problems_is_pure(self):
        manifest = parse(_fields())
        assert manifest_problems(manifest) == []

    @pytest.mark.parametrize("name", ["tool", "tool-cli", "g++", "v8.1"])
    def test_package_names(self, name):
        assert check_package_name(name) == name

    @pytest.mark.parametrize("name", ["", "..", "../x", "a/b", ".hidden", "tool\n", "two words"])
    def test_bad_package_names(self, name):
        with pytest.raises(ValidationError, match="not a valid package name"):
            check_package_name(name)

    def test_trailing_newline_name_is_invalid(self):
        with pytest.raises(MalformedManifest, match="valid package token"):
            parse(_fields(name="tool\n"))


class TestLoadManifest:
    """Tests for load_manifest() from disk."""

    def test_load_file(self, tmp_path: Path):
        path = tmp_path / "unitrack.yml"
        path.write_text(
            "name: unitrack\nversion: '0.2.2'\ndescription: d\nhomepage: https://h/\n"
            "url_template: https://h/v{version}/unitrack\nintegrity: unchecked\nbinaries: [unitrack]\n"
        )
        assert load_manifest(path).name == "unitrack"

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(MalformedManifest, match="not found"):
            load_manifest(tmp_path / "nope.yml")

    def test_shipped_manifest(self):
        path = Path(__file__).parent.parent / "manifests" / "unitrack.yml"
        manifest = load_manifest(path)
        assert manifest.version == "0.2.2"
        assert not manifest.integrity.checked

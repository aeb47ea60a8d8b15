"""
Tests for locating and staging binaries out of artifacts.
"""

from __future__ import annotations

import io
import os
import stat
import tarfile
import zipfile
from pathlib import Path

import pytest

from binstall.core.errors import MissingArtifactEntry
from binstall.core.models.manifest import BinaryEntry
from binstall.core.services.extract import detect_kind, stage_binaries


def _entry(path: str, name: str | None = None) -> BinaryEntry:
    return BinaryEntry(path=path, name=name or path.rsplit("/", 1)[-1])


def _tar(path: Path, members: dict[str, bytes], symlinks: dict[str, str] | None = None) -> Path:
    with tarfile.open(path, "w:gz") as tf:
        for name, data in members.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tf.addfile(info, io.BytesIO(data))
        for name, target in (symlinks or {}).items():
            info = tarfile.TarInfo(name)
            info.type = tarfile.SYMTYPE
            info.linkname = target
            tf.addfile(info)
    return path


def _zip(path: Path, members: dict[str, bytes]) -> Path:
    with zipfile.ZipFile(path, "w") as zf:
        for name, data in members.items():
            zf.writestr(name, data)
    return path


@pytest.fixture
def dirs(tmp_path: Path) -> tuple[Path, Path]:
    staging = tmp_path / "staging"
    staging.mkdir()
    return staging, tmp_path / "bin"


class TestDetectKind:
    """Tests for artifact kind detection."""

    def test_raw(self, tmp_path: Path):
        path = tmp_path / "tool"
        path.write_bytes(b"#!/bin/sh\necho hi\n")
        assert detect_kind(path) == "raw"

    def test_tar(self, tmp_path: Path):
        assert detect_kind(_tar(tmp_path / "a.tgz", {"tool": b"x"})) == "tar"

    def test_zip(self, tmp_path: Path):
        assert detect_kind(_zip(tmp_path / "a.zip", {"tool": b"x"})) == "zip"

    def test_declared_wins(self, tmp_path: Path):
        assert detect_kind(_zip(tmp_path / "a.zip", {"tool": b"x"}), "raw") == "raw"


class TestRaw:
    """Tests for single-file artifacts."""

    def test_stage_raw(self, tmp_path: Path, dirs):
        staging, bin_dir = dirs
        artifact = tmp_path / "download"
        artifact.write_bytes(b"#!/bin/sh\n")

        [staged] = stage_binaries(
            artifact, [_entry("unitrack")], staging_dir=staging, bin_dir=bin_dir, raw_name="unitrack"
        )

        assert staged.target == bin_dir / "unitrack"
        assert staged.staged_path.read_bytes() == b"#!/bin/sh\n"
        assert stat.S_IMODE(os.stat(staged.staged_path).st_mode) == 0o755
        assert not bin_dir.exists()

    def test_raw_renamed(self, tmp_path: Path, dirs):
        staging, bin_dir = dirs
        artifact = tmp_path / "download"
        artifact.write_bytes(b"bin")

        [staged] = stage_binaries(
            artifact,
            [_entry("tool-linux-amd64", "tool")],
            staging_dir=staging,
            bin_dir=bin_dir,
            raw_name="tool-linux-amd64",
        )
        assert staged.target == bin_dir / "tool"

    def test_raw_name_mismatch(self, tmp_path: Path, dirs):
        staging, bin_dir = dirs
        artifact = tmp_path / "download"
        artifact.write_bytes(b"bin")

        with pytest.raises(MissingArtifactEntry, match="single file"):
            stage_binaries(artifact, [_entry("other")], staging_dir=staging, bin_dir=bin_dir, raw_name="tool")
        assert list(staging.iterdir()) == []

    def test_explicit_raw_ignores_name(self, tmp_path: Path, dirs):
        staging, bin_dir = dirs
        artifact = tmp_path / "download"
        artifact.write_bytes(b"bin")

        [staged] = stage_binaries(
            artifact, [_entry("anything", "tool")],
            staging_dir=staging, bin_dir=bin_dir, declared_kind="raw", raw_name="download",
        )
        assert staged.target.name == "tool"

    def test_raw_cannot_provide_two(self, tmp_path: Path, dirs):
        staging, bin_dir = dirs
        artifact = tmp_path / "tool"
        artifact.write_bytes(b"bin")

        with pytest.raises(MissingArtifactEntry):
            stage_binaries(
                artifact, [_entry("tool"), _entry("helper")],
                staging_dir=staging, bin_dir=bin_dir, raw_name="tool",
            )


class TestArchives:
    """Tests for tar and zip artifacts."""

    def test_tar_multiple(self, tmp_path: Path, dirs):
        staging, bin_dir = dirs
        artifact = _tar(tmp_path / "a.tgz", {"./dist/a": b"A", "dist/b": b"B", "README": b"r"})

        staged = stage_binaries(
            artifact, [_entry("dist/a"), _entry("dist/b", "bee")], staging_dir=staging, bin_dir=bin_dir
        )

        assert [s.target.name for s in staged] == ["a", "bee"]
        assert [s.staged_path.read_bytes() for s in staged] == [b"A", b"B"]

    def test_tar_missing_entry_writes_nothing(self, tmp_path: Path, dirs):
        staging, bin_dir = dirs
        artifact = _tar(tmp_path / "a.tgz", {"dist/a": b"A"})

        with pytest.raises(MissingArtifactEntry) as exc_info:
            stage_binaries(artifact, [_entry("dist/a"), _entry("dist/b")], staging_dir=staging, bin_dir=bin_dir)

        assert exc_info.value.entry == "dist/b"
        assert exc_info.value.exit_code == 23
        assert list(staging.iterdir()) == []

    def test_tar_symlink_rejected(self, tmp_path: Path, dirs):
        staging, bin_dir = dirs
        artifact = _tar(tmp_path / "a.tgz", {}, symlinks={"tool": "/etc/passwd"})

        with pytest.raises(MissingArtifactEntry, match="regular file"):
            stage_binaries(artifact, [_entry("tool")], staging_dir=staging, bin_dir=bin_dir)

    def test_zip(self, tmp_path: Path, dirs):
        staging, bin_dir = dirs
        artifact = _zip(tmp_path / "a.zip", {"pkg/bin/tool": b"Z"})

        [staged] = stage_binaries(artifact, [_entry("pkg/bin/tool")], staging_dir=staging, bin_dir=bin_dir)
        assert staged.staged_path.read_bytes() == b"Z"
        assert staged.sha256

    def test_zip_missing_entry(self, tmp_path: Path, dirs):
        staging, bin_dir = dirs
        artifact = _zip(tmp_path / "a.zip", {"pkg/bin/tool": b"Z"})

        with pytest.raises(MissingArtifactEntry):
            stage_binaries(artifact, [_entry("bin/tool")], staging_dir=staging, bin_dir=bin_dir)

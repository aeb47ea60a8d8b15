"""
Artifact extraction: locate each manifest binary and stage it.

A downloaded artifact is either a single raw executable (the common
GitHub-release case) or a tar / zip archive. Members are looked up by
normalized path and streamed out one by one; archives are never
unpacked wholesale, so member names can't write outside the staging
directory.
"""

from __future__ import annotations

import logging
import os
import posixpath
import shutil
import tarfile
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Sequence

from binstall.core.errors import MissingArtifactEntry
from binstall.core.models.manifest import ArtifactKind, BinaryEntry
from binstall.core.services.download import file_digest

logger = logging.getLogger(__name__)

EXECUTABLE_MODE = 0o755


@dataclass(frozen=True)
class StagedBinary:
    """A binary written to the staging area, ready to be moved into place."""

    entry: BinaryEntry
    staged_path: Path
    target: Path
    sha256: str


def detect_kind(path: Path, declared: ArtifactKind = "auto") -> str:
    """Decide how to read an artifact: ``raw``, ``tar`` or ``zip``."""
    if declared != "auto":
        return declared
    if zipfile.is_zipfile(path):
        return "zip"
    if tarfile.is_tarfile(path):
        return "tar"
    return "raw"


def _normalize(name: str) -> str:
    norm = posixpath.normpath(name.strip())
    while norm.startswith("./"):
        norm = norm[2:]
    return norm.lstrip("/")


def stage_binaries(
    artifact: Path,
    entries: Sequence[BinaryEntry],
    *,
    staging_dir: Path,
    bin_dir: Path,
    declared_kind: ArtifactKind = "auto",
    raw_name: str = "",
) -> list[StagedBinary]:
    """Write every entry of ``entries`` into ``staging_dir``.

    All entries are located before anything is written; a missing one
    fails the whole set.

    Args:
        artifact: Downloaded artifact file.
        entries: Manifest binaries, in order.
        staging_dir: Directory to write staged files into.
        bin_dir: Final binary directory (used to compute targets).
        declared_kind: Manifest ``artifact`` setting.
        raw_name: File name of the artifact as published (URL basename).

    Raises:
        MissingArtifactEntry: An entry is absent or not a regular file.
    """
    kind = detect_kind(artifact, declared_kind)
    logger.debug("Artifact %s read as %s", artifact, kind)

    if kind == "raw":
        sources = _raw_sources(artifact, entries, raw_name, explicit=declared_kind == "raw")
        return [_stage_from_path(src, entry, staging_dir, bin_dir) for entry, src in sources]
    if kind == "tar":
        return _stage_from_tar(artifact, entries, staging_dir, bin_dir)
    return _stage_from_zip(artifact, entries, staging_dir, bin_dir)


# ── Raw executables ─────────────────────────────────────────────


def _raw_sources(
    artifact: Path,
    entries: Sequence[BinaryEntry],
    raw_name: str,
    *,
    explicit: bool,
) -> list[tuple[BinaryEntry, Path]]:
    if len(entries) > 1:
        raise MissingArtifactEntry(entries[1].path, f"not provided by single-file artifact '{raw_name}'")

    entry = entries[0]
    if not explicit and _normalize(entry.path) != raw_name:
        raise MissingArtifactEntry(entry.path, f"not found: artifact is a single file named '{raw_name}'")
    return [(entry, artifact)]


def _stage_from_path(src: Path, entry: BinaryEntry, staging_dir: Path, bin_dir: Path) -> StagedBinary:
    with open(src, "rb") as fh:
        return _write_staged(fh, entry, staging_dir, bin_dir)


# ── Archives ────────────────────────────────────────────────────


def _stage_from_tar(
    artifact: Path,
    entries: Sequence[BinaryEntry],
    staging_dir: Path,
    bin_dir: Path,
) -> list[StagedBinary]:
    with tarfile.open(artifact, "r:*") as tf:
        members = {_normalize(m.name): m for m in tf.getmembers()}

        located: list[tuple[BinaryEntry, tarfile.TarInfo]] = []
        for entry in entries:
            member = members.get(_normalize(entry.path))
            if member is None:
                raise MissingArtifactEntry(entry.path)
            if not member.isfile():
                raise MissingArtifactEntry(entry.path, "is not a regular file in the archive")
            located.append((entry, member))

        staged: list[StagedBinary] = []
        for entry, member in located:
            fh = tf.extractfile(member)
            if fh is None:
                raise MissingArtifactEntry(entry.path, "could not be read from the archive")
            with fh:
                staged.append(_write_staged(fh, entry, staging_dir, bin_dir))
        return staged


def _stage_from_zip(
    artifact: Path,
    entries: Sequence[BinaryEntry],
    staging_dir: Path,
    bin_dir: Path,
) -> list[StagedBinary]:
    with zipfile.ZipFile(artifact) as zf:
        infos = {_normalize(i.filename): i for i in zf.infolist() if not i.is_dir()}

        located: list[tuple[BinaryEntry, zipfile.ZipInfo]] = []
        for entry in entries:
            info = infos.get(_normalize(entry.path))
            if info is None:
                raise MissingArtifactEntry(entry.path)
            located.append((entry, info))

        staged: list[StagedBinary] = []
        for entry, info in located:
            with zf.open(info) as fh:
                staged.append(_write_staged(fh, entry, staging_dir, bin_dir))
        return staged


# ── Staging ─────────────────────────────────────────────────────


def _write_staged(src: IO[bytes], entry: BinaryEntry, staging_dir: Path, bin_dir: Path) -> StagedBinary:
    staged_path = staging_dir / entry.name
    with open(staged_path, "wb") as out:
        shutil.copyfileobj(src, out)
        out.flush()
        os.fsync(out.fileno())
    os.chmod(staged_path, EXECUTABLE_MODE)

    logger.debug("Staged %s -> %s", entry.path, staged_path)
    return StagedBinary(
        entry=entry,
        staged_path=staged_path,
        target=bin_dir / entry.name,
        sha256=file_digest(staged_path),
    )

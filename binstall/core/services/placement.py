"""
Placement: move staged binaries into the binary directory, all or nothing.

The staging directory lives inside the binary directory so every move
is a same-filesystem ``os.replace``: the target path always holds
either the previous file or the new one, never neither. Before a target
is replaced, the previous file is hard-linked (or copied) into the
staging area so a failed commit can put it back.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

from binstall.core.errors import InconsistentState, InstallerError
from binstall.core.services.extract import StagedBinary

logger = logging.getLogger(__name__)

_FILES_DIR = "files"
_BACKUP_DIR = "previous"


class StagingArea:
    """Private scratch directory inside ``bin_dir``, removed on exit."""

    def __init__(self, bin_dir: Path, package_name: str):
        self._bin_dir = bin_dir
        self._package_name = package_name
        self._path: Path | None = None

    @property
    def path(self) -> Path:
        if self._path is None:
            raise RuntimeError("staging area is not open")
        return self._path

    @property
    def files_dir(self) -> Path:
        """Where new binaries are written, one file per installed name."""
        return self.path / _FILES_DIR

    @property
    def backup_dir(self) -> Path:
        return self.path / _BACKUP_DIR

    def __enter__(self) -> StagingArea:
        try:
            self._bin_dir.mkdir(parents=True, exist_ok=True)
            self._path = Path(tempfile.mkdtemp(dir=self._bin_dir, prefix=f".{self._package_name}.staging-"))
            self.files_dir.mkdir()
        except OSError as e:
            self.__exit__()
            raise InstallerError(f"Could not create a staging area in {self._bin_dir}: {e}") from e
        return self

    def __exit__(self, *exc_info) -> None:
        if self._path is None:
            return
        try:
            shutil.rmtree(self._path)
        except OSError as e:
            logger.warning("Could not clean up staging area %s: %s", self._path, e)
        self._path = None


@dataclass
class Placement:
    """Targets replaced by one commit, and how to undo each of them."""

    placed: list[Path] = field(default_factory=list)
    backups: dict[Path, Path] = field(default_factory=dict)  # target -> saved previous file

    def rollback(self) -> list[str]:
        """Undo the commit, newest first.

        Returns:
            Paths that could not be restored (empty on full success).
        """
        failures: list[str] = []
        for target in reversed(self.placed):
            backup = self.backups.get(target)
            try:
                if backup is not None:
                    os.replace(backup, target)
                else:
                    target.unlink(missing_ok=True)
                logger.info("Rolled back %s", target)
            except OSError as e:
                logger.error("Rollback of %s failed: %s", target, e)
                failures.append(str(target))
        self.placed.clear()
        return failures


def commit(staged: Sequence[StagedBinary], staging: StagingArea) -> Placement:
    """Move every staged file over its target.

    On failure the targets already replaced are restored before the
    error propagates.

    Raises:
        InstallerError: A move failed and was rolled back.
        InconsistentState: A move failed and the rollback did too.
    """
    placement = Placement()
    backup_dir = staging.backup_dir

    current: Path = backup_dir
    try:
        backup_dir.mkdir(exist_ok=True)
        for item in staged:
            current = item.target
            if os.path.lexists(item.target):
                placement.backups[item.target] = _save_previous(item.target, backup_dir)
            os.replace(item.staged_path, item.target)
            placement.placed.append(item.target)
            logger.info("Installed %s", item.target)
    except OSError as e:
        failures = placement.rollback()
        if failures:
            raise InconsistentState(
                f"Placing {current} failed ({e}) and rollback failed; files left behind",
                paths=failures,
            ) from e
        raise InstallerError(f"Could not place {current}: {e}", path=str(current)) from e

    return placement


def _save_previous(target: Path, backup_dir: Path) -> Path:
    backup = backup_dir / target.name
    try:
        os.link(target, backup, follow_symlinks=False)
    except (OSError, NotImplementedError):
        shutil.copy2(target, backup, follow_symlinks=False)
    return backup

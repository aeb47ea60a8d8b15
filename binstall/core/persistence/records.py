"""
Record persistence: atomic read/write of InstallationRecords.

Each installed package has one JSON file, ``<records_dir>/<name>.json``.
Writes are atomic (write to temp file, fsync, then rename) so a crash
mid-write leaves either the old record or the new one, never half of
either.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from binstall.core.errors import InconsistentState, ValidationError
from binstall.core.models.manifest import check_package_name
from binstall.core.models.record import InstallationRecord

logger = logging.getLogger(__name__)

RECORD_SUFFIX = ".json"


class RecordStore:
    """Directory of installation records, one file per package."""

    def __init__(self, records_dir: Path):
        self._dir = records_dir

    @property
    def directory(self) -> Path:
        return self._dir

    def path_for(self, package_name: str) -> Path:
        check_package_name(package_name)
        return self._dir / f"{package_name}{RECORD_SUFFIX}"

    def exists(self, package_name: str) -> bool:
        return self.path_for(package_name).is_file()

    def load(self, package_name: str) -> InstallationRecord | None:
        """Load the record for a package.

        Returns:
            The record, or None if the package has none.

        Raises:
            InconsistentState: If a record file exists but can't be parsed.
                A broken record means we no longer know which files belong
                to the package, so it is never silently discarded.
        """
        path = self.path_for(package_name)
        if not path.is_file():
            return None

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            record = InstallationRecord.model_validate(data)
        except (OSError, ValueError) as e:
            raise InconsistentState(
                f"Installation record {path} is unreadable: {e}",
                paths=[str(path)],
            ) from e

        if record.package_name != package_name:
            raise InconsistentState(
                f"Installation record {path} belongs to '{record.package_name}'",
                paths=[str(path)],
                expected={"package_name": package_name},
                actual={"package_name": record.package_name},
            )

        logger.debug("Loaded record %s (version=%s)", path, record.installed_version)
        return record

    def save(self, record: InstallationRecord) -> Path:
        """Write a record (atomic write).

        Uses write-to-temp-then-rename to prevent corruption.

        Returns:
            Path of the written record.
        """
        path = self.path_for(record.package_name)
        path.parent.mkdir(parents=True, exist_ok=True)

        data = record.model_dump(mode="json")
        content = json.dumps(data, indent=2, ensure_ascii=False) + "\n"

        fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".record_", suffix=".tmp")
        tmp = Path(tmp_path)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, path)
        except Exception:
            tmp.unlink(missing_ok=True)
            logger.error("Failed to save record to %s", path)
            raise

        logger.debug("Record saved to %s", path)
        return path

    def delete(self, package_name: str) -> bool:
        """Remove a record. Returns True if one was removed."""
        path = self.path_for(package_name)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        logger.debug("Record removed: %s", path)
        return True

    def list_records(self) -> list[InstallationRecord]:
        """All readable records, sorted by package name.

        Unreadable records are skipped with a warning; ``load`` on the
        same name still reports them.
        """
        if not self._dir.is_dir():
            return []

        records: list[InstallationRecord] = []
        for path in sorted(self._dir.glob(f"*{RECORD_SUFFIX}")):
            try:
                record = self.load(path.stem)
            except (InconsistentState, ValidationError) as e:
                logger.warning("Skipping %s: %s", path.name, e.message)
                continue
            if record is not None:
                records.append(record)
        return records

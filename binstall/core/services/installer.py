"""
Installer: download, verify, place and record package binaries.

Flow for ``install``:
    lock → plan → fetch (temp) → verify → stage → commit (rename) → record → prune old

Every step before the commit only touches private temp/staging
directories, so failing or being interrupted there changes nothing a
later operation can see. The commit and record write run as one
critical section and are rolled back together.
"""

from __future__ import annotations

import logging
import os
import tempfile
import time
import uuid
from pathlib import Path

from binstall.core.config.loader import validate
from binstall.core.config.settings import InstallerSettings
from binstall.core.errors import (
    InconsistentState,
    InstallerError,
    NotInstalled,
    PartialUninstall,
    TargetConflict,
    ValidationError,
)
from binstall.core.models.artifact import InstallStatus, PlannedAction, ResolvedArtifact
from binstall.core.models.manifest import Manifest, check_package_name
from binstall.core.models.record import InstallationRecord
from binstall.core.observability.logging_config import operation_context
from binstall.core.persistence.audit import AuditEntry, AuditWriter
from binstall.core.persistence.lock import package_lock
from binstall.core.persistence.records import RecordStore
from binstall.core.reliability.critical import critical_section
from binstall.core.services.download import Opener, fetch, file_digest
from binstall.core.services.extract import stage_binaries
from binstall.core.services.placement import StagingArea, commit
from binstall.core.services.resolver import resolve

logger = logging.getLogger(__name__)


class Installer:
    """Installs, upgrades, verifies and removes manifest packages."""

    def __init__(
        self,
        settings: InstallerSettings,
        *,
        store: RecordStore | None = None,
        audit: AuditWriter | None = None,
        opener: Opener | None = None,
    ):
        self._settings = settings
        self._store = store or RecordStore(settings.records_dir)
        self._audit = audit or AuditWriter(settings.audit_path)
        self._opener = opener

    @property
    def settings(self) -> InstallerSettings:
        return self._settings

    @property
    def store(self) -> RecordStore:
        return self._store

    # ── Queries ─────────────────────────────────────────────────

    def resolve(self, manifest: Manifest, requested_version: str | None = None) -> ResolvedArtifact:
        return resolve(manifest, requested_version, allow_http=self._settings.allow_http)

    def dry_run(self, manifest: Manifest, requested_version: str | None = None) -> PlannedAction:
        """Plan an install without touching the filesystem."""
        return self.plan(manifest, self.resolve(manifest, requested_version))

    def plan(self, manifest: Manifest, resolved: ResolvedArtifact) -> PlannedAction:
        return self._plan(manifest, resolved, self._store.load(manifest.name))

    def verify_installed(self, package_name: str) -> InstallStatus:
        """Check the recorded files of a package against the disk."""
        check_package_name(package_name)
        try:
            record = self._store.load(package_name)
        except InconsistentState as e:
            return InstallStatus(state="corrupted", package_name=package_name, detail=e.message)

        if record is None:
            return InstallStatus(state="not_installed", package_name=package_name)
        return self._status_of(record)

    def list_installed(self) -> list[InstallationRecord]:
        return self._store.list_records()

    # ── Install ─────────────────────────────────────────────────

    def install(
        self,
        resolved: ResolvedArtifact,
        manifest: Manifest,
        *,
        force: bool = False,
    ) -> InstallationRecord:
        """Install (or upgrade to) a resolved artifact.

        Args:
            resolved: Output of ``resolve`` for this manifest.
            manifest: The package being installed.
            force: Overwrite target files not owned by this package.

        Returns:
            The record now on disk. When the package is already installed
            as requested, this is the existing record and nothing is
            downloaded.
        """
        validate(manifest)
        if resolved.package_name != manifest.name:
            raise ValidationError(
                [f"resolved artifact is for '{resolved.package_name}', manifest is '{manifest.name}'"]
            )

        operation_id = uuid.uuid4().hex[:12]
        started = time.monotonic()
        entry = AuditEntry(
            operation_id=operation_id,
            operation_type="install",
            package_name=manifest.name,
            version=resolved.version,
            source_url=resolved.concrete_url,
            integrity=resolved.expected_hash or "unchecked",
        )

        try:
            with (
                operation_context(operation_id, "install", manifest.name),
                package_lock(self._settings.records_dir, manifest.name, self._settings.lock_timeout),
            ):
                previous = self._store.load(manifest.name)
                plan = self._plan(manifest, resolved, previous)
                entry.operation_type = plan.kind if plan.kind != "no-op" else "install"

                if plan.kind == "no-op":
                    logger.info("%s %s is already installed", manifest.name, resolved.version)
                    entry.status = "noop"
                    entry.paths = list(previous.installed_paths)
                    return previous

                if plan.conflicts:
                    if not force:
                        raise TargetConflict(manifest.name, plan.conflicts)
                    logger.warning("Overwriting unowned files: %s", ", ".join(plan.conflicts))

                record = self._install_locked(manifest, resolved, previous)
                entry.status = "ok"
                entry.paths = list(record.installed_paths)
                return record
        except InstallerError as e:
            entry.status = "failed"
            entry.errors.append(f"{e.kind}: {e.message}")
            raise
        finally:
            if entry.status:
                entry.duration_ms = int((time.monotonic() - started) * 1000)
                self._audit.write(entry)

    def _install_locked(
        self,
        manifest: Manifest,
        resolved: ResolvedArtifact,
        previous: InstallationRecord | None,
    ) -> InstallationRecord:
        tmp_root = self._settings.tmp_dir
        tmp_root.mkdir(parents=True, exist_ok=True)

        with tempfile.TemporaryDirectory(dir=tmp_root, prefix=f"{manifest.name}-") as work:
            artifact = fetch(
                resolved.concrete_url,
                Path(work) / "artifact",
                timeout=self._settings.download_timeout,
                expected_hash=resolved.expected_hash,
                max_bytes=self._settings.max_download_bytes,
                opener=self._opener,
            )

            with StagingArea(self._settings.bin_dir, manifest.name) as staging:
                try:
                    staged = stage_binaries(
                        artifact.path,
                        manifest.binaries,
                        staging_dir=staging.files_dir,
                        bin_dir=self._settings.bin_dir,
                        declared_kind=manifest.artifact,
                        raw_name=resolved.file_name,
                    )
                except OSError as e:
                    raise InstallerError(f"Could not stage binaries of '{manifest.name}': {e}") from e

                record = InstallationRecord(
                    package_name=manifest.name,
                    installed_version=resolved.version,
                    installed_paths=[str(s.target) for s in staged],
                    file_digests={str(s.target): s.sha256 for s in staged},
                    source_url=resolved.concrete_url,
                    integrity=resolved.expected_hash or "unchecked",
                )

                with critical_section(f"install of {manifest.name}"):
                    placement = commit(staged, staging)
                    try:
                        self._store.save(record)
                    except OSError as e:
                        failures = placement.rollback()
                        if failures:
                            raise InconsistentState(
                                f"Recording '{manifest.name}' failed ({e}) and rollback failed",
                                paths=failures,
                                expected=record.summary(),
                                actual=previous.summary() if previous else None,
                            ) from e
                        raise InstallerError(
                            f"Could not write installation record for '{manifest.name}': {e}"
                        ) from e

        if previous is not None:
            record = self._prune_previous(previous, record)

        verb = "Upgraded" if previous is not None and previous.installed_version != record.installed_version else "Installed"
        logger.info("%s %s %s", verb, manifest.name, record.installed_version)
        return record

    def _prune_previous(self, previous: InstallationRecord, record: InstallationRecord) -> InstallationRecord:
        """Remove files of the previous install that the new one doesn't reuse."""
        keep = set(record.installed_paths)
        obsolete = [p for p in previous.owned_paths if p not in keep]
        if not obsolete:
            return record

        stale = [p for p in obsolete if not _remove_path(p)]
        if not stale:
            return record

        # Still ours: keep tracking what couldn't be removed
        record = record.model_copy(update={"stale_paths": stale})
        try:
            self._store.save(record)
        except OSError as e:
            raise InconsistentState(
                f"Could not record leftover files of '{record.package_name}': {e}",
                paths=stale,
                expected=record.summary(),
            ) from e
        logger.warning("Kept track of %d stale file(s) of %s", len(stale), record.package_name)
        return record

    # ── Uninstall ───────────────────────────────────────────────

    def uninstall(self, package_name: str) -> None:
        """Remove every file of a package, then its record.

        Raises:
            NotInstalled: No record for ``package_name``.
            ValidationError: ``package_name`` is not a package token.
            PartialUninstall: Some files couldn't be removed; the record
                now lists exactly those, so the call can be retried.
        """
        check_package_name(package_name)
        operation_id = uuid.uuid4().hex[:12]
        started = time.monotonic()
        entry = AuditEntry(
            operation_id=operation_id,
            operation_type="uninstall",
            package_name=package_name,
        )

        try:
            with (
                operation_context(operation_id, "uninstall", package_name),
                package_lock(self._settings.records_dir, package_name, self._settings.lock_timeout),
            ):
                record = self._store.load(package_name)
                if record is None:
                    raise NotInstalled(package_name)
                entry.version = record.installed_version
                entry.paths = record.owned_paths

                with critical_section(f"uninstall of {package_name}"):
                    self._uninstall_locked(record)
                entry.status = "ok"
                logger.info("Uninstalled %s %s", package_name, record.installed_version)
        except InstallerError as e:
            entry.status = "failed"
            entry.errors.append(f"{e.kind}: {e.message}")
            raise
        finally:
            if entry.status:
                entry.duration_ms = int((time.monotonic() - started) * 1000)
                self._audit.write(entry)

    def _uninstall_locked(self, record: InstallationRecord) -> None:
        remaining_installed = [p for p in record.installed_paths if not _remove_path(p)]
        remaining_stale = [
            p for p in record.stale_paths if p not in record.installed_paths and not _remove_path(p)
        ]

        remaining = remaining_installed + remaining_stale
        if not remaining:
            self._store.delete(record.package_name)
            return

        leftover = record.model_copy(
            update={
                "installed_paths": remaining_installed,
                "stale_paths": remaining_stale,
                "file_digests": {p: d for p, d in record.file_digests.items() if p in remaining_installed},
            }
        )
        try:
            self._store.save(leftover)
        except OSError as e:
            raise InconsistentState(
                f"Could not update record of '{record.package_name}' after a partial uninstall: {e}",
                paths=remaining,
                expected=leftover.summary(),
                actual=record.summary(),
            ) from e
        raise PartialUninstall(record.package_name, remaining)

    # ── Planning ────────────────────────────────────────────────

    def _plan(
        self,
        manifest: Manifest,
        resolved: ResolvedArtifact,
        previous: InstallationRecord | None,
    ) -> PlannedAction:
        targets = [str(self._settings.bin_dir / name) for name in manifest.installed_names]
        owned = set(previous.owned_paths) if previous else set()
        conflicts = [t for t in targets if t not in owned and os.path.lexists(t)]

        base = dict(
            package_name=manifest.name,
            resolved=resolved,
            target_paths=targets,
            conflicts=conflicts,
        )

        if previous is None:
            return PlannedAction(kind="install", reason="not installed", **base)

        base["current_version"] = previous.installed_version
        base["obsolete_paths"] = [p for p in previous.owned_paths if p not in targets]

        if previous.installed_version != resolved.version:
            return PlannedAction(
                kind="upgrade",
                reason=f"{previous.installed_version} -> {resolved.version}",
                **base,
            )

        status = self._status_of(previous)
        if not status.ok:
            broken = len(status.missing) + len(status.altered)
            return PlannedAction(kind="install", reason=f"reinstall: {broken} file(s) missing or altered", **base)

        same_source = (
            previous.source_url == resolved.concrete_url
            and previous.integrity == (resolved.expected_hash or "unchecked")
            and sorted(previous.installed_paths) == sorted(targets)
        )
        if not same_source:
            return PlannedAction(kind="install", reason="reinstall: manifest changed", **base)

        return PlannedAction(kind="no-op", reason="already installed", **base)

    def _status_of(self, record: InstallationRecord) -> InstallStatus:
        missing: list[str] = []
        altered: list[str] = []
        for path in record.installed_paths:
            p = Path(path)
            if not p.is_file():
                missing.append(path)
                continue
            expected = record.file_digests.get(path)
            if expected and file_digest(p) != expected:
                altered.append(path)

        if missing or altered:
            return InstallStatus(
                state="corrupted",
                package_name=record.package_name,
                version=record.installed_version,
                missing=missing,
                altered=altered,
            )
        return InstallStatus(state="installed", package_name=record.package_name, version=record.installed_version)


def _remove_path(path: str) -> bool:
    """Best-effort removal of one installed file. True when it's gone."""
    try:
        os.unlink(path)
    except FileNotFoundError:
        logger.info("Already gone: %s", path)
        return True
    except OSError as e:
        logger.warning("Could not remove %s: %s", path, e)
        return False
    logger.info("Removed %s", path)
    return True

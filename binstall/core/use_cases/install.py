"""
Install use case: load a manifest, plan, then install or upgrade.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from binstall.core.config.loader import load_manifest
from binstall.core.models.artifact import PlannedAction
from binstall.core.models.manifest import Manifest
from binstall.core.models.record import InstallationRecord
from binstall.core.services.installer import Installer

logger = logging.getLogger(__name__)


@dataclass
class InstallResult:
    """What an install call did."""

    manifest: Manifest
    plan: PlannedAction
    record: InstallationRecord
    warnings: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return self.plan.kind != "no-op"

    def to_dict(self) -> dict:
        return {
            "package_name": self.manifest.name,
            "action": self.plan.kind,
            "reason": self.plan.reason,
            "previous_version": self.plan.current_version,
            "record": self.record.model_dump(mode="json"),
            "warnings": self.warnings,
        }


def run_install(
    installer: Installer,
    manifest_path: Path,
    *,
    version: str | None = None,
    force: bool = False,
) -> InstallResult:
    """Install the package described by ``manifest_path``.

    Args:
        installer: Configured installer.
        manifest_path: Manifest file to install from.
        version: Version to install instead of the manifest's own.
        force: Overwrite files in the binary directory not owned by
            this package.

    Raises:
        InstallerError: Any failure from loading through recording.
    """
    manifest = load_manifest(manifest_path)
    resolved = installer.resolve(manifest, version)

    plan = installer.plan(manifest, resolved)
    logger.info("Plan for %s: %s (%s)", manifest.name, plan.kind, plan.reason)

    record = installer.install(resolved, manifest, force=force)
    return InstallResult(
        manifest=manifest,
        plan=plan,
        record=record,
        warnings=list(resolved.warnings),
    )

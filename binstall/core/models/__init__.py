"""
Domain models: Pydantic types for the installer.

All models are re-exported here for convenient access:

    from binstall.core.models import Manifest, ResolvedArtifact, InstallationRecord
"""

from binstall.core.models.artifact import InstallStatus, PlannedAction, ResolvedArtifact
from binstall.core.models.manifest import (
    BinaryEntry,
    Integrity,
    Manifest,
    manifest_problems,
)
from binstall.core.models.record import InstallationRecord

__all__ = [
    # manifest.py
    "BinaryEntry",
    "Integrity",
    "Manifest",
    "manifest_problems",
    # artifact.py
    "InstallStatus",
    "PlannedAction",
    "ResolvedArtifact",
    # record.py
    "InstallationRecord",
]

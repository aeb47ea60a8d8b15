"""
InstallationRecord: persisted proof of what is installed for a package.

One record per package, serialized to ``<state_dir>/records/<name>.json``.
A record exists iff the files it references are on disk; the installer
keeps the two in sync.
"""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class InstallationRecord(BaseModel):
    """State written after a successful install or upgrade."""

    # ── Schema ───────────────────────────────────────────────────
    schema_version: int = 1

    # ── Identity ─────────────────────────────────────────────────
    package_name: str
    installed_version: str

    # ── Files ────────────────────────────────────────────────────
    installed_paths: list[str] = Field(default_factory=list)
    file_digests: dict[str, str] = Field(default_factory=dict)  # path -> sha256 hex
    stale_paths: list[str] = Field(default_factory=list)  # left over by an upgrade

    # ── Provenance ───────────────────────────────────────────────
    source_url: str = ""
    integrity: str = "unchecked"
    install_timestamp: str = Field(default_factory=_now_iso)

    @property
    def owned_paths(self) -> list[str]:
        """Every path this package is responsible for, in removal order."""
        return list(self.installed_paths) + [p for p in self.stale_paths if p not in self.installed_paths]

    def summary(self) -> dict:
        return {
            "package_name": self.package_name,
            "installed_version": self.installed_version,
            "installed_paths": list(self.installed_paths),
            "install_timestamp": self.install_timestamp,
        }

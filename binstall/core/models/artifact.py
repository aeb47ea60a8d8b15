"""
Resolution and planning results.

These are transient: created per call, never persisted.
"""

from __future__ import annotations

from typing import Literal
from urllib.parse import unquote, urlsplit

from pydantic import BaseModel, ConfigDict, Field


class ResolvedArtifact(BaseModel):
    """A concrete, fetchable artifact for one package version."""

    model_config = ConfigDict(frozen=True)

    package_name: str
    version: str
    concrete_url: str
    expected_hash: str | None = None  # "<algo>:<hex>", None when unchecked
    warnings: tuple[str, ...] = ()

    @property
    def integrity_checked(self) -> bool:
        return self.expected_hash is not None

    @property
    def file_name(self) -> str:
        """Last path segment of the URL: the name a raw artifact is known by."""
        path = urlsplit(self.concrete_url).path
        return unquote(path.rstrip("/").rsplit("/", 1)[-1])


class PlannedAction(BaseModel):
    """What ``install`` would do, computed without touching the filesystem."""

    kind: Literal["install", "upgrade", "no-op"]
    reason: str = ""
    package_name: str
    resolved: ResolvedArtifact
    current_version: str | None = None
    target_paths: list[str] = Field(default_factory=list)
    obsolete_paths: list[str] = Field(default_factory=list)
    conflicts: list[str] = Field(default_factory=list)


class InstallStatus(BaseModel):
    """Outcome of checking an installed package against its record."""

    state: Literal["installed", "not_installed", "corrupted"]
    package_name: str
    version: str | None = None
    missing: list[str] = Field(default_factory=list)
    altered: list[str] = Field(default_factory=list)
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.state == "installed"

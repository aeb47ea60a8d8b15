"""
Lint use case: validate a manifest file and report issues.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlsplit

from binstall.core.config.loader import load_manifest
from binstall.core.errors import InstallerError
from binstall.core.models.manifest import Manifest

_WEAK_ALGORITHMS = frozenset({"md5", "sha1"})


@dataclass
class LintResult:
    """Result of manifest validation."""

    valid: bool = False
    manifest: Manifest | None = None
    manifest_path: Path | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "manifest_path": str(self.manifest_path) if self.manifest_path else None,
            "errors": self.errors,
            "warnings": self.warnings,
            "package_name": self.manifest.name if self.manifest else None,
            "version": self.manifest.version if self.manifest else None,
            "binaries": self.manifest.installed_names if self.manifest else [],
        }


def check_manifest(manifest_path: Path) -> LintResult:
    """Validate a manifest file and report issues.

    Errors make the manifest unusable; warnings are legal but risky
    choices (unchecked downloads, plain http).
    """
    result = LintResult(manifest_path=manifest_path)

    try:
        manifest = load_manifest(manifest_path)
    except InstallerError as e:
        result.errors.append(e.message)
        return result
    result.manifest = manifest

    # Semantic checks
    if not manifest.integrity.checked:
        result.warnings.append("Integrity verification is disabled: downloads will not be checked.")

    scheme = urlsplit(manifest.url_template).scheme.lower()
    if scheme == "http":
        result.warnings.append("url_template uses plain http; installs need allow_http.")
    elif scheme not in ("https", "file"):
        result.errors.append(f"url_template scheme '{scheme}' is not supported.")

    if manifest.integrity.checked and manifest.integrity.algorithm in _WEAK_ALGORITHMS:
        result.warnings.append(
            f"{manifest.integrity.algorithm} is a weak checksum; prefer sha256 or sha512."
        )

    if urlsplit(manifest.homepage).scheme.lower() not in ("http", "https"):
        result.warnings.append(f"homepage '{manifest.homepage}' is not a web URL.")

    result.valid = len(result.errors) == 0
    return result

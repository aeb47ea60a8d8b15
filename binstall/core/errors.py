"""
Installer error taxonomy.

Every failure the core can report is an ``InstallerError`` subclass.
Each class carries the process exit code the CLI uses for it, so the
mapping lives in one place:

    10-12   manifest / resolution problems (fix the manifest)
    20-25   download, verification and placement (safe to retry)
    30-31   state that needs attention
    40-41   query outcomes (not installed, corrupted)
"""

from __future__ import annotations

from typing import Any


class InstallerError(Exception):
    """Base class for every installer failure."""

    exit_code: int = 1
    retryable: bool = True

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.kind,
            "message": self.message,
            "exit_code": self.exit_code,
            "retryable": self.retryable,
            "details": self.details,
        }


# ── Manifest and resolution ─────────────────────────────────────


class MalformedManifest(InstallerError):
    """Manifest source is unreadable or misses required fields."""

    exit_code = 10
    retryable = False


class ValidationError(InstallerError):
    """A manifest object violates one or more invariants."""

    exit_code = 11
    retryable = False

    def __init__(self, reasons: list[str]) -> None:
        super().__init__("; ".join(reasons) or "invalid manifest", reasons=list(reasons))
        self.reasons = list(reasons)


class UnresolvableVersion(InstallerError):
    """The requested version cannot be turned into a download URL."""

    exit_code = 12
    retryable = False


# ── Download and placement ──────────────────────────────────────


class FetchFailed(InstallerError):
    exit_code = 20

    def __init__(self, message: str, *, url: str, status: int | None = None) -> None:
        super().__init__(message, url=url, status=status)
        self.url = url
        self.status = status


class DownloadTimeout(InstallerError):
    exit_code = 21

    def __init__(self, url: str, timeout: float) -> None:
        super().__init__(f"Download of {url} exceeded {timeout:g}s", url=url, timeout=timeout)
        self.url = url
        self.timeout = timeout


class IntegrityMismatch(InstallerError):
    exit_code = 22

    def __init__(self, url: str, expected: str, actual: str) -> None:
        super().__init__(
            f"Checksum mismatch for {url}: expected {expected}, got {actual}",
            url=url,
            expected=expected,
            actual=actual,
        )
        self.expected = expected
        self.actual = actual


class MissingArtifactEntry(InstallerError):
    exit_code = 23
    retryable = False

    def __init__(self, entry: str, reason: str = "not found in artifact") -> None:
        super().__init__(f"Artifact entry '{entry}' {reason}", entry=entry)
        self.entry = entry


class TargetConflict(InstallerError):
    """Target paths exist but are not owned by the package."""

    exit_code = 24
    retryable = False

    def __init__(self, package_name: str, paths: list[str]) -> None:
        super().__init__(
            f"Refusing to overwrite files not owned by '{package_name}': {', '.join(paths)}",
            package_name=package_name,
            paths=list(paths),
        )
        self.paths = list(paths)


class PackageBusy(InstallerError):
    exit_code = 25

    def __init__(self, package_name: str, timeout: float) -> None:
        super().__init__(
            f"Another operation on '{package_name}' is still running (waited {timeout:g}s)",
            package_name=package_name,
        )


# ── State needing attention ─────────────────────────────────────


class InconsistentState(InstallerError):
    """Disk and records disagree after a failed rollback.

    Never retried automatically: the details name every path left
    behind so it can be cleaned up by hand.
    """

    exit_code = 30
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        paths: list[str],
        expected: dict[str, Any] | None = None,
        actual: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, paths=list(paths), expected=expected, actual=actual)
        self.paths = list(paths)


class PartialUninstall(InstallerError):
    exit_code = 31

    def __init__(self, package_name: str, remaining: list[str]) -> None:
        super().__init__(
            f"Could not remove {len(remaining)} file(s) of '{package_name}': {', '.join(remaining)}",
            package_name=package_name,
            remaining=list(remaining),
        )
        self.remaining = list(remaining)


# ── Query outcomes ──────────────────────────────────────────────


class NotInstalled(InstallerError):
    exit_code = 40
    retryable = False

    def __init__(self, package_name: str) -> None:
        super().__init__(f"'{package_name}' is not installed", package_name=package_name)
        self.package_name = package_name


class Corrupted(InstallerError):
    exit_code = 41
    retryable = False

    def __init__(self, package_name: str, missing: list[str], altered: list[str]) -> None:
        super().__init__(
            f"'{package_name}' is recorded as installed but files are missing or altered",
            package_name=package_name,
            missing=list(missing),
            altered=list(altered),
        )

"""
Manifest model: the declarative description of one installable package.

Loaded from a manifest file, this is the canonical truth about where a
package comes from, how its download is checked, and which files inside
the artifact become installed binaries.

Structural typing happens here; the package invariants (non-empty
fields, exactly one version placeholder, sane binary names) live in
``manifest_problems`` so they can be checked on any instance without
I/O.
"""

from __future__ import annotations

import posixpath
import re
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from binstall.core.errors import ValidationError

VERSION_PLACEHOLDER = "{version}"

# Hash algorithms accepted for integrity pins, with their hex digest length
HASH_ALGORITHMS: dict[str, int] = {
    "sha256": 64,
    "sha512": 128,
    "sha1": 40,
    "md5": 32,
}

# Spellings of the explicit "do not verify" marker (cask uses :no_check)
UNCHECKED_MARKERS = frozenset({"unchecked", "no_check", ":no_check"})

_TOKEN_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._+-]*$")
_HEX_RE = re.compile(r"^[0-9a-f]+$")

ArtifactKind = Literal["auto", "raw", "tar", "zip"]


class Integrity(BaseModel):
    """Integrity policy for a download.

    Either a pinned digest (``mode="hash"``) or the explicit
    ``unchecked`` marker. There is no default: a manifest that does not
    say which one it wants is malformed.
    """

    model_config = ConfigDict(frozen=True)

    mode: Literal["hash", "unchecked"]
    algorithm: str = ""
    digest: str = ""

    @property
    def checked(self) -> bool:
        return self.mode == "hash"

    @classmethod
    def unchecked(cls) -> Integrity:
        return cls(mode="unchecked")

    @classmethod
    def from_string(cls, value: str) -> Integrity:
        """Parse ``unchecked``, ``<algo>:<hex>`` or a bare sha256 hex digest."""
        text = value.strip()
        if text.lower() in UNCHECKED_MARKERS:
            return cls.unchecked()

        if ":" in text:
            algo, digest = text.split(":", 1)
        else:
            algo, digest = "sha256", text
        algo = algo.strip().lower()
        digest = digest.strip().lower()

        if algo not in HASH_ALGORITHMS:
            raise ValueError(f"unsupported hash algorithm '{algo}'")
        if len(digest) != HASH_ALGORITHMS[algo] or not _HEX_RE.match(digest):
            raise ValueError(f"'{value}' is not a valid {algo} digest")
        return cls(mode="hash", algorithm=algo, digest=digest)

    def __str__(self) -> str:
        if not self.checked:
            return "unchecked"
        return f"{self.algorithm}:{self.digest}"


class BinaryEntry(BaseModel):
    """One artifact-internal path and the name it is installed under."""

    model_config = ConfigDict(frozen=True)

    path: str
    name: str

    @classmethod
    def coerce(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"path": value, "name": posixpath.basename(value.rstrip("/"))}
        if isinstance(value, (list, tuple)):
            if len(value) != 2:
                raise ValueError(f"binary entry {list(value)!r} must be [path, name]")
            return {"path": value[0], "name": value[1]}
        if isinstance(value, dict) and "path" in value and "name" not in value:
            return {**value, "name": posixpath.basename(str(value["path"]).rstrip("/"))}
        return value


class Manifest(BaseModel):
    """One installable package.

    Immutable once constructed. Field aliases accept the cask spelling
    (``url``, ``desc``, ``sha256``, ``binary``) next to the canonical names.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    description: str = Field(validation_alias=AliasChoices("description", "desc"))
    homepage: str
    url_template: str = Field(validation_alias=AliasChoices("url_template", "url"))
    integrity: Integrity = Field(validation_alias=AliasChoices("integrity", "sha256"))
    binaries: tuple[BinaryEntry, ...] = Field(validation_alias=AliasChoices("binaries", "binary"))
    display_name: str = ""
    artifact: ArtifactKind = "auto"

    @field_validator("version", mode="before")
    @classmethod
    def _version_as_text(cls, value: Any) -> Any:
        # YAML turns unquoted 1.0 into a float
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("integrity", mode="before")
    @classmethod
    def _parse_integrity(cls, value: Any) -> Any:
        if isinstance(value, str):
            return Integrity.from_string(value)
        return value

    @field_validator("binaries", mode="before")
    @classmethod
    def _coerce_binaries(cls, value: Any) -> Any:
        if isinstance(value, (str, dict)):
            value = [value]
        if isinstance(value, (list, tuple)):
            return [BinaryEntry.coerce(v) for v in value]
        return value

    @property
    def title(self) -> str:
        return self.display_name or self.name

    @property
    def installed_names(self) -> list[str]:
        return [b.name for b in self.binaries]


def is_package_token(name: str) -> bool:
    return bool(_TOKEN_RE.fullmatch(name))


def check_package_name(name: str) -> str:
    """Reject names that can't be a package (and so can't be a file under records_dir).

    Raises:
        ValidationError: ``name`` is not a package token.
    """
    if not is_package_token(name):
        raise ValidationError([f"'{name}' is not a valid package name"])
    return name


def manifest_problems(manifest: Manifest) -> list[str]:
    """Check manifest invariants. Pure: no network, no filesystem.

    Returns:
        Human-readable problems; an empty list means the manifest is valid.
    """
    problems: list[str] = []

    if not manifest.name:
        problems.append("name must not be empty")
    elif not is_package_token(manifest.name):
        problems.append(f"name '{manifest.name}' is not a valid package token")

    if not manifest.version.strip():
        problems.append("version must not be empty")

    if not manifest.description.strip():
        problems.append("description must not be empty")
    if not manifest.homepage.strip():
        problems.append("homepage must not be empty")

    problems.extend(_template_problems(manifest.url_template))

    integrity = manifest.integrity
    if integrity.checked:
        expected_len = HASH_ALGORITHMS.get(integrity.algorithm)
        if expected_len is None:
            problems.append(f"unsupported hash algorithm '{integrity.algorithm}'")
        elif len(integrity.digest) != expected_len or not _HEX_RE.match(integrity.digest):
            problems.append(f"integrity digest is not a valid {integrity.algorithm} digest")

    if not manifest.binaries:
        problems.append("binaries must list at least one entry")

    seen: set[str] = set()
    for entry in manifest.binaries:
        problems.extend(_entry_problems(entry))
        if entry.name in seen:
            problems.append(f"installed name '{entry.name}' is listed twice")
        seen.add(entry.name)

    if manifest.artifact == "raw" and len(manifest.binaries) > 1:
        problems.append("a raw artifact can only provide one binary")

    return problems


def _template_problems(template: str) -> list[str]:
    if not template:
        return ["url_template must not be empty"]

    count = template.count(VERSION_PLACEHOLDER)
    if count == 0:
        return [f"url_template has no {VERSION_PLACEHOLDER} placeholder"]
    if count > 1:
        return [f"url_template has {count} {VERSION_PLACEHOLDER} placeholders, expected one"]

    rest = template.replace(VERSION_PLACEHOLDER, "")
    if "{" in rest or "}" in rest:
        return ["url_template contains a malformed placeholder"]
    if "://" not in template:
        return ["url_template must be an absolute URL"]
    return []


def _entry_problems(entry: BinaryEntry) -> list[str]:
    problems: list[str] = []
    path = entry.path.strip()
    if not path:
        problems.append("binary path must not be empty")
    else:
        norm = posixpath.normpath(path)
        if path.startswith("/") or norm == ".." or norm.startswith("../"):
            problems.append(f"binary path '{entry.path}' must stay inside the artifact")

    name = entry.name
    if not name or name in {".", ".."} or "/" in name or "\\" in name:
        problems.append(f"installed name '{name}' must be a plain file name")
    return problems

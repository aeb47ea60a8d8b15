"""
Manifest loader: reads a manifest file into a validated ``Manifest``.

This is the primary entry point for getting a package description.
It reads YAML (JSON is accepted as a YAML subset), validates the shape
against the Pydantic model, then applies the invariant rules. Any
failure is a ``MalformedManifest`` raised before network or filesystem
side effects happen.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from binstall.core.errors import MalformedManifest, ValidationError
from binstall.core.models.manifest import Manifest, manifest_problems

logger = logging.getLogger(__name__)


def parse(source: str | dict[str, Any]) -> Manifest:
    """Parse manifest source text (or an already-decoded mapping).

    Args:
        source: YAML/JSON text, or a mapping of manifest fields.

    Returns:
        Validated Manifest.

    Raises:
        MalformedManifest: Missing fields, bad placeholder, empty binaries
            or anything else that makes the manifest unusable.
    """
    if isinstance(source, str):
        try:
            data = yaml.safe_load(source)
        except yaml.YAMLError as e:
            raise MalformedManifest(f"Invalid YAML: {e}") from e
    else:
        data = source

    if not isinstance(data, dict):
        raise MalformedManifest(f"Expected a mapping of manifest fields, got {type(data).__name__}")

    # A manifest may be wrapped under a single "cask" / "package" key
    for wrapper in ("cask", "package"):
        if wrapper in data and isinstance(data[wrapper], dict) and len(data) == 1:
            data = data[wrapper]
            break

    try:
        manifest = Manifest.model_validate(data)
    except PydanticValidationError as e:
        raise MalformedManifest(f"Invalid manifest: {_format_errors(e)}") from e

    problems = manifest_problems(manifest)
    if problems:
        raise MalformedManifest(f"Invalid manifest '{manifest.name}': {'; '.join(problems)}")

    if not manifest.integrity.checked:
        logger.info("Manifest '%s' opts out of integrity verification", manifest.name)

    return manifest


def load_manifest(path: Path) -> Manifest:
    """Load and validate a manifest file.

    Raises:
        MalformedManifest: If the file is missing, unreadable or invalid.
    """
    if not path.is_file():
        raise MalformedManifest(f"Manifest file not found: {path}")

    logger.debug("Loading manifest from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise MalformedManifest(f"Cannot read {path}: {e}") from e

    manifest = parse(raw)
    logger.info("Loaded manifest '%s' %s (%d binaries)", manifest.name, manifest.version, len(manifest.binaries))
    return manifest


def validate(manifest: Manifest) -> None:
    """Check manifest invariants without any I/O.

    Safe to run in lint / dry-run mode.

    Raises:
        ValidationError: With every problem found.
    """
    problems = manifest_problems(manifest)
    if problems:
        raise ValidationError(problems)


def _format_errors(exc: PydanticValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "manifest"
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    return "; ".join(parts)

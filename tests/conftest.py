"""
Shared test fixtures and configuration.

Release artifacts are published into a temp directory and served to the
installer through ``file://`` URLs, so the real download path runs
without a network.
"""

from __future__ import annotations

import hashlib
import io
import tarfile
import zipfile
from pathlib import Path

import pytest

from binstall.core.config.loader import parse
from binstall.core.config.settings import InstallerSettings
from binstall.core.models.manifest import Manifest
from binstall.core.services.installer import Installer


class ReleaseDir:
    """A fake release host: ``<root>/v<version>/<filename>``."""

    def __init__(self, root: Path):
        self.root = root

    def template(self, filename: str) -> str:
        return f"{self.root.as_uri()}/v{{version}}/{filename}"

    def path(self, version: str, filename: str) -> Path:
        return self.root / f"v{version}" / filename

    def publish(self, version: str, filename: str, data: bytes) -> str:
        """Write a raw artifact. Returns its ``sha256:<hex>`` pin."""
        path = self.path(version, filename)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return "sha256:" + hashlib.sha256(data).hexdigest()

    def publish_tar(self, version: str, filename: str, members: dict[str, bytes]) -> str:
        buf = io.BytesIO()
        with tarfile.open(fileobj=buf, mode="w:gz") as tf:
            for name, data in members.items():
                info = tarfile.TarInfo(name)
                info.size = len(data)
                info.mode = 0o755
                tf.addfile(info, io.BytesIO(data))
        return self.publish(version, filename, buf.getvalue())

    def publish_zip(self, version: str, filename: str, members: dict[str, bytes]) -> str:
        buf = io.BytesIO()
        with zipfile.ZipFile(buf, "w") as zf:
            for name, data in members.items():
                zf.writestr(name, data)
        return self.publish(version, filename, buf.getvalue())


@pytest.fixture
def releases(tmp_path: Path) -> ReleaseDir:
    """Return an empty release host."""
    root = tmp_path / "releases"
    root.mkdir()
    return ReleaseDir(root)


@pytest.fixture
def settings(tmp_path: Path) -> InstallerSettings:
    """Return settings pointing bin/state dirs into tmp_path."""
    return InstallerSettings(
        bin_dir=tmp_path / "bin",
        state_dir=tmp_path / "state",
        download_timeout=5,
        lock_timeout=5,
    )


@pytest.fixture
def installer(settings: InstallerSettings) -> Installer:
    return Installer(settings)


@pytest.fixture
def make_manifest(releases: ReleaseDir):
    """Factory for manifests served from ``releases``."""

    def _make(
        name: str = "tool",
        version: str = "1.0.0",
        filename: str = "tool",
        integrity: str = "unchecked",
        binaries=None,
        **extra,
    ) -> Manifest:
        data = {
            "name": name,
            "version": version,
            "description": f"{name} test package",
            "homepage": "https://example.com/",
            "url_template": releases.template(filename),
            "integrity": integrity,
            "binaries": binaries if binaries is not None else [filename],
            **extra,
        }
        return parse(data)

    return _make

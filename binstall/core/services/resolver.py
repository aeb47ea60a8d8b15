"""
Resolver: manifest + requested version -> concrete artifact reference.

Pure: no network, no filesystem. The same (manifest, version) always
yields the same URL.
"""

from __future__ import annotations

import logging
from urllib.parse import quote, urlsplit

from binstall.core.config.loader import validate
from binstall.core.errors import UnresolvableVersion
from binstall.core.models.artifact import ResolvedArtifact
from binstall.core.models.manifest import VERSION_PLACEHOLDER, Manifest

logger = logging.getLogger(__name__)

# Characters left as-is when substituting a version into a URL path
_SAFE_VERSION_CHARS = "._-~"

_ALWAYS_ALLOWED_SCHEMES = frozenset({"https", "file"})


def resolve(
    manifest: Manifest,
    requested_version: str | None = None,
    *,
    allow_http: bool = False,
) -> ResolvedArtifact:
    """Resolve the download reference for a package version.

    Args:
        manifest: Validated manifest.
        requested_version: Version to install (default: ``manifest.version``).
        allow_http: Accept plain ``http://`` URLs.

    Returns:
        ResolvedArtifact with the substituted URL and expected hash.

    Raises:
        ValidationError: If the manifest breaks an invariant.
        UnresolvableVersion: If the version can't be substituted safely,
            the template has no placeholder, or the URL scheme is refused.
    """
    version = manifest.version if requested_version is None else requested_version
    template = manifest.url_template

    if VERSION_PLACEHOLDER not in template:
        raise UnresolvableVersion(
            f"url_template of '{manifest.name}' has no {VERSION_PLACEHOLDER} placeholder",
            package_name=manifest.name,
        )

    validate(manifest)

    encoded = _encode_version(manifest.name, version)
    concrete_url = template.replace(VERSION_PLACEHOLDER, encoded)
    _check_scheme(manifest.name, concrete_url, allow_http=allow_http)

    warnings: list[str] = []
    expected_hash: str | None = None
    if manifest.integrity.checked:
        if version != manifest.version:
            raise UnresolvableVersion(
                f"'{manifest.name}' pins a checksum for version {manifest.version}; "
                f"cannot verify version {version}",
                package_name=manifest.name,
                version=version,
            )
        expected_hash = str(manifest.integrity)
    else:
        msg = f"Integrity verification is disabled for '{manifest.name}' {version}: download will not be checked"
        logger.warning(msg)
        warnings.append(msg)

    logger.debug("Resolved %s %s -> %s", manifest.name, version, concrete_url)
    return ResolvedArtifact(
        package_name=manifest.name,
        version=version,
        concrete_url=concrete_url,
        expected_hash=expected_hash,
        warnings=tuple(warnings),
    )


def _encode_version(package_name: str, version: str) -> str:
    """Percent-encode a version for URL substitution, rejecting unsafe ones."""
    reason = None
    if not version or not version.strip():
        reason = "is empty"
    elif any(ch.isspace() or ord(ch) < 0x20 or ord(ch) == 0x7F for ch in version):
        reason = "contains whitespace or control characters"
    elif "/" in version or "\\" in version:
        reason = "contains a path separator"
    elif ".." in version:
        reason = "contains '..'"

    if reason:
        raise UnresolvableVersion(
            f"Version {version!r} of '{package_name}' {reason}",
            package_name=package_name,
            version=version,
        )
    return quote(version, safe=_SAFE_VERSION_CHARS)


def _check_scheme(package_name: str, url: str, *, allow_http: bool) -> None:
    scheme = urlsplit(url).scheme.lower()
    if scheme in _ALWAYS_ALLOWED_SCHEMES:
        return
    if scheme == "http" and allow_http:
        logger.warning("Downloading '%s' over plain http: %s", package_name, url)
        return
    raise UnresolvableVersion(
        f"URL scheme '{scheme or '(none)'}' is not allowed for '{package_name}': {url}",
        package_name=package_name,
        url=url,
    )

"""
Download and checksum verification.

Artifacts are streamed to disk in fixed-size chunks and hashed on the
way through, so memory use doesn't depend on artifact size. The caller
owns the destination directory; on any failure the partial file is
removed before the error propagates.
"""

from __future__ import annotations

import hashlib
import logging
import time
import urllib.error
import urllib.request
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from binstall import __version__
from binstall.core.errors import DownloadTimeout, FetchFailed, IntegrityMismatch

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
USER_AGENT = f"binstall/{__version__}"

Opener = Callable[..., Any]


@dataclass(frozen=True)
class DownloadedArtifact:
    """A fully downloaded (and, when pinned, verified) artifact on disk."""

    path: Path
    url: str
    size_bytes: int
    digests: dict[str, str] = field(default_factory=dict)  # algo -> hex

    @property
    def sha256(self) -> str:
        return self.digests.get("sha256", "")


def fmt_size(n: int | float) -> str:
    """Format byte count to human-readable string."""
    for unit in ("B", "KB", "MB", "GB"):
        if n < 1024:
            return f"{n:.1f} {unit}"
        n /= 1024
    return f"{n:.1f} TB"


def file_digest(path: Path, algo: str = "sha256") -> str:
    """Hex digest of a file, read in chunks."""
    h = hashlib.new(algo)
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            h.update(chunk)
    return h.hexdigest()


def fetch(
    url: str,
    dest: Path,
    *,
    timeout: float,
    expected_hash: str | None = None,
    max_bytes: int | None = None,
    opener: Opener | None = None,
) -> DownloadedArtifact:
    """Stream ``url`` into ``dest`` and verify it.

    Redirects are followed by urllib's default handler chain.

    Args:
        url: Concrete artifact URL.
        dest: File to write; its directory must exist.
        timeout: Budget in seconds for the whole transfer. Every socket
            read is bounded by what is left of it.
        expected_hash: ``<algo>:<hex>`` to verify, or None to skip.
        max_bytes: Refuse artifacts larger than this.
        opener: ``urlopen``-compatible callable (default: urllib's).

    Raises:
        FetchFailed: Non-2xx status, connection error or size overrun.
        DownloadTimeout: The transfer didn't finish within ``timeout``.
        IntegrityMismatch: The digest differs from ``expected_hash``.
    """
    open_url = opener or urllib.request.urlopen
    deadline = time.monotonic() + timeout

    hashers = {"sha256": hashlib.sha256()}
    expected_algo = expected_digest = None
    if expected_hash:
        expected_algo, expected_digest = expected_hash.split(":", 1)
        hashers.setdefault(expected_algo, hashlib.new(expected_algo))

    request = urllib.request.Request(url, headers={"User-Agent": USER_AGENT})
    logger.info("Downloading %s", url)

    size = 0
    try:
        with open_url(request, timeout=timeout) as resp, open(dest, "wb") as out:
            status = getattr(resp, "status", None)
            if status is not None and not 200 <= status < 300:
                raise FetchFailed(f"GET {url} returned HTTP {status}", url=url, status=status)

            # read1 returns what has arrived instead of waiting for a full chunk
            read = getattr(resp, "read1", None) or resp.read
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise DownloadTimeout(url, timeout)
                _cap_read_timeout(resp, remaining)
                chunk = read(CHUNK_SIZE)
                if not chunk:
                    break
                size += len(chunk)
                if max_bytes is not None and size > max_bytes:
                    raise FetchFailed(
                        f"Artifact {url} is larger than the {fmt_size(max_bytes)} limit",
                        url=url,
                    )
                for h in hashers.values():
                    h.update(chunk)
                out.write(chunk)
    except (FetchFailed, DownloadTimeout):
        dest.unlink(missing_ok=True)
        raise
    except urllib.error.HTTPError as e:
        dest.unlink(missing_ok=True)
        raise FetchFailed(f"GET {url} returned HTTP {e.code}", url=url, status=e.code) from e
    except urllib.error.URLError as e:
        dest.unlink(missing_ok=True)
        if isinstance(e.reason, TimeoutError):
            raise DownloadTimeout(url, timeout) from e
        raise FetchFailed(f"GET {url} failed: {e.reason}", url=url) from e
    except TimeoutError as e:
        dest.unlink(missing_ok=True)
        raise DownloadTimeout(url, timeout) from e
    except OSError as e:
        dest.unlink(missing_ok=True)
        raise FetchFailed(f"GET {url} failed: {e}", url=url) from e
    except BaseException:
        dest.unlink(missing_ok=True)
        raise

    digests = {algo: h.hexdigest() for algo, h in hashers.items()}
    logger.info("Downloaded %s (%s, sha256=%s)", url, fmt_size(size), digests["sha256"])

    if expected_algo is not None:
        actual = digests[expected_algo]
        if actual != expected_digest:
            dest.unlink(missing_ok=True)
            raise IntegrityMismatch(url, expected=expected_hash, actual=f"{expected_algo}:{actual}")
        logger.info("Checksum verified (%s)", expected_algo)

    return DownloadedArtifact(path=dest, url=url, size_bytes=size, digests=digests)


def _cap_read_timeout(resp: Any, seconds: float) -> None:
    """Bound the next socket read of an HTTP response by the time left."""
    raw = getattr(getattr(resp, "fp", None), "raw", None)
    sock = getattr(raw, "_sock", None)
    if sock is not None:
        sock.settimeout(seconds)

"""
Per-package locking.

Installs and uninstalls of the same package are mutually exclusive;
different packages never contend. Two layers:

- a ``threading.Lock`` per lock file, for threads of this process
  (``flock`` is per open file description, so it would not stop two
  threads that each open the file);
- an exclusive ``fcntl.flock`` on ``<records_dir>/<name>.lock``, for
  other processes.

The lock file is left in place after release. Removing it would let a
waiter lock an unlinked inode while a newcomer locks a fresh one.
"""

from __future__ import annotations

import fcntl
import logging
import os
import threading
import time
import weakref
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from binstall.core.errors import PackageBusy
from binstall.core.models.manifest import check_package_name

logger = logging.getLogger(__name__)

LOCK_SUFFIX = ".lock"
_POLL_INTERVAL = 0.05

# Entries drop out once no caller holds or waits on the lock
_key_locks: weakref.WeakValueDictionary[str, threading.Lock] = weakref.WeakValueDictionary()
_key_locks_guard = threading.Lock()


def _get_key_lock(key: str) -> threading.Lock:
    """Get or create the in-process lock for a lock file."""
    with _key_locks_guard:
        lock = _key_locks.get(key)
        if lock is None:
            lock = threading.Lock()
            _key_locks[key] = lock
        return lock


def lock_path_for(records_dir: Path, package_name: str) -> Path:
    check_package_name(package_name)
    return records_dir / f"{package_name}{LOCK_SUFFIX}"


@contextmanager
def package_lock(records_dir: Path, package_name: str, timeout: float) -> Iterator[Path]:
    """Hold the exclusive lock for ``package_name`` for the duration of the block.

    Raises:
        PackageBusy: If the lock isn't available within ``timeout`` seconds.
    """
    path = lock_path_for(records_dir, package_name)
    deadline = time.monotonic() + timeout

    thread_lock = _get_key_lock(str(path.absolute()))
    if not thread_lock.acquire(timeout=timeout):
        raise PackageBusy(package_name, timeout)

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o644)
        try:
            _flock_until(fd, deadline, package_name, timeout)
            try:
                os.ftruncate(fd, 0)
                os.write(fd, f"{os.getpid()}\n".encode())
                logger.debug("Acquired lock %s", path)
                yield path
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
                logger.debug("Released lock %s", path)
        finally:
            os.close(fd)
    finally:
        thread_lock.release()


def _flock_until(fd: int, deadline: float, package_name: str, timeout: float) -> None:
    while True:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            return
        except BlockingIOError:
            if time.monotonic() >= deadline:
                raise PackageBusy(package_name, timeout) from None
            time.sleep(_POLL_INTERVAL)

"""
Logging for binstall.

``setup_logging`` is called once by the CLI group. Core modules only do
``logger = logging.getLogger(__name__)`` and never add handlers.

Installs and uninstalls run inside ``operation_context``. While it is
active every log line is tagged with the operation id, kind and package,
the same id the audit ledger records, e.g.::

    12:03:44 [3f9c0a1b2d4e install unitrack] Downloading https://...

so a log file shared by several processes can be matched against
``binstall show``.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path

_current_operation: ContextVar[str] = ContextVar("binstall_operation", default="")

# Console formats grow with verbosity; %(operation)s is "" or "[id kind pkg] "
_CONSOLE_FORMATS: dict[int, tuple[str, str | None]] = {
    logging.DEBUG: ("%(asctime)s %(levelname)-7s %(operation)s%(name)s:%(lineno)d  %(message)s", "%H:%M:%S"),
    logging.INFO: ("%(asctime)s %(operation)s%(message)s", "%H:%M:%S"),
    logging.WARNING: ("binstall: %(levelname)s: %(operation)s%(message)s", None),
}

# Several processes may append to one file: keep the pid
_FILE_FORMAT = "%(asctime)s %(levelname)-7s pid=%(process)d %(operation)s%(name)s  %(message)s"
_FILE_DATEFMT = "%Y-%m-%dT%H:%M:%S"


class _StderrHandler(logging.StreamHandler):
    """Write to whatever ``sys.stderr`` is when a record is emitted.

    click swaps the stream while a command runs under CliRunner.
    """

    @property
    def stream(self):
        return sys.stderr

    @stream.setter
    def stream(self, _value) -> None:
        pass


class _OperationTag(logging.Filter):
    """Attach the active operation tag to every record a handler sees."""

    def filter(self, record: logging.LogRecord) -> bool:
        tag = _current_operation.get()
        record.operation = f"[{tag}] " if tag else ""
        return True


@contextmanager
def operation_context(operation_id: str, kind: str, package_name: str) -> Iterator[None]:
    """Tag log lines emitted inside the block with the operation."""
    token = _current_operation.set(f"{operation_id} {kind} {package_name}")
    try:
        yield
    finally:
        _current_operation.reset(token)


def parse_level(name: str | None, default: int = logging.WARNING) -> int:
    """Level name (any case) to its number; unknown names give ``default``."""
    if not name:
        return default
    value = logging.getLevelName(name.strip().upper())
    return value if isinstance(value, int) else default


def setup_logging(
    level: str = "WARNING",
    log_file: str | Path | None = None,
    log_file_level: str | None = None,
) -> None:
    """Install the console handler (stderr) and, optionally, a file handler.

    Args:
        level: Console level name.
        log_file: Append full-detail records here; parent directories are
            created.
        log_file_level: Level for the file; defaults to ``level``.
    """
    console_level = parse_level(level)
    fmt, datefmt = _console_format(console_level)

    console = _StderrHandler()
    console.setLevel(console_level)
    console.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
    console.addFilter(_OperationTag())

    root = logging.getLogger()
    for handler in installed_handlers():
        root.removeHandler(handler)
        handler.close()
    root.addHandler(console)
    root_level = console_level

    if log_file:
        file_level = parse_level(log_file_level, default=console_level)
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)

        fh = logging.FileHandler(path, encoding="utf-8")
        fh.setLevel(file_level)
        fh.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_FILE_DATEFMT))
        fh.addFilter(_OperationTag())
        root.addHandler(fh)
        root_level = min(root_level, file_level)

    root.setLevel(root_level)


def _console_format(level: int) -> tuple[str, str | None]:
    for threshold in (logging.DEBUG, logging.INFO):
        if level <= threshold:
            return _CONSOLE_FORMATS[threshold]
    return _CONSOLE_FORMATS[logging.WARNING]


def installed_handlers() -> list[logging.Handler]:
    """Root handlers added by ``setup_logging`` (others are left alone)."""
    return [
        h for h in logging.getLogger().handlers
        if any(isinstance(f, _OperationTag) for f in h.filters)
    ]

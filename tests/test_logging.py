"""
Tests for logging setup and operation tagging.
"""

from __future__ import annotations

import io
import logging
from pathlib import Path

import pytest

from binstall.core.observability.logging_config import (
    installed_handlers,
    operation_context,
    parse_level,
    setup_logging,
)
from binstall.core.persistence.audit import AuditWriter


@pytest.fixture(autouse=True)
def _restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for h in installed_handlers():
        root.removeHandler(h)
        h.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def _flush() -> None:
    for h in logging.getLogger().handlers:
        h.flush()


class TestSetupLogging:
    """Tests for setup_logging()."""

    def test_console_level(self):
        setup_logging("INFO")
        assert logging.getLogger().level == logging.INFO
        assert len(installed_handlers()) == 1

    def test_repeated_setup_replaces_own_handlers(self):
        foreign = logging.NullHandler()
        logging.getLogger().addHandler(foreign)

        setup_logging("INFO")
        setup_logging("DEBUG")

        assert len(installed_handlers()) == 1
        assert foreign in logging.getLogger().handlers

    def test_console_follows_current_stderr(self, monkeypatch):
        setup_logging("WARNING")
        stream = io.StringIO()
        monkeypatch.setattr("sys.stderr", stream)

        logging.getLogger("binstall.test").warning("checksum skipped")

        assert stream.getvalue() == "binstall: WARNING: checksum skipped\n"

    def test_file_handler(self, tmp_path: Path):
        log_file = tmp_path / "logs" / "binstall.log"
        setup_logging("WARNING", log_file=log_file, log_file_level="DEBUG")

        logging.getLogger("binstall.test").debug("written to file only")
        _flush()

        assert logging.getLogger().level == logging.DEBUG
        text = log_file.read_text()
        assert "written to file only" in text
        assert "pid=" in text

    def test_file_level_defaults_to_console_level(self, tmp_path: Path):
        log_file = tmp_path / "binstall.log"
        setup_logging("WARNING", log_file=log_file)

        logging.getLogger("binstall.test").info("not written")
        _flush()

        assert log_file.read_text() == ""


class TestOperationContext:
    """Log lines inside an operation carry its id, kind and package."""

    def test_tagged_inside_only(self, tmp_path: Path):
        log_file = tmp_path / "binstall.log"
        setup_logging("ERROR", log_file=log_file, log_file_level="INFO")
        logger = logging.getLogger("binstall.test")

        with operation_context("abc123", "install", "unitrack"):
            logger.info("downloading")
        logger.info("idle")
        _flush()

        lines = log_file.read_text().splitlines()
        assert "[abc123 install unitrack] binstall.test  downloading" in lines[0]
        assert "[" not in lines[1].split("pid=")[1]

    def test_installer_tags_its_logs(self, tmp_path: Path, installer, settings, releases, make_manifest):
        log_file = tmp_path / "binstall.log"
        setup_logging("ERROR", log_file=log_file, log_file_level="INFO")
        releases.publish("1.0.0", "tool", b"v1")
        manifest = make_manifest()

        installer.install(installer.resolve(manifest), manifest)
        _flush()

        operation_id = AuditWriter(settings.audit_path).read_all()[-1].operation_id
        assert f"[{operation_id} install tool]" in log_file.read_text()


class TestParseLevel:
    @pytest.mark.parametrize(
        "name, level",
        [("debug", logging.DEBUG), (" Info ", logging.INFO), ("bogus", logging.WARNING), (None, logging.WARNING)],
    )
    def test_parse_level(self, name, level):
        assert parse_level(name) == level

    def test_custom_default(self):
        assert parse_level("", default=logging.ERROR) == logging.ERROR

"""
Tests for logging setup.
"""

import logging
from pathlib import Path

import pytest

from devsetup.core.observability.logging_config import (
    configure_from_env,
    resolve_level,
    setup_logging,
)


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for h in root.handlers:
        if h not in handlers:
            h.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestResolveLevel:
    def test_flags_take_precedence(self):
        env = {"DEVSETUP_LOG_LEVEL": "ERROR"}
        assert resolve_level(debug=True, environ=env) == "DEBUG"
        assert resolve_level(verbose=True, environ=env) == "INFO"
        assert resolve_level(quiet=True, environ={}) == "ERROR"

    def test_env_then_default(self):
        assert resolve_level(environ={"DEVSETUP_LOG_LEVEL": "INFO"}) == "INFO"
        assert resolve_level(environ={}) == "WARNING"


class TestSetupLogging:
    def test_console_level(self, restore_root_logger):
        setup_logging("INFO")
        (handler,) = restore_root_logger.handlers
        assert handler.level == logging.INFO
        assert restore_root_logger.level == logging.INFO

    def test_unknown_level_falls_back(self, restore_root_logger):
        setup_logging("LOUD")
        assert restore_root_logger.level == logging.WARNING

    def test_file_transcript(self, restore_root_logger, tmp_path: Path):
        log_file = tmp_path / "devsetup.log"
        configure_from_env(environ={"DEVSETUP_LOG_FILE": str(log_file)})
        assert restore_root_logger.level == logging.DEBUG
        console, fh = restore_root_logger.handlers
        assert console.level == logging.WARNING
        assert fh.level == logging.DEBUG

        logging.getLogger("devsetup.test").debug("planned 3 steps")
        fh.flush()
        assert "planned 3 steps" in log_file.read_text()

    def test_file_level(self, restore_root_logger, tmp_path: Path):
        configure_from_env(environ={
            "DEVSETUP_LOG_FILE": str(tmp_path / "x.log"),
            "DEVSETUP_LOG_FILE_LEVEL": "ERROR",
        })
        assert restore_root_logger.level == logging.WARNING

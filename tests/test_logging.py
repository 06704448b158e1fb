"""Test logging configuration."""

import logging
from pathlib import Path

import structlog
from structlog.testing import LogCapture

from tunnel_guard.common.logging import get_logger, setup_logging


class TestLogging:
    """Test logging functionality."""

    def setup_method(self) -> None:
        """Setup before each test - reset logging configuration."""
        structlog.reset_defaults()
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)

    def test_setup_logging_default(self) -> None:
        """Test default logging setup."""
        setup_logging()
        logger = get_logger("test")
        assert logger is not None
        assert hasattr(logger, "info")
        assert hasattr(logger, "warning")

    def test_setup_logging_with_level(self) -> None:
        """Test logging setup with custom level."""
        setup_logging(level="DEBUG")
        assert logging.getLogger().level == logging.DEBUG

    def test_setup_logging_replaces_handlers(self) -> None:
        """Repeated setup does not stack handlers."""
        setup_logging()
        setup_logging()
        assert len(logging.getLogger().handlers) == 1

    def test_setup_logging_json_format(self) -> None:
        """Test logging setup with JSON format."""
        setup_logging(json_format=True)
        logger = get_logger("test")

        cap = LogCapture()
        structlog.configure(processors=[cap])

        logger.info("tunnel healthy", port=2222)

        assert len(cap.entries) == 1
        assert cap.entries[0]["event"] == "tunnel healthy"
        assert cap.entries[0]["port"] == 2222

    def test_setup_logging_with_file(self, tmp_path: Path) -> None:
        """Records are appended to the log file with a timestamp."""
        log_file = tmp_path / "logs" / "tunnel.log"
        log_file.parent.mkdir()
        log_file.write_text("earlier line\n")

        setup_logging(log_file=str(log_file))
        get_logger("test_file").info("tunnel started", pid=42)

        for handler in logging.getLogger().handlers:
            handler.flush()

        contents = log_file.read_text()
        assert contents.startswith("earlier line\n")
        assert "tunnel started" in contents
        assert "pid=42" in contents
        line = contents.splitlines()[-1]
        assert line.count("info") == 1
        assert "INFO" not in line
        assert "\x1b[" not in contents

    def test_setup_logging_creates_log_directory(self, tmp_path: Path) -> None:
        """Missing parent directories are created."""
        log_file = tmp_path / "nested" / "dir" / "tunnel.log"
        setup_logging(log_file=log_file)

        get_logger("test").warning("probe failed")
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert log_file.exists()

    def test_level_filters_file_output(self, tmp_path: Path) -> None:
        """Debug records are dropped at INFO level."""
        log_file = tmp_path / "tunnel.log"
        setup_logging(level="INFO", log_file=log_file)

        logger = get_logger("test")
        logger.debug("hidden detail")
        logger.info("visible event")
        for handler in logging.getLogger().handlers:
            handler.flush()

        contents = log_file.read_text()
        assert "visible event" in contents
        assert "hidden detail" not in contents

"""
Tests for structured logging configuration.
"""

import logging

import structlog

from graph_plan import configure_logging, get_logger


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_json_format(self) -> None:
        """JSON output can be configured."""
        configure_logging(json_format=True, log_level="INFO")
        assert structlog.get_config() is not None
        assert logging.getLogger().level == logging.INFO

    def test_console_format(self) -> None:
        """Console output can be configured."""
        configure_logging(json_format=False, log_level="DEBUG")
        assert logging.getLogger().level == logging.DEBUG

    def test_unknown_level_falls_back_to_info(self) -> None:
        """An unknown level name means INFO."""
        configure_logging(log_level="chatty")
        assert logging.getLogger().level == logging.INFO

    def test_single_handler(self) -> None:
        """Configuring twice does not duplicate handlers."""
        configure_logging()
        configure_logging()
        assert len(logging.getLogger().handlers) == 1


class TestGetLogger:
    """Tests for get_logger."""

    def test_returns_logger(self) -> None:
        """get_logger returns a structlog logger."""
        assert get_logger("graph_plan.test") is not None

    def test_without_name(self) -> None:
        """get_logger works without a name."""
        assert get_logger(None) is not None


class TestLogOutput:
    """Tests for emitted records."""

    def setup_method(self) -> None:
        """Configure JSON logging before each test."""
        configure_logging(json_format=True, log_level="DEBUG")

    def test_event_fields(self, caplog) -> None:
        """Events carry their key/value fields."""
        logger = get_logger("graph_plan.test.fields")
        with caplog.at_level(logging.DEBUG, logger="graph_plan.test.fields"):
            logger.info("operation_succeeded", address="aws_vpc.main", attempt=2)
        assert len(caplog.records) > 0
        assert "operation_succeeded" in caplog.text
        assert "aws_vpc.main" in caplog.text

    def test_bound_fields(self, caplog) -> None:
        """Fields bound to a logger appear on every event."""
        logger = get_logger("graph_plan.test.bound").bind(wave=3)
        with caplog.at_level(logging.DEBUG, logger="graph_plan.test.bound"):
            logger.warning("wave_started")
        assert "wave_started" in caplog.text
        assert caplog.records[0].levelno == logging.WARNING

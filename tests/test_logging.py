"""Tests for logging configuration"""

from swaprouter.utils.logging import get_logger, setup_logging


def test_setup_logging_default():
    """Test logging setup with default level"""
    setup_logging()
    logger = get_logger("test")

    assert hasattr(logger, "info")
    assert hasattr(logger, "error")


def test_setup_logging_console_renderer():
    """Test console rendering can be selected"""
    setup_logging(log_level="DEBUG", json_logs=False)
    logger = get_logger()

    logger.debug("debug_message", key="value")


def test_unknown_level_falls_back_to_info():
    setup_logging(log_level="VERBOSE")
    get_logger("test").info("still_works")


def test_logger_can_log_messages():
    """Test that logger can log messages with context"""
    setup_logging(log_level="INFO")
    logger = get_logger("test")

    # These should not raise exceptions
    logger.info("test_message", key="value", number=42)
    logger.warning("warning_message", chain="Ethereum")
    logger.error("error_message", error="test_error")

"""Shared utilities: logging setup, retry executor and event channels"""

from swaprouter.utils.events import EventChannel
from swaprouter.utils.logging import get_logger, setup_logging
from swaprouter.utils.retry import RetryOptions, retry

__all__ = ["EventChannel", "RetryOptions", "get_logger", "retry", "setup_logging"]

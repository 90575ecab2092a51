"""Bounded exponential-backoff retry for asynchronous operations"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

import structlog

from swaprouter.errors import RetryExhausted

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass(frozen=True)
class RetryOptions:
    """Retry policy"""

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_factor: float = 2.0
    should_retry: Optional[Callable[[BaseException], bool]] = None
    # Called with (attempt, error) after a failed attempt that will be retried
    on_retry: Optional[Callable[[int, BaseException], None]] = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.backoff_factor <= 1:
            raise ValueError(f"backoff_factor must be > 1, got {self.backoff_factor}")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")


DEFAULT_RETRY_OPTIONS = RetryOptions()


async def retry(
    operation: Callable[[], Awaitable[T]],
    options: RetryOptions = DEFAULT_RETRY_OPTIONS,
    operation_name: str = "operation",
) -> T:
    """
    Run an async operation, retrying failures with exponential backoff.

    Args:
        operation: Zero-argument coroutine function to execute
        options: Retry policy
        operation_name: Name used in log events

    Returns:
        The operation's result

    Raises:
        RetryExhausted: All attempts failed
        Exception: An error rejected by should_retry is re-raised unchanged
    """
    delay = options.initial_delay
    last_error: Optional[BaseException] = None

    for attempt in range(1, options.max_attempts + 1):
        try:
            return await operation()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            last_error = e

            if options.should_retry is not None and not options.should_retry(e):
                logger.debug(
                    "retry_not_retryable",
                    operation=operation_name,
                    attempt=attempt,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise

            if attempt == options.max_attempts:
                break

            logger.warning(
                "retry_attempt_failed",
                operation=operation_name,
                attempt=attempt,
                max_attempts=options.max_attempts,
                delay_seconds=delay,
                error=str(e),
            )

            if options.on_retry is not None:
                options.on_retry(attempt, e)

            await asyncio.sleep(delay)
            delay = min(delay * options.backoff_factor, options.max_delay)

    logger.error(
        "retry_exhausted",
        operation=operation_name,
        attempts=options.max_attempts,
        error=str(last_error),
    )
    raise RetryExhausted(options.max_attempts, last_error)

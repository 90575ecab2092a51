"""Exception hierarchy for routing, execution and caching failures"""

from typing import Optional


class SwapRouterError(Exception):
    """Base class for all swap router errors"""


class NoPathFound(SwapRouterError):
    """No route connects the requested tokens in the current liquidity graph"""

    def __init__(self, token_in: str, token_out: str, max_hops: Optional[int] = None):
        self.token_in = token_in
        self.token_out = token_out
        self.max_hops = max_hops
        super().__init__(f"No valid path found from {token_in} to {token_out}")


class RetryExhausted(SwapRouterError):
    """Operation kept failing until every allowed attempt was used"""

    def __init__(self, attempts: int, last_error: BaseException):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Operation failed after {attempts} attempts: {last_error}")


class SubmissionFailure(SwapRouterError):
    """Chain rejected the swap invocation before it was included"""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)


class CacheProducerFailure(SwapRouterError):
    """The producer passed to get_or_fetch raised; nothing was cached"""

    def __init__(self, key: str, cause: BaseException):
        self.key = key
        self.cause = cause
        super().__init__(f"Failed to produce cache value for {key}: {cause}")


class AdvisoryError(SwapRouterError):
    """Advisory text service could not be reached or returned garbage"""

"""Swap execution: quote, submit through the chain client, hand off to the monitor"""

import asyncio
import time
from typing import Any, Callable, Optional, Protocol, Sequence

import structlog

from swaprouter.errors import SubmissionFailure
from swaprouter.execution.models import SwapParams, TradeAnalytics
from swaprouter.execution.quote_estimator import QuoteEstimator
from swaprouter.monitoring import metrics
from swaprouter.utils.events import SWAP_COMPLETED, SWAP_FAILED, SWAP_STARTED, EventChannel
from swaprouter.utils.retry import RetryOptions, retry

logger = structlog.get_logger()

RETRYABLE_ERROR_MARKERS = ("nonce", "gas", "connection", "timed out", "timeout", "underpriced")


def is_retryable_submission_error(error: BaseException) -> bool:
    """Nonce, gas and connection problems are worth another attempt"""
    if isinstance(error, (ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return True
    message = str(error).lower()
    return any(marker in message for marker in RETRYABLE_ERROR_MARKERS)


DEFAULT_SUBMIT_RETRY = RetryOptions(
    max_attempts=3,
    initial_delay=1.0,
    max_delay=10.0,
    should_retry=is_retryable_submission_error,
)


class SwapSubmitter(Protocol):
    async def submit_swap(
        self,
        account: Any,
        token_in: str,
        token_out: str,
        amount_in: int,
        minimum_output: int,
        route: Sequence[str],
        deadline: int,
    ) -> str: ...


class TransactionTracker(Protocol):
    def track(self, tx_hash: str, analytics: TradeAnalytics) -> Any: ...


class ExecutionEngine:
    """
    Executes swaps end to end.

    Every execution re-quotes against the current graph; a previously
    returned estimate is never reused for submission.

    Events:
    - swapStarted: {params, estimate, timestamp}
    - swapCompleted: {tx_hash, analytics, timestamp}
    - swapFailed: {error, params, timestamp}
    """

    def __init__(
        self,
        estimator: QuoteEstimator,
        chain: SwapSubmitter,
        tracker: TransactionTracker,
        events: Optional[EventChannel] = None,
        retry_options: RetryOptions = DEFAULT_SUBMIT_RETRY,
        clock: Callable[[], float] = time.time,
    ):
        self.estimator = estimator
        self.chain = chain
        self.tracker = tracker
        self.events = events or EventChannel("execution")
        self.retry_options = retry_options
        self._clock = clock
        self._logger = logger.bind(component="execution_engine")

    def _emit_failed(self, error: BaseException, params: SwapParams) -> None:
        metrics.swaps_total.labels(status="failed").inc()
        self.events.emit(
            SWAP_FAILED,
            {"error": error, "params": params, "timestamp": self._clock()},
        )

    async def execute_swap(self, account: Any, params: SwapParams) -> str:
        """
        Quote and submit a swap.

        Args:
            account: Signing account passed through to the chain client
            params: Swap request

        Returns:
            Transaction hash of the submitted swap

        Raises:
            NoPathFound: No route connects the tokens
            SubmissionFailure: The chain client kept rejecting the invocation
        """
        started_at = self._clock()

        try:
            estimate = await self.estimator.estimate_swap(params)
        except Exception as e:
            self._logger.warning(
                "swap_quote_failed",
                token_in=params.token_in,
                token_out=params.token_out,
                error=str(e),
                error_type=type(e).__name__,
            )
            self._emit_failed(e, params)
            raise

        self.events.emit(
            SWAP_STARTED,
            {"params": params, "estimate": estimate, "timestamp": started_at},
        )

        route = list(estimate.path.tokens)
        try:
            tx_hash = await retry(
                lambda: self.chain.submit_swap(
                    account,
                    params.token_in,
                    params.token_out,
                    params.amount_in,
                    estimate.minimum_output,
                    route,
                    params.deadline,
                ),
                self.retry_options,
                operation_name="submit_swap",
            )
        except Exception as e:
            failure = SubmissionFailure(f"Swap submission failed: {e}", cause=e)
            self._logger.error(
                "swap_submission_failed",
                token_in=params.token_in,
                token_out=params.token_out,
                amount_in=str(params.amount_in),
                error=str(e),
                error_type=type(e).__name__,
            )
            self._emit_failed(e, params)
            raise failure from e

        analytics = TradeAnalytics(
            timestamp=started_at,
            token_in=params.token_in,
            token_out=params.token_out,
            amount_in=params.amount_in,
            amount_out=estimate.expected_output,
            price_impact=estimate.price_impact,
            gas_cost=estimate.gas_estimate,
            route=route,
            tx_hash=tx_hash,
        )
        self.tracker.track(tx_hash, analytics)

        metrics.swaps_total.labels(status="submitted").inc()
        self._logger.info(
            "swap_executed",
            tx_hash=tx_hash,
            hops=estimate.path.hops,
            expected_output=str(estimate.expected_output),
            minimum_output=str(estimate.minimum_output),
        )
        self.events.emit(
            SWAP_COMPLETED,
            {"tx_hash": tx_hash, "analytics": analytics, "timestamp": self._clock()},
        )
        return tx_hash

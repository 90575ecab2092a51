"""Transaction monitor: polls submitted swaps until they reach a terminal state"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol

import structlog

from swaprouter.cache.store import AnalyticsStore
from swaprouter.cache.ttl_cache import TTLCache
from swaprouter.chains.models import ReceiptStatus, TransactionReceiptStatus
from swaprouter.execution.models import TradeAnalytics, TradeStatus
from swaprouter.monitoring import metrics
from swaprouter.utils.events import (
    TRANSACTION_COMPLETED,
    TRANSACTION_FAILED,
    TRANSACTION_SUBMITTED,
    TRANSACTION_TIMEOUT,
    EventChannel,
)

logger = structlog.get_logger()

ANALYTICS_PREFIX = "trade_analytics:"
TIMEOUT_ERROR = "Transaction timeout"
REJECTED_ERROR = "Transaction rejected"


class TransactionStatusReader(Protocol):
    async def get_transaction_status(self, tx_hash: str) -> TransactionReceiptStatus: ...


@dataclass
class TransactionState:
    """Tracking record for one submitted transaction"""

    hash: str
    status: TradeStatus
    submitted_at: float
    analytics: TradeAnalytics
    retry_count: int = 0
    last_error: Optional[str] = None
    finished_at: Optional[float] = None

    @property
    def is_pending(self) -> bool:
        return self.status == TradeStatus.PENDING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hash": self.hash,
            "status": self.status.value,
            "submitted_at": self.submitted_at,
            "retry_count": self.retry_count,
            "last_error": self.last_error,
            "finished_at": self.finished_at,
            "analytics": self.analytics.to_dict(),
        }


class TransactionMonitor:
    """
    Tracks submitted transactions and drives them to COMPLETED or FAILED.

    Responsibilities:
    - Poll every pending transaction's receipt on a fixed interval
    - Fail transactions that stay pending past the timeout
    - Fail transactions whose status keeps failing to load
    - Persist terminal analytics to the cache (and Redis when configured)
    - Drop terminal entries once the retention window has passed

    Events:
    - transactionSubmitted: {hash, analytics}
    - transactionCompleted: {hash, receipt, analytics}
    - transactionFailed: {hash, error, analytics}
    - transactionTimeout: {hash, analytics}
    """

    def __init__(
        self,
        chain: TransactionStatusReader,
        cache: TTLCache,
        store: Optional[AnalyticsStore] = None,
        events: Optional[EventChannel] = None,
        poll_interval: float = 5.0,
        timeout: float = 3600.0,
        max_poll_errors: int = 5,
        analytics_ttl: float = 86400.0,
        retention: float = 86400.0,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize transaction monitor.

        Args:
            chain: Chain client used to read receipt status
            cache: Shared TTL cache holding terminal analytics
            store: Optional Redis mirror for terminal analytics
            events: Event channel for lifecycle events
            poll_interval: Seconds between polling rounds
            timeout: Seconds a transaction may stay pending
            max_poll_errors: Consecutive status read failures tolerated
            analytics_ttl: Seconds terminal analytics stay cached
            retention: Seconds terminal entries stay queryable in memory
            clock: Time source in seconds
        """
        self.chain = chain
        self.cache = cache
        self.store = store
        self.events = events or EventChannel("transactions")
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.max_poll_errors = max_poll_errors
        self.analytics_ttl = analytics_ttl
        self.retention = retention
        self._clock = clock

        self._transactions: Dict[str, TransactionState] = {}

        # Control flags
        self._running = False
        self._monitor_task: Optional[asyncio.Task] = None

        self._logger = logger.bind(component="transaction_monitor")

    def track(self, tx_hash: str, analytics: TradeAnalytics) -> TransactionState:
        """Register a freshly submitted transaction as PENDING"""
        analytics.status = TradeStatus.PENDING
        analytics.tx_hash = tx_hash
        state = TransactionState(
            hash=tx_hash,
            status=TradeStatus.PENDING,
            submitted_at=self._clock(),
            analytics=analytics,
        )
        self._transactions[tx_hash] = state
        metrics.transactions_active.set(self.active_count())

        self._logger.info("transaction_tracked", tx_hash=tx_hash)
        self.events.emit(TRANSACTION_SUBMITTED, {"hash": tx_hash, "analytics": analytics})
        return state

    @property
    def is_running(self) -> bool:
        return self._running

    def get_transaction(self, tx_hash: str) -> Optional[TransactionState]:
        return self._transactions.get(tx_hash)

    def active_count(self) -> int:
        """Number of transactions still PENDING"""
        return sum(1 for state in self._transactions.values() if state.is_pending)

    async def poll_once(self) -> int:
        """
        Check every pending transaction once, then sweep old terminal entries.

        Returns:
            Number of transactions checked
        """
        pending = [state for state in self._transactions.values() if state.is_pending]
        if pending:
            await asyncio.gather(*(self._check(state) for state in pending))

        self.sweep()
        metrics.transactions_active.set(self.active_count())
        return len(pending)

    async def _check(self, state: TransactionState) -> None:
        try:
            receipt = await self.chain.get_transaction_status(state.hash)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            state.retry_count += 1
            state.last_error = str(e)
            self._logger.warning(
                "transaction_status_failed",
                tx_hash=state.hash,
                retry_count=state.retry_count,
                error=str(e),
                error_type=type(e).__name__,
            )
            if state.retry_count > self.max_poll_errors:
                await self._finish(state, TradeStatus.FAILED, "poll_errors")
                self.events.emit(
                    TRANSACTION_FAILED,
                    {"hash": state.hash, "error": state.last_error, "analytics": state.analytics},
                )
            return

        state.retry_count = 0
        now = self._clock()

        if receipt.status == ReceiptStatus.ACCEPTED:
            await self._finish(state, TradeStatus.COMPLETED, "completed")
            self.events.emit(
                TRANSACTION_COMPLETED,
                {"hash": state.hash, "receipt": receipt, "analytics": state.analytics},
            )
        elif receipt.status == ReceiptStatus.REJECTED:
            state.last_error = receipt.revert_reason or REJECTED_ERROR
            await self._finish(state, TradeStatus.FAILED, "rejected")
            self.events.emit(
                TRANSACTION_FAILED,
                {"hash": state.hash, "error": state.last_error, "analytics": state.analytics},
            )
        elif now - state.submitted_at >= self.timeout:
            state.last_error = TIMEOUT_ERROR
            await self._finish(state, TradeStatus.FAILED, "timeout")
            self.events.emit(
                TRANSACTION_TIMEOUT,
                {"hash": state.hash, "analytics": state.analytics},
            )

    async def _finish(self, state: TransactionState, status: TradeStatus, outcome: str) -> None:
        now = self._clock()
        state.status = status
        state.finished_at = now
        state.analytics.status = status
        state.analytics.execution_time = now - state.submitted_at

        metrics.transactions_terminal.labels(outcome=outcome).inc()
        self._logger.info(
            "transaction_finished",
            tx_hash=state.hash,
            status=status.value,
            outcome=outcome,
            execution_time=round(state.analytics.execution_time, 3),
            error=state.last_error,
        )

        self.cache.set(ANALYTICS_PREFIX + state.hash, state.analytics, self.analytics_ttl)
        if self.store is not None:
            await self.store.save_trade_analytics(state.analytics, int(self.analytics_ttl))

    def sweep(self) -> int:
        """Remove terminal entries older than the retention window"""
        now = self._clock()
        expired = [
            tx_hash
            for tx_hash, state in self._transactions.items()
            if not state.is_pending and now - state.submitted_at > self.retention
        ]
        for tx_hash in expired:
            del self._transactions[tx_hash]
        if expired:
            self._logger.debug("transactions_swept", removed=len(expired))
        return len(expired)

    async def get_transaction_analytics(
        self, start_time: float, end_time: float
    ) -> List[TradeAnalytics]:
        """
        Terminal trade analytics with start_time <= timestamp <= end_time.

        Returns:
            Trades ordered newest first
        """
        found: Dict[str, TradeAnalytics] = {}
        for key in self.cache.keys(ANALYTICS_PREFIX):
            analytics = self.cache.peek(key)
            if analytics is not None and start_time <= analytics.timestamp <= end_time:
                found[key] = analytics

        if self.store is not None:
            for analytics in await self.store.get_trade_analytics(start_time, end_time):
                found.setdefault(ANALYTICS_PREFIX + (analytics.tx_hash or str(analytics.timestamp)), analytics)

        return sorted(found.values(), key=lambda a: a.timestamp, reverse=True)

    async def start(self) -> None:
        """Start the polling loop"""
        if self._running:
            self._logger.warning("transaction_monitor_already_running")
            return

        self._running = True
        self._monitor_task = asyncio.create_task(self._monitor_loop())
        self._logger.info("transaction_monitor_started", poll_interval=self.poll_interval)

    async def stop(self) -> None:
        """Stop the polling loop; in-flight status reads are abandoned"""
        if not self._running:
            self._logger.warning("transaction_monitor_not_running")
            return

        self._running = False

        if self._monitor_task:
            self._monitor_task.cancel()
            try:
                await self._monitor_task
            except asyncio.CancelledError:
                self._logger.info("transaction_monitor_task_cancelled")

        self._logger.info("transaction_monitor_stopped")

    async def _monitor_loop(self) -> None:
        self._logger.info("transaction_monitor_loop_started")

        try:
            while self._running:
                try:
                    await self.poll_once()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    self._logger.error(
                        "transaction_monitor_loop_error",
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                await asyncio.sleep(self.poll_interval)

        except asyncio.CancelledError:
            self._logger.info("transaction_monitor_loop_cancelled")
            raise
        finally:
            self._logger.info("transaction_monitor_loop_exited")

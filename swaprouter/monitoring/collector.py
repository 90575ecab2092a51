"""Periodic system metrics collection"""

import asyncio
import time
from collections import Counter
from typing import Any, Callable, Optional, Protocol

import structlog

from swaprouter.cache.store import AnalyticsStore
from swaprouter.cache.ttl_cache import TTLCache
from swaprouter.monitoring import metrics
from swaprouter.monitoring.alerts import AlertManager
from swaprouter.monitoring.models import SystemMetrics
from swaprouter.utils.events import (
    CACHE_ERROR,
    CACHE_HIT,
    CACHE_MISS,
    METRICS_COLLECTED,
    TRANSACTION_COMPLETED,
    TRANSACTION_FAILED,
    TRANSACTION_SUBMITTED,
    TRANSACTION_TIMEOUT,
    EventChannel,
)

logger = structlog.get_logger()

SYSTEM_METRICS_PREFIX = "system_metrics:"


class BlockNumberReader(Protocol):
    async def get_block_number(self) -> int: ...


class ActiveTransactionCounter(Protocol):
    def active_count(self) -> int: ...


class MetricsCollector:
    """
    Builds a SystemMetrics snapshot on a fixed interval.

    Request and error counters are fed by cache and transaction monitor
    events once attach() has subscribed to their channels. Each snapshot is
    cached, exported to Prometheus, checked against system alerts and
    emitted as metricsCollected.
    """

    def __init__(
        self,
        chain: BlockNumberReader,
        cache: TTLCache,
        transactions: ActiveTransactionCounter,
        alerts: Optional[AlertManager] = None,
        store: Optional[AnalyticsStore] = None,
        events: Optional[EventChannel] = None,
        interval: float = 60.0,
        snapshot_ttl: float = 86400.0,
        clock: Callable[[], float] = time.time,
    ):
        self.chain = chain
        self.cache = cache
        self.transactions = transactions
        self.alerts = alerts
        self.store = store
        self.events = events or EventChannel("metrics")
        self.interval = interval
        self.snapshot_ttl = snapshot_ttl
        self._clock = clock

        self.request_counts: Counter = Counter()
        self.error_counts: Counter = Counter()
        self.latest: Optional[SystemMetrics] = None

        self._running = False
        self._collect_task: Optional[asyncio.Task] = None
        self._logger = logger.bind(component="metrics_collector")

    def attach(self, cache_events: EventChannel, transaction_events: EventChannel) -> None:
        """Subscribe the counters to cache and transaction lifecycle events"""
        cache_events.on(CACHE_HIT, lambda *_: self.record_request("cache_hits"))
        cache_events.on(CACHE_MISS, lambda *_: self.record_request("cache_misses"))
        cache_events.on(CACHE_ERROR, lambda *_: self.record_error("cache"))

        transaction_events.on(TRANSACTION_SUBMITTED, lambda *_: self.record_request("transactions"))
        transaction_events.on(
            TRANSACTION_COMPLETED, lambda *_: self.record_request("completed_transactions")
        )
        transaction_events.on(TRANSACTION_FAILED, self._on_transaction_failed)
        transaction_events.on(TRANSACTION_TIMEOUT, self._on_transaction_timeout)

    def _on_transaction_failed(self, *_: Any) -> None:
        self.record_request("failed_transactions")
        self.record_error("transaction")

    def _on_transaction_timeout(self, *_: Any) -> None:
        self.record_request("timeout_transactions")
        self.record_error("timeout")

    def record_request(self, kind: str) -> None:
        self.request_counts[kind] += 1

    def record_error(self, kind: str) -> None:
        self.error_counts[kind] += 1

    def cache_hit_rate(self) -> float:
        hits = self.request_counts["cache_hits"]
        total = hits + self.request_counts["cache_misses"]
        return hits / total * 100 if total else 0.0

    def error_rate(self) -> float:
        total = sum(self.request_counts.values())
        return sum(self.error_counts.values()) / total * 100 if total else 0.0

    async def measure_api_latency(self) -> float:
        """Milliseconds taken by a block number read, or -1 if it failed"""
        start = time.perf_counter()
        try:
            await self.chain.get_block_number()
        except Exception as e:
            self._logger.warning(
                "api_latency_probe_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            return -1.0
        return (time.perf_counter() - start) * 1000

    async def collect(self) -> SystemMetrics:
        """Take, publish and return one snapshot"""
        snapshot = SystemMetrics(
            timestamp=self._clock(),
            cache_hit_rate=self.cache_hit_rate(),
            api_latency=await self.measure_api_latency(),
            error_rate=self.error_rate(),
            active_transactions=self.transactions.active_count(),
        )
        self.latest = snapshot

        self.cache.set(f"{SYSTEM_METRICS_PREFIX}{int(snapshot.timestamp)}", snapshot, self.snapshot_ttl)
        if self.store is not None:
            await self.store.save_system_metrics(snapshot, int(self.snapshot_ttl))

        metrics.system_cache_hit_rate.set(snapshot.cache_hit_rate)
        metrics.system_api_latency.set(snapshot.api_latency)
        metrics.system_error_rate.set(snapshot.error_rate)
        metrics.transactions_active.set(snapshot.active_transactions)

        if self.alerts is not None:
            await self.alerts.check_system_alerts(snapshot)

        self._logger.info(
            "system_metrics_collected",
            cache_hit_rate=round(snapshot.cache_hit_rate, 2),
            api_latency_ms=round(snapshot.api_latency, 2),
            error_rate=round(snapshot.error_rate, 2),
            active_transactions=snapshot.active_transactions,
        )
        self.events.emit(METRICS_COLLECTED, snapshot)
        return snapshot

    def history(self, since: Optional[float] = None) -> list:
        """Cached snapshots, oldest first"""
        snapshots = [self.cache.peek(key) for key in self.cache.keys(SYSTEM_METRICS_PREFIX)]
        return sorted(
            (s for s in snapshots if s is not None and (since is None or s.timestamp >= since)),
            key=lambda s: s.timestamp,
        )

    async def start(self) -> None:
        """Start periodic collection"""
        if self._running:
            self._logger.warning("metrics_collector_already_running")
            return

        self._running = True
        self._collect_task = asyncio.create_task(self._collect_loop())
        self._logger.info("metrics_collector_started", interval=self.interval)

    async def stop(self) -> None:
        """Stop periodic collection"""
        if not self._running:
            return

        self._running = False
        if self._collect_task:
            self._collect_task.cancel()
            try:
                await self._collect_task
            except asyncio.CancelledError:
                pass

        self._logger.info("metrics_collector_stopped")

    async def _collect_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.interval)
            try:
                self.cache.cleanup()
                await self.collect()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._logger.error(
                    "metrics_collection_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                )

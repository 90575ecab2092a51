"""Tests for the transaction monitor"""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, Mock

import pytest

from conftest import E18, ETH, USDC
from swaprouter.cache.store import AnalyticsStore
from swaprouter.chains.models import ReceiptStatus, TransactionReceiptStatus
from swaprouter.execution.models import TradeAnalytics, TradeStatus
from swaprouter.monitors.transaction_monitor import ANALYTICS_PREFIX, TransactionMonitor
from swaprouter.utils.events import (
    TRANSACTION_COMPLETED,
    TRANSACTION_FAILED,
    TRANSACTION_SUBMITTED,
    TRANSACTION_TIMEOUT,
)

PENDING = TransactionReceiptStatus(status=ReceiptStatus.PENDING)
ACCEPTED = TransactionReceiptStatus(status=ReceiptStatus.ACCEPTED, block_number=100, gas_used=120_000)
REJECTED = TransactionReceiptStatus(status=ReceiptStatus.REJECTED, revert_reason="INSUFFICIENT_OUTPUT_AMOUNT")


def make_analytics(timestamp: float, tx_hash: str = "0xabc") -> TradeAnalytics:
    return TradeAnalytics(
        timestamp=timestamp,
        token_in=ETH,
        token_out=USDC,
        amount_in=E18,
        amount_out=2000 * 10**6,
        price_impact=Decimal("0.1"),
        gas_cost=110_000,
        route=[ETH, USDC],
        tx_hash=tx_hash,
    )


@pytest.fixture
def chain():
    mock = Mock()
    mock.get_transaction_status = AsyncMock(return_value=PENDING)
    return mock


@pytest.fixture
def monitor(chain, cache, clock):
    return TransactionMonitor(chain, cache, poll_interval=5, timeout=3600, clock=clock)


def listen(monitor, event):
    listener = Mock()
    monitor.events.on(event, listener)
    return listener


class TestTrack:
    """Test registering transactions"""

    def test_track_registers_pending(self, monitor, clock):
        submitted = listen(monitor, TRANSACTION_SUBMITTED)
        analytics = make_analytics(clock.now)

        state = monitor.track("0xabc", analytics)

        assert state.status == TradeStatus.PENDING
        assert state.submitted_at == clock.now
        assert monitor.get_transaction("0xabc") is state
        assert monitor.active_count() == 1
        submitted.assert_called_once_with({"hash": "0xabc", "analytics": analytics})

    def test_state_to_dict(self, monitor, clock):
        state = monitor.track("0xabc", make_analytics(clock.now))

        data = state.to_dict()

        assert data["hash"] == "0xabc"
        assert data["status"] == "PENDING"
        assert data["analytics"]["amount_in"] == str(E18)


class TestPolling:
    """Test status transitions"""

    @pytest.mark.asyncio
    async def test_accepted_completes_and_caches_analytics(self, monitor, chain, cache, clock):
        completed = listen(monitor, TRANSACTION_COMPLETED)
        monitor.track("0xabc", make_analytics(clock.now))
        chain.get_transaction_status = AsyncMock(return_value=ACCEPTED)
        clock.advance(12)

        assert await monitor.poll_once() == 1

        state = monitor.get_transaction("0xabc")
        assert state.status == TradeStatus.COMPLETED
        assert state.analytics.execution_time == 12
        assert cache.peek(ANALYTICS_PREFIX + "0xabc").status == TradeStatus.COMPLETED
        payload = completed.call_args.args[0]
        assert payload["hash"] == "0xabc"
        assert payload["receipt"] == ACCEPTED
        assert monitor.active_count() == 0

    @pytest.mark.asyncio
    async def test_rejected_fails_with_revert_reason(self, monitor, chain, clock):
        failed = listen(monitor, TRANSACTION_FAILED)
        monitor.track("0xabc", make_analytics(clock.now))
        chain.get_transaction_status = AsyncMock(return_value=REJECTED)

        await monitor.poll_once()

        state = monitor.get_transaction("0xabc")
        assert state.status == TradeStatus.FAILED
        assert failed.call_args.args[0]["error"] == "INSUFFICIENT_OUTPUT_AMOUNT"

    @pytest.mark.asyncio
    async def test_pending_past_timeout_emits_timeout(self, monitor, clock):
        """Test a transaction still pending after an hour is failed with a timeout event"""
        timeout = listen(monitor, TRANSACTION_TIMEOUT)
        analytics = make_analytics(clock.now)
        monitor.track("0xabc", analytics)

        clock.advance(3599)
        await monitor.poll_once()
        assert monitor.get_transaction("0xabc").is_pending
        timeout.assert_not_called()

        clock.advance(1)
        await monitor.poll_once()

        state = monitor.get_transaction("0xabc")
        assert state.status == TradeStatus.FAILED
        assert state.last_error == "Transaction timeout"
        timeout.assert_called_once_with({"hash": "0xabc", "analytics": analytics})
        assert analytics.status == TradeStatus.FAILED

    @pytest.mark.asyncio
    async def test_terminal_transactions_are_not_polled_again(self, monitor, chain, clock):
        monitor.track("0xabc", make_analytics(clock.now))
        chain.get_transaction_status = AsyncMock(return_value=ACCEPTED)
        await monitor.poll_once()

        assert await monitor.poll_once() == 0
        assert chain.get_transaction_status.await_count == 1

    @pytest.mark.asyncio
    async def test_repeated_status_errors_fail_transaction(self, monitor, chain, clock):
        failed = listen(monitor, TRANSACTION_FAILED)
        monitor.track("0xabc", make_analytics(clock.now))
        chain.get_transaction_status = AsyncMock(side_effect=ConnectionError("node down"))

        for _ in range(5):
            await monitor.poll_once()
        assert monitor.get_transaction("0xabc").is_pending
        assert monitor.get_transaction("0xabc").retry_count == 5

        await monitor.poll_once()

        assert monitor.get_transaction("0xabc").status == TradeStatus.FAILED
        assert failed.call_args.args[0]["error"] == "node down"

    @pytest.mark.asyncio
    async def test_successful_read_resets_error_count(self, monitor, chain, clock):
        monitor.track("0xabc", make_analytics(clock.now))
        chain.get_transaction_status = AsyncMock(side_effect=[ConnectionError("x"), PENDING])

        await monitor.poll_once()
        await monitor.poll_once()

        assert monitor.get_transaction("0xabc").retry_count == 0

    @pytest.mark.asyncio
    async def test_terminal_analytics_mirrored_to_store(self, chain, cache, clock):
        store = Mock(spec=AnalyticsStore)
        store.save_trade_analytics = AsyncMock()
        monitor = TransactionMonitor(chain, cache, store=store, analytics_ttl=600, clock=clock)
        analytics = make_analytics(clock.now)
        monitor.track("0xabc", analytics)
        chain.get_transaction_status = AsyncMock(return_value=ACCEPTED)

        await monitor.poll_once()

        store.save_trade_analytics.assert_awaited_once_with(analytics, 600)


class TestRetention:
    """Test sweeping and analytics queries"""

    @pytest.mark.asyncio
    async def test_sweep_drops_old_terminal_entries(self, chain, cache, clock):
        monitor = TransactionMonitor(chain, cache, retention=100, clock=clock)
        monitor.track("0xdone", make_analytics(clock.now, "0xdone"))
        chain.get_transaction_status = AsyncMock(return_value=ACCEPTED)
        await monitor.poll_once()

        chain.get_transaction_status = AsyncMock(return_value=PENDING)
        monitor.track("0xpending", make_analytics(clock.now, "0xpending"))
        clock.advance(101)

        await monitor.poll_once()

        assert monitor.get_transaction("0xdone") is None
        assert monitor.get_transaction("0xpending") is not None

    @pytest.mark.asyncio
    async def test_analytics_window_newest_first(self, monitor, chain, clock):
        chain.get_transaction_status = AsyncMock(return_value=ACCEPTED)
        base = clock.now
        for offset, tx_hash in [(0, "0x1"), (10, "0x2"), (20, "0x3")]:
            monitor.track(tx_hash, make_analytics(base + offset, tx_hash))
        await monitor.poll_once()

        trades = await monitor.get_transaction_analytics(base + 5, base + 20)

        assert [t.tx_hash for t in trades] == ["0x3", "0x2"]

    @pytest.mark.asyncio
    async def test_analytics_merges_store_results(self, chain, cache, clock):
        store = Mock(spec=AnalyticsStore)
        store.save_trade_analytics = AsyncMock()
        older = make_analytics(clock.now - 100, "0xold")
        store.get_trade_analytics = AsyncMock(return_value=[older])
        monitor = TransactionMonitor(chain, cache, store=store, clock=clock)
        monitor.track("0xnew", make_analytics(clock.now, "0xnew"))
        chain.get_transaction_status = AsyncMock(return_value=ACCEPTED)
        await monitor.poll_once()

        trades = await monitor.get_transaction_analytics(clock.now - 1000, clock.now)

        assert [t.tx_hash for t in trades] == ["0xnew", "0xold"]


class TestLifecycle:
    """Test start/stop of the polling loop"""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, chain, cache):
        monitor = TransactionMonitor(chain, cache, poll_interval=0.01)
        monitor.track("0xabc", make_analytics(0.0))

        await monitor.start()
        assert monitor.is_running
        await asyncio.sleep(0.05)
        await monitor.stop()

        assert not monitor.is_running
        assert chain.get_transaction_status.await_count >= 1

    @pytest.mark.asyncio
    async def test_double_start_is_ignored(self, monitor):
        await monitor.start()
        task = monitor._monitor_task
        await monitor.start()

        assert monitor._monitor_task is task
        await monitor.stop()

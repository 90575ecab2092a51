"""Tests for the FastAPI REST API

Chain access and quoting are mocked; the transaction monitor, trading
aggregates and metrics collector run for real on an in-memory cache.
"""

from decimal import Decimal
from unittest.mock import AsyncMock, Mock

import pytest
from fastapi.testclient import TestClient

from swaprouter.api.app import ApiServices, create_app
from swaprouter.cache.store import AnalyticsStore
from swaprouter.cache.ttl_cache import TTLCache
from swaprouter.chains.connector import ChainConnector
from swaprouter.chains.tokens import TokenRegistry
from swaprouter.config.models import Settings
from swaprouter.errors import NoPathFound, RetryExhausted
from swaprouter.execution.models import SwapEstimate, TradeAnalytics, TradeStatus
from swaprouter.execution.quote_estimator import QuoteEstimator
from swaprouter.monitoring.alerts import AlertManager
from swaprouter.monitoring.collector import MetricsCollector
from swaprouter.monitoring.trading import TradingAnalytics
from swaprouter.monitors.transaction_monitor import ANALYTICS_PREFIX, TransactionMonitor
from swaprouter.routing.models import SwapPath

# Test API keys
TEST_API_KEY_VALID = "test-api-key-12345"
TEST_API_KEY_INVALID = "invalid-key-99999"
HEADERS = {"X-API-Key": TEST_API_KEY_VALID}

E18 = 10**18
REFERENCE_OUTPUT = (10 * E18 * 997 * 2_000_000 * 10**6) // (1000 * E18 * 1000 + 10 * E18 * 997)


def trade(tx_hash, timestamp, status=TradeStatus.COMPLETED, amount_out=2000 * 10**6):
    return TradeAnalytics(
        timestamp=timestamp,
        token_in="ETH",
        token_out="USDC",
        amount_in=E18,
        amount_out=amount_out,
        price_impact=Decimal("0.5"),
        gas_cost=110_000,
        route=["ETH", "USDC"],
        status=status,
        tx_hash=tx_hash,
    )


@pytest.fixture
def settings(monkeypatch):
    """Create test settings"""
    monkeypatch.setenv("RPC_URLS", "https://rpc.example")
    monkeypatch.setenv("API_KEYS", f"{TEST_API_KEY_VALID},another-key")
    return Settings(_env_file=None)


@pytest.fixture
def tokens():
    return TokenRegistry()


@pytest.fixture
def services(tokens):
    chain = Mock(spec=ChainConnector)
    chain.get_block_number = AsyncMock(return_value=19_000_000)
    chain.get_transaction_status = AsyncMock()

    cache = TTLCache()
    monitor = TransactionMonitor(chain, cache)
    eth, usdc = tokens.get("ETH").address, tokens.get("USDC").address

    estimator = Mock(spec=QuoteEstimator)
    estimator.estimate_swap = AsyncMock(
        return_value=SwapEstimate(
            expected_output=REFERENCE_OUTPUT,
            minimum_output=REFERENCE_OUTPUT * 199 // 200,
            price_impact=Decimal(1),
            path=SwapPath(
                tokens=(eth, usdc),
                pools=("0xB4e16d0168e52d35CaCD2c6185b44281Ec28C9Dc",),
                fees=(Decimal("0.003"),),
                amounts=(10 * E18, REFERENCE_OUTPUT),
                expected_output=REFERENCE_OUTPUT,
                price_impact=Decimal(1),
            ),
            gas_estimate=110_000,
        )
    )

    return ApiServices(
        chain=chain,
        tokens=tokens,
        estimator=estimator,
        monitor=monitor,
        trading=TradingAnalytics(monitor),
        collector=MetricsCollector(chain, cache, monitor),
        alerts=AlertManager(),
    )


@pytest.fixture
def client(settings, services):
    """Create test client"""
    return TestClient(create_app(settings, services))


class TestAuthentication:
    """Test API key authentication"""

    def test_missing_api_key(self, client):
        """Test request without API key returns 401"""
        response = client.get("/api/v1/quote", params={"token_in": "ETH", "token_out": "USDC", "amount": "1"})
        assert response.status_code == 401
        assert "Missing API key" in response.json()["detail"]

    def test_invalid_api_key(self, client):
        """Test request with invalid API key returns 401"""
        response = client.get(
            "/api/v1/trades", headers={"X-API-Key": TEST_API_KEY_INVALID}
        )
        assert response.status_code == 401
        assert "Invalid API key" in response.json()["detail"]

    def test_health_is_public(self, client):
        assert client.get("/api/v1/health").status_code == 200


class TestHealthEndpoint:
    """Test health check endpoint"""

    def test_healthy(self, client):
        data = client.get("/api/v1/health").json()

        assert data["status"] == "healthy"
        assert data["chain"] == "connected"
        assert data["block_number"] == 19_000_000
        assert data["redis"] == "disabled"
        assert data["active_transactions"] == 0

    def test_unhealthy_when_rpc_down(self, client, services):
        services.chain.get_block_number = AsyncMock(side_effect=ConnectionError("down"))

        response = client.get("/api/v1/health")

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"

    def test_redis_status(self, settings, services):
        services.store = Mock(spec=AnalyticsStore)
        services.store.client = None
        client = TestClient(create_app(settings, services))

        assert client.get("/api/v1/health").json()["redis"] == "disconnected"


class TestQuoteEndpoint:
    """Test swap quotes"""

    def test_reference_quote(self, client, services, tokens):
        """Test 10 ETH to USDC with 0.5% slippage"""
        response = client.get(
            "/api/v1/quote",
            params={"token_in": "ETH", "token_out": "USDC", "amount": "10"},
            headers=HEADERS,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["token_in"] == "ETH"
        assert data["token_out"] == "USDC"
        assert data["amount_in_raw"] == str(10 * E18)
        assert data["expected_output_raw"] == str(REFERENCE_OUTPUT)
        assert data["expected_output"].startswith("19743.")
        assert data["minimum_output_raw"] == str(REFERENCE_OUTPUT * 199 // 200)
        assert data["price_impact"] == "1"
        assert data["route"] == ["ETH", "USDC"]
        assert data["hops"][0]["fee"] == "0.003"

        params = services.estimator.estimate_swap.await_args.args[0]
        assert params.token_in == tokens.get("ETH").address
        assert params.slippage_tolerance == Decimal("0.005")
        assert params.max_hops == 3

    def test_unknown_token(self, client):
        response = client.get(
            "/api/v1/quote",
            params={"token_in": "ETH", "token_out": "NOPE", "amount": "1"},
            headers=HEADERS,
        )
        assert response.status_code == 400

    def test_invalid_amount(self, client):
        response = client.get(
            "/api/v1/quote",
            params={"token_in": "ETH", "token_out": "USDC", "amount": "lots"},
            headers=HEADERS,
        )
        assert response.status_code == 400

    @pytest.mark.parametrize("amount", ["1e200", "1e60"])
    def test_oversized_amount(self, client, amount):
        response = client.get(
            "/api/v1/quote",
            params={"token_in": "ETH", "token_out": "USDC", "amount": amount},
            headers=HEADERS,
        )
        assert response.status_code == 400
        assert "too large" in response.json()["detail"]

    def test_no_path(self, client, services):
        services.estimator.estimate_swap = AsyncMock(side_effect=NoPathFound("a", "b"))

        response = client.get(
            "/api/v1/quote",
            params={"token_in": "ETH", "token_out": "DAI", "amount": "1"},
            headers=HEADERS,
        )

        assert response.status_code == 404
        assert response.json()["detail"] == "No valid path found from a to b"

    def test_liquidity_unavailable(self, client, services):
        services.estimator.estimate_swap = AsyncMock(side_effect=RetryExhausted(3, ConnectionError()))

        response = client.get(
            "/api/v1/quote",
            params={"token_in": "ETH", "token_out": "USDC", "amount": "1"},
            headers=HEADERS,
        )

        assert response.status_code == 503

    def test_max_hops_bounds(self, client):
        response = client.get(
            "/api/v1/quote",
            params={"token_in": "ETH", "token_out": "USDC", "amount": "1", "max_hops": 5},
            headers=HEADERS,
        )
        assert response.status_code == 422


class TestTransactionEndpoints:
    """Test transaction state and trade history"""

    def test_get_tracked_transaction(self, client, services):
        services.monitor.track("0xabc", trade("0xabc", 1.0, status=TradeStatus.PENDING))

        response = client.get("/api/v1/transactions/0xabc", headers=HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "PENDING"
        assert data["analytics"]["amount_in"] == str(E18)

    def test_unknown_transaction(self, client):
        response = client.get("/api/v1/transactions/0xmissing", headers=HEADERS)
        assert response.status_code == 404

    def test_trades_window_and_filter(self, client, services):
        cache = services.monitor.cache
        cache.set(ANALYTICS_PREFIX + "0x1", trade("0x1", 100.0))
        cache.set(ANALYTICS_PREFIX + "0x2", trade("0x2", 200.0, status=TradeStatus.FAILED))
        cache.set(ANALYTICS_PREFIX + "0x3", trade("0x3", 5000.0))

        response = client.get(
            "/api/v1/trades", params={"start_time": 0, "end_time": 1000}, headers=HEADERS
        )
        assert [t["tx_hash"] for t in response.json()] == ["0x2", "0x1"]

        response = client.get(
            "/api/v1/trades",
            params={"start_time": 0, "end_time": 1000, "status": "COMPLETED"},
            headers=HEADERS,
        )
        assert [t["tx_hash"] for t in response.json()] == ["0x1"]

    def test_trades_invalid_window(self, client):
        response = client.get(
            "/api/v1/trades", params={"start_time": 10, "end_time": 5}, headers=HEADERS
        )
        assert response.status_code == 400


class TestAnalyticsEndpoints:
    """Test trading and system metrics"""

    def test_trading_metrics(self, client, services):
        cache = services.monitor.cache
        cache.set(ANALYTICS_PREFIX + "0x1", trade("0x1", 100.0))
        cache.set(ANALYTICS_PREFIX + "0x2", trade("0x2", 200.0, status=TradeStatus.FAILED))

        response = client.get(
            "/api/v1/analytics/trading",
            params={"start_time": 0, "end_time": 1000},
            headers=HEADERS,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["total_trades"] == 2
        assert data["success_rate"] == 50.0
        assert data["total_volume"] == str(E18)
        assert data["best_route"] == ["ETH", "USDC"]

    def test_system_metrics_collected_on_demand(self, client, services):
        response = client.get("/api/v1/metrics/system", headers=HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["active_transactions"] == 0
        assert services.collector.latest is not None


class TestAlertEndpoints:
    """Test alert listing and cancellation"""

    def test_list_alerts_by_kind(self, client, services):
        price_id = services.alerts.add_price_alert("ETH", "ABOVE", 2000, Mock())
        system_id = services.alerts.add_system_alert("error_rate", ">", 5.0, Mock())

        everything = client.get("/api/v1/alerts", headers=HEADERS).json()
        assert [a["id"] for a in everything] == [price_id, system_id]

        prices = client.get("/api/v1/alerts", params={"kind": "price"}, headers=HEADERS).json()
        assert len(prices) == 1
        assert prices[0]["token"] == "ETH"
        assert prices[0]["condition"] == "ABOVE"
        assert prices[0]["target"] == "2000"

    def test_cancel_alert(self, client, services):
        alert_id = services.alerts.add_price_alert("ETH", "BELOW", 1500, Mock())

        response = client.delete(f"/api/v1/alerts/{alert_id}", headers=HEADERS)

        assert response.status_code == 204
        assert services.alerts.get_alert(alert_id) is None
        assert client.delete(f"/api/v1/alerts/{alert_id}", headers=HEADERS).status_code == 404

    def test_requires_api_key(self, client):
        assert client.get("/api/v1/alerts").status_code == 401


class TestMetricsAndWebSocket:
    def test_prometheus_metrics(self, client):
        response = client.get("/metrics")

        assert response.status_code == 200
        assert "api_requests_total" in response.text or "cache_requests_total" in response.text

    def test_websocket_subscribe_and_ping(self, client):
        with client.websocket_connect("/ws/v1/events") as websocket:
            hello = websocket.receive_json()
            assert hello["type"] == "connected"
            assert hello["channels"] == ["swaps", "transactions", "metrics", "alerts"]

            websocket.send_json({"type": "subscribe", "channel": "transactions"})
            assert websocket.receive_json()["type"] == "subscribed"

            websocket.send_json({"type": "ping"})
            assert websocket.receive_json()["type"] == "pong"

            websocket.send_json({"type": "subscribe", "channel": "opportunities"})
            assert websocket.receive_json()["type"] == "error"

"""Tests for price observation"""

from decimal import Decimal
from unittest.mock import AsyncMock, Mock

import pytest

from swaprouter.chains.tokens import TokenRegistry
from swaprouter.errors import NoPathFound
from swaprouter.monitoring.alerts import AlertManager, PriceCondition
from swaprouter.monitoring.price_watcher import PriceWatcher
from swaprouter.routing.path_finder import PathFinder


@pytest.fixture
def tokens():
    return TokenRegistry()


@pytest.fixture
def path_finder():
    finder = Mock(spec=PathFinder)
    finder.find_best_path = AsyncMock(return_value=Mock(expected_output=2_001_500_000))
    return finder


class TestPriceWatcher:
    """Test price observations and alert feeding"""

    def test_quote_token_is_not_watched(self, path_finder, tokens):
        watcher = PriceWatcher(path_finder, tokens, AlertManager(), ["ETH", "usdc", "DAI"])
        assert watcher.watched == ["ETH", "DAI"]

    @pytest.mark.asyncio
    async def test_price_scaled_by_decimals(self, path_finder, tokens):
        watcher = PriceWatcher(path_finder, tokens, AlertManager(), ["ETH"])

        price = await watcher.get_price("ETH")

        assert price == Decimal("2001.5")
        eth, usdc = tokens.get("ETH"), tokens.get("USDC")
        path_finder.find_best_path.assert_awaited_once_with(eth.address, usdc.address, 10**18)

    @pytest.mark.asyncio
    async def test_observation_triggers_alert(self, path_finder, tokens):
        alerts = AlertManager()
        callback = Mock()
        alert_id = alerts.add_price_alert("ETH", PriceCondition.ABOVE, 2000, callback)
        watcher = PriceWatcher(path_finder, tokens, alerts, ["ETH"])

        assert await watcher.observe_once() == [alert_id]
        assert watcher.prices["ETH"] == Decimal("2001.5")
        callback.assert_called_once()

    @pytest.mark.asyncio
    async def test_unroutable_token_is_skipped(self, path_finder, tokens):
        path_finder.find_best_path = AsyncMock(side_effect=NoPathFound("a", "b"))
        watcher = PriceWatcher(path_finder, tokens, AlertManager(), ["ETH", "NOPE"])

        assert await watcher.observe_once() == []
        assert watcher.prices == {}

    @pytest.mark.asyncio
    async def test_start_without_tokens_is_noop(self, path_finder, tokens):
        watcher = PriceWatcher(path_finder, tokens, AlertManager(), ["USDC"])

        await watcher.start()

        assert watcher._watch_task is None

"""Periodic price observations that feed price alerts"""

import asyncio
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

import structlog

from swaprouter.chains.tokens import TokenRegistry
from swaprouter.errors import SwapRouterError
from swaprouter.monitoring.alerts import AlertManager
from swaprouter.routing.path_finder import PathFinder

logger = structlog.get_logger()


class PriceWatcher:
    """
    Quotes one whole unit of each watched token in the quote token and
    passes the resulting price to the alert manager.
    """

    def __init__(
        self,
        path_finder: PathFinder,
        tokens: TokenRegistry,
        alerts: AlertManager,
        watched: Sequence[str],
        quote_token: str = "USDC",
        interval: float = 30.0,
    ):
        self.path_finder = path_finder
        self.tokens = tokens
        self.alerts = alerts
        self.watched = [symbol for symbol in watched if symbol.upper() != quote_token.upper()]
        self.quote_token = quote_token
        self.interval = interval
        self.prices: Dict[str, Decimal] = {}

        self._running = False
        self._watch_task: Optional[asyncio.Task] = None
        self._logger = logger.bind(component="price_watcher", quote_token=quote_token)

    async def get_price(self, symbol: str) -> Decimal:
        """
        Price of one unit of symbol in the quote token, including fees and impact.

        Raises:
            NoPathFound: No route between the token and the quote token
        """
        base = self.tokens.get(symbol)
        quote = self.tokens.get(self.quote_token)
        path = await self.path_finder.find_best_path(
            base.address, quote.address, 10 ** base.decimals
        )
        return Decimal(path.expected_output).scaleb(-quote.decimals)

    async def observe_once(self) -> List[str]:
        """
        Price every watched token once.

        Returns:
            Ids of alerts that fired
        """
        fired: List[str] = []
        for symbol in self.watched:
            try:
                price = await self.get_price(symbol)
            except (SwapRouterError, KeyError) as e:
                self._logger.warning("price_observation_failed", token=symbol, error=str(e))
                continue

            self.prices[symbol] = price
            self._logger.debug("price_observed", token=symbol, price=str(price))
            fired.extend(await self.alerts.on_price(symbol, price))
        return fired

    async def start(self) -> None:
        if self._running or not self.watched:
            return

        self._running = True
        self._watch_task = asyncio.create_task(self._watch_loop())
        self._logger.info("price_watcher_started", tokens=self.watched, interval=self.interval)

    async def stop(self) -> None:
        if not self._running:
            return

        self._running = False
        if self._watch_task:
            self._watch_task.cancel()
            try:
                await self._watch_task
            except asyncio.CancelledError:
                pass

        self._logger.info("price_watcher_stopped")

    async def _watch_loop(self) -> None:
        while self._running:
            try:
                await self.observe_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._logger.error(
                    "price_watch_loop_error",
                    error=str(e),
                    error_type=type(e).__name__,
                )
            await asyncio.sleep(self.interval)

"""Trading aggregates over persisted trade analytics"""

from decimal import Decimal
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

import structlog

from swaprouter.execution.models import TradeAnalytics, TradeStatus
from swaprouter.monitoring.models import TradingMetrics

logger = structlog.get_logger()


class AnalyticsSource(Protocol):
    async def get_transaction_analytics(
        self, start_time: float, end_time: float
    ) -> List[TradeAnalytics]: ...


def _rank_routes(completed: Sequence[TradeAnalytics]) -> Tuple[List[str], List[str]]:
    """Best and worst route by mean amount_out / amount_in"""
    ratios: Dict[str, List[Decimal]] = {}
    routes: Dict[str, List[str]] = {}
    for trade in completed:
        if trade.amount_in <= 0:
            continue
        key = trade.route_key
        ratios.setdefault(key, []).append(Decimal(trade.amount_out) / Decimal(trade.amount_in))
        routes.setdefault(key, list(trade.route))

    best: Optional[Tuple[str, Decimal]] = None
    worst: Optional[Tuple[str, Decimal]] = None
    for key, values in ratios.items():
        mean = sum(values) / len(values)
        if best is None or mean > best[1]:
            best = (key, mean)
        if worst is None or mean < worst[1]:
            worst = (key, mean)

    return (
        routes[best[0]] if best else [],
        routes[worst[0]] if worst else [],
    )


def compute_trading_metrics(trades: Sequence[TradeAnalytics]) -> TradingMetrics:
    """Aggregate a set of trades; slippage, gas, volume and routes use completed trades only"""
    completed = [t for t in trades if t.status == TradeStatus.COMPLETED]
    total = len(trades)

    success_rate = len(completed) / total * 100 if total else 0.0
    average_slippage = (
        sum((Decimal(t.price_impact) for t in completed), Decimal(0)) / len(completed)
        if completed
        else Decimal(0)
    )
    average_gas_cost = sum(t.gas_cost for t in completed) // len(completed) if completed else 0
    best_route, worst_route = _rank_routes(completed)

    return TradingMetrics(
        success_rate=success_rate,
        average_slippage=average_slippage,
        average_gas_cost=average_gas_cost,
        total_trades=total,
        total_volume=sum(t.amount_in for t in completed),
        best_route=best_route,
        worst_route=worst_route,
    )


class TradingAnalytics:
    """On-demand trading aggregates for a time window"""

    def __init__(self, source: AnalyticsSource):
        self.source = source
        self._logger = logger.bind(component="trading_analytics")

    async def get_trading_metrics(self, start_time: float, end_time: float) -> TradingMetrics:
        trades = await self.source.get_transaction_analytics(start_time, end_time)
        result = compute_trading_metrics(trades)
        self._logger.debug(
            "trading_metrics_computed",
            start_time=start_time,
            end_time=end_time,
            total_trades=result.total_trades,
            success_rate=round(result.success_rate, 2),
        )
        return result

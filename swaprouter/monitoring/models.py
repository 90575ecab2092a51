"""System snapshot and trading aggregate models"""

from dataclasses import asdict, dataclass, field
from decimal import Decimal
from typing import Any, Dict, List


@dataclass(frozen=True)
class SystemMetrics:
    """Point-in-time system health snapshot"""

    timestamp: float
    cache_hit_rate: float
    api_latency: float  # milliseconds, -1 when the liveness probe failed
    error_rate: float
    active_transactions: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class TradingMetrics:
    """Aggregates over persisted trade analytics for a time window"""

    success_rate: float
    average_slippage: Decimal
    average_gas_cost: int
    total_trades: int
    total_volume: int
    best_route: List[str] = field(default_factory=list)
    worst_route: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success_rate": self.success_rate,
            "average_slippage": str(self.average_slippage),
            "average_gas_cost": str(self.average_gas_cost),
            "total_trades": self.total_trades,
            "total_volume": str(self.total_volume),
            "best_route": list(self.best_route),
            "worst_route": list(self.worst_route),
        }

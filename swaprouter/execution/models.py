"""Swap request, estimate and trade analytics models"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from swaprouter.routing.models import SwapPath


class TradeStatus(str, Enum):
    """Lifecycle status of an executed swap"""

    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class SwapParams:
    """User swap request in raw token units"""

    token_in: str
    token_out: str
    amount_in: int
    slippage_tolerance: Decimal = Decimal("0.005")
    deadline: int = 300  # seconds from submission
    max_hops: int = 3

    def __post_init__(self) -> None:
        if self.amount_in <= 0:
            raise ValueError(f"amount_in must be positive, got {self.amount_in}")
        if Decimal(self.slippage_tolerance) < 0:
            raise ValueError(f"slippage_tolerance must be >= 0, got {self.slippage_tolerance}")
        if self.max_hops < 1:
            raise ValueError(f"max_hops must be >= 1, got {self.max_hops}")


@dataclass(frozen=True)
class SwapEstimate:
    """Quote derived from the best path; re-derived for every request"""

    expected_output: int
    minimum_output: int
    price_impact: Decimal
    path: SwapPath
    gas_estimate: int


@dataclass
class TradeAnalytics:
    """Record of one executed swap, updated by the transaction monitor"""

    timestamp: float
    token_in: str
    token_out: str
    amount_in: int
    amount_out: int
    price_impact: Decimal
    gas_cost: int
    route: List[str] = field(default_factory=list)
    status: TradeStatus = TradeStatus.PENDING
    execution_time: float = 0.0
    tx_hash: Optional[str] = None

    @property
    def route_key(self) -> str:
        return "->".join(self.route)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-safe representation; integer amounts are kept as strings"""
        return {
            "timestamp": self.timestamp,
            "token_in": self.token_in,
            "token_out": self.token_out,
            "amount_in": str(self.amount_in),
            "amount_out": str(self.amount_out),
            "price_impact": str(self.price_impact),
            "gas_cost": str(self.gas_cost),
            "route": list(self.route),
            "status": self.status.value,
            "execution_time": self.execution_time,
            "tx_hash": self.tx_hash,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TradeAnalytics":
        return cls(
            timestamp=float(data["timestamp"]),
            token_in=data["token_in"],
            token_out=data["token_out"],
            amount_in=int(data["amount_in"]),
            amount_out=int(data["amount_out"]),
            price_impact=Decimal(str(data["price_impact"])),
            gas_cost=int(data["gas_cost"]),
            route=list(data.get("route", [])),
            status=TradeStatus(data.get("status", TradeStatus.PENDING.value)),
            execution_time=float(data.get("execution_time", 0.0)),
            tx_hash=data.get("tx_hash"),
        )

"""Pool, graph and path models for routing"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterator, List, Tuple


@dataclass(frozen=True)
class PoolInfo:
    """Snapshot of a constant-product pool"""

    address: str
    token0: str
    token1: str
    reserve0: int
    reserve1: int
    fee: Decimal
    last_update_time: float

    def __post_init__(self) -> None:
        if self.reserve0 < 0 or self.reserve1 < 0:
            raise ValueError(f"Pool {self.address} has negative reserves")
        if not (Decimal(0) <= self.fee < Decimal(1)):
            raise ValueError(f"Pool {self.address} fee must be in [0, 1), got {self.fee}")

    def has_token(self, token: str) -> bool:
        return token in (self.token0, self.token1)

    def reserves_for(self, token_in: str) -> Tuple[int, int]:
        """Return (reserve_in, reserve_out) when selling token_in into this pool"""
        if token_in == self.token0:
            return self.reserve0, self.reserve1
        if token_in == self.token1:
            return self.reserve1, self.reserve0
        raise ValueError(f"Token {token_in} is not traded by pool {self.address}")


@dataclass(frozen=True)
class GraphEdge:
    """Directed edge through a pool with its preference weight"""

    pool: PoolInfo
    weight: float


@dataclass
class LiquidityGraph:
    """
    Adjacency mapping token -> neighbour token -> edges.

    Built once by the pool registry and then only read; a refresh produces a
    new graph object instead of mutating a published one.
    """

    adjacency: Dict[str, Dict[str, List[GraphEdge]]] = field(default_factory=dict)
    built_at: float = 0.0

    def add_edge(self, token_from: str, token_to: str, edge: GraphEdge) -> None:
        self.adjacency.setdefault(token_from, {}).setdefault(token_to, []).append(edge)

    def neighbours(self, token: str) -> Iterator[Tuple[str, List[GraphEdge]]]:
        return iter(self.adjacency.get(token, {}).items())

    def edges(self, token_from: str, token_to: str) -> List[GraphEdge]:
        return self.adjacency.get(token_from, {}).get(token_to, [])

    @property
    def tokens(self) -> List[str]:
        return list(self.adjacency.keys())

    @property
    def pool_count(self) -> int:
        addresses = {
            edge.pool.address
            for targets in self.adjacency.values()
            for edges in targets.values()
            for edge in edges
        }
        return len(addresses)


@dataclass(frozen=True)
class SwapPath:
    """Simulated route from the input token to the output token"""

    tokens: Tuple[str, ...]
    pools: Tuple[str, ...]
    fees: Tuple[Decimal, ...]
    amounts: Tuple[int, ...]
    expected_output: int
    price_impact: Decimal

    @property
    def hops(self) -> int:
        return len(self.pools)

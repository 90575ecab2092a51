"""Depth-bounded route search with constant-product simulation"""

import asyncio
import time
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

import structlog

from swaprouter.errors import NoPathFound
from swaprouter.monitoring import metrics
from swaprouter.routing.amm import get_amount_out, price_impact
from swaprouter.routing.models import LiquidityGraph, PoolInfo, SwapPath
from swaprouter.routing.pool_registry import PoolRegistry

logger = structlog.get_logger()

# (tokens, pool addresses) of one candidate route
Candidate = Tuple[Tuple[str, ...], Tuple[str, ...]]


def enumerate_paths(
    graph: LiquidityGraph, token_in: str, token_out: str, max_hops: int
) -> List[Candidate]:
    """
    All simple paths from token_in to token_out with at most max_hops pools.

    Traversal follows graph insertion order, and parallel pools between the
    same two tokens each produce their own candidate, so the result order is
    deterministic for a given graph.
    """
    candidates: List[Candidate] = []
    tokens: List[str] = [token_in]
    pools: List[str] = []
    visited = {token_in}

    def visit(token: str) -> None:
        if len(pools) >= max_hops:
            return
        for neighbour, edges in graph.neighbours(token):
            if neighbour in visited:
                continue
            for edge in edges:
                tokens.append(neighbour)
                pools.append(edge.pool.address)
                if neighbour == token_out:
                    candidates.append((tuple(tokens), tuple(pools)))
                else:
                    visited.add(neighbour)
                    visit(neighbour)
                    visited.discard(neighbour)
                tokens.pop()
                pools.pop()

    if token_in != token_out:
        visit(token_in)
    return candidates


def simulate_path(tokens: Sequence[str], pools: Sequence[PoolInfo], amount_in: int) -> SwapPath:
    """Run amount_in through each pool in turn"""
    amounts = [amount_in]
    fees: List[Decimal] = []
    total_impact = Decimal(0)

    for token, pool in zip(tokens, pools):
        reserve_in, reserve_out = pool.reserves_for(token)
        hop_in = amounts[-1]
        amounts.append(get_amount_out(hop_in, reserve_in, reserve_out, pool.fee))
        fees.append(pool.fee)
        total_impact += price_impact(hop_in, reserve_in)

    return SwapPath(
        tokens=tuple(tokens),
        pools=tuple(pool.address for pool in pools),
        fees=tuple(fees),
        amounts=tuple(amounts),
        expected_output=amounts[-1],
        price_impact=total_impact,
    )


class PathFinder:
    """Finds the route with the highest simulated output"""

    def __init__(self, registry: PoolRegistry, default_max_hops: int = 3):
        if default_max_hops < 1:
            raise ValueError(f"default_max_hops must be >= 1, got {default_max_hops}")
        self.registry = registry
        self.default_max_hops = default_max_hops
        self._logger = logger.bind(component="path_finder")

    async def _load_pools(self, candidates: List[Candidate]) -> Dict[str, PoolInfo]:
        """Fetch every pool used by any candidate concurrently"""
        addresses = list(dict.fromkeys(a for _, pools in candidates for a in pools))
        results = await asyncio.gather(
            *(self.registry.get_pool_info(address) for address in addresses),
            return_exceptions=True,
        )

        loaded: Dict[str, PoolInfo] = {}
        for address, result in zip(addresses, results):
            if isinstance(result, BaseException):
                self._logger.warning(
                    "path_pool_lookup_failed",
                    pool=address,
                    error=str(result),
                    error_type=type(result).__name__,
                )
                continue
            loaded[address] = result
        return loaded

    async def find_best_path(
        self,
        token_in: str,
        token_out: str,
        amount_in: int,
        max_hops: Optional[int] = None,
    ) -> SwapPath:
        """
        Search the liquidity graph for the most favorable route.

        Args:
            token_in: Address of the token being sold
            token_out: Address of the token being bought
            amount_in: Raw input amount
            max_hops: Maximum number of pools on the route

        Returns:
            Path with the greatest final output; on equal outputs the first
            path found wins

        Raises:
            NoPathFound: No candidate route reaches token_out
            ValueError: amount_in or max_hops is not positive
        """
        hops = self.default_max_hops if max_hops is None else max_hops
        if amount_in <= 0:
            raise ValueError(f"amount_in must be positive, got {amount_in}")
        if hops < 1:
            raise ValueError(f"max_hops must be >= 1, got {hops}")

        start_time = time.time()
        graph = await self.registry.get_graph()
        candidates = enumerate_paths(graph, token_in, token_out, hops)

        best: Optional[SwapPath] = None
        if candidates:
            pools = await self._load_pools(candidates)
            for tokens, addresses in candidates:
                if any(address not in pools for address in addresses):
                    continue
                path = simulate_path(tokens, [pools[a] for a in addresses], amount_in)
                if best is None or path.expected_output > best.expected_output:
                    best = path

        duration = time.time() - start_time
        metrics.path_search_latency.observe(duration)

        if best is None:
            metrics.paths_not_found.inc()
            self._logger.info(
                "no_path_found",
                token_in=token_in,
                token_out=token_out,
                max_hops=hops,
                candidates=len(candidates),
            )
            raise NoPathFound(token_in, token_out, hops)

        self._logger.debug(
            "best_path_found",
            tokens=list(best.tokens),
            expected_output=str(best.expected_output),
            candidates=len(candidates),
            duration_seconds=round(duration, 4),
        )
        return best

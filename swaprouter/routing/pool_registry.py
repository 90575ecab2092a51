"""Pool registry: cached pool reads and liquidity graph construction"""

import asyncio
import math
import time
from typing import Callable, List, Optional, Protocol, Sequence

import structlog

from swaprouter.cache.ttl_cache import TTLCache
from swaprouter.monitoring import metrics
from swaprouter.routing.models import GraphEdge, LiquidityGraph, PoolInfo
from swaprouter.utils.retry import RetryOptions, retry

logger = structlog.get_logger()

GRAPH_CACHE_KEY = "liquidity_graph"
POOL_INFO_PREFIX = "pool_info:"


class PoolReader(Protocol):
    async def get_pool_info(self, address: str) -> PoolInfo: ...


class FactoryReader(Protocol):
    async def list_factory_pools(self, factory: str, limit: Optional[int] = None) -> List[str]: ...


class PoolSource(Protocol):
    async def list_pools(self) -> List[str]: ...


class StaticPoolSource:
    """Fixed list of pool addresses from configuration"""

    def __init__(self, addresses: Sequence[str]):
        self.addresses = list(dict.fromkeys(addresses))

    async def list_pools(self) -> List[str]:
        return list(self.addresses)


class FactoryPoolSource:
    """Pools enumerated from a Uniswap-V2 style factory, plus optional extras"""

    def __init__(
        self,
        reader: FactoryReader,
        factory_address: str,
        limit: Optional[int] = None,
        extra_addresses: Sequence[str] = (),
    ):
        self.reader = reader
        self.factory_address = factory_address
        self.limit = limit
        self.extra_addresses = list(extra_addresses)

    async def list_pools(self) -> List[str]:
        pools = await self.reader.list_factory_pools(self.factory_address, self.limit)
        return list(dict.fromkeys([*self.extra_addresses, *pools]))


def edge_weight(pool: PoolInfo) -> float:
    """log(reserve0 * reserve1) * (1 - fee); higher is preferred"""
    return math.log(pool.reserve0 * pool.reserve1) * (1 - float(pool.fee))


def _is_transient(error: BaseException) -> bool:
    # Malformed pool data will not fix itself on retry
    return not isinstance(error, (ValueError, TypeError))


DEFAULT_POOL_RETRY = RetryOptions(
    max_attempts=3,
    initial_delay=0.5,
    max_delay=4.0,
    should_retry=_is_transient,
)


class PoolRegistry:
    """
    Builds and caches the token graph over known pools.

    Pool snapshots are cached individually (pool TTL) and the whole graph is
    cached as a single entry (graph TTL), so readers always see either the
    previous graph or a completely rebuilt one.
    """

    def __init__(
        self,
        reader: PoolReader,
        source: PoolSource,
        cache: TTLCache,
        retry_options: RetryOptions = DEFAULT_POOL_RETRY,
        pool_ttl: float = 60.0,
        graph_ttl: float = 30.0,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize pool registry.

        Args:
            reader: Chain client used to read pool state
            source: Provides the addresses of pools to include
            cache: Shared TTL cache
            retry_options: Retry policy for individual pool reads
            pool_ttl: Seconds a pool snapshot stays fresh
            graph_ttl: Seconds the assembled graph stays fresh
            clock: Time source for graph timestamps
        """
        self.reader = reader
        self.source = source
        self.cache = cache
        self.retry_options = retry_options
        self.pool_ttl = pool_ttl
        self.graph_ttl = graph_ttl
        self._clock = clock
        self._logger = logger.bind(component="pool_registry")

    async def get_pool_info(self, address: str) -> PoolInfo:
        """
        Return a pool snapshot, reading it from chain on cache miss.

        Raises:
            CacheProducerFailure: The read failed after retries
        """
        async def fetch() -> PoolInfo:
            return await retry(
                lambda: self.reader.get_pool_info(address),
                self.retry_options,
                operation_name="get_pool_info",
            )

        return await self.cache.get_or_fetch(POOL_INFO_PREFIX + address, fetch, self.pool_ttl)

    async def _fetch_or_skip(self, address: str) -> Optional[PoolInfo]:
        try:
            return await self.get_pool_info(address)
        except Exception as e:
            metrics.pool_fetch_errors.inc()
            self._logger.warning(
                "pool_fetch_failed",
                pool=address,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

    async def rebuild_graph(self) -> LiquidityGraph:
        """
        Read every known pool concurrently and assemble a fresh graph.

        Pools that fail to load or hold an empty reserve are left out of this
        build; the rest of the graph is still produced.
        """
        start_time = time.time()
        addresses = await self.source.list_pools()
        pools = await asyncio.gather(*(self._fetch_or_skip(address) for address in addresses))

        graph = LiquidityGraph(built_at=self._clock())
        skipped = 0
        for pool in pools:
            if pool is None:
                skipped += 1
                continue
            if pool.reserve0 == 0 or pool.reserve1 == 0:
                self._logger.debug("pool_skipped_empty_reserve", pool=pool.address)
                skipped += 1
                continue

            weight = edge_weight(pool)
            graph.add_edge(pool.token0, pool.token1, GraphEdge(pool=pool, weight=weight))
            graph.add_edge(pool.token1, pool.token0, GraphEdge(pool=pool, weight=weight))

        metrics.graph_pools.set(graph.pool_count)
        self._logger.info(
            "liquidity_graph_built",
            pools=graph.pool_count,
            tokens=len(graph.tokens),
            skipped=skipped,
            duration_seconds=round(time.time() - start_time, 3),
        )
        return graph

    async def get_graph(self) -> LiquidityGraph:
        """Return the cached graph, rebuilding it when stale"""
        return await self.cache.get_or_fetch(GRAPH_CACHE_KEY, self.rebuild_graph, self.graph_ttl)

    def invalidate(self) -> None:
        """Drop the cached graph and pool snapshots"""
        self.cache.delete(GRAPH_CACHE_KEY)
        for key in self.cache.keys(POOL_INFO_PREFIX):
            self.cache.delete(key)

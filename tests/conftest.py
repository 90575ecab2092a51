"""Shared fixtures and fakes"""

from decimal import Decimal
from typing import Dict, Iterable, Optional, Set

import pytest

from swaprouter.cache.ttl_cache import TTLCache
from swaprouter.routing.models import PoolInfo

ETH = "ETH"
USDC = "USDC"
DAI = "DAI"
USDT = "USDT"

E18 = 10**18
E6 = 10**6


class FakeClock:
    """Manually advanced time source"""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_pool(
    address: str,
    token0: str,
    token1: str,
    reserve0: int,
    reserve1: int,
    fee: Decimal = Decimal("0.003"),
) -> PoolInfo:
    return PoolInfo(
        address=address,
        token0=token0,
        token1=token1,
        reserve0=reserve0,
        reserve1=reserve1,
        fee=fee,
        last_update_time=0.0,
    )


class FakePoolReader:
    """In-memory chain client for pool reads"""

    def __init__(self, pools: Iterable[PoolInfo], failing: Optional[Set[str]] = None):
        self.pools: Dict[str, PoolInfo] = {pool.address: pool for pool in pools}
        self.failing = set(failing or ())
        self.calls: Dict[str, int] = {}

    async def get_pool_info(self, address: str) -> PoolInfo:
        self.calls[address] = self.calls.get(address, 0) + 1
        if address in self.failing:
            raise ConnectionError(f"RPC unavailable for {address}")
        return self.pools[address]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return TTLCache(clock=clock)

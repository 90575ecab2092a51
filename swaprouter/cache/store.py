"""Redis mirror for trade analytics and system metric snapshots"""

import json
from decimal import Decimal
from typing import Any, List, Optional

import redis.asyncio as redis
import structlog

from swaprouter.execution.models import TradeAnalytics
from swaprouter.monitoring.models import SystemMetrics

logger = structlog.get_logger()

ANALYTICS_TTL_SECONDS = 86400


class AnalyticsStore:
    """
    Persists terminal trade analytics and system snapshots in Redis.

    Features:
    - Trade analytics cached with a 24-hour TTL
    - Sorted-set index by trade timestamp for time-window queries
    - System metric snapshots cached with a 24-hour TTL

    Write failures are logged and swallowed; the in-memory TTL cache stays
    authoritative for the running process.
    """

    def __init__(self, redis_url: str, key_prefix: str = "swaprouter", max_indexed: int = 10000):
        """
        Initialize analytics store.

        Args:
            redis_url: Redis connection URL (e.g., redis://localhost:6379)
            key_prefix: Namespace prepended to every key
            max_indexed: Maximum number of trades kept in the time index
        """
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self.max_indexed = max_indexed
        self.client: Optional[redis.Redis] = None
        self._logger = logger.bind(component="analytics_store")

    async def connect(self) -> None:
        """Establish connection to Redis"""
        try:
            self.client = await redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            await self.client.ping()
            self._logger.info("redis_connected", url=self.redis_url)
        except Exception as e:
            self._logger.error("redis_connection_failed", error=str(e))
            raise

    async def disconnect(self) -> None:
        """Close Redis connection"""
        if self.client:
            await self.client.close()
            self._logger.info("redis_disconnected")

    def _serialize_value(self, value: Any) -> str:
        def decimal_default(obj):
            if isinstance(obj, Decimal):
                return str(obj)
            raise TypeError(f"Object of type {type(obj)} is not JSON serializable")

        return json.dumps(value, default=decimal_default)

    def _trade_key(self, analytics: TradeAnalytics) -> str:
        suffix = analytics.tx_hash or f"{analytics.timestamp:.6f}"
        return f"{self.key_prefix}:trade_analytics:{suffix}"

    @property
    def _trade_index_key(self) -> str:
        return f"{self.key_prefix}:trade_analytics:index"

    async def save_trade_analytics(
        self, analytics: TradeAnalytics, ttl: int = ANALYTICS_TTL_SECONDS
    ) -> None:
        """
        Persist a trade record and index it by timestamp.

        Args:
            analytics: Trade analytics to store
            ttl: Time-to-live in seconds (default: 24 hours)
        """
        if not self.client:
            self._logger.warning("save_trade_analytics_skipped", reason="redis_not_connected")
            return

        try:
            key = self._trade_key(analytics)
            await self.client.setex(key, ttl, self._serialize_value(analytics.to_dict()))
            await self.client.zadd(self._trade_index_key, {key: analytics.timestamp})
            await self.client.zremrangebyrank(self._trade_index_key, 0, -(self.max_indexed + 1))

            self._logger.debug(
                "trade_analytics_saved",
                key=key,
                status=analytics.status.value,
                ttl=ttl,
            )
        except Exception as e:
            self._logger.error(
                "save_trade_analytics_failed",
                tx_hash=analytics.tx_hash,
                error=str(e),
            )

    async def get_trade_analytics(
        self, start_time: float, end_time: float
    ) -> List[TradeAnalytics]:
        """
        Load trades whose timestamp falls within [start_time, end_time].

        Returns:
            Trades ordered newest first; expired entries are skipped
        """
        if not self.client:
            return []

        try:
            keys = await self.client.zrevrangebyscore(
                self._trade_index_key, end_time, start_time
            )
            if not keys:
                return []

            pipeline = self.client.pipeline()
            for key in keys:
                pipeline.get(key)
            values = await pipeline.execute()

            trades = []
            for value in values:
                if value:
                    trades.append(TradeAnalytics.from_dict(json.loads(value)))
            return trades

        except Exception as e:
            self._logger.error(
                "get_trade_analytics_failed",
                start_time=start_time,
                end_time=end_time,
                error=str(e),
            )
            return []

    async def save_system_metrics(
        self, snapshot: SystemMetrics, ttl: int = ANALYTICS_TTL_SECONDS
    ) -> None:
        """Persist a system metrics snapshot"""
        if not self.client:
            return

        try:
            key = f"{self.key_prefix}:system_metrics:{int(snapshot.timestamp)}"
            await self.client.setex(key, ttl, self._serialize_value(snapshot.to_dict()))
            self._logger.debug("system_metrics_saved", key=key, ttl=ttl)
        except Exception as e:
            self._logger.error("save_system_metrics_failed", error=str(e))

    async def invalidate(self, pattern: str) -> int:
        """
        Delete keys matching a pattern inside this store's namespace.

        Args:
            pattern: Pattern relative to the prefix (e.g., "trade_analytics:*")

        Returns:
            Number of keys deleted
        """
        if not self.client:
            return 0

        try:
            keys = []
            async for key in self.client.scan_iter(match=f"{self.key_prefix}:{pattern}"):
                keys.append(key)

            if keys:
                deleted = await self.client.delete(*keys)
                self._logger.info("store_invalidated", pattern=pattern, deleted_count=deleted)
                return deleted
            return 0

        except Exception as e:
            self._logger.error("store_invalidate_failed", pattern=pattern, error=str(e))
            return 0

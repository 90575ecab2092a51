"""Trading aggregates and system metrics endpoints"""

import time
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
import structlog

from swaprouter.api.app import ApiServices, get_services, verify_api_key
from swaprouter.monitoring.models import SystemMetrics

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1", tags=["analytics"])


class TradingMetricsResponse(BaseModel):
    """Trading aggregate response model"""

    start_time: float
    end_time: float
    success_rate: float = Field(description="Completed trades as a percentage of all trades")
    average_slippage: str = Field(description="Mean price impact of completed trades (percent)")
    average_gas_cost: str
    total_trades: int
    total_volume: str = Field(description="Sum of input amounts of completed trades (base units)")
    best_route: List[str]
    worst_route: List[str]


class SystemMetricsResponse(BaseModel):
    """System metrics snapshot response model"""

    timestamp: float
    cache_hit_rate: float
    api_latency: float = Field(description="Milliseconds, -1 when the probe failed")
    error_rate: float
    active_transactions: int


@router.get("/analytics/trading", response_model=TradingMetricsResponse)
async def get_trading_metrics(
    start_time: Optional[float] = Query(None, description="Window start (epoch seconds)"),
    end_time: Optional[float] = Query(None, description="Window end (epoch seconds)"),
    hours: int = Query(24, ge=1, le=24, description="Window length when start_time is omitted"),
    services: ApiServices = Depends(get_services),
    api_key: str = Depends(verify_api_key),
) -> TradingMetricsResponse:
    """
    Aggregate trading metrics over a time window.

    Requires authentication via X-API-Key header.
    """
    end = end_time if end_time is not None else time.time()
    start = start_time if start_time is not None else end - hours * 3600
    if start > end:
        raise HTTPException(status_code=400, detail="start_time must not be after end_time")

    result = await services.trading.get_trading_metrics(start, end)
    return TradingMetricsResponse(start_time=start, end_time=end, **result.to_dict())


@router.get("/metrics/system", response_model=SystemMetricsResponse)
async def get_system_metrics(
    services: ApiServices = Depends(get_services),
    api_key: str = Depends(verify_api_key),
) -> SystemMetricsResponse:
    """
    Latest system metrics snapshot; one is collected on demand if none exists yet.

    Requires authentication via X-API-Key header.
    """
    snapshot: SystemMetrics = services.collector.latest or await services.collector.collect()
    return SystemMetricsResponse(**snapshot.to_dict())

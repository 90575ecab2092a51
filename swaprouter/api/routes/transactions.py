"""Transaction state and trade history endpoints"""

import time
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
import structlog

from swaprouter.api.app import ApiServices, get_services, verify_api_key
from swaprouter.execution.models import TradeAnalytics, TradeStatus

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1", tags=["transactions"])


class TradeResponse(BaseModel):
    """Trade analytics response model"""

    tx_hash: Optional[str]
    timestamp: float
    token_in: str
    token_out: str
    amount_in: str = Field(description="Input amount in base units")
    amount_out: str = Field(description="Expected output in base units")
    price_impact: str
    gas_cost: str
    route: List[str]
    status: str
    execution_time: float = Field(description="Seconds from submission to terminal state")

    @classmethod
    def from_analytics(cls, analytics: TradeAnalytics) -> "TradeResponse":
        return cls(**analytics.to_dict())


class TransactionStateResponse(BaseModel):
    """Tracked transaction response model"""

    hash: str
    status: str
    submitted_at: float
    retry_count: int
    last_error: Optional[str] = None
    finished_at: Optional[float] = None
    analytics: TradeResponse


@router.get("/transactions/{tx_hash}", response_model=TransactionStateResponse)
async def get_transaction(
    tx_hash: str,
    services: ApiServices = Depends(get_services),
    api_key: str = Depends(verify_api_key),
) -> TransactionStateResponse:
    """
    Get the tracking state of a submitted transaction.

    Terminal transactions remain available for 24 hours.

    Requires authentication via X-API-Key header.
    """
    state = services.monitor.get_transaction(tx_hash)
    if state is None:
        raise HTTPException(status_code=404, detail=f"Transaction {tx_hash} not found")

    return TransactionStateResponse(
        hash=state.hash,
        status=state.status.value,
        submitted_at=state.submitted_at,
        retry_count=state.retry_count,
        last_error=state.last_error,
        finished_at=state.finished_at,
        analytics=TradeResponse.from_analytics(state.analytics),
    )


@router.get("/trades", response_model=List[TradeResponse])
async def get_trades(
    start_time: Optional[float] = Query(None, description="Window start (epoch seconds), default 24h ago"),
    end_time: Optional[float] = Query(None, description="Window end (epoch seconds), default now"),
    status: Optional[TradeStatus] = Query(None, description="Filter by terminal status"),
    limit: int = Query(100, ge=1, le=1000, description="Maximum number of results"),
    services: ApiServices = Depends(get_services),
    api_key: str = Depends(verify_api_key),
) -> List[TradeResponse]:
    """
    Get terminal trades in a time window, newest first.

    Requires authentication via X-API-Key header.
    """
    end = end_time if end_time is not None else time.time()
    start = start_time if start_time is not None else end - 86400
    if start > end:
        raise HTTPException(status_code=400, detail="start_time must not be after end_time")

    trades = await services.monitor.get_transaction_analytics(start, end)
    if status is not None:
        trades = [t for t in trades if t.status == status]

    logger.debug("trades_queried", start_time=start, end_time=end, count=len(trades))
    return [TradeResponse.from_analytics(t) for t in trades[:limit]]

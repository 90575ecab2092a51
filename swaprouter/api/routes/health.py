"""Health check endpoint"""

import time
from typing import Optional

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field
import structlog

from swaprouter.api.app import ApiServices, get_services

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1", tags=["health"])


class HealthResponse(BaseModel):
    """Health check response model"""

    status: str = Field(description="Overall health status (healthy or unhealthy)")
    chain: str = Field(description="RPC connectivity status")
    block_number: Optional[int] = Field(None, description="Latest block seen by the RPC endpoint")
    rpc_latency_ms: Optional[float] = Field(None, description="Block number probe latency")
    redis: str = Field(description="Analytics store status (connected, disconnected or disabled)")
    active_transactions: int = Field(description="Transactions awaiting confirmation")


@router.get("/health", response_model=HealthResponse)
async def health_check(
    response: Response,
    services: ApiServices = Depends(get_services),
) -> HealthResponse:
    """
    Health check endpoint to verify system status.

    Checks:
    - RPC connectivity via a block number read
    - Analytics store connectivity when Redis is configured

    Returns:
    - 200 OK if the chain is reachable
    - 503 Service Unavailable otherwise

    Does not require authentication (public endpoint).
    """
    redis_status = "disabled"
    if services.store is not None:
        redis_status = "connected" if services.store.client is not None else "disconnected"

    active = services.monitor.active_count()
    start = time.perf_counter()
    try:
        block_number = await services.chain.get_block_number()
    except Exception as e:
        logger.error("health_check_failed", error=str(e), error_type=type(e).__name__)
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="unhealthy",
            chain="error",
            redis=redis_status,
            active_transactions=active,
        )

    latency = (time.perf_counter() - start) * 1000
    logger.debug("health_check_success", block_number=block_number, latency_ms=round(latency, 2))

    return HealthResponse(
        status="healthy",
        chain="connected",
        block_number=block_number,
        rpc_latency_ms=round(latency, 2),
        redis=redis_status,
        active_transactions=active,
    )

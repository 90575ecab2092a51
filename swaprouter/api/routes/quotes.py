"""Swap quote endpoint"""

from decimal import Decimal
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
import structlog

from swaprouter.api.app import ApiServices, get_services, verify_api_key
from swaprouter.errors import NoPathFound, SwapRouterError
from swaprouter.execution.models import SwapParams

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1", tags=["quotes"])


class HopResponse(BaseModel):
    """One pool traversal on the route"""

    pool: str
    token_in: str
    token_out: str
    fee: str
    amount_in: str
    amount_out: str


class QuoteResponse(BaseModel):
    """Swap estimate response model"""

    token_in: str
    token_out: str
    amount_in: str = Field(description="Input amount in token units")
    amount_in_raw: str = Field(description="Input amount in base units")
    expected_output: str = Field(description="Simulated output in token units")
    expected_output_raw: str
    minimum_output: str = Field(description="Output floor after slippage in token units")
    minimum_output_raw: str
    price_impact: str = Field(description="Summed per-hop price impact in percent")
    gas_estimate: int = Field(description="Gas units including safety buffer")
    route: List[str] = Field(description="Token symbols (or addresses) along the route")
    hops: List[HopResponse]


@router.get("/quote", response_model=QuoteResponse)
async def get_quote(
    token_in: str = Query(..., description="Input token symbol or address"),
    token_out: str = Query(..., description="Output token symbol or address"),
    amount: str = Query(..., description="Input amount in token units (e.g. 1.5)"),
    slippage: Decimal = Query(Decimal("0.005"), ge=0, description="Slippage tolerance as a fraction"),
    max_hops: int = Query(3, ge=1, le=4, description="Maximum pools on the route"),
    services: ApiServices = Depends(get_services),
    api_key: str = Depends(verify_api_key),
) -> QuoteResponse:
    """
    Quote a swap against the current liquidity graph.

    Tolerances above the configured maximum are capped, not rejected.

    Requires authentication via X-API-Key header.
    """
    tokens = services.tokens
    try:
        address_in = tokens.get(token_in).address
        address_out = tokens.get(token_out).address
        params = SwapParams(
            token_in=address_in,
            token_out=address_out,
            amount_in=tokens.parse_amount(address_in, amount),
            slippage_tolerance=slippage,
            max_hops=max_hops,
        )
    except (KeyError, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e).strip("'\""))

    try:
        estimate = await services.estimator.estimate_swap(params)
    except NoPathFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except SwapRouterError as e:
        logger.error("quote_failed", token_in=token_in, token_out=token_out, error=str(e))
        raise HTTPException(status_code=503, detail="Liquidity data unavailable")

    path = estimate.path
    hops = [
        HopResponse(
            pool=path.pools[i],
            token_in=tokens.symbol_for(path.tokens[i]),
            token_out=tokens.symbol_for(path.tokens[i + 1]),
            fee=str(path.fees[i]),
            amount_in=str(path.amounts[i]),
            amount_out=str(path.amounts[i + 1]),
        )
        for i in range(path.hops)
    ]

    return QuoteResponse(
        token_in=tokens.symbol_for(address_in),
        token_out=tokens.symbol_for(address_out),
        amount_in=tokens.format_amount(address_in, params.amount_in),
        amount_in_raw=str(params.amount_in),
        expected_output=tokens.format_amount(address_out, estimate.expected_output),
        expected_output_raw=str(estimate.expected_output),
        minimum_output=tokens.format_amount(address_out, estimate.minimum_output),
        minimum_output_raw=str(estimate.minimum_output),
        price_impact=str(estimate.price_impact),
        gas_estimate=estimate.gas_estimate,
        route=[tokens.symbol_for(t) for t in path.tokens],
        hops=hops,
    )

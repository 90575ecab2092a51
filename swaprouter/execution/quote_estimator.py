"""Turns the best route into a user-facing swap estimate"""

from decimal import Decimal

import structlog

from swaprouter.execution.models import SwapEstimate, SwapParams
from swaprouter.routing.path_finder import PathFinder

logger = structlog.get_logger()

DEFAULT_MAX_SLIPPAGE = Decimal("0.05")


def apply_slippage(expected_output: int, tolerance: Decimal) -> int:
    """floor(expected_output * (1 - tolerance)) without rounding error"""
    numerator, denominator = Decimal(tolerance).as_integer_ratio()
    return expected_output * (denominator - numerator) // denominator


class QuoteEstimator:
    """
    Computes expected and minimum output, price impact and gas for a swap.

    A tolerance above max_slippage is capped to max_slippage rather than
    rejected.
    """

    def __init__(
        self,
        path_finder: PathFinder,
        max_slippage: Decimal = DEFAULT_MAX_SLIPPAGE,
        base_gas_cost: int = 100000,
        per_hop_gas_cost: int = 50000,
        gas_buffer_percent: int = 110,
    ):
        if not (Decimal(0) <= max_slippage < Decimal(1)):
            raise ValueError(f"max_slippage must be in [0, 1), got {max_slippage}")
        self.path_finder = path_finder
        self.max_slippage = Decimal(max_slippage)
        self.base_gas_cost = base_gas_cost
        self.per_hop_gas_cost = per_hop_gas_cost
        self.gas_buffer_percent = gas_buffer_percent
        self._logger = logger.bind(component="quote_estimator")

    def estimate_gas(self, hops: int) -> int:
        """Gas units for a route, including the safety buffer"""
        raw = self.base_gas_cost + (hops - 1) * self.per_hop_gas_cost
        return raw * self.gas_buffer_percent // 100

    def effective_slippage(self, tolerance: Decimal) -> Decimal:
        tolerance = Decimal(tolerance)
        if tolerance > self.max_slippage:
            self._logger.debug(
                "slippage_capped",
                requested=str(tolerance),
                applied=str(self.max_slippage),
            )
            return self.max_slippage
        return tolerance

    async def estimate_swap(self, params: SwapParams) -> SwapEstimate:
        """
        Quote a swap against the current liquidity graph.

        Raises:
            NoPathFound: No route connects the tokens
        """
        path = await self.path_finder.find_best_path(
            params.token_in,
            params.token_out,
            params.amount_in,
            params.max_hops,
        )

        slippage = self.effective_slippage(params.slippage_tolerance)
        estimate = SwapEstimate(
            expected_output=path.expected_output,
            minimum_output=apply_slippage(path.expected_output, slippage),
            price_impact=path.price_impact,
            path=path,
            gas_estimate=self.estimate_gas(path.hops),
        )

        self._logger.debug(
            "swap_estimated",
            token_in=params.token_in,
            token_out=params.token_out,
            amount_in=str(params.amount_in),
            expected_output=str(estimate.expected_output),
            minimum_output=str(estimate.minimum_output),
            hops=path.hops,
        )
        return estimate

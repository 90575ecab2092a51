"""Constant-product (x * y = k) pricing on integer reserves"""

from decimal import Decimal
from typing import Tuple


def fee_ratio(fee: Decimal) -> Tuple[int, int]:
    """Exact (numerator, denominator) of a decimal fee"""
    numerator, denominator = Decimal(fee).as_integer_ratio()
    return numerator, denominator


def get_amount_out(amount_in: int, reserve_in: int, reserve_out: int, fee: Decimal) -> int:
    """
    Output of selling amount_in into a pool, rounded down.

    amount_out = floor(a * (1 - f) * R_out / (R_in + a * (1 - f))), evaluated
    without intermediate rounding.
    """
    if amount_in <= 0 or reserve_in <= 0 or reserve_out <= 0:
        return 0

    fee_num, fee_den = fee_ratio(fee)
    amount_in_with_fee = amount_in * (fee_den - fee_num)
    numerator = amount_in_with_fee * reserve_out
    denominator = reserve_in * fee_den + amount_in_with_fee
    return numerator // denominator


def price_impact(amount_in: int, reserve_in: int) -> Decimal:
    """Share of the input reserve consumed by a trade, in percent"""
    if reserve_in <= 0:
        return Decimal(0)
    return Decimal(amount_in) / Decimal(reserve_in) * 100


def spot_price(reserve_in: int, reserve_out: int) -> Decimal:
    """Marginal output per unit of input, ignoring fees"""
    if reserve_in <= 0:
        return Decimal(0)
    return Decimal(reserve_out) / Decimal(reserve_in)

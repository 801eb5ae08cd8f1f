"""Closed-form swap sizing for constant-product pools.

Given reserves (x, y) with k = x * y and a target price p (units of the bought
token per unit of the other token), the reserve of the bought token after the
swap must satisfy y' = sqrt(p * k), so the quantity to buy is y - y'. A negative
result means the pool needs sell pressure on that token instead.

All returned quantities are integers in the token's smallest unit, rounded to
nearest with halves rounded up.
"""
from __future__ import annotations

import math

from analysis.models import PoolReserves, SwapSide
from constants import BPS_DENOMINATOR


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _tolerance_factor(tolerance_bps: float) -> float:
    if tolerance_bps < 0:
        raise ValueError(f"tolerance_bps must be non-negative, got {tolerance_bps}")
    return 1 + tolerance_bps / BPS_DENOMINATOR


def solve_buy_quantity(pool: PoolReserves, target_price: float, token: str) -> int:
    """Quantity of `token` to buy so the pool's price of the other token becomes `target_price`."""
    if pool.reserve_a <= 0 or pool.reserve_b <= 0:
        raise ValueError(f"Pool reserves must be positive: {pool.reserve_a}, {pool.reserve_b}")
    if target_price <= 0:
        raise ValueError(f"target_price must be positive, got {target_price}")

    y = pool.amount_of(token)
    x = pool.amount_of(pool.other(token))
    desired_y = math.sqrt(target_price * x * y)
    return round_half_up((y - desired_y) * 10 ** pool.decimals_of(token))


def solve_sell_quantity(pool: PoolReserves, target_price: float, token: str) -> int:
    return -solve_buy_quantity(pool, target_price, token)


def bound_for_slippage(quantity: int, price: float, tolerance_bps: float, side: SwapSide) -> int:
    """Worst acceptable counter quantity for a swap of `quantity`.

    `price` is counter-token base units per base unit of the quantity token.
    BUY returns the maximum input, SELL the minimum output.
    """
    if price <= 0:
        raise ValueError(f"price must be positive, got {price}")
    factor = _tolerance_factor(tolerance_bps)
    if side is SwapSide.BUY:
        return round_half_up(quantity * price * factor)
    return round_half_up(quantity * price / factor)


def max_quantity_for_balance(balance: int, price: float, tolerance_bps: float) -> int:
    """Largest counter quantity obtainable by spending `balance`, net of the tolerance."""
    return bound_for_slippage(balance, price, tolerance_bps, SwapSide.SELL)


def apply_swap_ratio(quantity: int, ratio: float) -> int:
    if not 0 < ratio <= 1:
        raise ValueError(f"ratio must be in (0, 1], got {ratio}")
    return round_half_up(quantity * ratio)

"""Peg deviation checks and sizing of the corrective pool swaps."""
from __future__ import annotations

from analysis.models import PegAction, PoolReserves, SwapPlan, SwapRequest, SwapSide, Venue
from analysis.solver import (
    apply_swap_ratio,
    bound_for_slippage,
    max_quantity_for_balance,
    solve_buy_quantity,
    solve_sell_quantity,
)


def peg_action(effective_price: float, target_price: float, peg_threshold: float) -> PegAction:
    """SELL when the pegged asset trades rich, BUY when it trades cheap."""
    if effective_price <= 0 or target_price <= 0:
        raise ValueError(f"Prices must be positive: effective={effective_price}, target={target_price}")
    if effective_price / target_price > 1.0 + peg_threshold:
        return PegAction.SELL
    if target_price / effective_price > 1.0 + peg_threshold:
        return PegAction.BUY
    return PegAction.NONE


def _base_unit_rate(rate: float, from_decimals: int, to_decimals: int) -> float:
    """Convert a whole-token exchange rate into a base-unit exchange rate."""
    return rate * 10 ** (to_decimals - from_decimals)


def plan_peg_buy(
    *,
    pool: PoolReserves,
    pool_target_price: float,
    pegged: str,
    holding: str,
    holding_decimals: int,
    pegged_in_bridge: float,
    holding_in_bridge: float,
    holding_balance: int,
    swap_ratio: float,
    tolerance_bps: float,
) -> SwapPlan:
    """Buy the pegged token with the holding token through the pool router.

    `pool_target_price` is units of the pegged token per unit of the pool's other
    token once the peg holds.
    """
    pegged_decimals = pool.decimals_of(pegged)
    perfect = solve_buy_quantity(pool, pool_target_price, pegged)
    desired = apply_swap_ratio(perfect, swap_ratio)

    holding_to_pegged = _base_unit_rate(holding_in_bridge / pegged_in_bridge, holding_decimals, pegged_decimals)
    max_buy = max_quantity_for_balance(holding_balance, holding_to_pegged, tolerance_bps)
    quantity = min(desired, max_buy)
    if quantity <= 0:
        return SwapPlan(None, perfect, desired, quantity, reason="non_positive_quantity")

    pegged_to_holding = _base_unit_rate(pegged_in_bridge / holding_in_bridge, pegged_decimals, holding_decimals)
    max_in = bound_for_slippage(quantity, pegged_to_holding, tolerance_bps, SwapSide.BUY)
    request = SwapRequest(
        sell_token=holding,
        buy_token=pegged,
        quantity=quantity,
        bound_quantity=max_in,
        venue=Venue.POOL_ROUTER,
        side=SwapSide.BUY,
    )
    return SwapPlan(request, perfect, desired, quantity)


def plan_peg_sell(
    *,
    pool: PoolReserves,
    pool_target_price: float,
    pegged: str,
    holding: str,
    holding_decimals: int,
    pegged_in_bridge: float,
    holding_in_bridge: float,
    pegged_balance: int,
    swap_ratio: float,
    tolerance_bps: float,
) -> SwapPlan:
    """Sell the pegged token for the holding token through the pool router."""
    pegged_decimals = pool.decimals_of(pegged)
    perfect = solve_sell_quantity(pool, pool_target_price, pegged)
    desired = apply_swap_ratio(perfect, swap_ratio)
    quantity = min(desired, pegged_balance)
    if quantity <= 0:
        return SwapPlan(None, perfect, desired, quantity, reason="non_positive_quantity")

    pegged_to_holding = _base_unit_rate(pegged_in_bridge / holding_in_bridge, pegged_decimals, holding_decimals)
    min_out = bound_for_slippage(quantity, pegged_to_holding, tolerance_bps, SwapSide.SELL)
    request = SwapRequest(
        sell_token=pegged,
        buy_token=holding,
        quantity=quantity,
        bound_quantity=min_out,
        venue=Venue.POOL_ROUTER,
        side=SwapSide.SELL,
    )
    return SwapPlan(request, perfect, desired, quantity)

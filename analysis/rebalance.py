"""Decides whether to rebalance the two-token wallet toward equal market value."""
from __future__ import annotations

import logging
from typing import Awaitable, Protocol

from analysis.models import NoAction, RebalanceAction, RebalanceDecision, RebalanceDirection, SwapEstimate
from analysis.solver import round_half_up
from constants import PRICE_MULT

logger = logging.getLogger(__name__)


class SpreadEstimator(Protocol):
    def compute_swap(self, price_a: int, price_b: int, buy_a: bool, quantity: int) -> Awaitable[SwapEstimate]:
        ...


class RebalanceDecisionEngine:
    """Stateless per call: every input is passed in and the decision is only emitted.

    When the value share of token A falls below `balance_threshold`, enough of B is
    sold to bring both sides to half of the total, and symmetrically for B. The
    A-side branch is evaluated first, so it wins if both could hold.
    """

    def __init__(
        self,
        estimator: SpreadEstimator,
        *,
        symbol_a: str,
        symbol_b: str,
        decimals_a: int,
        decimals_b: int,
        balance_threshold: float,
        max_spread_bps: int,
    ) -> None:
        self.estimator = estimator
        self.symbol_a = symbol_a
        self.symbol_b = symbol_b
        self.decimals_a = decimals_a
        self.decimals_b = decimals_b
        self.balance_threshold = balance_threshold
        self.max_spread_bps = max_spread_bps

    async def decide(
        self,
        balance_a: int,
        balance_b: int,
        price_a: float,
        price_b: float,
        global_price_a: float,
        global_price_b: float,
    ) -> RebalanceDecision:
        value_a = balance_a / 10 ** self.decimals_a * price_a
        value_b = balance_b / 10 ** self.decimals_b * price_b
        total = value_a + value_b
        target = total / 2.0

        logger.debug(
            "Entered rebalance with: %sBalance=%s, %sBalance=%s, %sValue=%.4f, %sValue=%.4f, totalValue=%.4f",
            self.symbol_a, balance_a, self.symbol_b, balance_b,
            self.symbol_a, value_a, self.symbol_b, value_b, total,
        )

        if total <= 0:
            logger.info("Not rebalancing this cycle: wallet holds no value")
            return NoAction("empty_wallet")

        if value_a / total < self.balance_threshold:
            direction = RebalanceDirection.SELL_B_FOR_A
            sell_symbol, buy_symbol = self.symbol_b, self.symbol_a
            quantity = round_half_up((target - value_a) / price_b * 10 ** self.decimals_b)
            buy_a = True
        elif value_b / total < self.balance_threshold:
            direction = RebalanceDirection.SELL_A_FOR_B
            sell_symbol, buy_symbol = self.symbol_a, self.symbol_b
            quantity = round_half_up((target - value_b) / price_a * 10 ** self.decimals_a)
            buy_a = False
        else:
            logger.info(
                "Not rebalancing this cycle: %s share=%.4f, threshold=%s",
                self.symbol_a, value_a / total, self.balance_threshold,
            )
            return NoAction("within_threshold")

        if quantity <= 0:
            logger.info("Not rebalancing this cycle: computed swap quantity=%s", quantity)
            return NoAction("zero_quantity")

        estimate = await self.estimator.compute_swap(
            round_half_up(global_price_a * PRICE_MULT),
            round_half_up(global_price_b * PRICE_MULT),
            buy_a,
            quantity,
        )
        logger.info(
            "Estimated spread=%s with %sGlobalPrice=%s, %sGlobalPrice=%s, swapQuantity=%s %s",
            estimate.spread_bps, self.symbol_a, global_price_a, self.symbol_b, global_price_b,
            quantity, sell_symbol,
        )

        if estimate.spread_bps > self.max_spread_bps:
            logger.warning(
                "Not swapping %s %s for %s because computed spread=%s > MAX_SPREAD=%s",
                quantity, sell_symbol, buy_symbol, estimate.spread_bps, self.max_spread_bps,
            )
            return NoAction("spread_exceeded", warning=True, spread_bps=estimate.spread_bps)

        return RebalanceAction(
            direction=direction,
            quantity=quantity,
            max_spread_bps=self.max_spread_bps,
            spread_bps=estimate.spread_bps,
            value_a=value_a,
            value_b=value_b,
            total_value=total,
        )

#!/usr/bin/env python3
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union


class PriceSource(Enum):
    ON_CHAIN_POOL = "ON_CHAIN_POOL"
    EXTERNAL_ORACLE = "EXTERNAL_ORACLE"
    EXCHANGE_FEED = "EXCHANGE_FEED"


class Venue(Enum):
    POOL_ROUTER = "POOL_ROUTER"
    AVIARY_STYLE = "AVIARY_STYLE"


class SwapSide(Enum):
    """BUY fixes the output quantity, SELL fixes the input quantity."""
    BUY = "BUY"
    SELL = "SELL"


class PegAction(Enum):
    BUY = "BUY"
    SELL = "SELL"
    NONE = "NONE"


class RebalanceDirection(Enum):
    SELL_B_FOR_A = "SELL_B_FOR_A"
    SELL_A_FOR_B = "SELL_A_FOR_B"


class OutcomeStatus(Enum):
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"


@dataclass(frozen=True)
class PriceQuote:
    """A single price observation, discarded after one decision cycle."""
    value: float
    observed_at: float
    source: PriceSource
    is_stale: bool = False


@dataclass(frozen=True)
class PoolReserves:
    """Reserves of a constant-product pool in its nominal (a, b) order.

    `ordering_reversed` records that the on-chain token0 is the nominal b token;
    the reserves have already been swapped into nominal order.
    """
    symbol_a: str
    symbol_b: str
    reserve_a: int
    reserve_b: int
    decimals_a: int
    decimals_b: int
    ordering_reversed: bool = False

    @classmethod
    def from_onchain(
        cls,
        symbol_a: str,
        symbol_b: str,
        reserve0: int,
        reserve1: int,
        decimals_a: int,
        decimals_b: int,
        ordering_reversed: bool,
    ) -> "PoolReserves":
        if ordering_reversed:
            reserve0, reserve1 = reserve1, reserve0
        return cls(symbol_a, symbol_b, reserve0, reserve1, decimals_a, decimals_b, ordering_reversed)

    @property
    def amount_a(self) -> float:
        return self.reserve_a / 10 ** self.decimals_a

    @property
    def amount_b(self) -> float:
        return self.reserve_b / 10 ** self.decimals_b

    @property
    def k(self) -> float:
        return self.amount_a * self.amount_b

    def amount_of(self, symbol: str) -> float:
        if symbol == self.symbol_a:
            return self.amount_a
        if symbol == self.symbol_b:
            return self.amount_b
        raise KeyError(f"{symbol} is not in pool {self.symbol_a}/{self.symbol_b}")

    def decimals_of(self, symbol: str) -> int:
        if symbol == self.symbol_a:
            return self.decimals_a
        if symbol == self.symbol_b:
            return self.decimals_b
        raise KeyError(f"{symbol} is not in pool {self.symbol_a}/{self.symbol_b}")

    def other(self, symbol: str) -> str:
        self.decimals_of(symbol)
        return self.symbol_b if symbol == self.symbol_a else self.symbol_a

    def price_of(self, symbol: str) -> float:
        """Units of the other token per unit of `symbol`."""
        return self.amount_of(self.other(symbol)) / self.amount_of(symbol)


@dataclass(frozen=True)
class SwapRequest:
    """A swap to submit exactly once.

    For BUY, `quantity` is the exact output and `bound_quantity` the maximum input;
    for SELL, `quantity` is the exact input and `bound_quantity` the minimum output.
    """
    sell_token: str
    buy_token: str
    quantity: int
    bound_quantity: int
    venue: Venue
    side: SwapSide
    max_spread_bps: Optional[int] = None

    def __post_init__(self) -> None:
        if self.quantity < 0 or self.bound_quantity < 0:
            raise ValueError(
                f"Swap quantities must be non-negative: quantity={self.quantity}, bound={self.bound_quantity}"
            )

    def describe(self) -> str:
        bound_name = "maxIn" if self.side is SwapSide.BUY else "minOut"
        text = (
            f"{self.side.value} {self.sell_token}->{self.buy_token} on {self.venue.value}: "
            f"quantity={self.quantity}, {bound_name}={self.bound_quantity}"
        )
        if self.max_spread_bps is not None:
            text += f", maxSpread={self.max_spread_bps}"
        return text


@dataclass(frozen=True)
class SwapPlan:
    """Intermediate quantities behind a peg swap, kept for the decision log."""
    request: Optional[SwapRequest]
    perfect_quantity: int
    desired_quantity: int
    capped_quantity: int
    reason: Optional[str] = None


@dataclass(frozen=True)
class BalanceSnapshot:
    token_a: float
    token_b: float
    value_a_usd: float
    value_b_usd: float
    gas: float = 0.0

    @property
    def total_usd(self) -> float:
        return self.value_a_usd + self.value_b_usd


@dataclass(frozen=True)
class SwapEstimate:
    """Quote returned by the rebalance venue's estimator."""
    ask: int
    spread_bps: int


@dataclass(frozen=True)
class RebalanceAction:
    direction: RebalanceDirection
    quantity: int
    max_spread_bps: int
    spread_bps: int
    value_a: float
    value_b: float
    total_value: float


@dataclass(frozen=True)
class NoAction:
    reason: str
    warning: bool = False
    spread_bps: Optional[int] = None


RebalanceDecision = Union[RebalanceAction, NoAction]


@dataclass(frozen=True)
class ChainEvent:
    """A notification pushed by the subscription transport."""
    event_name: str
    contract: str
    tx_id: Optional[str]
    state: dict


@dataclass(frozen=True)
class SwapOutcome:
    status: OutcomeStatus
    tx_id: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status is OutcomeStatus.SUCCEEDED

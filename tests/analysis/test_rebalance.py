from unittest.mock import AsyncMock

import pytest

from analysis.models import NoAction, RebalanceAction, RebalanceDirection, SwapEstimate
from analysis.rebalance import RebalanceDecisionEngine

SCALE = 10 ** 8


def _engine(spread_bps: int = 40, threshold: float = 0.4, max_spread: int = 100):
    estimator = AsyncMock()
    estimator.compute_swap = AsyncMock(return_value=SwapEstimate(ask=123, spread_bps=spread_bps))
    engine = RebalanceDecisionEngine(
        estimator,
        symbol_a='LRB',
        symbol_b='USDL',
        decimals_a=8,
        decimals_b=8,
        balance_threshold=threshold,
        max_spread_bps=max_spread,
    )
    return engine, estimator


@pytest.mark.asyncio
async def test_underweight_a_sells_b_for_a():
    engine, estimator = _engine()

    decision = await engine.decide(1_000 * SCALE, 4_000 * SCALE, 1.0, 1.0, 0.5, 1.25)

    assert isinstance(decision, RebalanceAction)
    assert decision.direction is RebalanceDirection.SELL_B_FOR_A
    assert decision.quantity == 1_500 * SCALE
    assert decision.spread_bps == 40
    assert decision.max_spread_bps == 100
    assert decision.total_value == pytest.approx(5_000)
    estimator.compute_swap.assert_awaited_once_with(500_000, 1_250_000, True, 1_500 * SCALE)


@pytest.mark.asyncio
async def test_underweight_b_sells_a_for_b():
    engine, estimator = _engine()

    # A is worth 2 per token: 3000 A = 6000, 1000 B = 1000, target 3500
    decision = await engine.decide(3_000 * SCALE, 1_000 * SCALE, 2.0, 1.0, 2.0, 1.0)

    assert isinstance(decision, RebalanceAction)
    assert decision.direction is RebalanceDirection.SELL_A_FOR_B
    assert decision.quantity == 1_250 * SCALE
    args = estimator.compute_swap.await_args.args
    assert args[2] is False
    assert args[3] == 1_250 * SCALE


@pytest.mark.asyncio
async def test_spread_above_maximum_is_a_warning_no_action():
    engine, _ = _engine(spread_bps=150)

    decision = await engine.decide(1_000 * SCALE, 4_000 * SCALE, 1.0, 1.0, 1.0, 1.0)

    assert isinstance(decision, NoAction)
    assert decision.reason == "spread_exceeded"
    assert decision.warning is True
    assert decision.spread_bps == 150


@pytest.mark.asyncio
async def test_spread_equal_to_maximum_is_allowed():
    engine, _ = _engine(spread_bps=100)

    decision = await engine.decide(1_000 * SCALE, 4_000 * SCALE, 1.0, 1.0, 1.0, 1.0)

    assert isinstance(decision, RebalanceAction)


@pytest.mark.asyncio
async def test_balanced_wallet_is_left_alone():
    engine, estimator = _engine()

    decision = await engine.decide(2_400 * SCALE, 2_600 * SCALE, 1.0, 1.0, 1.0, 1.0)

    assert decision == NoAction("within_threshold")
    estimator.compute_swap.assert_not_awaited()


@pytest.mark.asyncio
async def test_empty_wallet_is_left_alone():
    engine, estimator = _engine()

    decision = await engine.decide(0, 0, 1.0, 1.0, 1.0, 1.0)

    assert decision == NoAction("empty_wallet")
    estimator.compute_swap.assert_not_awaited()


@pytest.mark.asyncio
async def test_first_branch_wins_when_both_shares_are_below_threshold():
    engine, _ = _engine(threshold=0.6)

    decision = await engine.decide(4_500 * SCALE, 5_500 * SCALE, 1.0, 1.0, 1.0, 1.0)

    assert isinstance(decision, RebalanceAction)
    assert decision.direction is RebalanceDirection.SELL_B_FOR_A
    assert decision.quantity == 500 * SCALE

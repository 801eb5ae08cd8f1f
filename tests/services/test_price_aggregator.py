import asyncio
import logging
from unittest.mock import AsyncMock

import pytest

from analysis.models import PriceSource
from errors import LedgerError, QuoteUnavailable
from services.binance_feed import FeedState
from services.price_aggregator import PoolConfig, PriceAggregator

FLM = '0x1000000000000000000000000000000000000001'
USDL = '0x1000000000000000000000000000000000000002'
POOL_FUSDT = '0x2000000000000000000000000000000000000001'
POOL_USDL = '0x2000000000000000000000000000000000000002'
DECIMALS = {'FLM': 8, 'FUSDT': 6, 'USDL': 8}
NOW = 1_700_000_000.0

TOKEN0 = {POOL_FUSDT: FLM, POOL_USDL: USDL}
RESERVES = {
    POOL_FUSDT: (1_000_000 * 10 ** 8, 50_000 * 10 ** 6),
    # token0 is USDL here, so on-chain order is (USDL, FLM)
    POOL_USDL: (51_000 * 10 ** 8, 1_000_000 * 10 ** 8),
}


def _ledger():
    ledger = AsyncMock()
    ledger.get_token0.side_effect = lambda pool_hash: TOKEN0[pool_hash]
    ledger.get_pool_reserves.side_effect = lambda pool_hash: RESERVES[pool_hash]
    return ledger


def _aggregator(ledger=None, oracle=None, feed_state=None, feed=None):
    pools = [
        PoolConfig('FLM_FUSDT', POOL_FUSDT, 'FLM', 'FUSDT', FLM),
        PoolConfig('FLM_USDL', POOL_USDL, 'FLM', 'USDL', FLM),
    ]
    return PriceAggregator(
        ledger or _ledger(),
        oracle or AsyncMock(),
        pools,
        DECIMALS,
        bridge_symbol='FLM',
        stable_pool_id='FLM_FUSDT',
        feed_state=feed_state,
        feed=feed,
        clock=lambda: NOW,
    )


@pytest.mark.asyncio
async def test_initialize_detects_reversed_pools():
    aggregator = _aggregator()

    await aggregator.initialize()

    assert aggregator.is_ready
    assert aggregator.ordering == {'FLM_FUSDT': False, 'FLM_USDL': True}
    reserves = await aggregator.pool_reserves('FLM_USDL')
    assert reserves.reserve_a == 1_000_000 * 10 ** 8
    assert reserves.ordering_reversed is True


@pytest.mark.asyncio
async def test_reserves_before_initialize_is_an_error():
    aggregator = _aggregator()

    with pytest.raises(RuntimeError):
        await aggregator.pool_reserves('FLM_USDL')


@pytest.mark.asyncio
async def test_cross_prices_use_decimals_and_ordering():
    aggregator = _aggregator()
    await aggregator.initialize()

    assert await aggregator.pool_cross_price('FLM_FUSDT') == pytest.approx(0.05)
    assert await aggregator.pool_cross_price('FLM_USDL') == pytest.approx(0.051)
    assert await aggregator.price_in_bridge('USDL') == pytest.approx(1 / 0.051)
    assert await aggregator.price_in_bridge('FLM') == 1.0


@pytest.mark.asyncio
async def test_quote_without_feed_uses_stable_pool(caplog):
    aggregator = _aggregator()
    await aggregator.initialize()

    with caplog.at_level(logging.WARNING):
        quote = await aggregator.quote('USDL')

    assert quote.value == pytest.approx(0.05 / 0.051)
    assert quote.source is PriceSource.ON_CHAIN_POOL
    assert quote.observed_at == NOW
    assert "stale" not in caplog.text


@pytest.mark.asyncio
async def test_fresh_feed_price_is_preferred():
    state = FeedState('FLM', stale_after=60.0, clock=lambda: NOW)
    state.publish(0.051, NOW - 5)
    aggregator = _aggregator(feed_state=state)
    await aggregator.initialize()

    bridge = await aggregator.bridge_price()
    quote = await aggregator.quote('USDL')

    assert bridge.source is PriceSource.EXCHANGE_FEED
    assert quote.value == pytest.approx(1.0)
    assert quote.source is PriceSource.EXCHANGE_FEED
    assert quote.observed_at == NOW - 5


@pytest.mark.asyncio
async def test_stale_feed_falls_back_with_warning(caplog):
    state = FeedState('FLM', stale_after=60.0, clock=lambda: NOW)
    state.publish(0.09, NOW - 61)
    aggregator = _aggregator(feed_state=state)
    await aggregator.initialize()

    with caplog.at_level(logging.WARNING):
        bridge = await aggregator.bridge_price()

    assert bridge.source is PriceSource.ON_CHAIN_POOL
    assert bridge.value == pytest.approx(0.05)
    assert "stale" in caplog.text


@pytest.mark.asyncio
async def test_initialize_waits_for_feed_backfill():
    feed = AsyncMock()
    released = asyncio.Event()
    feed.wait_ready.side_effect = released.wait
    aggregator = _aggregator(feed=feed)

    task = asyncio.create_task(aggregator.initialize())
    await asyncio.sleep(0.01)
    assert aggregator.is_ready is False

    released.set()
    await task
    assert aggregator.is_ready is True


@pytest.mark.asyncio
async def test_ledger_errors_become_quote_unavailable():
    ledger = _ledger()
    aggregator = _aggregator(ledger=ledger)
    await aggregator.initialize()
    ledger.get_pool_reserves.side_effect = LedgerError("timeout")

    with pytest.raises(QuoteUnavailable):
        await aggregator.quote('USDL')


@pytest.mark.asyncio
async def test_global_price_wraps_unexpected_oracle_errors():
    oracle = AsyncMock()
    oracle.get_price.side_effect = ValueError("bad number")
    aggregator = _aggregator(oracle=oracle)

    with pytest.raises(QuoteUnavailable):
        await aggregator.global_price('LRB')

#!/usr/bin/env python3
"""Combines pool reserves, the HTTP oracle and the exchange feed into price quotes."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Dict, Iterable, NamedTuple, Optional

from analysis.models import PoolReserves, PriceQuote, PriceSource
from errors import LedgerError, QuoteUnavailable
from services.ledger_client import normalise_script_hash

logger = logging.getLogger(__name__)


class PoolConfig(NamedTuple):
    """A constant-product pool quoting `quote_symbol` per unit of `base_symbol`."""
    pool_id: str
    contract_hash: str
    base_symbol: str
    quote_symbol: str
    base_hash: str


class PriceAggregator:
    def __init__(
        self,
        ledger,
        oracle,
        pools: Iterable[PoolConfig],
        decimals: Dict[str, int],
        *,
        bridge_symbol: str,
        stable_pool_id: str,
        feed_state=None,
        feed=None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ledger = ledger
        self.oracle = oracle
        self.pools: Dict[str, PoolConfig] = {pool.pool_id: pool for pool in pools}
        self.decimals = decimals
        self.bridge_symbol = bridge_symbol
        self.stable_pool_id = stable_pool_id
        self.feed_state = feed_state
        self.feed = feed
        self._clock = clock
        self._ordering_reversed: Dict[str, bool] = {}
        self._ready = asyncio.Event()

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    @property
    def ordering(self) -> Dict[str, bool]:
        return dict(self._ordering_reversed)

    async def initialize(self) -> None:
        """Resolves every pool's token ordering, then waits for the feed's first backfill."""
        pool_ids = list(self.pools)
        try:
            token0s = await asyncio.gather(*(self.ledger.get_token0(self.pools[p].contract_hash) for p in pool_ids))
        except LedgerError as exc:
            raise QuoteUnavailable(f"Could not resolve pool token ordering: {exc.message}") from exc
        for pool_id, token0 in zip(pool_ids, token0s):
            base_hash = normalise_script_hash(self.pools[pool_id].base_hash)
            self._ordering_reversed[pool_id] = normalise_script_hash(token0) != base_hash
        logger.debug(
            "Initialized pool ordering: %s",
            ", ".join(f"{pool_id}_REVERSED={flag}" for pool_id, flag in self._ordering_reversed.items()),
        )
        if self.feed is not None:
            await self.feed.wait_ready()
        self._ready.set()

    async def wait_ready(self) -> None:
        await self._ready.wait()

    async def pool_reserves(self, pool_id: str) -> PoolReserves:
        pool = self.pools[pool_id]
        if pool_id not in self._ordering_reversed:
            raise RuntimeError(f"Pool ordering for {pool_id} has not been resolved; call initialize() first")
        try:
            reserve0, reserve1 = await self.ledger.get_pool_reserves(pool.contract_hash)
        except LedgerError as exc:
            raise QuoteUnavailable(f"Could not read reserves of {pool_id}: {exc.message}") from exc
        return PoolReserves.from_onchain(
            pool.base_symbol,
            pool.quote_symbol,
            reserve0,
            reserve1,
            self.decimals[pool.base_symbol],
            self.decimals[pool.quote_symbol],
            self._ordering_reversed[pool_id],
        )

    async def pool_cross_price(self, pool_id: str) -> float:
        """Units of the quote token per unit of the base token."""
        reserves = await self.pool_reserves(pool_id)
        if reserves.reserve_a <= 0 or reserves.reserve_b <= 0:
            raise QuoteUnavailable(f"Pool {pool_id} has an empty reserve: {reserves.reserve_a}, {reserves.reserve_b}")
        return reserves.price_of(reserves.symbol_a)

    async def price_in_bridge(self, symbol: str) -> float:
        """Units of the bridge asset per unit of `symbol`, from the bridge pool holding it."""
        if symbol == self.bridge_symbol:
            return 1.0
        pool_id = self._bridge_pool_for(symbol)
        return 1.0 / await self.pool_cross_price(pool_id)

    async def global_price(self, symbol: str) -> float:
        try:
            return await self.oracle.get_price(symbol)
        except QuoteUnavailable:
            raise
        except Exception as exc:
            raise QuoteUnavailable(f"Oracle price for {symbol} unavailable: {exc}") from exc

    def reference_price(self, symbol: str) -> PriceQuote:
        """Latest exchange feed tick; always stale when the feed is disabled or does not carry `symbol`."""
        if self.feed_state is None or self.feed_state.symbol != symbol:
            return PriceQuote(value=0.0, observed_at=0.0, source=PriceSource.EXCHANGE_FEED, is_stale=True)
        return self.feed_state.quote()

    async def bridge_price(self) -> PriceQuote:
        """USD price of the bridge asset: the feed when fresh, otherwise the stable pool."""
        reference = self.reference_price(self.bridge_symbol)
        if not reference.is_stale:
            return reference
        if self.feed_state is not None:
            logger.warning(
                "Falling back to pool %s price because the exchange feed price is stale (observed_at=%s)",
                self.bridge_symbol, reference.observed_at,
            )
        value = await self.pool_cross_price(self.stable_pool_id)
        return PriceQuote(value=value, observed_at=self._clock(), source=PriceSource.ON_CHAIN_POOL)

    async def quote(self, symbol: str) -> PriceQuote:
        """USD price of `symbol` composed from its bridge pool and the bridge price."""
        if symbol == self.bridge_symbol:
            return await self.bridge_price()
        in_bridge, bridge = await asyncio.gather(self.price_in_bridge(symbol), self.bridge_price())
        # source and age follow the bridge leg
        return PriceQuote(value=in_bridge * bridge.value, observed_at=bridge.observed_at, source=bridge.source)

    def _bridge_pool_for(self, symbol: str) -> str:
        for pool in self.pools.values():
            if pool.base_symbol == self.bridge_symbol and pool.quote_symbol == symbol:
                return pool.pool_id
        raise KeyError(f"No {self.bridge_symbol} pool configured for {symbol}")

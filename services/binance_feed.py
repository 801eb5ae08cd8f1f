#!/usr/bin/env python3
"""Binance trade stream for the bridge asset price.

The stream task is the only writer of FeedState; readers take the current
FeedSnapshot, which is immutable and replaced wholesale on every tick.
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import aiohttp

from analysis.models import PriceQuote, PriceSource
from services.price_oracle_client import api_get

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeedSnapshot:
    price: float
    timestamp: float
    version: int


class FeedState:
    def __init__(self, symbol: str, stale_after: float, clock: Callable[[], float] = time.time) -> None:
        self.symbol = symbol
        self.stale_after = stale_after
        self._clock = clock
        self._snapshot = FeedSnapshot(price=0.0, timestamp=0.0, version=0)

    @property
    def snapshot(self) -> FeedSnapshot:
        return self._snapshot

    def publish(self, price: float, timestamp: float) -> FeedSnapshot:
        snapshot = FeedSnapshot(price=price, timestamp=timestamp, version=self._snapshot.version + 1)
        self._snapshot = snapshot
        return snapshot

    def quote(self) -> PriceQuote:
        snapshot = self._snapshot
        is_stale = self._clock() - snapshot.timestamp > self.stale_after
        return PriceQuote(
            value=snapshot.price,
            observed_at=snapshot.timestamp,
            source=PriceSource.EXCHANGE_FEED,
            is_stale=is_stale,
        )


class BinancePriceFeed:
    """Keeps FeedState current from the trade stream, with a REST backfill on every connect."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        state: FeedState,
        *,
        ws_url: str,
        rest_url: str,
        reconnect_delay: float = 5.0,
        max_reconnect_delay: float = 120.0,
    ) -> None:
        self._session = session
        self.state = state
        self.ws_url = ws_url
        self.rest_url = rest_url
        self._reconnect_delay = reconnect_delay
        self._max_reconnect_delay = max_reconnect_delay
        self._ready = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    async def wait_ready(self) -> None:
        await self._ready.wait()

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
            logger.info("Initialized Binance price feed for %s", self.state.symbol)
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def run(self) -> None:
        backoff = self._reconnect_delay
        while True:
            try:
                await self._stream_once()
                backoff = self._reconnect_delay
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("Binance feed error for %s: %s; reconnecting in %.1fs", self.state.symbol, exc, backoff)
                await asyncio.sleep(backoff)
                backoff = min(backoff * 1.5, self._max_reconnect_delay)

    async def backfill(self) -> None:
        data = await api_get(self.rest_url, self._session)
        snapshot = self.state.publish(float(data['price']), time.time())
        logger.debug("Backfilled %s price=%s (version %s)", self.state.symbol, snapshot.price, snapshot.version)

    def handle_message(self, payload: dict) -> Optional[FeedSnapshot]:
        price = payload.get('p')
        trade_time = payload.get('T')
        if not price or not trade_time:
            return None
        return self.state.publish(float(price), float(trade_time) / 1000.0)

    async def _stream_once(self) -> None:
        async with self._session.ws_connect(self.ws_url, heartbeat=30) as ws:
            await self.backfill()
            self._ready.set()
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    try:
                        payload = json.loads(msg.data)
                    except json.JSONDecodeError:
                        logger.debug("Ignoring non-JSON feed message: %s", msg.data)
                        continue
                    if isinstance(payload, dict):
                        self.handle_message(payload)
                elif msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                    break

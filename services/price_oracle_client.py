#!/usr/bin/env python3
import asyncio
from typing import Any, Dict, Optional

import aiohttp

from constants import PRICE_MULT
from errors import QuoteUnavailable


async def api_get(
    url: str,
    session: aiohttp.ClientSession,
    params: Optional[Dict] = None,
    timeout: float = 10,
) -> Any:
    """Makes a single async GET request; failures surface as QuoteUnavailable."""
    try:
        async with session.get(url, params=params, timeout=timeout) as response:
            response.raise_for_status()
            return await response.json()
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise QuoteUnavailable(f"Price request to {url} failed: {e}", details={"url": url}) from e


class PriceOracleClient:
    """Global token prices from the HTTP price service, quoted in PRICE_MULT units."""

    def __init__(self, session: aiohttp.ClientSession, price_url: str, timeout: float = 10):
        self.session = session
        self.price_url = price_url
        self.timeout = timeout

    async def get_price(self, token_symbol: str) -> float:
        data = await api_get(self.price_url, self.session, params={'token': token_symbol}, timeout=self.timeout)
        if not isinstance(data, dict) or data.get(token_symbol) is None:
            raise QuoteUnavailable(f"Could not parse {token_symbol} price from oracle response: {data}")
        return float(data[token_symbol]) / PRICE_MULT

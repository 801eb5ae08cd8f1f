import json
from types import SimpleNamespace

import aiohttp
import pytest

from analysis.models import PriceSource
from services.binance_feed import BinancePriceFeed, FeedState


class FakeWebSocket:
    def __init__(self, messages):
        self._messages = list(messages)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._messages:
            raise StopAsyncIteration
        return self._messages.pop(0)


class FakeResponse:
    def __init__(self, payload):
        self._payload = payload

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    def raise_for_status(self):
        return None

    async def json(self):
        return self._payload


class FakeSession:
    def __init__(self, rest_payload, messages):
        self.rest_payload = rest_payload
        self.messages = messages
        self.ws_urls = []

    def get(self, url, params=None, timeout=None):
        return FakeResponse(self.rest_payload)

    def ws_connect(self, url, heartbeat=None):
        self.ws_urls.append(url)
        return FakeWebSocket(self.messages)


def _text(payload):
    data = payload if isinstance(payload, str) else json.dumps(payload)
    return SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=data)


def test_feed_state_versions_and_staleness():
    now = [1_000.0]
    state = FeedState('FLM', stale_after=60.0, clock=lambda: now[0])

    assert state.quote().is_stale is True

    first = state.publish(0.05, 990.0)
    second = state.publish(0.051, 995.0)
    assert (first.version, second.version) == (1, 2)

    quote = state.quote()
    assert quote.value == 0.051
    assert quote.source is PriceSource.EXCHANGE_FEED
    assert quote.is_stale is False

    now[0] = 1_056.0
    assert state.quote().is_stale is True


def test_handle_message_uses_trade_time_in_seconds():
    state = FeedState('FLM', stale_after=60.0)
    feed = BinancePriceFeed(None, state, ws_url='wss://x', rest_url='https://x')

    snapshot = feed.handle_message({'e': 'trade', 'p': '0.0612', 'T': 1_700_000_000_500})

    assert snapshot.price == pytest.approx(0.0612)
    assert snapshot.timestamp == pytest.approx(1_700_000_000.5)
    assert feed.handle_message({'e': 'trade'}) is None
    assert state.snapshot.version == 1


@pytest.mark.asyncio
async def test_stream_once_backfills_before_ready_and_applies_trades():
    state = FeedState('FLM', stale_after=60.0)
    session = FakeSession(
        {'symbol': 'FLMUSDT', 'price': '0.0600'},
        [_text('not json'), _text({'p': '0.0605', 'T': 1_700_000_001_000})],
    )
    feed = BinancePriceFeed(session, state, ws_url='wss://stream/flmusdt@trade', rest_url='https://api/price')

    assert feed.is_ready is False
    await feed._stream_once()

    assert feed.is_ready is True
    assert session.ws_urls == ['wss://stream/flmusdt@trade']
    assert state.snapshot.version == 2
    assert state.snapshot.price == pytest.approx(0.0605)

import json
from types import SimpleNamespace

import aiohttp
import pytest

from analysis.models import ChainEvent
from services.notification_client import NotificationClient, parse_notification

TOKEN = '0x3333333333333333333333333333333333333333'


def _notification(contract=TOKEN, event_name='Transfer', container='0xtx1'):
    return {
        'jsonrpc': '2.0',
        'method': 'notification_from_execution',
        'params': [{
            'container': container,
            'contract': contract,
            'eventname': event_name,
            'state': {'type': 'Array', 'value': []},
        }],
    }


class FakeWebSocket:
    def __init__(self, messages):
        self._messages = list(messages)
        self.sent = []
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.closed = True
        return False

    async def send_json(self, payload):
        self.sent.append(payload)

    async def close(self):
        self.closed = True

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._messages:
            raise StopAsyncIteration
        return self._messages.pop(0)


class FakeSession:
    def __init__(self, ws):
        self.ws = ws
        self.headers = None

    def ws_connect(self, url, heartbeat=None, headers=None):
        self.headers = headers
        return self.ws


def test_parse_notification_normalises_contract():
    event = parse_notification(_notification(contract='0X' + TOKEN[2:].upper()))

    assert event == ChainEvent('Transfer', TOKEN, '0xtx1', {'type': 'Array', 'value': []})
    assert parse_notification({'jsonrpc': '2.0', 'result': True, 'id': 1}) is None


@pytest.mark.asyncio
async def test_dispatch_reaches_only_matching_listeners():
    client = NotificationClient(None, 'ws://node/ws')
    seen = []

    await client.subscribe(TOKEN, 'Transfer', seen.append)
    await client.subscribe(TOKEN, 'Approval', lambda e: seen.append('wrong'))
    client.handle_message(json.dumps(_notification()))
    client.handle_message('garbage')
    client.handle_message(json.dumps({'jsonrpc': '2.0', 'error': {'code': -1}}))

    assert len(seen) == 1
    assert seen[0].tx_id == '0xtx1'


@pytest.mark.asyncio
async def test_failing_callback_does_not_block_others():
    client = NotificationClient(None, 'ws://node/ws')
    seen = []

    def explode(event):
        raise RuntimeError("bad listener")

    await client.subscribe(TOKEN, 'Transfer', explode)
    await client.subscribe(TOKEN, 'Transfer', seen.append)
    client.handle_message(json.dumps(_notification()))

    assert len(seen) == 1


@pytest.mark.asyncio
async def test_unsubscribe_is_idempotent():
    client = NotificationClient(None, 'ws://node/ws')

    handle = await client.subscribe(TOKEN, 'Transfer', lambda e: None)
    assert client.listener_count(TOKEN, 'Transfer') == 1

    client.unsubscribe(handle)
    client.unsubscribe(handle)
    assert client.listener_count(TOKEN, 'Transfer') == 0


@pytest.mark.asyncio
async def test_listen_once_subscribes_each_key_once_and_dispatches():
    ws = FakeWebSocket([SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=json.dumps(_notification()))])
    session = FakeSession(ws)
    client = NotificationClient(session, 'ws://node/ws', origin='https://bot.local')
    seen = []

    await client.subscribe(TOKEN, 'Transfer', seen.append)
    await client.subscribe(TOKEN, 'Transfer', seen.append)
    await client._listen_once()

    assert session.headers == {'Origin': 'https://bot.local'}
    assert len(ws.sent) == 1
    assert ws.sent[0]['method'] == 'subscribe'
    assert ws.sent[0]['params'] == ['notification_from_execution', {'contract': TOKEN, 'name': 'Transfer'}]
    assert client.available.is_set()
    assert len(seen) == 2

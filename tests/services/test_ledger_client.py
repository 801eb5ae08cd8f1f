import base64

import aiohttp
import pytest

from errors import LedgerError, TransactionRejected
from services.ledger_client import (
    NeoRpcClient,
    base64_matches_script_hash,
    normalise_script_hash,
    script_hash_from_base64,
)
from services.transaction_factory import UnsignedTransaction

FLM_HASH = '0xf0151f528127558851b39c2cd8aa47da7418ab28'
POOL_HASH = '0x1111111111111111111111111111111111111111'


def _hash_to_base64(script_hash: str) -> str:
    return base64.b64encode(bytes.fromhex(script_hash[2:])[::-1]).decode()


class FakeResponse:
    def __init__(self, payload):
        self._payload = payload
        self.status = 200

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    def raise_for_status(self):
        return None

    async def json(self):
        return self._payload


class FakeSession:
    def __init__(self, responses):
        self._responses = list(responses)
        self.requests = []

    def post(self, url, json, timeout):
        self.requests.append(json)
        if not self._responses:
            raise AssertionError("No more fake responses configured")
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return FakeResponse(response)


def _halt(*stack):
    return {'jsonrpc': '2.0', 'id': 1, 'result': {'state': 'HALT', 'gasconsumed': '1007390', 'stack': list(stack)}}


def test_script_hash_helpers():
    encoded = _hash_to_base64(FLM_HASH)

    assert script_hash_from_base64(encoded) == FLM_HASH
    assert base64_matches_script_hash(encoded, FLM_HASH.upper().replace('0X', '0x'))
    assert base64_matches_script_hash(None, FLM_HASH) is False
    assert base64_matches_script_hash('not base64!', FLM_HASH) is False
    assert normalise_script_hash('ABCD') == '0xabcd'


def test_upper_case_prefix_is_normalised():
    upper = '0X' + FLM_HASH[2:].upper()

    assert normalise_script_hash(upper) == FLM_HASH
    assert base64_matches_script_hash(_hash_to_base64(FLM_HASH), upper)


@pytest.mark.asyncio
async def test_get_balance_sends_invokefunction():
    session = FakeSession([_halt({'type': 'Integer', 'value': '12345'})])
    client = NeoRpcClient(session, rpc_url='http://mock-rpc')

    balance = await client.get_balance(FLM_HASH, POOL_HASH)

    assert balance == 12345
    request = session.requests[0]
    assert request['method'] == 'invokefunction'
    assert request['params'][0] == FLM_HASH
    assert request['params'][1] == 'balanceOf'
    assert request['params'][2] == [{'type': 'Hash160', 'value': POOL_HASH}]


@pytest.mark.asyncio
async def test_request_ids_increase():
    session = FakeSession([{'result': 10}, {'result': 11}])
    client = NeoRpcClient(session, rpc_url='http://mock-rpc')

    assert await client.current_height() == 10
    assert await client.current_height() == 11
    assert [r['id'] for r in session.requests] == [1, 2]


@pytest.mark.asyncio
async def test_get_token0_and_reserves():
    session = FakeSession([
        _halt({'type': 'ByteString', 'value': _hash_to_base64(FLM_HASH)}),
        _halt({'type': 'Array', 'value': [{'type': 'Integer', 'value': '500'}, {'type': 'Integer', 'value': '2000'}]}),
    ])
    client = NeoRpcClient(session, rpc_url='http://mock-rpc')

    assert await client.get_token0(POOL_HASH) == FLM_HASH
    assert await client.get_pool_reserves(POOL_HASH) == (500, 2000)


@pytest.mark.asyncio
async def test_fault_on_read_raises_ledger_error():
    session = FakeSession([{'result': {'state': 'FAULT', 'exception': 'boom', 'stack': []}}])
    client = NeoRpcClient(session, rpc_url='http://mock-rpc')

    with pytest.raises(LedgerError, match="boom"):
        await client.get_balance(FLM_HASH, POOL_HASH)


@pytest.mark.asyncio
async def test_rpc_error_and_transport_failure_raise_ledger_error():
    session = FakeSession([
        {'error': {'code': -100, 'message': 'unknown'}},
        aiohttp.ClientError("connection reset"),
    ])
    client = NeoRpcClient(session, rpc_url='http://mock-rpc')

    with pytest.raises(LedgerError):
        await client.current_height()
    with pytest.raises(LedgerError, match="connection reset"):
        await client.current_height()


@pytest.mark.asyncio
async def test_system_fee_simulation_fault_is_a_rejection():
    transaction = UnsignedTransaction(script='c2NyaXB0', serialized='dHg=', valid_until_block=20)
    session = FakeSession([
        _halt(),
        {'result': {'state': 'FAULT', 'exception': 'ASSERT is executed with false result.'}},
    ])
    client = NeoRpcClient(session, rpc_url='http://mock-rpc')

    assert await client.estimate_system_fee(transaction) == 1007390
    with pytest.raises(TransactionRejected) as exc_info:
        await client.estimate_system_fee(transaction)
    assert exc_info.value.details['exception'] == 'ASSERT is executed with false result.'


@pytest.mark.asyncio
async def test_submit_returns_hash_and_wraps_errors():
    session = FakeSession([
        {'result': {'hash': '0xabc'}},
        {'error': {'code': -500, 'message': 'InsufficientFunds'}},
    ])
    client = NeoRpcClient(session, rpc_url='http://mock-rpc')

    assert await client.submit('signed') == '0xabc'
    with pytest.raises(TransactionRejected):
        await client.submit('signed')
    assert session.requests[0]['method'] == 'sendrawtransaction'

#!/usr/bin/env python3
"""JSON-RPC client for the Neo N3 node used for reads, fee checks and submission."""
import asyncio
import base64
from typing import Any, Dict, List, Optional, Tuple

import aiohttp
from aiohttp import ClientSession

from errors import LedgerError, TransactionRejected
from services.transaction_factory import UnsignedTransaction


def normalise_script_hash(script_hash: str) -> str:
    if not script_hash:
        return script_hash
    if script_hash[:2].lower() == '0x':
        return '0x' + script_hash[2:].lower()
    return '0x' + script_hash.lower()


def script_hash_from_base64(value: str) -> str:
    """Decode a little-endian Hash160 stack item into a 0x-prefixed big-endian hash."""
    raw = base64.b64decode(value)
    return '0x' + raw[::-1].hex()


def base64_matches_script_hash(value: Optional[str], script_hash: str) -> bool:
    if not value:
        return False
    try:
        return script_hash_from_base64(value) == normalise_script_hash(script_hash)
    except (ValueError, TypeError):
        return False


def hash160_param(script_hash: str) -> Dict[str, str]:
    return {"type": "Hash160", "value": normalise_script_hash(script_hash)}


def integer_param(value: int) -> Dict[str, str]:
    return {"type": "Integer", "value": str(int(value))}


def stack_int(item: Dict[str, Any]) -> int:
    value = item.get('value')
    if value is None or value == '':
        return 0
    return int(value)


class NeoRpcClient:
    """Ledger collaborator: contract reads, fee estimation and transaction submission."""

    def __init__(self, session: ClientSession, *, rpc_url: str, timeout: float = 10.0) -> None:
        self._session = session
        self._rpc_url = rpc_url
        self._timeout = timeout
        self._id_lock = asyncio.Lock()
        self._next_request_id = 1

    async def invoke_read(self, contract: str, method: str, args: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
        """Runs a read-only invocation and returns the first stack item."""
        result = await self._rpc_call(
            "invokefunction",
            [normalise_script_hash(contract), method, args or []],
        )
        if not result or result.get('state') != 'HALT':
            exception = (result or {}).get('exception')
            raise LedgerError(
                f"Read {method} on {contract} did not halt: {exception}",
                details={"contract": contract, "method": method},
            )
        stack = result.get('stack') or []
        if not stack:
            raise LedgerError(f"Read {method} on {contract} returned an empty stack")
        return stack[0]

    async def current_height(self) -> int:
        result = await self._rpc_call("getblockcount", [])
        return int(result)

    async def estimate_network_fee(self, transaction: UnsignedTransaction) -> int:
        result = await self._rpc_call("calculatenetworkfee", [transaction.serialized])
        return int(result['networkfee'])

    async def estimate_system_fee(self, transaction: UnsignedTransaction) -> int:
        """Simulates the script; a FAULT means the swap would revert on-chain."""
        result = await self._rpc_call("invokescript", [transaction.script, transaction.signers])
        if not result or result.get('state') != 'HALT':
            exception = (result or {}).get('exception')
            raise TransactionRejected(
                f"Transfer script errored out: {exception}",
                details={"exception": exception},
            )
        return int(result['gasconsumed'])

    async def submit(self, signed_transaction: str) -> str:
        try:
            result = await self._rpc_call("sendrawtransaction", [signed_transaction])
        except LedgerError as exc:
            raise TransactionRejected(f"Submission failed: {exc.message}", details=exc.details) from exc
        return result['hash']

    async def get_balance(self, token_hash: str, account_hash: str) -> int:
        item = await self.invoke_read(token_hash, 'balanceOf', [hash160_param(account_hash)])
        return stack_int(item)

    async def get_token0(self, pool_hash: str) -> str:
        item = await self.invoke_read(pool_hash, 'getToken0')
        return script_hash_from_base64(item['value'])

    async def get_pool_reserves(self, pool_hash: str) -> Tuple[int, int]:
        item = await self.invoke_read(pool_hash, 'getReserves')
        values = item.get('value') or []
        if len(values) < 2:
            raise LedgerError(f"Unexpected reserves payload for {pool_hash}: {item}")
        return stack_int(values[0]), stack_int(values[1])

    async def _rpc_call(self, method: str, params: list) -> Any:
        request_id = await self._get_request_id()
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": request_id,
        }
        try:
            async with self._session.post(self._rpc_url, json=payload, timeout=self._timeout) as response:
                response.raise_for_status()
                data = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise LedgerError(f"RPC {method} failed: {exc}", details={"method": method}) from exc
        if 'error' in data:
            raise LedgerError(f"RPC {method} returned error: {data['error']}", details={"error": data['error']})
        return data.get('result')

    async def _get_request_id(self) -> int:
        async with self._id_lock:
            request_id = self._next_request_id
            self._next_request_id += 1
        return request_id

#!/usr/bin/env python3
"""Websocket subscription to contract notifications pushed by the Neo node."""
from __future__ import annotations

import asyncio
import itertools
import json
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

import aiohttp

from analysis.models import ChainEvent
from services.ledger_client import normalise_script_hash

logger = logging.getLogger(__name__)

EventCallback = Callable[[ChainEvent], None]
SubscriptionKey = Tuple[str, str]


@dataclass(frozen=True)
class SubscriptionHandle:
    id: int
    key: SubscriptionKey


def parse_notification(payload: dict) -> Optional[ChainEvent]:
    params = payload.get('params')
    if not params or not isinstance(params, list) or not isinstance(params[0], dict):
        return None
    body = params[0]
    event_name = body.get('eventname')
    contract = body.get('contract')
    if not event_name or not contract:
        return None
    return ChainEvent(
        event_name=event_name,
        contract=normalise_script_hash(contract),
        tx_id=body.get('container'),
        state=body.get('state') or {},
    )


class NotificationClient:
    """One persistent websocket; local listeners keyed by (contract, event name).

    The server-side subscription is sent once per key and re-sent after every
    reconnect. Events missed while disconnected are not replayed.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        ws_url: str,
        *,
        origin: Optional[str] = None,
        reconnect_delay: float = 5.0,
        max_reconnect_delay: float = 120.0,
    ) -> None:
        self._session = session
        self.ws_url = ws_url
        self._origin = origin
        self._reconnect_delay = reconnect_delay
        self._max_reconnect_delay = max_reconnect_delay
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._listeners: Dict[SubscriptionKey, Dict[int, EventCallback]] = {}
        self._subscribed_keys: set = set()
        self._handle_ids = itertools.count(1)
        self._request_ids = itertools.count(1)
        self.available = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    def is_open(self) -> bool:
        return self._ws is not None and not self._ws.closed

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        self._ws = None
        self.available.clear()

    async def subscribe(self, contract: str, event_name: str, callback: EventCallback) -> SubscriptionHandle:
        key = (normalise_script_hash(contract), event_name)
        handle = SubscriptionHandle(next(self._handle_ids), key)
        self._listeners.setdefault(key, {})[handle.id] = callback
        if key not in self._subscribed_keys and self.is_open():
            await self._send_subscribe(key)
        return handle

    def unsubscribe(self, handle: SubscriptionHandle) -> None:
        listeners = self._listeners.get(handle.key)
        if listeners:
            listeners.pop(handle.id, None)

    def listener_count(self, contract: str, event_name: str) -> int:
        return len(self._listeners.get((normalise_script_hash(contract), event_name), {}))

    def dispatch(self, event: ChainEvent) -> None:
        listeners = self._listeners.get((event.contract, event.event_name))
        if not listeners:
            return
        for callback in list(listeners.values()):
            try:
                callback(event)
            except Exception as exc:
                logger.error("Notification callback for %s failed: %s", event.event_name, exc, exc_info=True)

    def handle_message(self, raw: str) -> None:
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            logger.debug("Ignoring non-JSON notification: %s", raw)
            return
        if not isinstance(payload, dict):
            return
        if 'error' in payload:
            logger.warning("Notification server returned error: %s", payload['error'])
            return
        event = parse_notification(payload)
        if event is not None:
            self.dispatch(event)

    async def run(self) -> None:
        backoff = self._reconnect_delay
        while True:
            try:
                await self._listen_once()
                backoff = self._reconnect_delay
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("Notification socket error: %s; reconnecting in %.1fs", exc, backoff)
            finally:
                self._ws = None
                self.available.clear()
            await asyncio.sleep(backoff)
            backoff = min(backoff * 1.5, self._max_reconnect_delay)

    async def _listen_once(self) -> None:
        headers = {'Origin': self._origin} if self._origin else None
        async with self._session.ws_connect(self.ws_url, heartbeat=30, headers=headers) as ws:
            self._ws = ws
            self._subscribed_keys.clear()
            for key in list(self._listeners):
                await self._send_subscribe(key)
            self.available.set()
            logger.info("Notification socket open at %s", self.ws_url)
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self.handle_message(msg.data)
                elif msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                    break
        logger.warning("Notification socket closed")

    async def _send_subscribe(self, key: SubscriptionKey) -> None:
        contract, event_name = key
        self._subscribed_keys.add(key)
        await self._ws.send_json({
            'jsonrpc': '2.0',
            'method': 'subscribe',
            'params': ['notification_from_execution', {'contract': contract, 'name': event_name}],
            'id': next(self._request_ids),
        })
        logger.debug("Subscribed to %s on %s", event_name, contract)

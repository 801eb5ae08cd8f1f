#!/usr/bin/env python3
"""Correlates a submitted swap with the ledger notification that completes it."""
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import List, Optional, Protocol, Sequence, Tuple

from analysis.models import ChainEvent, OutcomeStatus, SwapOutcome
from constants import AVIARY_SWAP_EVENT, AVIARY_SWAP_FAILURE_EVENT, TRANSFER_EVENT
from services.ledger_client import base64_matches_script_hash

logger = logging.getLogger(__name__)


class Matcher(Protocol):
    subscriptions: Sequence[Tuple[str, str]]

    def match(self, event: ChainEvent) -> Optional[OutcomeStatus]:
        ...


def _state_item(event: ChainEvent, index: int) -> Optional[str]:
    values = event.state.get('value') if isinstance(event.state, dict) else None
    if not isinstance(values, list) or len(values) <= index:
        return None
    item = values[index]
    if not isinstance(item, dict):
        return None
    return item.get('value')


class TransferReceivedMatcher:
    """Success when the received token emits a Transfer whose recipient is the operator."""

    def __init__(self, token_hash: str, recipient_hash: str) -> None:
        self.token_hash = token_hash
        self.recipient_hash = recipient_hash
        self.subscriptions = [(token_hash, TRANSFER_EVENT)]

    def match(self, event: ChainEvent) -> Optional[OutcomeStatus]:
        if event.event_name != TRANSFER_EVENT:
            return None
        if base64_matches_script_hash(_state_item(event, 1), self.recipient_hash):
            return OutcomeStatus.SUCCEEDED
        return None

    def __repr__(self) -> str:
        return f"TransferReceivedMatcher(token={self.token_hash})"


class SwapResultMatcher:
    """Swap means success and SwapFailure means failure, for events naming the operator."""

    def __init__(self, contract_hash: str, account_hash: str) -> None:
        self.contract_hash = contract_hash
        self.account_hash = account_hash
        self.subscriptions = [
            (contract_hash, AVIARY_SWAP_EVENT),
            (contract_hash, AVIARY_SWAP_FAILURE_EVENT),
        ]

    def match(self, event: ChainEvent) -> Optional[OutcomeStatus]:
        if event.event_name not in (AVIARY_SWAP_EVENT, AVIARY_SWAP_FAILURE_EVENT):
            return None
        if not base64_matches_script_hash(_state_item(event, 0), self.account_hash):
            return None
        if event.event_name == AVIARY_SWAP_EVENT:
            return OutcomeStatus.SUCCEEDED
        return OutcomeStatus.FAILED

    def __repr__(self) -> str:
        return f"SwapResultMatcher(contract={self.contract_hash})"


class CorrelationState(Enum):
    WAITING = "WAITING"
    MATCHED = "MATCHED"
    TIMED_OUT = "TIMED_OUT"
    ABANDONED = "ABANDONED"


class PendingCorrelation:
    """One registration; resolves exactly once, then ignores every later event."""

    def __init__(self, transport, matcher: Matcher, timeout: float) -> None:
        self._transport = transport
        self.matcher = matcher
        self.timeout = timeout
        self.state = CorrelationState.WAITING
        self._loop = asyncio.get_running_loop()
        self._future: asyncio.Future = self._loop.create_future()
        self._handles: List = []
        self._timer: Optional[asyncio.TimerHandle] = None

    @property
    def done(self) -> bool:
        return self._future.done()

    async def register(self) -> None:
        for contract, event_name in self.matcher.subscriptions:
            handle = await self._transport.subscribe(contract, event_name, self._on_event)
            self._handles.append(handle)
        self._timer = self._loop.call_later(self.timeout, self._on_timeout)

    async def outcome(self) -> SwapOutcome:
        return await self._future

    def deregister(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        handles, self._handles = self._handles, []
        for handle in handles:
            self._transport.unsubscribe(handle)

    def abandon(self) -> None:
        """Drops a registration whose transaction never reached the ledger."""
        self._resolve(SwapOutcome(OutcomeStatus.FAILED), CorrelationState.ABANDONED)

    def _on_event(self, event: ChainEvent) -> None:
        if self._future.done():
            return
        status = self.matcher.match(event)
        if status is None:
            return
        logger.info("%s resolved %s by %s event in %s", self.matcher, status.value, event.event_name, event.tx_id)
        self._resolve(SwapOutcome(status, event.tx_id), CorrelationState.MATCHED)

    def _on_timeout(self) -> None:
        self._timer = None
        if self._future.done():
            return
        logger.info("%s: no completion event after %.1f seconds", self.matcher, self.timeout)
        self._resolve(SwapOutcome(OutcomeStatus.TIMED_OUT), CorrelationState.TIMED_OUT)

    def _resolve(self, outcome: SwapOutcome, state: CorrelationState) -> None:
        if self._future.done():
            return
        self.state = state
        self._future.set_result(outcome)
        self.deregister()


class SwapCompletionCorrelator:
    def __init__(self, transport, default_timeout: float) -> None:
        self.transport = transport
        self.default_timeout = default_timeout

    async def expect(self, matcher: Matcher, timeout: Optional[float] = None) -> PendingCorrelation:
        """Registers interest before the transaction is submitted."""
        pending = PendingCorrelation(self.transport, matcher, timeout if timeout is not None else self.default_timeout)
        try:
            await pending.register()
        except Exception:
            pending.deregister()
            raise
        return pending

    async def await_swap(self, matcher: Matcher, timeout: Optional[float] = None) -> SwapOutcome:
        pending = await self.expect(matcher, timeout)
        try:
            return await pending.outcome()
        finally:
            pending.deregister()

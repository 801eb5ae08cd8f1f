import asyncio
import base64
import time

import pytest

from analysis.models import ChainEvent, OutcomeStatus
from services.notification_client import NotificationClient
from services.swap_correlator import (
    CorrelationState,
    SwapCompletionCorrelator,
    SwapResultMatcher,
    TransferReceivedMatcher,
)

TOKEN = '0x3333333333333333333333333333333333333333'
AVIARY = '0x4444444444444444444444444444444444444444'
OWNER = '0x5555555555555555555555555555555555555555'
STRANGER = '0x6666666666666666666666666666666666666666'


def _b64(script_hash):
    return base64.b64encode(bytes.fromhex(script_hash[2:])[::-1]).decode()


def _transfer(to_hash, tx_id='0xtx'):
    return ChainEvent('Transfer', TOKEN, tx_id, {'type': 'Array', 'value': [
        {'type': 'ByteString', 'value': _b64(STRANGER)},
        {'type': 'ByteString', 'value': _b64(to_hash)},
        {'type': 'Integer', 'value': '100'},
    ]})


def _aviary(event_name, account):
    return ChainEvent(event_name, AVIARY, '0xav', {'type': 'Array', 'value': [
        {'type': 'ByteString', 'value': _b64(account)},
    ]})


@pytest.mark.asyncio
async def test_timeout_resolves_and_removes_listeners():
    transport = NotificationClient(None, 'ws://node/ws')
    correlator = SwapCompletionCorrelator(transport, default_timeout=0.05)

    started = time.monotonic()
    outcome = await correlator.await_swap(TransferReceivedMatcher(TOKEN, OWNER))
    elapsed = time.monotonic() - started

    assert outcome.status is OutcomeStatus.TIMED_OUT
    assert 0.04 <= elapsed < 1.0
    assert transport.listener_count(TOKEN, 'Transfer') == 0


@pytest.mark.asyncio
async def test_event_after_timeout_does_not_resolve_again():
    transport = NotificationClient(None, 'ws://node/ws')
    correlator = SwapCompletionCorrelator(transport, default_timeout=0.02)

    pending = await correlator.expect(TransferReceivedMatcher(TOKEN, OWNER))
    outcome = await pending.outcome()
    assert outcome.status is OutcomeStatus.TIMED_OUT

    transport.dispatch(_transfer(OWNER, tx_id='0xlate'))
    # a delivery already in flight when the timer fired
    pending._on_event(_transfer(OWNER, tx_id='0xlate'))

    assert (await pending.outcome()).status is OutcomeStatus.TIMED_OUT
    assert (await pending.outcome()).tx_id is None
    assert pending.state is CorrelationState.TIMED_OUT
    assert transport.listener_count(TOKEN, 'Transfer') == 0


@pytest.mark.asyncio
async def test_matching_transfer_succeeds_and_later_events_are_ignored():
    transport = NotificationClient(None, 'ws://node/ws')
    correlator = SwapCompletionCorrelator(transport, default_timeout=5)

    pending = await correlator.expect(TransferReceivedMatcher(TOKEN, OWNER))
    transport.dispatch(_transfer(STRANGER))
    assert pending.done is False

    transport.dispatch(_transfer(OWNER, tx_id='0xmine'))
    transport.dispatch(_transfer(OWNER, tx_id='0xlate'))

    outcome = await pending.outcome()
    assert outcome.status is OutcomeStatus.SUCCEEDED
    assert outcome.tx_id == '0xmine'
    assert pending.state is CorrelationState.MATCHED
    assert transport.listener_count(TOKEN, 'Transfer') == 0


@pytest.mark.asyncio
async def test_swap_failure_event_fails_the_swap():
    transport = NotificationClient(None, 'ws://node/ws')
    correlator = SwapCompletionCorrelator(transport, default_timeout=5)

    task = asyncio.create_task(correlator.await_swap(SwapResultMatcher(AVIARY, OWNER)))
    await asyncio.sleep(0)
    transport.dispatch(_aviary('Swap', STRANGER))
    transport.dispatch(_aviary('SwapFailure', OWNER))

    outcome = await task
    assert outcome.status is OutcomeStatus.FAILED
    assert transport.listener_count(AVIARY, 'Swap') == 0
    assert transport.listener_count(AVIARY, 'SwapFailure') == 0


@pytest.mark.asyncio
async def test_swap_event_succeeds():
    transport = NotificationClient(None, 'ws://node/ws')
    correlator = SwapCompletionCorrelator(transport, default_timeout=5)

    pending = await correlator.expect(SwapResultMatcher(AVIARY, OWNER))
    transport.dispatch(_aviary('Swap', OWNER))

    assert (await pending.outcome()).status is OutcomeStatus.SUCCEEDED


@pytest.mark.asyncio
async def test_abandon_and_deregister_are_idempotent():
    transport = NotificationClient(None, 'ws://node/ws')
    correlator = SwapCompletionCorrelator(transport, default_timeout=5)

    pending = await correlator.expect(TransferReceivedMatcher(TOKEN, OWNER))
    pending.abandon()
    pending.abandon()
    pending.deregister()

    assert pending.state is CorrelationState.ABANDONED
    assert (await pending.outcome()).status is OutcomeStatus.FAILED
    assert transport.listener_count(TOKEN, 'Transfer') == 0

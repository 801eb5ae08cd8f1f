"""Submits planned swaps and waits for their settlement notification."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from analysis.models import OutcomeStatus, SwapRequest, Venue
from constants import VALID_UNTIL_BLOCK_OFFSET
from errors import SlippageExceeded, SpreadExceeded, StabilizerError, TransactionRejected
from services.swap_correlator import SwapCompletionCorrelator, SwapResultMatcher, TransferReceivedMatcher
from services.transaction_factory import TransactionFactory

logger = logging.getLogger(__name__)


class AttemptStatus(Enum):
    SKIPPED = "SKIPPED"
    DRY_RUN = "DRY_RUN"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"
    REJECTED = "REJECTED"


_OUTCOME_STATUS = {
    OutcomeStatus.SUCCEEDED: AttemptStatus.SUCCEEDED,
    OutcomeStatus.FAILED: AttemptStatus.FAILED,
    OutcomeStatus.TIMED_OUT: AttemptStatus.TIMED_OUT,
}


@dataclass(slots=True)
class SwapResult:
    request: SwapRequest
    status: AttemptStatus
    tx_id: Optional[str] = None
    reason: Optional[str] = None

    @property
    def submitted(self) -> bool:
        return self.status in (AttemptStatus.SUCCEEDED, AttemptStatus.FAILED, AttemptStatus.TIMED_OUT)


class SwapExecutor:
    """Build, fee-check, submit and confirm one swap; per-swap failures become a REJECTED result."""

    def __init__(
        self,
        ledger,
        correlator: SwapCompletionCorrelator,
        factory: Optional[TransactionFactory],
        *,
        owner_hash: str,
        token_hashes: Dict[str, str],
        aviary_hash: str,
        dry_run: bool = True,
    ) -> None:
        self.ledger = ledger
        self.correlator = correlator
        self.factory = factory
        self.owner_hash = owner_hash
        self.token_hashes = token_hashes
        self.aviary_hash = aviary_hash
        self.dry_run = dry_run

    async def execute(self, request: SwapRequest) -> SwapResult:
        if self.factory is None:
            logger.info("No transaction factory configured; not building %s", request.describe())
            return SwapResult(request, AttemptStatus.SKIPPED, reason="no_transaction_factory")
        try:
            return await self._execute(request)
        except StabilizerError as exc:
            logger.error("Failed to submit %s: %s", request.describe(), exc.message)
            return SwapResult(request, AttemptStatus.REJECTED, reason=f"{exc.error_code}: {exc.message}")
        except Exception as exc:
            logger.exception("Unexpected error while submitting %s: %s", request.describe(), exc)
            return SwapResult(request, AttemptStatus.REJECTED, reason=f"UNEXPECTED: {exc}")

    async def _execute(self, request: SwapRequest) -> SwapResult:
        height = await self.ledger.current_height()
        transaction = await self.factory.build_swap(request, valid_until_block=height + VALID_UNTIL_BLOCK_OFFSET)

        transaction.network_fee = await self.ledger.estimate_network_fee(transaction)
        logger.debug("Network fee set: %s", transaction.network_fee)
        try:
            transaction.system_fee = await self.ledger.estimate_system_fee(transaction)
        except TransactionRejected as exc:
            raise self._rejection_for(request, exc) from exc
        logger.debug("System fee set: %s", transaction.system_fee)

        if self.dry_run:
            logger.info("Not submitting transaction due to dry run with: %s", request.describe())
            return SwapResult(request, AttemptStatus.DRY_RUN, reason="dry_run")

        logger.info("Submitting transaction with: %s", request.describe())
        pending = await self.correlator.expect(self._matcher_for(request))
        try:
            signed = await self.factory.sign(transaction)
            tx_id = await self.ledger.submit(signed)
        except BaseException:
            pending.abandon()
            raise
        logger.info("Transaction hash: %s", tx_id)

        try:
            outcome = await pending.outcome()
        finally:
            pending.deregister()
        status = _OUTCOME_STATUS[outcome.status]
        if status is AttemptStatus.TIMED_OUT:
            logger.warning("Swap %s unconfirmed after %.0f seconds", tx_id, pending.timeout)
        else:
            logger.info("Swap %s finished with %s", outcome.tx_id or tx_id, status.value)
        return SwapResult(request, status, tx_id=outcome.tx_id or tx_id)

    def _matcher_for(self, request: SwapRequest):
        if request.venue is Venue.AVIARY_STYLE:
            return SwapResultMatcher(self.aviary_hash, self.owner_hash)
        return TransferReceivedMatcher(self.token_hashes[request.buy_token], self.owner_hash)

    @staticmethod
    def _rejection_for(request: SwapRequest, exc: TransactionRejected) -> StabilizerError:
        if request.venue is Venue.AVIARY_STYLE:
            return SpreadExceeded(f"Aviary swap simulation faulted: {exc.message}", details=exc.details)
        return SlippageExceeded(f"Router swap simulation faulted: {exc.message}", details=exc.details)

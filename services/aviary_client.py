#!/usr/bin/env python3
from analysis.models import SwapEstimate
from errors import LedgerError, QuoteUnavailable
from services.ledger_client import integer_param, stack_int


class AviaryQuoteClient:
    """Spread estimator backed by the Aviary contract's computeSwapWithMin read."""

    def __init__(self, ledger, aviary_hash: str) -> None:
        self.ledger = ledger
        self.aviary_hash = aviary_hash

    async def compute_swap(self, price_a: int, price_b: int, buy_a: bool, quantity: int) -> SwapEstimate:
        params = [
            integer_param(price_a),
            integer_param(price_b),
            integer_param(1 if buy_a else 0),
            integer_param(quantity),
        ]
        try:
            item = await self.ledger.invoke_read(self.aviary_hash, 'computeSwapWithMin', params)
        except LedgerError as exc:
            raise QuoteUnavailable(f"Aviary swap computation failed: {exc.message}") from exc
        values = item.get('value') or []
        if len(values) < 2:
            raise QuoteUnavailable(f"Unexpected computeSwapWithMin result: {item}")
        return SwapEstimate(ask=stack_int(values[0]), spread_bps=stack_int(values[1]))

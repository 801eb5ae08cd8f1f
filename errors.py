"""Error taxonomy for the stabilizer.

Per-swap errors are caught at the swap-attempt boundary and degrade to
"skip this action this cycle"; only ConfigurationInvalid is fatal.
"""
from typing import Any, Dict, Optional


class StabilizerError(Exception):
    """Base exception for the stabilizer."""

    def __init__(self, message: str, error_code: str = "UNKNOWN", details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class QuoteUnavailable(StabilizerError):
    """A price could not be read; retry next cycle."""

    def __init__(self, message: str = "Quote unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "QUOTE_UNAVAILABLE", details)


class LedgerError(StabilizerError):
    """The ledger RPC returned an error or could not be reached."""

    def __init__(self, message: str = "Ledger request failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "LEDGER_ERROR", details)


class TransactionRejected(StabilizerError):
    """Fee estimation, simulation or submission of a transaction failed."""

    def __init__(self, message: str = "Transaction rejected", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "TRANSACTION_REJECTED", details)


class SwapRejected(StabilizerError):
    """Business rejection of a single swap."""


class SlippageExceeded(SwapRejected):
    """The router refused the swap because the bound quantity was violated."""

    def __init__(self, message: str = "Slippage tolerance exceeded", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "SLIPPAGE_EXCEEDED", details)


class SpreadExceeded(SwapRejected):
    """The swap venue's spread was above the configured maximum."""

    def __init__(self, message: str = "Spread exceeded", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "SPREAD_EXCEEDED", details)


class ConfigurationInvalid(StabilizerError):
    """Startup configuration is missing or inconsistent."""

    def __init__(self, message: str = "Configuration invalid", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONFIGURATION_INVALID", details)

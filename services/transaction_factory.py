"""Boundary to the transaction builder/signer.

Script encoding, signing and address derivation happen outside this project; a
factory is plugged in through configuration as ``module:attribute``, where the
attribute is a callable receiving the AppConfig and returning a TransactionFactory.
"""
from __future__ import annotations

import importlib
from dataclasses import dataclass, field
from typing import Any, Awaitable, Protocol

from analysis.models import SwapRequest
from errors import ConfigurationInvalid


@dataclass
class UnsignedTransaction:
    script: str
    serialized: str
    valid_until_block: int
    signers: list[dict] = field(default_factory=list)
    network_fee: int = 0
    system_fee: int = 0


class TransactionFactory(Protocol):
    def build_swap(self, request: SwapRequest, *, valid_until_block: int) -> Awaitable[UnsignedTransaction]:
        ...

    def sign(self, transaction: UnsignedTransaction) -> Awaitable[str]:
        ...


def load_transaction_factory(target: str, config: Any) -> TransactionFactory:
    module_name, _, attribute = target.partition(':')
    if not module_name or not attribute:
        raise ConfigurationInvalid(f"Transaction factory must look like 'module:attribute', got '{target}'")
    try:
        module = importlib.import_module(module_name)
        builder = getattr(module, attribute)
    except (ImportError, AttributeError) as exc:
        raise ConfigurationInvalid(f"Could not load transaction factory '{target}': {exc}") from exc
    return builder(config)

"""Dataclasses representing stored stabilizer records."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(slots=True)
class ControlCycleRecord:
    id: int
    started_at: datetime
    finished_at: Optional[datetime]
    peg_price: Optional[float]
    target_price: Optional[float]
    peg_action: Optional[str]
    rebalance_decision: Optional[str]
    error: Optional[str]


@dataclass(slots=True)
class SwapAttemptRecord:
    id: int
    control_cycle_id: Optional[int]
    label: str
    attempted_at: datetime
    venue: str
    side: str
    sell_token: str
    buy_token: str
    quantity: int
    bound_quantity: int
    max_spread_bps: Optional[int]
    status: str
    tx_id: Optional[str]
    reason: Optional[str]
    raw_payload: Optional[dict]

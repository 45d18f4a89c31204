from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Optional


class RaffleState(IntEnum):
    OPEN = 0
    CALCULATING = 1


@dataclass(frozen=True)
class UpkeepStatus:
    upkeep_needed: bool
    balance: int
    player_count: int
    state: RaffleState
    seconds_since_last_draw: int
    interval_elapsed: bool
    pending_request_id: Optional[int] = None
    seconds_pending: Optional[int] = None


@dataclass(frozen=True)
class RaffleSnapshot:
    state: RaffleState
    entrance_fee: int
    interval_seconds: int
    round_number: int
    player_count: int
    balance: int
    last_timestamp: int
    recent_winner: Optional[str]
    pending_request_id: Optional[int]
    pending_since: Optional[int]


@dataclass(frozen=True)
class FulfillmentResult:
    request_id: int
    round_number: int
    winner: str
    winner_index: int
    prize: int
    payout_ref: Optional[str]

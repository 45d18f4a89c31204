from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import List, Optional


class RaffleState(IntEnum):
    OPEN = 0
    CALCULATING = 1


@dataclass(frozen=True)
class UpkeepSnapshot:
    upkeep_needed: bool
    balance: int
    player_count: int
    state: RaffleState
    seconds_since_last_draw: int
    pending_request_id: Optional[int] = None
    seconds_pending: Optional[int] = None


class UpkeepRejected(RuntimeError):
    """The raffle refused the upkeep call (its conditions changed since the check)."""

    def __init__(self, code: str, detail: dict) -> None:
        super().__init__(f"{code}: {detail}")
        self.code = code
        self.detail = detail


@dataclass(frozen=True)
class RelayedFulfillment:
    """Random words read from the coordinator, signed for the raffle's callback."""

    request_id: int
    random_words: List[int]
    signature: str

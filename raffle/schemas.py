from __future__ import annotations

import re
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")


class EnterRequest(BaseModel):
    participant: str = Field(..., description="0x-prefixed 20-byte address of the entrant.")
    amount: int = Field(..., ge=0, description="Amount paid, in wei.")

    @field_validator("participant")
    @classmethod
    def validate_participant(cls, value: str) -> str:
        if not ADDRESS_PATTERN.match(value):
            raise ValueError("participant must be a 0x-prefixed 40 hex character address.")
        return value


class EnterResponse(BaseModel):
    participant: str
    player_count: int
    balance: str


class FulfillmentRequest(BaseModel):
    request_id: int = Field(..., ge=0)
    random_words: List[int] = Field(..., min_length=1)
    signature: str

    @field_validator("random_words")
    @classmethod
    def validate_words(cls, value: List[int]) -> List[int]:
        for word in value:
            if word < 0 or word >= 2**256:
                raise ValueError("random words must be uint256 values.")
        return value


class FulfillmentResponse(BaseModel):
    request_id: str
    round_number: int
    winner: str
    winner_index: int
    prize: str
    payout_ref: Optional[str] = None


class MockFulfillRequest(BaseModel):
    request_id: Optional[int] = None
    random_words: Optional[List[int]] = None


class UpkeepStatusResponse(BaseModel):
    upkeep_needed: bool
    balance: str
    player_count: int
    state: str
    seconds_since_last_draw: int
    interval_elapsed: bool
    pending_request_id: Optional[str] = None
    seconds_pending: Optional[int] = None


class PerformUpkeepResponse(BaseModel):
    request_id: str
    state: str


class RaffleSnapshotResponse(BaseModel):
    state: str
    state_code: int
    entrance_fee: str
    interval_seconds: int
    round_number: int
    player_count: int
    balance: str
    last_timestamp: int
    recent_winner: Optional[str] = None
    pending_request_id: Optional[str] = None

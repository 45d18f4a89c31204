from __future__ import annotations

import datetime as dt
import json
from typing import Any, Dict, Optional

from sqlalchemy import Column, DateTime, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()

RAFFLE_ID = 1


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc).replace(tzinfo=None)


class RaffleRecord(Base):
    """The single mutable raffle row: state, clock and current-round balance."""

    __tablename__ = "raffle"

    id = Column(Integer, primary_key=True, default=RAFFLE_ID)
    state = Column(Integer, nullable=False, default=0)
    round_number = Column(Integer, nullable=False, default=1)
    balance = Column(String(78), nullable=False, default="0")
    last_timestamp = Column(Integer, nullable=False)
    recent_winner = Column(String(64), nullable=True)
    pending_request_id = Column(String(78), nullable=True)
    pending_since = Column(Integer, nullable=True)

    def get_balance(self) -> int:
        return int(self.balance or "0")

    def set_balance(self, amount: int) -> None:
        self.balance = str(int(amount))

    def get_pending_request_id(self) -> Optional[int]:
        if self.pending_request_id is None:
            return None
        return int(self.pending_request_id)

    def set_pending_request(self, request_id: Optional[int], issued_at: Optional[int] = None) -> None:
        self.pending_request_id = None if request_id is None else str(int(request_id))
        self.pending_since = issued_at if request_id is not None else None


class EntryRecord(Base):
    __tablename__ = "entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    round_number = Column(Integer, nullable=False, index=True)
    participant = Column(String(64), nullable=False)
    amount = Column(String(78), nullable=False)
    created_at = Column(DateTime, default=_utcnow, nullable=False)


class RaffleEvent(Base):
    __tablename__ = "raffle_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(32), nullable=False)
    payload = Column(Text, nullable=False)
    created_at = Column(DateTime, default=_utcnow, nullable=False)

    def set_payload(self, payload: Dict[str, Any]) -> None:
        self.payload = json.dumps(payload)

    def get_payload(self) -> Dict[str, Any]:
        return json.loads(self.payload)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "args": self.get_payload(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class WinnerRecord(Base):
    __tablename__ = "winners"

    round_number = Column(Integer, primary_key=True)
    winner = Column(String(64), nullable=False)
    prize = Column(String(78), nullable=False)
    request_id = Column(String(78), nullable=False)
    random_word = Column(String(78), nullable=False)
    payout_ref = Column(String(128), nullable=True)
    paid_at = Column(Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "round_number": self.round_number,
            "winner": self.winner,
            "prize": self.prize,
            "request_id": self.request_id,
            "random_word": self.random_word,
            "payout_ref": self.payout_ref,
            "paid_at": self.paid_at,
        }

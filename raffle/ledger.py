from __future__ import annotations

from typing import List

from sqlalchemy import func
from sqlalchemy.orm import Session

from . import events
from .errors import IndexOutOfRange, InsufficientPayment, RoundNotAcceptingEntries
from .models import EntryRecord, RaffleRecord
from .types import RaffleState


class EntryLedger:
    """Participants and accepted funds of the current round.

    Bound to one session and the raffle row loaded in it; the owning state
    machine decides when the transaction commits.
    """

    def __init__(self, session: Session, record: RaffleRecord, entrance_fee: int) -> None:
        self._session = session
        self._record = record
        self._entrance_fee = entrance_fee

    def record_entry(self, participant: str, amount_paid: int) -> int:
        if amount_paid < self._entrance_fee:
            raise InsufficientPayment(amount_paid, self._entrance_fee)
        state = RaffleState(self._record.state)
        if state != RaffleState.OPEN:
            raise RoundNotAcceptingEntries(state)

        entry = EntryRecord(
            round_number=self._record.round_number,
            participant=participant,
            amount=str(int(amount_paid)),
        )
        self._session.add(entry)
        self._record.set_balance(self._record.get_balance() + amount_paid)
        events.emit(self._session, events.ENTERED_RAFFLE, participant=participant)
        self._session.flush()
        return self.participant_count()

    def reset(self) -> None:
        # Earlier rounds stay in the table as history.
        self._record.round_number += 1
        self._record.set_balance(0)

    def participant_count(self) -> int:
        return int(
            self._session.query(func.count(EntryRecord.id))
            .filter(EntryRecord.round_number == self._record.round_number)
            .scalar()
            or 0
        )

    def participant_at(self, index: int) -> str:
        count = self.participant_count()
        if index < 0 or index >= count:
            raise IndexOutOfRange(index, count)
        entry = (
            self._current_round()
            .order_by(EntryRecord.id)
            .offset(index)
            .limit(1)
            .one()
        )
        return entry.participant

    def participants(self) -> List[str]:
        return [entry.participant for entry in self._current_round().order_by(EntryRecord.id)]

    def total_balance(self) -> int:
        return self._record.get_balance()

    def _current_round(self):
        return self._session.query(EntryRecord).filter(
            EntryRecord.round_number == self._record.round_number
        )

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from . import events
from .clock import Clock, ClockGate
from .config import RaffleSettings
from .db import Database
from .errors import (
    InvalidFulfillment,
    NoParticipants,
    PayoutFailed,
    PayoutUnconfirmed,
    RetryNotAllowed,
    UnauthorizedCallback,
    UnknownRequest,
    UpkeepNotNeeded,
)
from .ledger import EntryLedger
from .models import RAFFLE_ID, RaffleRecord, WinnerRecord
from .payouts import PayoutPending, PayoutSender
from .randomness import CallbackSigner, RandomnessRequester, VRFRequestConfig
from .types import FulfillmentResult, RaffleSnapshot, RaffleState, UpkeepStatus


class RaffleStateMachine:
    """OPEN -> CALCULATING -> OPEN raffle driven by upkeep and randomness callbacks.

    Each public method runs under one process-wide lock and inside one
    database transaction, so a call either applies completely or not at all.
    """

    def __init__(
        self,
        database: Database,
        settings: RaffleSettings,
        vrf_config: VRFRequestConfig,
        requester: RandomnessRequester,
        payout_sender: PayoutSender,
        signer: CallbackSigner,
        clock: Optional[Clock] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._db = database
        self._settings = settings
        self._vrf_config = vrf_config
        self._requester = requester
        self._payouts = payout_sender
        self._signer = signer
        self._clock = ClockGate(settings.interval_seconds, clock)
        self._lock = threading.RLock()
        self._logger = logger or logging.getLogger("chainraffle.machine")

    @property
    def entrance_fee(self) -> int:
        return self._settings.entrance_fee

    @property
    def interval_seconds(self) -> int:
        return self._settings.interval_seconds

    @property
    def request_timeout_seconds(self) -> int:
        return self._settings.request_timeout_seconds

    @property
    def vrf_config(self) -> VRFRequestConfig:
        return self._vrf_config

    @property
    def requester(self) -> RandomnessRequester:
        return self._requester

    def initialize(self) -> None:
        self._db.create_all()
        with self._lock, self._db.session_scope() as session:
            if session.get(RaffleRecord, RAFFLE_ID) is not None:
                return
            now = self._clock.now()
            session.add(
                RaffleRecord(
                    id=RAFFLE_ID,
                    state=int(RaffleState.OPEN),
                    round_number=1,
                    balance="0",
                    last_timestamp=now,
                )
            )
            self._logger.info(
                "Raffle initialised: fee=%s interval=%ss", self.entrance_fee, self.interval_seconds
            )

    # ------------------------------------------------------------------ #
    # Entry points
    # ------------------------------------------------------------------ #

    def enter(self, participant: str, amount_paid: int) -> int:
        with self._transaction() as (session, record):
            count = self._ledger(session, record).record_entry(participant, int(amount_paid))
            self._logger.debug("%s entered round %s (%s players)", participant, record.round_number, count)
            return count

    def check_upkeep_needed(self) -> bool:
        return self.upkeep_status().upkeep_needed

    def upkeep_status(self) -> UpkeepStatus:
        with self._transaction() as (session, record):
            return self._evaluate_upkeep(session, record, self._clock.now())

    def perform_upkeep(self) -> int:
        with self._transaction() as (session, record):
            now = self._clock.now()
            status = self._evaluate_upkeep(session, record, now)
            if not status.upkeep_needed:
                raise UpkeepNotNeeded(status.balance, status.player_count, status.state)

            # Close entry before the request goes out.
            record.state = int(RaffleState.CALCULATING)
            request_id = self._requester.request_random_words(self._vrf_config)
            record.set_pending_request(request_id, now)
            events.emit(session, events.REQUESTED_WINNER, request_id=str(request_id))
            self._logger.info(
                "Requested winner for round %s: request=%s players=%s balance=%s",
                record.round_number,
                request_id,
                status.player_count,
                status.balance,
            )
            return request_id

    def fulfill_random_words(
        self, request_id: int, random_words: Sequence[int], signature: Optional[str]
    ) -> FulfillmentResult:
        request_id = int(request_id)
        words = [int(word) for word in random_words]
        if not self._signer.verify(request_id, words, signature):
            self._logger.warning("Rejected unsigned fulfillment for request %s", request_id)
            raise UnauthorizedCallback(request_id)

        with self._transaction() as (session, record):
            if record.get_pending_request_id() != request_id:
                raise UnknownRequest(request_id)
            if not words:
                raise InvalidFulfillment("random_words must contain at least one value")
            if words[0] < 0:
                raise InvalidFulfillment("random words must be non-negative")

            ledger = self._ledger(session, record)
            count = ledger.participant_count()
            if count == 0:
                raise NoParticipants()

            winner_index = words[0] % count
            winner = ledger.participant_at(winner_index)
            prize = ledger.total_balance()
            round_number = record.round_number
            now = self._clock.now()

            record.recent_winner = winner
            record.state = int(RaffleState.OPEN)
            record.set_pending_request(None)
            events.emit(session, events.PICKED_WINNER, winner=winner)
            ledger.reset()
            self._clock.reset(record, now)

            history = WinnerRecord(
                round_number=round_number,
                winner=winner,
                prize=str(prize),
                request_id=str(request_id),
                random_word=str(words[0]),
                paid_at=now,
            )
            session.add(history)

            # A failed transfer rolls back every change above.
            try:
                payout_ref = self._payouts.transfer(winner, prize)
            except PayoutPending as exc:
                self._logger.warning(
                    "Payout of %s to %s unconfirmed (%s); holding round %s",
                    prize,
                    winner,
                    exc.reference,
                    round_number,
                )
                raise PayoutUnconfirmed(winner, prize, exc.reference) from exc
            except Exception as exc:
                self._logger.error("Payout of %s to %s failed: %s", prize, winner, exc)
                raise PayoutFailed(winner, prize, str(exc)) from exc
            history.payout_ref = payout_ref

            self._logger.info(
                "Round %s won by %s (index %s of %s), prize=%s",
                round_number,
                winner,
                winner_index,
                count,
                prize,
            )
            return FulfillmentResult(
                request_id=request_id,
                round_number=round_number,
                winner=winner,
                winner_index=winner_index,
                prize=prize,
                payout_ref=payout_ref,
            )

    def retry_request(self) -> int:
        """Replace a pending request that has gone unanswered past the timeout."""
        with self._transaction() as (session, record):
            state = RaffleState(record.state)
            now = self._clock.now()
            timeout = self.request_timeout_seconds
            if state != RaffleState.CALCULATING or record.pending_since is None:
                raise RetryNotAllowed(state, None, timeout)
            seconds_pending = now - record.pending_since
            if seconds_pending < timeout:
                raise RetryNotAllowed(state, seconds_pending, timeout)
            if self._payouts.has_unresolved_transfer():
                # The held winner stays fixed while its transfer may still land.
                raise RetryNotAllowed(
                    state, seconds_pending, timeout, reason="payout transfer unresolved"
                )

            previous = record.get_pending_request_id()
            request_id = self._requester.request_random_words(self._vrf_config)
            record.set_pending_request(request_id, now)
            events.emit(session, events.REQUESTED_WINNER, request_id=str(request_id))
            self._logger.warning(
                "Request %s unanswered for %ss; replaced by %s", previous, seconds_pending, request_id
            )
            return request_id

    # ------------------------------------------------------------------ #
    # Read-only getters
    # ------------------------------------------------------------------ #

    def raffle_state(self) -> RaffleState:
        with self._transaction() as (_, record):
            return RaffleState(record.state)

    def player(self, index: int) -> str:
        with self._transaction() as (session, record):
            return self._ledger(session, record).participant_at(index)

    def players(self) -> List[str]:
        with self._transaction() as (session, record):
            return self._ledger(session, record).participants()

    def player_count(self) -> int:
        with self._transaction() as (session, record):
            return self._ledger(session, record).participant_count()

    def total_balance(self) -> int:
        with self._transaction() as (_, record):
            return record.get_balance()

    def recent_winner(self) -> Optional[str]:
        with self._transaction() as (_, record):
            return record.recent_winner

    def last_timestamp(self) -> int:
        with self._transaction() as (_, record):
            return record.last_timestamp

    def pending_request_id(self) -> Optional[int]:
        with self._transaction() as (_, record):
            return record.get_pending_request_id()

    def snapshot(self) -> RaffleSnapshot:
        with self._transaction() as (session, record):
            return RaffleSnapshot(
                state=RaffleState(record.state),
                entrance_fee=self.entrance_fee,
                interval_seconds=self.interval_seconds,
                round_number=record.round_number,
                player_count=self._ledger(session, record).participant_count(),
                balance=record.get_balance(),
                last_timestamp=record.last_timestamp,
                recent_winner=record.recent_winner,
                pending_request_id=record.get_pending_request_id(),
                pending_since=record.pending_since,
            )

    def recent_events(self, limit: int = 50) -> List[dict]:
        with self._transaction() as (session, _):
            return events.recent_events(session, limit)

    def winners(self, limit: int = 20) -> List[dict]:
        with self._transaction() as (session, _):
            rows = (
                session.query(WinnerRecord)
                .order_by(WinnerRecord.round_number.desc())
                .limit(limit)
                .all()
            )
            return [row.to_dict() for row in rows]

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #

    @contextmanager
    def _transaction(self) -> Iterator[Tuple[Session, RaffleRecord]]:
        with self._lock, self._db.session_scope() as session:
            record = session.get(RaffleRecord, RAFFLE_ID)
            if record is None:
                raise RuntimeError("Raffle not initialised; call initialize() first")
            yield session, record

    def _ledger(self, session: Session, record: RaffleRecord) -> EntryLedger:
        return EntryLedger(session, record, self.entrance_fee)

    def _evaluate_upkeep(self, session: Session, record: RaffleRecord, now: int) -> UpkeepStatus:
        ledger = self._ledger(session, record)
        balance = ledger.total_balance()
        player_count = ledger.participant_count()
        state = RaffleState(record.state)
        interval_elapsed = self._clock.is_due(record, now)
        return UpkeepStatus(
            upkeep_needed=(
                interval_elapsed
                and state == RaffleState.OPEN
                and balance > 0
                and player_count > 0
            ),
            balance=balance,
            player_count=player_count,
            state=state,
            seconds_since_last_draw=now - record.last_timestamp,
            interval_elapsed=interval_elapsed,
            pending_request_id=record.get_pending_request_id(),
            seconds_pending=None if record.pending_since is None else now - record.pending_since,
        )

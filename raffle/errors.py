"""Raffle error taxonomy.

Every error carries a stable ``code`` and a structured ``payload()`` so callers
(and the HTTP layer) can react to the diagnostic fields instead of parsing
messages.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from .types import RaffleState


class RaffleError(Exception):
    code = "raffle_error"
    status_code = 400

    def payload(self) -> Dict[str, Any]:
        return {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, **self.payload()}


class InsufficientPayment(RaffleError):
    code = "insufficient_payment"
    status_code = 400

    def __init__(self, amount_paid: int, entrance_fee: int) -> None:
        super().__init__(f"Paid {amount_paid}, entrance fee is {entrance_fee}")
        self.amount_paid = amount_paid
        self.entrance_fee = entrance_fee

    def payload(self) -> Dict[str, Any]:
        return {"amount_paid": str(self.amount_paid), "entrance_fee": str(self.entrance_fee)}


class RoundNotAcceptingEntries(RaffleError):
    code = "round_not_accepting_entries"
    status_code = 409

    def __init__(self, state: RaffleState) -> None:
        super().__init__(f"Raffle not open (state={state.name})")
        self.state = state

    def payload(self) -> Dict[str, Any]:
        return {"state": self.state.name}


class UpkeepNotNeeded(RaffleError):
    code = "upkeep_not_needed"
    status_code = 409

    def __init__(self, balance: int, player_count: int, state: RaffleState) -> None:
        super().__init__(
            f"Upkeep not needed (balance={balance}, players={player_count}, state={state.name})"
        )
        self.balance = balance
        self.player_count = player_count
        self.state = state

    def payload(self) -> Dict[str, Any]:
        return {
            "balance": str(self.balance),
            "player_count": self.player_count,
            "state": self.state.name,
        }


class UnknownRequest(RaffleError):
    code = "unknown_request"
    status_code = 404

    def __init__(self, request_id: int) -> None:
        super().__init__(f"No pending randomness request with id {request_id}")
        self.request_id = request_id

    def payload(self) -> Dict[str, Any]:
        return {"request_id": str(self.request_id)}


class InvalidFulfillment(RaffleError):
    code = "invalid_fulfillment"
    status_code = 400

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason

    def payload(self) -> Dict[str, Any]:
        return {"reason": self.reason}


class NoParticipants(RaffleError):
    code = "no_participants"
    status_code = 409

    def __init__(self) -> None:
        super().__init__("No players in raffle")


class PayoutFailed(RaffleError):
    code = "payout_failed"
    status_code = 502

    def __init__(self, winner: str, amount: int, reason: str) -> None:
        super().__init__(f"Transfer of {amount} to {winner} failed: {reason}")
        self.winner = winner
        self.amount = amount
        self.reason = reason

    def payload(self) -> Dict[str, Any]:
        return {"winner": self.winner, "amount": str(self.amount), "reason": self.reason}


class PayoutUnconfirmed(RaffleError):
    code = "payout_unconfirmed"
    status_code = 503

    def __init__(self, winner: str, amount: int, reference: str) -> None:
        super().__init__(f"Transfer of {amount} to {winner} not confirmed yet ({reference})")
        self.winner = winner
        self.amount = amount
        self.reference = reference

    def payload(self) -> Dict[str, Any]:
        return {"winner": self.winner, "amount": str(self.amount), "reference": self.reference}


class IndexOutOfRange(RaffleError):
    code = "index_out_of_range"
    status_code = 404

    def __init__(self, index: int, count: int) -> None:
        super().__init__(f"Participant index {index} out of range (count={count})")
        self.index = index
        self.count = count

    def payload(self) -> Dict[str, Any]:
        return {"index": self.index, "count": self.count}


class UnauthorizedCallback(RaffleError):
    code = "unauthorized_callback"
    status_code = 401

    def __init__(self, request_id: int) -> None:
        super().__init__(f"Fulfillment signature rejected for request {request_id}")
        self.request_id = request_id

    def payload(self) -> Dict[str, Any]:
        return {"request_id": str(self.request_id)}


class RetryNotAllowed(RaffleError):
    code = "retry_not_allowed"
    status_code = 409

    def __init__(
        self,
        state: RaffleState,
        seconds_pending: Optional[int],
        timeout: int,
        reason: Optional[str] = None,
    ) -> None:
        super().__init__(
            f"Randomness request cannot be retried (state={state.name}, "
            f"pending={seconds_pending}s, timeout={timeout}s)"
            + (f": {reason}" if reason else "")
        )
        self.state = state
        self.seconds_pending = seconds_pending
        self.timeout = timeout
        self.reason = reason

    def payload(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "state": self.state.name,
            "seconds_pending": self.seconds_pending,
            "timeout": self.timeout,
        }
        if self.reason:
            data["reason"] = self.reason
        return data

from __future__ import annotations

import abc
import itertools
import logging
from collections import defaultdict
from typing import Dict, Iterable, Optional

logger = logging.getLogger("chainraffle.payouts")


class PayoutRejected(RuntimeError):
    """Raised by a payout sender when the recipient refuses the transfer."""


class PayoutPending(Exception):
    """The transfer was handed off but its outcome is not known yet.

    Unlike ``PayoutRejected`` the funds may still arrive, so the sender
    refuses to pay again until ``reference`` resolves.
    """

    def __init__(self, reference: str, reason: str) -> None:
        super().__init__(f"Transfer {reference} unconfirmed: {reason}")
        self.reference = reference
        self.reason = reason


class PayoutSender(abc.ABC):
    @abc.abstractmethod
    def transfer(self, recipient: str, amount: int) -> Optional[str]:
        """Send ``amount`` to ``recipient`` and return a transfer reference."""

    def has_unresolved_transfer(self) -> bool:
        return False


class InMemoryPayoutSender(PayoutSender):
    """Keeps external balances in a dict; used by the mock backend and tests."""

    def __init__(self, rejecting: Optional[Iterable[str]] = None) -> None:
        self.balances: Dict[str, int] = defaultdict(int)
        self.rejecting = set(rejecting or ())
        self._refs = itertools.count(1)

    def balance_of(self, address: str) -> int:
        return self.balances.get(address, 0)

    def transfer(self, recipient: str, amount: int) -> Optional[str]:
        if recipient in self.rejecting:
            raise PayoutRejected(f"recipient {recipient} rejected the transfer")
        self.balances[recipient] += amount
        ref = f"mem-{next(self._refs)}"
        logger.info("Transferred %s to %s (%s)", amount, recipient, ref)
        return ref

from __future__ import annotations

import time
from typing import Callable, Optional

from .models import RaffleRecord

Clock = Callable[[], int]


def system_clock() -> int:
    return int(time.time())


class ClockGate:
    """Decides whether enough time has passed since the last draw."""

    def __init__(self, interval_seconds: int, clock: Optional[Clock] = None) -> None:
        self.interval_seconds = interval_seconds
        self._clock = clock or system_clock

    def now(self) -> int:
        return int(self._clock())

    @staticmethod
    def has_interval_elapsed(now: int, last_timestamp: int, interval: int) -> bool:
        return now - last_timestamp >= interval

    def is_due(self, record: RaffleRecord, now: Optional[int] = None) -> bool:
        current = self.now() if now is None else now
        return self.has_interval_elapsed(current, record.last_timestamp, self.interval_seconds)

    def reset(self, record: RaffleRecord, now: int) -> None:
        record.last_timestamp = now

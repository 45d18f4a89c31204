from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from raffle.config import RaffleSettings
from raffle.db import Database
from raffle.machine import RaffleStateMachine
from raffle.payouts import InMemoryPayoutSender
from raffle.randomness import CallbackSigner, MockVRFCoordinator, VRFRequestConfig

CALLBACK_SECRET = "test-callback-secret"
START_TIME = 1_700_000_000

PLAYERS = ["0x" + format(i, "040x") for i in range(1, 11)]

VRF_CONFIG = VRFRequestConfig(
    coordinator_address="0x" + "c" * 40,
    gas_lane="0x" + "ab" * 32,
    subscription_id=1234,
    callback_gas_limit=500000,
)


class FakeClock:
    def __init__(self, start: int = START_TIME) -> None:
        self.current = start

    def __call__(self) -> int:
        return self.current

    def advance(self, seconds: int) -> int:
        self.current += seconds
        return self.current


@dataclass
class RaffleHarness:
    machine: RaffleStateMachine
    coordinator: MockVRFCoordinator
    payouts: InMemoryPayoutSender
    clock: FakeClock
    signer: CallbackSigner
    database: Database

    def enter_players(self, players: Iterable[str], amount: Optional[int] = None) -> None:
        fee = self.machine.entrance_fee if amount is None else amount
        for player in players:
            self.machine.enter(player, fee)

    def ready_for_draw(self, players: Iterable[str]) -> None:
        self.enter_players(players)
        self.clock.advance(self.machine.interval_seconds + 1)


def make_harness(
    entrance_fee: int = 10**16,
    interval: int = 30,
    request_timeout: int = 3600,
    rejecting: Optional[Iterable[str]] = None,
    payouts: Optional[InMemoryPayoutSender] = None,
) -> RaffleHarness:
    database = Database("sqlite:///:memory:")
    signer = CallbackSigner(CALLBACK_SECRET)
    coordinator = MockVRFCoordinator(signer)
    payouts = payouts or InMemoryPayoutSender(rejecting=rejecting)
    clock = FakeClock()
    machine = RaffleStateMachine(
        database,
        RaffleSettings(
            entrance_fee=entrance_fee,
            interval_seconds=interval,
            request_timeout_seconds=request_timeout,
        ),
        VRF_CONFIG,
        coordinator,
        payouts,
        signer,
        clock=clock,
    )
    machine.initialize()
    return RaffleHarness(machine, coordinator, payouts, clock, signer, database)

import unittest

from raffle.errors import (
    InsufficientPayment,
    InvalidFulfillment,
    NoParticipants,
    PayoutFailed,
    PayoutUnconfirmed,
    RetryNotAllowed,
    RoundNotAcceptingEntries,
    UnauthorizedCallback,
    UnknownRequest,
    UpkeepNotNeeded,
)
from raffle.payouts import InMemoryPayoutSender, PayoutPending
from raffle.types import RaffleState

from raffle_fixtures import PLAYERS, START_TIME, make_harness


class InitialStateTests(unittest.TestCase):
    def test_starts_open_and_empty(self) -> None:
        h = make_harness()
        machine = h.machine

        self.assertEqual(machine.raffle_state(), RaffleState.OPEN)
        self.assertIsNone(machine.recent_winner())
        self.assertEqual(machine.player_count(), 0)
        self.assertEqual(machine.total_balance(), 0)
        self.assertEqual(machine.last_timestamp(), START_TIME)
        self.assertIsNone(machine.pending_request_id())

    def test_initialize_is_idempotent(self) -> None:
        h = make_harness()
        h.machine.enter(PLAYERS[0], h.machine.entrance_fee)
        h.clock.advance(100)
        h.machine.initialize()

        self.assertEqual(h.machine.player_count(), 1)
        self.assertEqual(h.machine.last_timestamp(), START_TIME)


class EnterTests(unittest.TestCase):
    def setUp(self) -> None:
        self.h = make_harness()
        self.machine = self.h.machine
        self.fee = self.machine.entrance_fee

    def test_underpayment_leaves_ledger_unchanged(self) -> None:
        for amount in (0, 1, self.fee // 2, self.fee - 1):
            with self.assertRaises(InsufficientPayment):
                self.machine.enter(PLAYERS[0], amount)
        self.assertEqual(self.machine.player_count(), 0)
        self.assertEqual(self.machine.total_balance(), 0)
        self.assertEqual(self.machine.recent_events(), [])

    def test_valid_entries_grow_count_and_balance_by_amount_paid(self) -> None:
        self.machine.enter(PLAYERS[0], self.fee)
        self.assertEqual(self.machine.player_count(), 1)
        self.assertEqual(self.machine.total_balance(), self.fee)

        self.machine.enter(PLAYERS[0], self.fee * 3)
        self.assertEqual(self.machine.player_count(), 2)
        self.assertEqual(self.machine.total_balance(), self.fee * 4)
        self.assertEqual(self.machine.players(), [PLAYERS[0], PLAYERS[0]])
        self.assertEqual(self.machine.player(1), PLAYERS[0])

    def test_entry_emits_entered_raffle(self) -> None:
        self.machine.enter(PLAYERS[2], self.fee)
        events = self.machine.recent_events()
        self.assertEqual(events[0]["name"], "EnteredRaffle")
        self.assertEqual(events[0]["args"], {"participant": PLAYERS[2]})

    def test_entry_rejected_while_calculating(self) -> None:
        self.h.ready_for_draw(PLAYERS[:1])
        self.machine.perform_upkeep()

        with self.assertRaises(RoundNotAcceptingEntries):
            self.machine.enter(PLAYERS[1], self.fee)
        self.assertEqual(self.machine.player_count(), 1)


class UpkeepTests(unittest.TestCase):
    def setUp(self) -> None:
        self.h = make_harness(interval=30)
        self.machine = self.h.machine

    def test_interval_boundary(self) -> None:
        self.h.enter_players(PLAYERS[:1])
        self.h.clock.advance(29)
        self.assertFalse(self.machine.check_upkeep_needed())
        self.h.clock.advance(2)
        self.assertTrue(self.machine.check_upkeep_needed())

    def test_false_without_players(self) -> None:
        self.h.clock.advance(31)
        self.assertFalse(self.machine.check_upkeep_needed())

    def test_false_with_zero_balance(self) -> None:
        h = make_harness(entrance_fee=0)
        h.machine.enter(PLAYERS[0], 0)
        h.clock.advance(31)
        status = h.machine.upkeep_status()
        self.assertFalse(status.upkeep_needed)
        self.assertEqual(status.player_count, 1)
        self.assertEqual(status.balance, 0)

    def test_false_while_calculating(self) -> None:
        self.h.ready_for_draw(PLAYERS[:2])
        self.machine.perform_upkeep()
        self.h.clock.advance(100)
        self.assertFalse(self.machine.check_upkeep_needed())

    def test_perform_upkeep_not_needed_carries_snapshot(self) -> None:
        self.h.enter_players(PLAYERS[:2])
        with self.assertRaises(UpkeepNotNeeded) as ctx:
            self.machine.perform_upkeep()
        err = ctx.exception
        self.assertEqual(err.balance, 2 * self.machine.entrance_fee)
        self.assertEqual(err.player_count, 2)
        self.assertEqual(err.state, RaffleState.OPEN)
        self.assertEqual(self.h.coordinator.request_count, 0)

    def test_perform_upkeep_issues_one_request(self) -> None:
        self.h.ready_for_draw(PLAYERS[:3])
        request_id = self.machine.perform_upkeep()

        self.assertEqual(self.machine.raffle_state(), RaffleState.CALCULATING)
        self.assertEqual(self.machine.pending_request_id(), request_id)
        self.assertEqual(self.h.coordinator.request_count, 1)
        self.assertEqual(self.h.coordinator.last_request_id, request_id)
        config = self.h.coordinator.requests[request_id]
        self.assertEqual(config.request_confirmations, 3)
        self.assertEqual(config.num_words, 1)

        events = self.machine.recent_events(limit=1)
        self.assertEqual(events[0]["name"], "RequestedWinner")
        self.assertEqual(events[0]["args"], {"request_id": str(request_id)})

    def test_second_perform_upkeep_is_rejected(self) -> None:
        self.h.ready_for_draw(PLAYERS[:1])
        self.machine.perform_upkeep()
        with self.assertRaises(UpkeepNotNeeded) as ctx:
            self.machine.perform_upkeep()
        self.assertEqual(ctx.exception.state, RaffleState.CALCULATING)
        self.assertEqual(self.h.coordinator.request_count, 1)

    def test_requester_failure_keeps_raffle_open(self) -> None:
        self.h.ready_for_draw(PLAYERS[:1])

        def broken(config):
            raise ConnectionError("coordinator unreachable")

        self.h.coordinator.request_random_words = broken
        with self.assertRaises(ConnectionError):
            self.machine.perform_upkeep()
        self.assertEqual(self.machine.raffle_state(), RaffleState.OPEN)
        self.assertIsNone(self.machine.pending_request_id())


class FulfillmentTests(unittest.TestCase):
    def setUp(self) -> None:
        self.h = make_harness()
        self.machine = self.h.machine

    def _draw(self, players, word):
        self.h.ready_for_draw(players)
        request_id = self.machine.perform_upkeep()
        return request_id, self.h.coordinator.fulfill_random_words(request_id, self.machine, [word])

    def test_six_players_word_thirteen_picks_second_entrant(self) -> None:
        h = make_harness(entrance_fee=1)
        players = PLAYERS[:6]
        h.ready_for_draw(players)
        request_id = h.machine.perform_upkeep()

        result = h.coordinator.fulfill_random_words(request_id, h.machine, [13])

        self.assertEqual(result.winner_index, 1)
        self.assertEqual(result.winner, players[1])
        self.assertEqual(result.prize, 6)
        self.assertEqual(h.machine.recent_winner(), players[1])
        self.assertEqual(h.machine.total_balance(), 0)
        self.assertEqual(h.payouts.balance_of(players[1]), 6)

    def test_successful_fulfillment_resets_round(self) -> None:
        players = PLAYERS[:3]
        self.h.ready_for_draw(players)
        request_id = self.machine.perform_upkeep()
        pot = self.machine.total_balance()
        self.h.clock.advance(7)
        fulfilled_at = self.h.clock()

        result = self.h.coordinator.fulfill_random_words(request_id, self.machine, [5])

        self.assertEqual(result.winner, players[5 % 3])
        self.assertEqual(self.machine.raffle_state(), RaffleState.OPEN)
        self.assertEqual(self.machine.player_count(), 0)
        self.assertEqual(self.machine.total_balance(), 0)
        self.assertEqual(self.machine.last_timestamp(), fulfilled_at)
        self.assertIsNone(self.machine.pending_request_id())
        self.assertEqual(self.h.payouts.balance_of(result.winner), pot)
        self.assertEqual(self.machine.recent_events(limit=1)[0]["args"], {"winner": result.winner})

        history = self.machine.winners()
        self.assertEqual(len(history), 1)
        self.assertEqual(history[0]["winner"], result.winner)
        self.assertEqual(history[0]["prize"], str(pot))
        self.assertEqual(history[0]["payout_ref"], result.payout_ref)

    def test_full_cycle_returns_to_initial_state(self) -> None:
        initial = self.machine.snapshot()
        _, result = self._draw(PLAYERS[:2], 0)
        after = self.machine.snapshot()

        self.assertEqual(after.state, initial.state)
        self.assertEqual(after.player_count, initial.player_count)
        self.assertEqual(after.balance, initial.balance)
        self.assertEqual(after.pending_request_id, initial.pending_request_id)
        self.assertEqual(after.recent_winner, result.winner)
        self.assertNotEqual(after.last_timestamp, initial.last_timestamp)

        # A fresh round runs exactly like the first one.
        _, second = self._draw(PLAYERS[3:5], 1)
        self.assertEqual(second.winner, PLAYERS[4])
        self.assertEqual(len(self.machine.winners()), 2)

    def test_unknown_request_is_rejected_without_mutation(self) -> None:
        self.h.ready_for_draw(PLAYERS[:2])
        request_id = self.machine.perform_upkeep()
        bogus = request_id + 1
        signature = self.h.signer.sign(bogus, [3])

        with self.assertRaises(UnknownRequest):
            self.machine.fulfill_random_words(bogus, [3], signature)

        self.assertEqual(self.machine.raffle_state(), RaffleState.CALCULATING)
        self.assertEqual(self.machine.player_count(), 2)
        self.assertEqual(self.machine.pending_request_id(), request_id)

    def test_fulfillment_while_open_is_unknown(self) -> None:
        signature = self.h.signer.sign(1, [3])
        with self.assertRaises(UnknownRequest):
            self.machine.fulfill_random_words(1, [3], signature)

    def test_replayed_fulfillment_is_rejected(self) -> None:
        request_id, _ = self._draw(PLAYERS[:2], 4)
        signature = self.h.signer.sign(request_id, [4])
        with self.assertRaises(UnknownRequest):
            self.machine.fulfill_random_words(request_id, [4], signature)

    def test_bad_signature_is_rejected_without_mutation(self) -> None:
        self.h.ready_for_draw(PLAYERS[:2])
        request_id = self.machine.perform_upkeep()

        with self.assertRaises(UnauthorizedCallback):
            self.machine.fulfill_random_words(request_id, [3], "00" * 32)
        with self.assertRaises(UnauthorizedCallback):
            self.machine.fulfill_random_words(request_id, [4], self.h.signer.sign(request_id, [3]))

        self.assertEqual(self.machine.raffle_state(), RaffleState.CALCULATING)
        self.assertEqual(self.machine.pending_request_id(), request_id)

    def test_empty_random_words_are_invalid(self) -> None:
        self.h.ready_for_draw(PLAYERS[:1])
        request_id = self.machine.perform_upkeep()
        with self.assertRaises(InvalidFulfillment):
            self.machine.fulfill_random_words(request_id, [], self.h.signer.sign(request_id, []))

    def test_no_participants_is_defended(self) -> None:
        # Unreachable through upkeep; forced by clearing the round directly.
        from raffle.models import RAFFLE_ID, RaffleRecord

        self.h.ready_for_draw(PLAYERS[:1])
        request_id = self.machine.perform_upkeep()
        with self.h.database.session_scope() as session:
            session.get(RaffleRecord, RAFFLE_ID).round_number += 1

        with self.assertRaises(NoParticipants):
            self.machine.fulfill_random_words(request_id, [0], self.h.signer.sign(request_id, [0]))
        self.assertEqual(self.machine.raffle_state(), RaffleState.CALCULATING)

    def test_rejected_payout_rolls_back_everything(self) -> None:
        players = PLAYERS[:3]
        self.h.ready_for_draw(players)
        request_id = self.machine.perform_upkeep()
        events_before = len(self.machine.recent_events())
        timestamp_before = self.machine.last_timestamp()
        self.h.payouts.rejecting.add(players[1])
        self.h.clock.advance(5)

        with self.assertRaises(PayoutFailed) as ctx:
            self.h.coordinator.fulfill_random_words(request_id, self.machine, [1])
        self.assertEqual(ctx.exception.winner, players[1])
        self.assertEqual(ctx.exception.amount, 3 * self.machine.entrance_fee)

        self.assertEqual(self.machine.raffle_state(), RaffleState.CALCULATING)
        self.assertEqual(self.machine.players(), players)
        self.assertEqual(self.machine.total_balance(), 3 * self.machine.entrance_fee)
        self.assertEqual(self.machine.pending_request_id(), request_id)
        self.assertEqual(self.machine.last_timestamp(), timestamp_before)
        self.assertIsNone(self.machine.recent_winner())
        self.assertEqual(len(self.machine.recent_events()), events_before)
        self.assertEqual(self.machine.winners(), [])

        # The coordinator kept the request, so a resend can still succeed.
        self.h.payouts.rejecting.clear()
        result = self.h.coordinator.fulfill_random_words(request_id, self.machine, [1])
        self.assertEqual(result.winner, players[1])
        self.assertEqual(self.h.payouts.balance_of(players[1]), 3 * self.machine.entrance_fee)

    def test_rolled_back_events_are_only_logged_as_staged(self) -> None:
        players = PLAYERS[:2]
        self.h.ready_for_draw(players)
        request_id = self.machine.perform_upkeep()
        self.h.payouts.rejecting.add(players[0])

        with self.assertLogs("chainraffle.events", level="DEBUG") as logs:
            with self.assertRaises(PayoutFailed):
                self.h.coordinator.fulfill_random_words(request_id, self.machine, [0])

        self.assertEqual([record.levelname for record in logs.records], ["DEBUG"])
        self.assertIn("Staged PickedWinner", logs.output[0])


class RetryRequestTests(unittest.TestCase):
    def setUp(self) -> None:
        self.h = make_harness(request_timeout=600)
        self.machine = self.h.machine

    def test_retry_not_allowed_while_open(self) -> None:
        with self.assertRaises(RetryNotAllowed) as ctx:
            self.machine.retry_request()
        self.assertEqual(ctx.exception.state, RaffleState.OPEN)

    def test_retry_not_allowed_before_timeout(self) -> None:
        self.h.ready_for_draw(PLAYERS[:1])
        self.machine.perform_upkeep()
        self.h.clock.advance(599)
        with self.assertRaises(RetryNotAllowed) as ctx:
            self.machine.retry_request()
        self.assertEqual(ctx.exception.seconds_pending, 599)

    def test_retry_replaces_stale_request(self) -> None:
        self.h.ready_for_draw(PLAYERS[:2])
        old_id = self.machine.perform_upkeep()
        self.h.clock.advance(600)

        new_id = self.machine.retry_request()

        self.assertNotEqual(new_id, old_id)
        self.assertEqual(self.machine.pending_request_id(), new_id)
        self.assertEqual(self.machine.raffle_state(), RaffleState.CALCULATING)
        with self.assertRaises(UnknownRequest):
            self.h.coordinator.fulfill_random_words(old_id, self.machine, [0])

        result = self.h.coordinator.fulfill_random_words(new_id, self.machine, [0])
        self.assertEqual(result.winner, PLAYERS[0])


class StallingPayoutSender(InMemoryPayoutSender):
    """Leaves the first transfer unconfirmed until ``settle`` is called."""

    def __init__(self) -> None:
        super().__init__()
        self.in_flight = None
        self.landed = False
        self.sent = 0

    def has_unresolved_transfer(self) -> bool:
        return self.in_flight is not None

    def settle(self) -> None:
        recipient, amount, _ = self.in_flight
        self.balances[recipient] += amount
        self.landed = True

    def transfer(self, recipient, amount):
        if self.in_flight is not None:
            reference = self.in_flight[2]
            if not self.landed:
                raise PayoutPending(reference, "still pending")
            self.in_flight = None
            return reference
        self.sent += 1
        self.in_flight = (recipient, amount, "0xstalled")
        raise PayoutPending("0xstalled", "receipt timed out")


class UnconfirmedPayoutTests(unittest.TestCase):
    def setUp(self) -> None:
        self.payouts = StallingPayoutSender()
        self.h = make_harness(request_timeout=600, payouts=self.payouts)
        self.machine = self.h.machine
        self.h.ready_for_draw(PLAYERS[:2])
        self.request_id = self.machine.perform_upkeep()

    def test_unconfirmed_payout_holds_round_and_is_never_resent(self) -> None:
        pot = 2 * self.machine.entrance_fee
        with self.assertRaises(PayoutUnconfirmed) as ctx:
            self.h.coordinator.fulfill_random_words(self.request_id, self.machine, [1])
        self.assertEqual(ctx.exception.reference, "0xstalled")
        self.assertEqual(self.machine.raffle_state(), RaffleState.CALCULATING)
        self.assertEqual(self.machine.pending_request_id(), self.request_id)

        # Still pending: the resend fails again without a second transfer.
        with self.assertRaises(PayoutUnconfirmed):
            self.h.coordinator.fulfill_random_words(self.request_id, self.machine, [1])

        self.h.clock.advance(600)
        with self.assertRaises(RetryNotAllowed) as retry:
            self.machine.retry_request()
        self.assertEqual(retry.exception.payload()["reason"], "payout transfer unresolved")

        self.payouts.settle()
        result = self.h.coordinator.fulfill_random_words(self.request_id, self.machine, [1])

        self.assertEqual(result.payout_ref, "0xstalled")
        self.assertEqual(self.payouts.sent, 1)
        self.assertEqual(self.payouts.balance_of(PLAYERS[1]), pot)
        self.assertEqual(self.machine.raffle_state(), RaffleState.OPEN)
        self.assertEqual(self.machine.winners()[0]["payout_ref"], "0xstalled")


if __name__ == "__main__":
    unittest.main()

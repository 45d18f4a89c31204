import unittest

from raffle.clock import ClockGate, system_clock
from raffle.models import RaffleRecord


class ClockGateTests(unittest.TestCase):
    def test_interval_boundaries(self) -> None:
        self.assertFalse(ClockGate.has_interval_elapsed(129, 100, 30))
        self.assertTrue(ClockGate.has_interval_elapsed(130, 100, 30))
        self.assertTrue(ClockGate.has_interval_elapsed(131, 100, 30))

    def test_zero_interval_is_always_elapsed(self) -> None:
        self.assertTrue(ClockGate.has_interval_elapsed(100, 100, 0))

    def test_is_due_and_reset_use_record_timestamp(self) -> None:
        now = [1000]
        gate = ClockGate(60, clock=lambda: now[0])
        record = RaffleRecord(last_timestamp=1000)

        self.assertFalse(gate.is_due(record))
        now[0] = 1060
        self.assertTrue(gate.is_due(record))

        gate.reset(record, gate.now())
        self.assertEqual(record.last_timestamp, 1060)
        self.assertFalse(gate.is_due(record))

    def test_system_clock_returns_integer_seconds(self) -> None:
        self.assertIsInstance(system_clock(), int)
        self.assertIsInstance(ClockGate(1).now(), int)


if __name__ == "__main__":
    unittest.main()

import asyncio
import unittest
from unittest import mock

from web3 import Web3

from keeper.vrf_relay import VRFFulfillmentRelay, expand_random_words
from raffle.randomness import CallbackSigner

COORDINATOR = "0x" + "c" * 40


def _relay(logs, block_number=12000, lookback=5000):
    web3 = mock.MagicMock()
    web3.eth.block_number = block_number
    event = web3.eth.contract.return_value.events.RandomWordsFulfilled.return_value
    event.get_logs.return_value = logs
    signer = CallbackSigner("relay-secret")
    relay = VRFFulfillmentRelay(web3, COORDINATOR, signer, lookback_blocks=lookback)
    return relay, web3, event, signer


class ExpandRandomWordsTests(unittest.TestCase):
    def test_words_are_keccak_of_seed_and_index(self) -> None:
        words = expand_random_words(42, 2)

        self.assertEqual(len(words), 2)
        first = int.from_bytes(Web3.keccak((42).to_bytes(32, "big") + (0).to_bytes(32, "big")), "big")
        self.assertEqual(words[0], first)
        self.assertNotEqual(words[0], words[1])
        self.assertTrue(all(0 <= word < 2**256 for word in words))


class VRFFulfillmentRelayTests(unittest.TestCase):
    def test_reads_fulfillment_and_signs_words(self) -> None:
        relay, web3, event, signer = _relay(
            [{"args": {"requestId": 7, "outputSeed": 99, "payment": 1, "success": True}}]
        )

        fulfillment = asyncio.run(relay.find_fulfillment(7))

        self.assertEqual(fulfillment.request_id, 7)
        self.assertEqual(fulfillment.random_words, expand_random_words(99, 1))
        self.assertTrue(signer.verify(7, fulfillment.random_words, fulfillment.signature))
        event.get_logs.assert_called_once_with(
            from_block=7000, to_block=12000, argument_filters={"requestId": 7}
        )
        address = web3.eth.contract.call_args.kwargs["address"]
        self.assertEqual(address.lower(), COORDINATOR)

    def test_no_fulfillment_yet(self) -> None:
        relay, _, _, _ = _relay([], block_number=100)
        self.assertIsNone(asyncio.run(relay.find_fulfillment(7)))

    def test_failed_coordinator_callback_still_relays(self) -> None:
        relay, _, event, _ = _relay(
            [{"args": {"requestId": 7, "outputSeed": 5, "payment": 1, "success": False}}],
            block_number=100,
        )

        fulfillment = asyncio.run(relay.find_fulfillment(7))

        self.assertEqual(fulfillment.random_words, expand_random_words(5, 1))
        self.assertEqual(event.get_logs.call_args.kwargs["from_block"], 0)


if __name__ == "__main__":
    unittest.main()

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from web3 import Web3
from web3.middleware import ExtraDataToPOAMiddleware

from raffle.config import NUM_WORDS
from raffle.randomness import CallbackSigner
from raffle.services.chain import VRF_COORDINATOR_ABI

from .config import KeeperSettings
from .types import RelayedFulfillment


def expand_random_words(output_seed: int, num_words: int) -> List[int]:
    """Derive the coordinator's random words from a fulfillment's output seed.

    Matches the coordinator's ``keccak256(abi.encode(seed, i))`` expansion.
    """
    return [
        int.from_bytes(Web3.solidity_keccak(["uint256", "uint256"], [output_seed, i]), "big")
        for i in range(num_words)
    ]


class VRFFulfillmentRelay:
    """Watches the coordinator for ``RandomWordsFulfilled`` and signs the words.

    The raffle's randomness requests are sent from an externally owned
    account, which cannot receive the coordinator's on-chain callback, so the
    keeper carries the answer to the raffle's HTTP callback instead.
    """

    def __init__(
        self,
        web3: Web3,
        coordinator_address: str,
        signer: CallbackSigner,
        num_words: int = NUM_WORDS,
        lookback_blocks: int = 5000,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._web3 = web3
        self._contract = web3.eth.contract(
            address=Web3.to_checksum_address(coordinator_address), abi=VRF_COORDINATOR_ABI
        )
        self._signer = signer
        self._num_words = num_words
        self._lookback_blocks = lookback_blocks
        self._logger = logger or logging.getLogger("chainraffle.keeper.relay")

    @classmethod
    def from_settings(cls, settings: KeeperSettings) -> "VRFFulfillmentRelay":
        web3 = Web3(Web3.HTTPProvider(settings.rpc_url))
        if web3.is_connected() is False:
            raise RuntimeError("Failed to connect to RPC endpoint")

        # For PoA testnets (e.g. Hardhat, Polygon) insert the middleware.
        web3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        return cls(
            web3,
            settings.vrf_coordinator_address,
            CallbackSigner(settings.callback_secret),
            lookback_blocks=settings.relay_lookback_blocks,
        )

    async def find_fulfillment(self, request_id: int) -> Optional[RelayedFulfillment]:
        return await asyncio.to_thread(self._sync_find_fulfillment, request_id)

    def _sync_find_fulfillment(self, request_id: int) -> Optional[RelayedFulfillment]:
        latest = int(self._web3.eth.block_number)
        from_block = max(latest - self._lookback_blocks, 0)
        logs = self._contract.events.RandomWordsFulfilled().get_logs(
            from_block=from_block,
            to_block=latest,
            argument_filters={"requestId": int(request_id)},
        )
        if not logs:
            return None

        args = logs[-1]["args"]
        if not args.get("success", True):
            # The coordinator's own callback failed; the words are still final.
            self._logger.debug("Coordinator callback for %s reported failure", request_id)
        words = expand_random_words(int(args["outputSeed"]), self._num_words)
        return RelayedFulfillment(
            request_id=int(request_id),
            random_words=words,
            signature=self._signer.sign(int(request_id), words),
        )

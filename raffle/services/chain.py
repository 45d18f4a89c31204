from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Optional, TYPE_CHECKING

from ..payouts import PayoutPending, PayoutRejected, PayoutSender
from ..randomness import RandomnessRequester, VRFRequestConfig

if TYPE_CHECKING:  # pragma: no cover
    from web3 import Web3

logger = logging.getLogger("chainraffle.chain")

# Subset of the VRF v2 coordinator ABI the raffle uses.
VRF_COORDINATOR_ABI = [
    {
        "type": "function",
        "name": "requestRandomWords",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "keyHash", "type": "bytes32"},
            {"name": "subId", "type": "uint64"},
            {"name": "minimumRequestConfirmations", "type": "uint16"},
            {"name": "callbackGasLimit", "type": "uint32"},
            {"name": "numWords", "type": "uint32"},
        ],
        "outputs": [{"name": "requestId", "type": "uint256"}],
    },
    {
        "type": "event",
        "name": "RandomWordsRequested",
        "anonymous": False,
        "inputs": [
            {"name": "keyHash", "type": "bytes32", "indexed": True},
            {"name": "requestId", "type": "uint256", "indexed": False},
            {"name": "preSeed", "type": "uint256", "indexed": False},
            {"name": "subId", "type": "uint64", "indexed": True},
            {"name": "minimumRequestConfirmations", "type": "uint16", "indexed": False},
            {"name": "callbackGasLimit", "type": "uint32", "indexed": False},
            {"name": "numWords", "type": "uint32", "indexed": False},
            {"name": "sender", "type": "address", "indexed": True},
        ],
    },
    {
        "type": "event",
        "name": "RandomWordsFulfilled",
        "anonymous": False,
        "inputs": [
            {"name": "requestId", "type": "uint256", "indexed": True},
            {"name": "outputSeed", "type": "uint256", "indexed": False},
            {"name": "payment", "type": "uint96", "indexed": False},
            {"name": "success", "type": "bool", "indexed": False},
        ],
    },
]

NATIVE_TRANSFER_GAS = 21000

TX_SUCCEEDED = "succeeded"
TX_REVERTED = "reverted"
TX_PENDING = "pending"
TX_DROPPED = "dropped"


class TransactionUnconfirmed(Exception):
    """A signed transaction whose fate is unknown (broadcast or receipt wait failed)."""

    def __init__(self, tx_hash: str, reason: str) -> None:
        super().__init__(f"Transaction {tx_hash} unconfirmed: {reason}")
        self.tx_hash = tx_hash
        self.reason = reason


class ChainClient:
    """Signs and broadcasts transactions through a web3 HTTP provider."""

    def __init__(self, web3: "Web3", signer_key: str, receipt_timeout: int = 120) -> None:
        self._web3 = web3
        self._account = web3.eth.account.from_key(signer_key)
        self._receipt_timeout = receipt_timeout

    @classmethod
    def from_rpc(cls, rpc_url: str, signer_key: str, receipt_timeout: int = 120) -> "ChainClient":
        from web3 import Web3
        from web3.middleware import ExtraDataToPOAMiddleware

        web3 = Web3(Web3.HTTPProvider(rpc_url))
        if not web3.is_connected():
            raise ConnectionError(f"Cannot connect to RPC endpoint: {rpc_url}")

        # Inject PoA middleware to support networks such as Hardhat or Polygon.
        web3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        return cls(web3, signer_key, receipt_timeout=receipt_timeout)

    @property
    def chain_id(self) -> Optional[int]:
        try:
            return int(self._web3.eth.chain_id)
        except Exception:  # pragma: no cover - defensive
            return None

    def contract(self, address: str, abi):
        from web3 import Web3

        return self._web3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)

    def send_contract_call(self, fn, tx_params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        params = dict(tx_params or {})
        params.setdefault("from", self._account.address)

        try:
            gas_estimate = fn.estimate_gas(params)
        except Exception:  # pragma: no cover - rely on conservative gas limit if estimation fails
            gas_estimate = 350000

        gas_limit = max(int(math.ceil(gas_estimate * 1.2)), 250000)
        tx = fn.build_transaction(
            {
                **params,
                "nonce": self._web3.eth.get_transaction_count(self._account.address),
                "gas": gas_limit,
                "gasPrice": self._web3.eth.gas_price,
            }
        )
        return self._sign_and_send(tx)

    def send_value(self, recipient: str, amount: int) -> Dict[str, Any]:
        from web3 import Web3

        tx: Dict[str, Any] = {
            "from": self._account.address,
            "to": Web3.to_checksum_address(recipient),
            "value": int(amount),
        }
        # Contract wallets need more than a plain transfer's gas.
        try:
            gas_estimate = self._web3.eth.estimate_gas(tx)
        except Exception as exc:
            raise RuntimeError(f"Transfer to {recipient} would revert: {exc}") from exc

        tx.update(
            {
                "nonce": self._web3.eth.get_transaction_count(self._account.address),
                "gas": max(int(math.ceil(gas_estimate * 1.2)), NATIVE_TRANSFER_GAS),
                "gasPrice": self._web3.eth.gas_price,
            }
        )
        return self._sign_and_send(tx)

    def transaction_status(self, tx_hash: str) -> str:
        """Return one of ``TX_SUCCEEDED``, ``TX_REVERTED``, ``TX_PENDING`` or ``TX_DROPPED``."""
        from web3.exceptions import TransactionNotFound

        try:
            receipt = self._web3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            receipt = None
        if receipt is not None:
            return TX_SUCCEEDED if receipt["status"] == 1 else TX_REVERTED

        try:
            self._web3.eth.get_transaction(tx_hash)
        except TransactionNotFound:
            return TX_DROPPED
        return TX_PENDING

    def _sign_and_send(self, tx: Dict[str, Any]) -> Dict[str, Any]:
        chain_id = self.chain_id
        if chain_id is not None:
            tx["chainId"] = chain_id

        signed = self._account.sign_transaction(tx)
        # The hash is fixed by the signature, before anything reaches the node.
        tx_hash = _hex(signed.hash)
        try:
            self._web3.eth.send_raw_transaction(signed.raw_transaction)
            receipt = self._web3.eth.wait_for_transaction_receipt(
                signed.hash, timeout=self._receipt_timeout, poll_latency=2
            )
        except Exception as exc:
            raise TransactionUnconfirmed(tx_hash, str(exc)) from exc
        if receipt["status"] != 1:
            raise RuntimeError(f"Transaction reverted: {tx_hash}")
        return {"tx_hash": tx_hash, "receipt": receipt}


def _hex(value) -> str:
    text = value.hex() if isinstance(value, (bytes, bytearray)) else str(value)
    return text if text.startswith("0x") else "0x" + text


class ChainVRFCoordinator(RandomnessRequester):
    """Requests random words from an on-chain VRF coordinator."""

    def __init__(self, client: ChainClient) -> None:
        self._client = client

    def request_random_words(self, config: VRFRequestConfig) -> int:
        from web3 import Web3
        from web3.logs import DISCARD

        contract = self._client.contract(config.coordinator_address, VRF_COORDINATOR_ABI)
        fn = contract.functions.requestRandomWords(
            Web3.to_bytes(hexstr=config.gas_lane),
            int(config.subscription_id),
            int(config.request_confirmations),
            int(config.callback_gas_limit),
            int(config.num_words),
        )
        meta = self._client.send_contract_call(fn)
        logs = contract.events.RandomWordsRequested().process_receipt(meta["receipt"], errors=DISCARD)
        if not logs:
            raise RuntimeError(f"RandomWordsRequested log missing from tx {meta['tx_hash']}")
        request_id = int(logs[0]["args"]["requestId"])
        logger.info("VRF request %s broadcast in %s", request_id, meta["tx_hash"])
        return request_id


@dataclass(frozen=True)
class UnresolvedTransfer:
    recipient: str
    amount: int
    tx_hash: str


class ChainPayoutSender(PayoutSender):
    """Pays the winner with a native value transfer.

    A transfer whose receipt never arrived is remembered and resolved against
    the chain before any further payout is attempted.
    """

    def __init__(self, client: ChainClient) -> None:
        self._client = client
        self._unresolved: Optional[UnresolvedTransfer] = None

    @property
    def unresolved(self) -> Optional[UnresolvedTransfer]:
        return self._unresolved

    def has_unresolved_transfer(self) -> bool:
        return self._unresolved is not None

    def transfer(self, recipient: str, amount: int) -> Optional[str]:
        if self._unresolved is not None:
            settled = self._settle_unresolved(recipient, amount)
            if settled is not None:
                return settled

        try:
            meta = self._client.send_value(recipient, amount)
        except TransactionUnconfirmed as exc:
            self._unresolved = UnresolvedTransfer(recipient, int(amount), exc.tx_hash)
            logger.warning("Transfer %s to %s unconfirmed: %s", exc.tx_hash, recipient, exc.reason)
            raise PayoutPending(exc.tx_hash, exc.reason) from exc
        except RuntimeError as exc:
            raise PayoutRejected(str(exc)) from exc
        return meta["tx_hash"]

    def _settle_unresolved(self, recipient: str, amount: int) -> Optional[str]:
        previous = self._unresolved
        status = self._client.transaction_status(previous.tx_hash)
        logger.info("Earlier transfer %s is %s", previous.tx_hash, status)

        if status == TX_PENDING:
            raise PayoutPending(previous.tx_hash, "earlier transfer still pending")
        if status == TX_SUCCEEDED:
            if (previous.recipient, previous.amount) != (recipient, int(amount)):
                raise PayoutPending(
                    previous.tx_hash,
                    f"earlier transfer paid {previous.amount} to {previous.recipient}; "
                    "reconcile before paying again",
                )
            self._unresolved = None
            return previous.tx_hash

        # Reverted or dropped: nothing was paid, a fresh transfer is safe.
        self._unresolved = None
        return None

from __future__ import annotations

import abc
import hashlib
import hmac
import itertools
import logging
import secrets
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, Sequence

from .config import NUM_WORDS, REQUEST_CONFIRMATIONS, VRFSettings

logger = logging.getLogger("chainraffle.randomness")


@dataclass(frozen=True)
class VRFRequestConfig:
    """Parameters sent with every randomness request."""

    coordinator_address: str
    gas_lane: str
    subscription_id: int
    callback_gas_limit: int
    request_confirmations: int = REQUEST_CONFIRMATIONS
    num_words: int = NUM_WORDS

    @classmethod
    def from_settings(cls, settings: VRFSettings) -> "VRFRequestConfig":
        return cls(
            coordinator_address=settings.coordinator_address,
            gas_lane=settings.gas_lane,
            subscription_id=settings.subscription_id,
            callback_gas_limit=settings.callback_gas_limit,
            request_confirmations=settings.request_confirmations,
            num_words=settings.num_words,
        )


class RandomnessRequester(abc.ABC):
    """Boundary to the randomness coordinator."""

    @abc.abstractmethod
    def request_random_words(self, config: VRFRequestConfig) -> int:
        """Issue one request and return its identifier.

        The fulfillment arrives later, out of band, through the consumer's
        ``fulfill_random_words`` entry point.
        """


class RandomnessConsumer(Protocol):
    def fulfill_random_words(
        self, request_id: int, random_words: Sequence[int], signature: str
    ) -> Any:
        ...


class CallbackSigner:
    """HMAC-SHA256 signatures binding a request id to its random words.

    The coordinator side signs with the shared secret; the raffle verifies
    before it looks at the request id.
    """

    def __init__(self, secret: str) -> None:
        if not secret:
            raise ValueError("callback secret must not be empty")
        self._key = secret.encode("utf-8")

    @staticmethod
    def _message(request_id: int, random_words: Sequence[int]) -> bytes:
        words = ",".join(str(int(word)) for word in random_words)
        return f"{int(request_id)}:{words}".encode("ascii")

    def sign(self, request_id: int, random_words: Sequence[int]) -> str:
        return hmac.new(self._key, self._message(request_id, random_words), hashlib.sha256).hexdigest()

    def verify(self, request_id: int, random_words: Sequence[int], signature: Optional[str]) -> bool:
        if not signature:
            return False
        expected = self.sign(request_id, random_words)
        return hmac.compare_digest(expected, signature)


class MockVRFCoordinator(RandomnessRequester):
    """In-process coordinator for development and tests.

    Requests are held until ``fulfill_random_words`` is called for them,
    mirroring how a real coordinator answers asynchronously.
    """

    def __init__(self, signer: CallbackSigner, first_request_id: int = 1) -> None:
        self._signer = signer
        self._ids = itertools.count(first_request_id)
        self.requests: Dict[int, VRFRequestConfig] = {}
        self.last_request_id: Optional[int] = None
        self.request_count = 0

    def request_random_words(self, config: VRFRequestConfig) -> int:
        if config.num_words < 1:
            raise ValueError("num_words must be at least 1")
        request_id = next(self._ids)
        self.requests[request_id] = config
        self.last_request_id = request_id
        self.request_count += 1
        logger.debug("Mock VRF request %s (confirmations=%s)", request_id, config.request_confirmations)
        return request_id

    def fulfill_random_words(
        self,
        request_id: int,
        consumer: RandomnessConsumer,
        random_words: Optional[Sequence[int]] = None,
    ) -> Any:
        config = self.requests.get(request_id)
        if config is None:
            raise ValueError(f"nonexistent request {request_id}")
        if random_words is None:
            words = [secrets.randbits(256) for _ in range(config.num_words)]
        else:
            words = [int(word) for word in random_words]
        signature = self._signer.sign(request_id, words)
        result = consumer.fulfill_random_words(request_id, words, signature)
        # Only forget the request once the consumer accepted it, so a failed
        # callback can be resent.
        del self.requests[request_id]
        return result

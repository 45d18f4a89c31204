from __future__ import annotations

import asyncio
import json
import logging
import pathlib
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from .config import KeeperSettings
from .types import RaffleState, RelayedFulfillment, UpkeepRejected, UpkeepSnapshot


class RaffleClientProtocol(Protocol):
    async def check_upkeep(self) -> UpkeepSnapshot:
        ...

    async def perform_upkeep(self) -> int:
        ...

    async def retry_request(self) -> int:
        ...

    async def fulfill(self, fulfillment: RelayedFulfillment) -> Any:
        ...

    async def close(self) -> None:
        ...


class FulfillmentRelayProtocol(Protocol):
    async def find_fulfillment(self, request_id: int) -> Optional[RelayedFulfillment]:
        ...


@dataclass
class KeeperResult:
    request_id: int
    retried: bool = False
    relayed: bool = False


class KeeperStateStore:
    """Remembers the last request the keeper triggered across restarts."""

    def __init__(self, path: str) -> None:
        self._path = pathlib.Path(path)

    def load_last_request(self) -> Optional[int]:
        if not self._path.exists():
            return None
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            return None
        value = data.get("last_request_id")
        return int(value) if value is not None else None

    def save_last_request(self, request_id: int) -> None:
        payload = {"last_request_id": str(request_id)}
        self._path.write_text(json.dumps(payload), encoding="utf-8")


class KeeperScheduler:
    def __init__(
        self,
        settings: KeeperSettings,
        client: RaffleClientProtocol,
        relay: Optional[FulfillmentRelayProtocol] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._settings = settings
        self._client = client
        self._relay = relay
        self._state = KeeperStateStore(settings.state_file)
        self._last_request_id = self._state.load_last_request()
        self._logger = logger or logging.getLogger("chainraffle.keeper")

    @property
    def last_request_id(self) -> Optional[int]:
        return self._last_request_id

    async def run_forever(self) -> None:
        interval = self._settings.poll_interval_seconds
        self._logger.info("Keeper loop started; poll interval=%s", interval)
        try:
            while True:
                try:
                    await self._attempt_upkeep()
                except Exception as exc:
                    self._logger.exception("Keeper iteration failed: %s", exc)
                await asyncio.sleep(interval)
        finally:
            await self._client.close()

    async def run_once(self) -> Optional[KeeperResult]:
        try:
            return await self._attempt_upkeep()
        finally:
            await self._client.close()

    async def _attempt_upkeep(self) -> Optional[KeeperResult]:
        status = await self._client.check_upkeep()

        if status.state == RaffleState.CALCULATING:
            relayed = await self._relay_fulfillment(status)
            if relayed is not None:
                return relayed
            return await self._maybe_retry(status)

        if not status.upkeep_needed:
            self._logger.debug(
                "Upkeep not needed (players=%s balance=%s elapsed=%ss)",
                status.player_count,
                status.balance,
                status.seconds_since_last_draw,
            )
            return None

        self._logger.info(
            "Performing upkeep: players=%s balance=%s", status.player_count, status.balance
        )
        try:
            request_id = await self._client.perform_upkeep()
        except UpkeepRejected as exc:
            self._logger.info("Upkeep rejected by raffle: %s", exc)
            return None

        self._remember(request_id)
        self._logger.info("Randomness requested: %s", request_id)
        return KeeperResult(request_id=request_id)

    async def _relay_fulfillment(self, status: UpkeepSnapshot) -> Optional[KeeperResult]:
        request_id = status.pending_request_id
        if self._relay is None or request_id is None:
            return None

        fulfillment = await self._relay.find_fulfillment(request_id)
        if fulfillment is None:
            self._logger.debug("No on-chain fulfillment yet for request %s", request_id)
            return None

        try:
            await self._client.fulfill(fulfillment)
        except UpkeepRejected as exc:
            self._logger.info("Fulfillment rejected by raffle: %s", exc)
            return None

        self._logger.info("Relayed fulfillment for request %s", request_id)
        return KeeperResult(request_id=request_id, relayed=True)

    async def _maybe_retry(self, status: UpkeepSnapshot) -> Optional[KeeperResult]:
        pending_for = status.seconds_pending or 0
        if not self._settings.retry_stale_requests or pending_for < self._settings.stale_after_seconds:
            self._logger.debug(
                "Waiting on request %s for %ss", status.pending_request_id, pending_for
            )
            return None

        self._logger.warning(
            "Request %s pending for %ss; asking raffle to re-request",
            status.pending_request_id,
            pending_for,
        )
        try:
            request_id = await self._client.retry_request()
        except UpkeepRejected as exc:
            self._logger.info("Retry rejected by raffle: %s", exc)
            return None

        self._remember(request_id)
        return KeeperResult(request_id=request_id, retried=True)

    def _remember(self, request_id: int) -> None:
        self._last_request_id = request_id
        self._state.save_last_request(request_id)

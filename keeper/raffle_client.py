from __future__ import annotations

import asyncio
from typing import Any, Dict, Mapping, Optional

import requests

from .config import KeeperSettings
from .types import RaffleState, RelayedFulfillment, UpkeepRejected, UpkeepSnapshot


class RaffleApiClient:
    """Wrapper around the raffle service's HTTP upkeep endpoints."""

    def __init__(self, settings: KeeperSettings, session: Optional[requests.Session] = None) -> None:
        self._settings = settings
        self._base_url = settings.raffle_url.rstrip("/")
        self._session = session or requests.Session()

    async def check_upkeep(self) -> UpkeepSnapshot:
        payload = await asyncio.to_thread(self._request, "GET", "/raffle/upkeep")
        return self._parse_upkeep(payload)

    async def perform_upkeep(self) -> int:
        payload = await asyncio.to_thread(self._request, "POST", "/raffle/upkeep")
        return int(payload["request_id"])

    async def retry_request(self) -> int:
        headers = {}
        if self._settings.admin_api_key:
            headers["X-Admin-Token"] = self._settings.admin_api_key
        payload = await asyncio.to_thread(
            self._request, "POST", "/admin/api/retry-request", headers
        )
        return int(payload["request_id"])

    async def fulfill(self, fulfillment: RelayedFulfillment) -> Mapping[str, Any]:
        body = {
            "request_id": fulfillment.request_id,
            "random_words": list(fulfillment.random_words),
        }
        headers = {"X-VRF-Signature": fulfillment.signature}
        return await asyncio.to_thread(self._request, "POST", "/vrf/fulfill", headers, body)

    async def close(self) -> None:
        await asyncio.to_thread(self._session.close)

    def _request(
        self,
        method: str,
        path: str,
        headers: Optional[Dict[str, str]] = None,
        body: Optional[Mapping[str, Any]] = None,
    ) -> Mapping[str, Any]:
        kwargs: Dict[str, Any] = {"headers": headers, "timeout": self._settings.http_timeout_seconds}
        if body is not None:
            kwargs["json"] = body
        resp = self._session.request(method, f"{self._base_url}{path}", **kwargs)
        if resp.status_code in (409, 404):
            data = self._json_or_empty(resp)
            raise UpkeepRejected(str(data.get("error", resp.status_code)), data)
        resp.raise_for_status()
        data = resp.json()
        if not isinstance(data, Mapping):
            raise ValueError("Raffle API returned non-object payload")
        return data

    @staticmethod
    def _json_or_empty(resp: requests.Response) -> Dict[str, Any]:
        try:
            data = resp.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    @staticmethod
    def _parse_upkeep(payload: Mapping[str, Any]) -> UpkeepSnapshot:
        try:
            state = RaffleState[str(payload["state"])]
        except KeyError as exc:
            raise ValueError(f"Unrecognized raffle state: {payload.get('state')}") from exc
        pending = payload.get("pending_request_id")
        return UpkeepSnapshot(
            upkeep_needed=bool(payload["upkeep_needed"]),
            balance=int(payload["balance"]),
            player_count=int(payload["player_count"]),
            state=state,
            seconds_since_last_draw=int(payload["seconds_since_last_draw"]),
            pending_request_id=int(pending) if pending is not None else None,
            seconds_pending=payload.get("seconds_pending"),
        )

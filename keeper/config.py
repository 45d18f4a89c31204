from __future__ import annotations

import os
import pathlib
from dataclasses import dataclass, replace
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv


def _bool_from_env(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int_from_env(value: Optional[str], default: int) -> int:
    if value is None or value == "":
        return default
    return int(value)


def _require_env(key: str) -> str:
    value = os.getenv(key)
    if value is None or value == "":
        raise RuntimeError(f"Missing required environment variable: {key}")
    return value


@dataclass(frozen=True)
class KeeperSettings:
    raffle_url: str
    poll_interval_seconds: int = 30
    run_once: bool = False
    state_file: str = "keeper_state.json"
    http_timeout_seconds: int = 10
    admin_api_key: Optional[str] = None
    retry_stale_requests: bool = False
    stale_after_seconds: int = 3600
    rpc_url: Optional[str] = None
    vrf_coordinator_address: Optional[str] = None
    callback_secret: Optional[str] = None
    relay_lookback_blocks: int = 5000

    @property
    def relay_enabled(self) -> bool:
        return bool(self.rpc_url and self.vrf_coordinator_address and self.callback_secret)

    def copy(self, **updates) -> "KeeperSettings":
        return replace(self, **updates)


def load_from_environment() -> KeeperSettings:
    return KeeperSettings(
        raffle_url=_require_env("RAFFLE_URL").rstrip("/"),
        poll_interval_seconds=_int_from_env(os.getenv("POLL_INTERVAL_SECONDS"), 30),
        run_once=_bool_from_env(os.getenv("RUN_ONCE"), False),
        state_file=os.getenv("STATE_FILE", "keeper_state.json"),
        http_timeout_seconds=_int_from_env(os.getenv("HTTP_TIMEOUT_SECONDS"), 10),
        admin_api_key=os.getenv("ADMIN_API_KEY") or None,
        retry_stale_requests=_bool_from_env(os.getenv("RETRY_STALE_REQUESTS"), False),
        stale_after_seconds=_int_from_env(os.getenv("RAFFLE_REQUEST_TIMEOUT_SECONDS"), 3600),
        rpc_url=os.getenv("RPC_URL") or None,
        vrf_coordinator_address=os.getenv("VRF_COORDINATOR_ADDRESS") or None,
        callback_secret=os.getenv("VRF_CALLBACK_SECRET") or None,
        relay_lookback_blocks=_int_from_env(os.getenv("RELAY_LOOKBACK_BLOCKS"), 5000),
    )


@lru_cache(maxsize=1)
def load_config(dotenv_path: Optional[str] = None) -> KeeperSettings:
    if dotenv_path:
        load_dotenv(dotenv_path)
    else:
        default_path = pathlib.Path(".env")
        if default_path.exists():
            load_dotenv(default_path)
    return load_from_environment()

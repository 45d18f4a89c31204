from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

REQUEST_CONFIRMATIONS = 3
NUM_WORDS = 1

RANDOMNESS_BACKENDS = ("mock", "chain")
PAYOUT_BACKENDS = ("memory", "chain")


@dataclass(frozen=True)
class FlaskSettings:
    secret_key: str = "chainraffle-dev-secret"
    debug: bool = True


@dataclass(frozen=True)
class VRFSettings:
    coordinator_address: str = "0x" + "0" * 40
    gas_lane: str = "0x" + "0" * 64
    subscription_id: int = 0
    callback_gas_limit: int = 500000
    request_confirmations: int = REQUEST_CONFIRMATIONS
    num_words: int = NUM_WORDS


@dataclass(frozen=True)
class Web3Settings:
    rpc_url: Optional[str] = None
    signer_key: Optional[str] = None
    receipt_timeout_seconds: int = 120


@dataclass(frozen=True)
class RaffleSettings:
    entrance_fee: int
    interval_seconds: int
    request_timeout_seconds: int = 3600


@dataclass(frozen=True)
class AppSettings:
    flask: FlaskSettings
    raffle: RaffleSettings
    vrf: VRFSettings
    web3: Web3Settings
    database_url: str
    callback_secret: str
    admin_api_key: Optional[str] = None
    randomness_backend: str = "mock"
    payout_backend: str = "memory"
    allow_chosen_random_words: bool = False


def _require(key: str) -> str:
    value = os.getenv(key)
    if not value:
        raise RuntimeError(f"Missing required environment variable: {key}")
    return value


def _int_from_env(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None or value == "":
        return default
    return int(value)


def _choice_from_env(key: str, default: str, choices) -> str:
    value = os.getenv(key, default).strip().lower()
    if value not in choices:
        raise RuntimeError(f"{key} must be one of {', '.join(choices)}; got {value!r}")
    return value


def _non_negative(name: str, value: int) -> int:
    if value < 0:
        raise RuntimeError(f"{name} must be non-negative (got {value})")
    return value


@lru_cache(maxsize=1)
def load_settings(dotenv_path: Optional[str] = None) -> AppSettings:
    if dotenv_path:
        load_dotenv(dotenv_path)
    else:
        load_dotenv()

    flask_settings = FlaskSettings(
        secret_key=os.getenv("FLASK_SECRET_KEY", "chainraffle-dev-secret"),
        debug=os.getenv("FLASK_DEBUG", "1") == "1",
    )

    raffle_settings = RaffleSettings(
        entrance_fee=_non_negative("RAFFLE_ENTRANCE_FEE", int(_require("RAFFLE_ENTRANCE_FEE"))),
        interval_seconds=_non_negative(
            "RAFFLE_INTERVAL_SECONDS", int(_require("RAFFLE_INTERVAL_SECONDS"))
        ),
        request_timeout_seconds=_non_negative(
            "RAFFLE_REQUEST_TIMEOUT_SECONDS",
            _int_from_env("RAFFLE_REQUEST_TIMEOUT_SECONDS", 3600),
        ),
    )

    vrf_settings = VRFSettings(
        coordinator_address=os.getenv("VRF_COORDINATOR_ADDRESS", "0x" + "0" * 40),
        gas_lane=os.getenv("VRF_GAS_LANE", "0x" + "0" * 64),
        subscription_id=_int_from_env("VRF_SUBSCRIPTION_ID", 0),
        callback_gas_limit=_int_from_env("VRF_CALLBACK_GAS_LIMIT", 500000),
    )

    randomness_backend = _choice_from_env("RANDOMNESS_BACKEND", "mock", RANDOMNESS_BACKENDS)
    payout_backend = _choice_from_env("PAYOUT_BACKEND", "memory", PAYOUT_BACKENDS)

    needs_chain = "chain" in (randomness_backend, payout_backend)
    web3_settings = Web3Settings(
        rpc_url=_require("RPC_URL") if needs_chain else os.getenv("RPC_URL"),
        signer_key=_require("RAFFLE_SIGNER_KEY") if needs_chain else os.getenv("RAFFLE_SIGNER_KEY"),
        receipt_timeout_seconds=_int_from_env("RECEIPT_TIMEOUT_SECONDS", 120),
    )

    return AppSettings(
        flask=flask_settings,
        raffle=raffle_settings,
        vrf=vrf_settings,
        web3=web3_settings,
        database_url=os.getenv("DATABASE_URL", "sqlite:///chainraffle.db"),
        callback_secret=_require("VRF_CALLBACK_SECRET"),
        admin_api_key=os.getenv("ADMIN_API_KEY"),
        randomness_backend=randomness_backend,
        payout_backend=payout_backend,
        allow_chosen_random_words=os.getenv("MOCK_VRF_ALLOW_CHOSEN_WORDS", "0") == "1",
    )

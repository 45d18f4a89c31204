from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, current_app, jsonify

from ..extensions import get_machine

bp = Blueprint("config", __name__)


def _get_raffle_metadata() -> Dict[str, Any]:
    settings = current_app.config["RAFFLE_SETTINGS"]
    machine = get_machine()
    vrf = machine.vrf_config
    return {
        "entrance_fee_wei": str(machine.entrance_fee),
        "interval_seconds": machine.interval_seconds,
        "request_timeout_seconds": machine.request_timeout_seconds,
        "randomness_backend": settings.randomness_backend,
        "payout_backend": settings.payout_backend,
        "vrf": {
            "coordinator_address": vrf.coordinator_address,
            "gas_lane": vrf.gas_lane,
            "subscription_id": vrf.subscription_id,
            "callback_gas_limit": vrf.callback_gas_limit,
            "request_confirmations": vrf.request_confirmations,
            "num_words": vrf.num_words,
        },
    }


@bp.get("/config")
def get_config():
    return jsonify(_get_raffle_metadata())

from __future__ import annotations

from flask import Blueprint, jsonify

from ..extensions import get_machine

bp = Blueprint("health", __name__)


@bp.get("/health")
def health():
    state = get_machine().raffle_state()
    return jsonify({"status": "ok", "raffle_state": state.name})

from __future__ import annotations

import hmac

from flask import Blueprint, current_app, jsonify, request

from ..extensions import get_machine
from ..randomness import MockVRFCoordinator
from ..schemas import FulfillmentResponse, MockFulfillRequest, PerformUpkeepResponse
from ..types import RaffleState

bp = Blueprint("admin", __name__)


def _require_admin() -> bool:
    api_key = current_app.config.get("ADMIN_API_KEY")
    if api_key:
        provided = request.headers.get("X-Admin-Token", "")
        if not hmac.compare_digest(provided, api_key):
            return False
    return True


@bp.before_request
def verify_admin():
    if not _require_admin():
        return jsonify({"error": "unauthorized"}), 401
    return None


@bp.post("/retry-request")
def retry_request():
    request_id = get_machine().retry_request()
    response = PerformUpkeepResponse(request_id=str(request_id), state=RaffleState.CALCULATING.name)
    return jsonify(response.model_dump()), 202


@bp.post("/mock-vrf/fulfill")
def mock_fulfill():
    """Answer a pending request from the in-process development coordinator."""
    # The mock coordinator signs whatever it is handed, so this route is never
    # open to anonymous callers.
    if not current_app.config.get("ADMIN_API_KEY"):
        return jsonify({"error": "admin_api_key_not_configured"}), 403

    machine = get_machine()
    coordinator = machine.requester
    if not isinstance(coordinator, MockVRFCoordinator):
        return jsonify({"error": "mock coordinator not configured; RANDOMNESS_BACKEND=mock"}), 400

    payload = request.get_json(force=True, silent=True) or {}
    data = MockFulfillRequest(**payload)
    if data.random_words is not None and not current_app.config.get("MOCK_VRF_ALLOW_CHOSEN_WORDS"):
        return jsonify({"error": "chosen_random_words_disabled"}), 403
    request_id = data.request_id if data.request_id is not None else machine.pending_request_id()
    if request_id is None:
        return jsonify({"error": "no pending randomness request"}), 400

    try:
        result = coordinator.fulfill_random_words(request_id, machine, data.random_words)
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 404

    response = FulfillmentResponse(
        request_id=str(result.request_id),
        round_number=result.round_number,
        winner=result.winner,
        winner_index=result.winner_index,
        prize=str(result.prize),
        payout_ref=result.payout_ref,
    )
    return jsonify(response.model_dump())

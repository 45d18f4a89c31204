from __future__ import annotations

from flask import Blueprint, jsonify, request

from ..extensions import get_machine
from ..schemas import FulfillmentRequest, FulfillmentResponse

bp = Blueprint("vrf", __name__)


@bp.post("/fulfill")
def fulfill_random_words():
    payload = request.get_json(force=True, silent=True) or {}
    # The signature may travel in the body or in a header.
    payload.setdefault("signature", request.headers.get("X-VRF-Signature", ""))
    data = FulfillmentRequest(**payload)

    result = get_machine().fulfill_random_words(data.request_id, data.random_words, data.signature)
    response = FulfillmentResponse(
        request_id=str(result.request_id),
        round_number=result.round_number,
        winner=result.winner,
        winner_index=result.winner_index,
        prize=str(result.prize),
        payout_ref=result.payout_ref,
    )
    return jsonify(response.model_dump())

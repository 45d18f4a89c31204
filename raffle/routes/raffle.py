from __future__ import annotations

from flask import Blueprint, jsonify, request

from ..extensions import get_machine
from ..schemas import (
    EnterRequest,
    EnterResponse,
    PerformUpkeepResponse,
    RaffleSnapshotResponse,
    UpkeepStatusResponse,
)
from ..types import RaffleState

bp = Blueprint("raffle", __name__)


def _limit_arg(default: int, maximum: int = 500) -> int:
    try:
        value = int(request.args.get("limit", default))
    except ValueError:
        return default
    return max(1, min(value, maximum))


@bp.get("")
def get_raffle():
    snapshot = get_machine().snapshot()
    response = RaffleSnapshotResponse(
        state=snapshot.state.name,
        state_code=int(snapshot.state),
        entrance_fee=str(snapshot.entrance_fee),
        interval_seconds=snapshot.interval_seconds,
        round_number=snapshot.round_number,
        player_count=snapshot.player_count,
        balance=str(snapshot.balance),
        last_timestamp=snapshot.last_timestamp,
        recent_winner=snapshot.recent_winner,
        pending_request_id=(
            str(snapshot.pending_request_id) if snapshot.pending_request_id is not None else None
        ),
    )
    return jsonify(response.model_dump())


@bp.post("/entries")
def enter_raffle():
    payload = request.get_json(force=True, silent=True) or {}
    data = EnterRequest(**payload)

    machine = get_machine()
    player_count = machine.enter(data.participant, data.amount)
    response = EnterResponse(
        participant=data.participant,
        player_count=player_count,
        balance=str(machine.total_balance()),
    )
    return jsonify(response.model_dump()), 201


@bp.get("/players")
def list_players():
    return jsonify(get_machine().players())


@bp.get("/players/<int:index>")
def get_player(index: int):
    participant = get_machine().player(index)
    return jsonify({"index": index, "participant": participant})


@bp.get("/upkeep")
def check_upkeep():
    status = get_machine().upkeep_status()
    response = UpkeepStatusResponse(
        upkeep_needed=status.upkeep_needed,
        balance=str(status.balance),
        player_count=status.player_count,
        state=status.state.name,
        seconds_since_last_draw=status.seconds_since_last_draw,
        interval_elapsed=status.interval_elapsed,
        pending_request_id=(
            str(status.pending_request_id) if status.pending_request_id is not None else None
        ),
        seconds_pending=status.seconds_pending,
    )
    return jsonify(response.model_dump())


@bp.post("/upkeep")
def perform_upkeep():
    request_id = get_machine().perform_upkeep()
    response = PerformUpkeepResponse(request_id=str(request_id), state=RaffleState.CALCULATING.name)
    return jsonify(response.model_dump()), 202


@bp.get("/events")
def list_events():
    return jsonify(get_machine().recent_events(limit=_limit_arg(50)))


@bp.get("/winners")
def list_winners():
    return jsonify(get_machine().winners(limit=_limit_arg(20)))
